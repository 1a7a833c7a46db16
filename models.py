from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from datetime import datetime, timezone
from werkzeug.security import generate_password_hash, check_password_hash

# Initialize SQLAlchemy
db = SQLAlchemy()


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


# User model for students and administrators
class User(db.Model, UserMixin):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    name = db.Column(db.String(100))
    role = db.Column(db.Enum('student', 'admin', name='user_role_enum'), default='student', nullable=False)
    password = db.Column(db.String(255))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    last_login = db.Column(db.DateTime)

    # Relationships
    admission = db.relationship('Admission', backref='user', uselist=False, lazy=True)

    def set_password(self, password):
        """Set the password hash for the user"""
        self.password = generate_password_hash(password)

    def check_password(self, password):
        """Check if the provided password matches the stored hash"""
        if not self.password:
            return False
        return check_password_hash(self.password, password)

    def to_dict(self):
        """Convert User object to a dictionary for JSON serialization"""
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'role': self.role,
            'is_active': self.is_active,
            'created_at': self.created_at,
            'last_login': self.last_login
        }

    def __repr__(self):
        return f'<User {self.email}>'


# Append-only activity feed shown on the admin dashboard
class ActivityLog(db.Model):
    __tablename__ = 'activity_log'
    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(32), nullable=False, index=True)
    payload = db.Column(db.JSON, nullable=False, default=dict)
    timestamp = db.Column(db.DateTime, nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'type': self.type,
            'payload': self.payload,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None
        }

    def __repr__(self):
        return f"<ActivityLog(type={self.type}, timestamp={self.timestamp})>"


class Enquiry(db.Model):
    __tablename__ = 'enquiry'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120))
    phone = db.Column(db.String(20), nullable=False)
    course = db.Column(db.String(50), nullable=False)
    message = db.Column(db.Text)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f'<Enquiry {self.name} ({self.course})>'


# Registration form submission, pending until an admin admits it
class Application(db.Model):
    __tablename__ = 'application'
    id = db.Column(db.Integer, primary_key=True)
    session = db.Column(db.String(10), nullable=False)  # e.g. 2024-25
    name = db.Column(db.String(100), nullable=False)
    father_name = db.Column(db.String(100), nullable=False)
    dob = db.Column(db.Date, nullable=False)
    sex = db.Column(db.String(10), nullable=False)
    nationality = db.Column(db.String(50), nullable=False)
    phone = db.Column(db.String(20), nullable=False)
    address = db.Column(db.Text, nullable=False)
    email = db.Column(db.String(120), nullable=False)
    course = db.Column(db.String(50), nullable=False)
    qualifications = db.Column(db.JSON, nullable=False, default=list)
    photo_url = db.Column(db.String(255))
    status = db.Column(db.Enum('pending', 'admitted', name='application_status_enum'), default='pending', nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'session': self.session,
            'name': self.name,
            'father_name': self.father_name,
            'dob': self.dob.strftime('%Y-%m-%d') if self.dob else None,
            'sex': self.sex,
            'nationality': self.nationality,
            'phone': self.phone,
            'address': self.address,
            'email': self.email,
            'course': self.course,
            'qualifications': self.qualifications,
            'photo_url': self.photo_url,
            'status': self.status
        }

    def __repr__(self):
        return f'<Application {self.name} ({self.status})>'


class Admission(db.Model):
    __tablename__ = 'admission'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, unique=True)
    course = db.Column(db.String(50), nullable=False)
    details = db.Column(db.JSON, nullable=False, default=dict)  # Copy of the application data
    admitted_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f'<Admission user={self.user_id} course={self.course}>'


class ContactMessage(db.Model):
    __tablename__ = 'contact_message'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), nullable=False)
    subject = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    is_read = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)


class Notice(db.Model):
    __tablename__ = 'notice'
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)


class Note(db.Model):
    __tablename__ = 'note'
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    course = db.Column(db.String(50), nullable=False)
    file_url = db.Column(db.String(255), nullable=False)
    public_id = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)


class GalleryItem(db.Model):
    __tablename__ = 'gallery_item'
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200))
    type = db.Column(db.Enum('image', 'video', name='gallery_type_enum'), default='image', nullable=False)
    url = db.Column(db.String(255), nullable=False)
    public_id = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
