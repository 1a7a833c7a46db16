from sqlalchemy.exc import ProgrammingError, OperationalError
import os

from app import create_app
from models import db, User

print("Starting database table creation...")

# Inline activity writes, no background scheduler needed for a one-off script
app = create_app({'ACTIVITY_LOG_DISPATCH': 'inline'})


def seed_admin():
    """Create the first admin account from ADMIN_EMAIL / ADMIN_PASSWORD if it doesn't exist"""
    email = (os.environ.get('ADMIN_EMAIL') or '').strip().lower()
    password = os.environ.get('ADMIN_PASSWORD')
    if not email or not password:
        print("! ADMIN_EMAIL / ADMIN_PASSWORD not set, skipping admin account")
        return

    if User.query.filter_by(email=email).first():
        print(f"✓ Admin account {email} already exists")
        return

    admin = User(email=email, name=os.environ.get('ADMIN_NAME', 'Administrator'), role='admin')
    admin.set_password(password)
    db.session.add(admin)
    db.session.commit()
    print(f"✓ Admin account {email} created")


# Now create the tables
with app.app_context():
    try:
        db.create_all()
        print("✓ Tables created successfully!")
    except (ProgrammingError, OperationalError) as e:
        print(f"! Error: {e}")
        print("Some tables may already exist. This is normal if you've run this before.")

    seed_admin()

print("Finished database setup process.")
