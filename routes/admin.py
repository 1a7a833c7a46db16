from flask import Blueprint, render_template, redirect, url_for, request, flash, current_app
from flask_mail import Message
import secrets
import traceback

from activity_log import log_activity, ActivityType
from app import mail
from database import get_dashboard_stats, get_recent_activity, get_pending_applications, latest
from decorators import guard_blueprint
from errors import PortalError, UpstreamError
from media import MediaHostClient
from models import db, User, Application, Admission, Enquiry, ContactMessage, Notice, Note, GalleryItem
from routes.public import COURSES, EMAIL_PATTERN, course_title

admin_bp = Blueprint('admin', __name__, url_prefix='/admin')

# Every admin page needs the admin_panel capability
guard_blueprint(admin_bp, 'admin_panel')

PER_PAGE = 20


# --------------- Helper Functions ---------------

def media_error_message(e, action):
    """Flash text for a failed media call. Upstream details only go to the log."""
    if isinstance(e, UpstreamError):
        current_app.logger.error(f"[MEDIA] {action} failed: {e.detail}")
        return f'{action} failed. Check server logs for details.'
    current_app.logger.error(f"[MEDIA] {action} rejected: {e.public_message}")
    return e.public_message


def create_student(email, name, password):
    """New student account, or None if the email is already registered"""
    if User.query.filter_by(email=email).first():
        return None
    user = User(email=email, name=name, role='student', is_active=True)
    user.set_password(password)
    db.session.add(user)
    db.session.flush()
    return user


def send_admission_email(application, password):
    """Tell an admitted applicant how to log in. Failures are logged, not raised."""
    message = Message(
        subject='Admission Approved',
        recipients=[application.email],
        body=(
            f"Dear {application.name},\n\n"
            f"Congratulations! Your application for the {course_title(application.course)} course has been approved.\n\n"
            "You can now log in to your student dashboard using the following credentials:\n"
            f"Email: {application.email}\nTemporary Password: {password}\n\n"
            "Please log in and change your password as soon as possible.\n"
            f"Login here: {url_for('auth.login', _external=True)}\n"
        ),
    )
    try:
        mail.send(message)
        return True
    except Exception as e:
        current_app.logger.error(f"Failed to send admission email for application {application.id}: {e}")
        return False


# --------------- Dashboard ---------------

@admin_bp.route('/')
def dashboard():
    try:
        stats = get_dashboard_stats()
        activity = get_recent_activity()
    except Exception as e:
        current_app.logger.error(f"Error loading admin dashboard: {e}")
        current_app.logger.debug(f"Traceback: {traceback.format_exc()}")
        flash('Could not load dashboard data.', 'error')
        stats, activity = {}, []
    return render_template('admin/dashboard.html', stats=stats, activity=activity)


# --------------- Applications & admissions ---------------

@admin_bp.route('/applications')
def applications():
    search = request.args.get('search', '').strip()
    course = request.args.get('course') or None
    page = max(request.args.get('page', 1, type=int), 1)
    results, total_count = get_pending_applications(search, course, page, PER_PAGE)
    return render_template(
        'admin/applications.html',
        applications=results, total_count=total_count, page=page, per_page=PER_PAGE,
        search=search, course=course, courses=COURSES,
    )


@admin_bp.route('/applications/<int:application_id>/admit', methods=['POST'])
def admit_application(application_id):
    application = db.get_or_404(Application, application_id)
    if application.status != 'pending':
        flash('This application has already been processed.', 'warning')
        return redirect(url_for('admin.applications'))

    password = (request.form.get('temp_password') or '').strip() or secrets.token_urlsafe(9)
    if len(password) < 8:
        flash('Temporary password must be at least 8 characters.', 'error')
        return redirect(url_for('admin.applications'))

    try:
        user = create_student(application.email.lower(), application.name, password)
        if user is None:
            flash(f'An account already exists for {application.email}.', 'error')
            return redirect(url_for('admin.applications'))

        db.session.add(Admission(user_id=user.id, course=application.course, details=application.to_dict()))
        application.status = 'admitted'
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error admitting application {application_id}: {e}")
        current_app.logger.debug(f"Traceback: {traceback.format_exc()}")
        flash(f'Admission failed: {e}', 'error')
        return redirect(url_for('admin.applications'))

    log_activity(ActivityType.STUDENT_ADMITTED, {
        'description': f"{application.name} was admitted to {course_title(application.course)}.",
        'link': '/admin/admissions',
        'application_id': application.id,
        'user_id': user.id,
        'name': application.name,
        'course': application.course,
    })
    emailed = send_admission_email(application, password)
    flash(f'{application.name} has been admitted and their account is created.', 'success')
    if not emailed:
        flash('The approval email could not be sent. Share the login details manually.', 'warning')
    return redirect(url_for('admin.applications'))


@admin_bp.route('/admissions')
def admissions():
    rows = db.session.query(Admission, User).join(User, Admission.user_id == User.id).order_by(
        Admission.admitted_at.desc()
    ).all()
    return render_template('admin/admissions.html', admissions=rows, courses=COURSES)


@admin_bp.route('/add-student', methods=['GET', 'POST'])
def add_student():
    values = {}
    errors = {}
    if request.method == 'POST':
        values = {field: (request.form.get(field) or '').strip() for field in ('name', 'email', 'course', 'password')}
        values['email'] = values['email'].lower()
        if len(values['name']) < 2:
            errors['name'] = 'Name must be at least 2 characters.'
        if not EMAIL_PATTERN.match(values['email']):
            errors['email'] = 'Please enter a valid email address.'
        if values['course'] not in COURSES:
            errors['course'] = 'Please select a course.'
        if len(values['password']) < 8:
            errors['password'] = 'Password must be at least 8 characters.'

        if not errors:
            try:
                user = create_student(values['email'], values['name'], values['password'])
                if user is None:
                    errors['email'] = 'An account with this email already exists.'
                else:
                    db.session.add(Admission(
                        user_id=user.id, course=values['course'],
                        details={'name': values['name'], 'email': values['email'], 'course': values['course']},
                    ))
                    db.session.commit()
            except Exception as e:
                db.session.rollback()
                current_app.logger.error(f"Error adding student {values['email']}: {e}")
                flash(f'Could not add student: {e}', 'error')
                return render_template('admin/add_student.html', values=values, errors=errors, courses=COURSES), 500

        if errors:
            return render_template('admin/add_student.html', values=values, errors=errors, courses=COURSES), 400

        log_activity(ActivityType.STUDENT_ADDED, {
            'description': f"{user.name} was added to {course_title(values['course'])}.",
            'link': '/admin/admissions',
            'user_id': user.id,
            'name': user.name,
            'course': values['course'],
        })
        flash(f'{user.name} has been added as a student.', 'success')
        return redirect(url_for('admin.admissions'))

    return render_template('admin/add_student.html', values=values, errors=errors, courses=COURSES)


# --------------- Notices & notes ---------------

@admin_bp.route('/notices', methods=['GET', 'POST'])
def notices():
    if request.method == 'POST':
        title = (request.form.get('title') or '').strip()
        content = (request.form.get('content') or '').strip()
        if not title or not content:
            flash('Title and content are required.', 'error')
            return render_template('admin/notices.html', notices=latest(Notice)), 400

        notice = Notice(title=title, content=content)
        db.session.add(notice)
        db.session.commit()
        log_activity(ActivityType.NOTICE_PUBLISHED, {
            'description': f'Notice "{notice.title}" was published.',
            'link': '/notices',
            'notice_id': notice.id,
            'title': notice.title,
        })
        flash('Notice published.', 'success')
        return redirect(url_for('admin.notices'))

    return render_template('admin/notices.html', notices=latest(Notice))


@admin_bp.route('/notices/<int:notice_id>/delete', methods=['POST'])
def delete_notice(notice_id):
    notice = db.get_or_404(Notice, notice_id)
    db.session.delete(notice)
    db.session.commit()
    flash('Notice deleted.', 'success')
    return redirect(url_for('admin.notices'))


@admin_bp.route('/notes', methods=['GET', 'POST'])
def notes():
    if request.method == 'POST':
        title = (request.form.get('title') or '').strip()
        course = request.form.get('course')
        file = request.files.get('file')
        if not title or course not in COURSES or not file or not file.filename:
            flash('Title, course and a file are required.', 'error')
            return render_template('admin/notes.html', notes=latest(Note), courses=COURSES), 400

        try:
            client = MediaHostClient.from_config(current_app.config)
            result = client.upload_file(file.stream, resource_type='raw', folder='notes')
        except PortalError as e:
            flash(media_error_message(e, 'Note upload'), 'error')
            return render_template('admin/notes.html', notes=latest(Note), courses=COURSES), e.status_code

        note = Note(title=title, course=course, file_url=result.secure_url, public_id=result.public_id)
        db.session.add(note)
        db.session.commit()
        log_activity(ActivityType.NOTE_PUBLISHED, {
            'description': f'Note "{note.title}" was published for {course_title(course)}.',
            'link': '/notes',
            'note_id': note.id,
            'title': note.title,
            'course': course,
        })
        flash('Note published.', 'success')
        return redirect(url_for('admin.notes'))

    return render_template('admin/notes.html', notes=latest(Note), courses=COURSES)


# --------------- Gallery ---------------

@admin_bp.route('/gallery', methods=['GET', 'POST'])
def gallery():
    if request.method == 'POST':
        title = (request.form.get('title') or '').strip() or None
        url = (request.form.get('url') or '').strip()
        file = request.files.get('file')
        if not url and (not file or not file.filename):
            flash('Provide an image or video file, or a URL to import.', 'error')
            return render_template('admin/gallery.html', items=latest(GalleryItem)), 400

        try:
            client = MediaHostClient.from_config(current_app.config)
            if url:
                result = client.upload_from_url(url)
                media_type = 'video' if '/video/' in result.secure_url else 'image'
            else:
                media_type = 'video' if (file.mimetype or '').startswith('video') else 'image'
                result = client.upload_file(file.stream, resource_type=media_type)
        except PortalError as e:
            flash(media_error_message(e, 'Gallery upload'), 'error')
            return render_template('admin/gallery.html', items=latest(GalleryItem)), e.status_code

        item = GalleryItem(title=title, type=media_type, url=result.secure_url, public_id=result.public_id)
        db.session.add(item)
        db.session.commit()
        log_activity(ActivityType.GALLERY_UPLOAD, {
            'description': f"A new {media_type} was added to the gallery.",
            'link': '/gallery',
            'item_id': item.id,
            'media_type': media_type,
            'public_id': item.public_id,
        })
        flash('Gallery item added.', 'success')
        return redirect(url_for('admin.gallery'))

    return render_template('admin/gallery.html', items=latest(GalleryItem))


@admin_bp.route('/gallery/<int:item_id>/delete', methods=['POST'])
def delete_gallery_item(item_id):
    item = db.get_or_404(GalleryItem, item_id)
    if item.public_id:
        try:
            MediaHostClient.from_config(current_app.config).destroy(item.public_id)
        except PortalError as e:
            flash(media_error_message(e, 'Media deletion'), 'error')
            return redirect(url_for('admin.gallery'))

    db.session.delete(item)
    db.session.commit()
    flash('Gallery item deleted.', 'success')
    return redirect(url_for('admin.gallery'))


# --------------- Enquiries & messages ---------------

@admin_bp.route('/enquiries')
def enquiries():
    course = request.args.get('course') or None
    query = Enquiry.query
    if course:
        query = query.filter(Enquiry.course == course)
    return render_template('admin/enquiries.html',
                           enquiries=query.order_by(Enquiry.created_at.desc()).all(),
                           courses=COURSES, course=course)


@admin_bp.route('/messages')
def messages():
    return render_template('admin/messages.html', messages=latest(ContactMessage))


@admin_bp.route('/messages/<int:message_id>/read', methods=['POST'])
def mark_message_read(message_id):
    message = db.get_or_404(ContactMessage, message_id)
    message.is_read = True
    db.session.commit()
    return redirect(url_for('admin.messages'))
