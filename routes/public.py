from flask import Blueprint, render_template, redirect, url_for, request, flash, current_app, abort
from datetime import datetime
import re
import traceback

from activity_log import log_activity, ActivityType
from database import latest, get_gallery
from models import db, Enquiry, Application, ContactMessage, Notice, Note

public_bp = Blueprint('public', __name__)

# Course catalog shown on the public pages and offered in the forms
COURSES = {
    'dca': {
        'title': 'Diploma in Computer Applications',
        'duration': '6 months',
        'summary': 'Office tools, internet basics and introductory programming.',
    },
    'adca': {
        'title': 'Advanced Diploma in Computer Applications',
        'duration': '12 months',
        'summary': 'DCA plus accounting software, web design and databases.',
    },
    'tally': {
        'title': 'Tally with GST',
        'duration': '3 months',
        'summary': 'Bookkeeping, inventory and GST returns with Tally.',
    },
    'hardware': {
        'title': 'Computer Hardware & Networking',
        'duration': '12 months',
        'summary': 'Assembly, troubleshooting and small office networks.',
    },
    'electrician': {
        'title': 'Electrician',
        'duration': '24 months',
        'summary': 'Domestic and industrial wiring, motors and safety practice.',
    },
}

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
PHONE_PATTERN = re.compile(r'^\+?[0-9 \-]{10,15}$')
SEX_CHOICES = ('male', 'female', 'other')


def course_title(key):
    course = COURSES.get(key)
    return course['title'] if course else key


def clean(name):
    return (request.form.get(name) or '').strip()


def check_required(values, min_lengths):
    """Return an error message per field that is missing or too short"""
    errors = {}
    for field, minimum in min_lengths.items():
        if len(values.get(field) or '') < minimum:
            errors[field] = 'This field is required.' if minimum <= 1 else f'Must be at least {minimum} characters.'
    return errors


def check_contact(values, errors, email_required=True):
    email = values.get('email')
    if email_required or email:
        if not email or not EMAIL_PATTERN.match(email):
            errors['email'] = 'Please enter a valid email address.'
    phone = values.get('phone')
    if 'phone' in values and (not phone or not PHONE_PATTERN.match(phone)):
        errors['phone'] = 'Phone number must be at least 10 digits.'
    course = values.get('course')
    if 'course' in values and course not in COURSES:
        errors['course'] = 'Please select a course.'
    return errors


def save_submission(record, activity_type, payload_for, success_message, failure_template, **context):
    """Persist a public form submission and record the matching activity.

    The activity write is best effort, so a failed log never undoes the submission.
    """
    try:
        db.session.add(record)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error saving {type(record).__name__}: {e}")
        current_app.logger.debug(f"Traceback: {traceback.format_exc()}")
        flash('Something went wrong while saving your details. Please try again.', 'error')
        return render_template(failure_template, courses=COURSES, **context), 500

    log_activity(activity_type, payload_for(record))
    flash(success_message, 'success')
    return redirect(request.path)


@public_bp.route('/')
def index():
    return render_template('public/index.html', courses=COURSES, notices=latest(Notice, 5))


@public_bp.route('/courses')
def courses():
    return render_template('public/courses.html', courses=COURSES)


@public_bp.route('/courses/<course_key>')
def course_detail(course_key):
    course = COURSES.get(course_key)
    if not course:
        abort(404)
    return render_template('public/course_detail.html', course_key=course_key, course=course)


@public_bp.route('/enquiry', methods=['GET', 'POST'])
def enquiry():
    if request.method == 'GET':
        return render_template('public/enquiry.html', courses=COURSES, values={}, errors={},
                               selected=request.args.get('course'))

    values = {field: clean(field) for field in ('name', 'email', 'phone', 'course', 'message')}
    errors = check_required(values, {'name': 2})
    check_contact(values, errors, email_required=False)
    if errors:
        return render_template('public/enquiry.html', courses=COURSES, values=values, errors=errors), 400

    record = Enquiry(
        name=values['name'],
        email=values['email'] or None,
        phone=values['phone'],
        course=values['course'],
        message=values['message'] or None,
    )
    return save_submission(
        record,
        ActivityType.NEW_ENQUIRY,
        lambda r: {
            'description': f"New enquiry from {r.name} for {course_title(r.course)}.",
            'link': '/admin/enquiries',
            'enquiry_id': r.id,
            'name': r.name,
            'course': r.course,
        },
        'Thank you! Our team will contact you shortly.',
        'public/enquiry.html', values=values, errors={},
    )


def collect_qualifications():
    """Rows of the qualifications table in the registration form"""
    exams = request.form.getlist('qualification_exam')
    boards = request.form.getlist('qualification_board')
    years = request.form.getlist('qualification_year')
    percentages = request.form.getlist('qualification_percentage')

    rows = []
    for exam, board, year, percentage in zip(exams, boards, years, percentages):
        row = {
            'exam': exam.strip(),
            'board': board.strip(),
            'year': year.strip(),
            'percentage': percentage.strip(),
        }
        if any(row.values()):
            rows.append(row)
    return rows


@public_bp.route('/register', methods=['GET', 'POST'])
def register():
    if request.method == 'GET':
        return render_template('public/register.html', courses=COURSES, values={}, errors={})

    fields = ('session', 'name', 'father_name', 'dob', 'sex', 'nationality',
              'phone', 'address', 'email', 'course', 'photo_url')
    values = {field: clean(field) for field in fields}
    values['email'] = values['email'].lower()
    qualifications = collect_qualifications()

    errors = check_required(values, {
        'session': 4, 'name': 2, 'father_name': 2, 'dob': 1,
        'nationality': 2, 'address': 10,
    })
    check_contact(values, errors)

    dob = None
    if 'dob' not in errors:
        try:
            dob = datetime.strptime(values['dob'], '%Y-%m-%d').date()
        except ValueError:
            errors['dob'] = 'Please enter a valid date.'
    if values['sex'].lower() not in SEX_CHOICES:
        errors['sex'] = 'Please select your gender.'
    if not qualifications:
        errors['qualifications'] = 'Please add at least one qualification.'
    elif any(not all(row.values()) for row in qualifications):
        errors['qualifications'] = 'Please complete every qualification row.'

    if errors:
        return render_template('public/register.html', courses=COURSES, values=values, errors=errors), 400

    record = Application(
        session=values['session'],
        name=values['name'],
        father_name=values['father_name'],
        dob=dob,
        sex=values['sex'].lower(),
        nationality=values['nationality'],
        phone=values['phone'],
        address=values['address'],
        email=values['email'],
        course=values['course'],
        qualifications=qualifications,
        photo_url=values['photo_url'] or None,
        status='pending',
    )
    return save_submission(
        record,
        ActivityType.NEW_APPLICATION,
        lambda r: {
            'description': f"New application from {r.name} for {course_title(r.course)}.",
            'link': '/admin/applications',
            'application_id': r.id,
            'name': r.name,
            'course': r.course,
        },
        'Your application has been submitted. We will email you once it is reviewed.',
        'public/register.html', values=values, errors={},
    )


@public_bp.route('/contact', methods=['GET', 'POST'])
def contact():
    if request.method == 'GET':
        return render_template('public/contact.html', values={}, errors={})

    values = {field: clean(field) for field in ('name', 'email', 'subject', 'message')}
    errors = check_required(values, {'name': 2, 'subject': 3, 'message': 10})
    check_contact(values, errors)
    if errors:
        return render_template('public/contact.html', values=values, errors=errors), 400

    record = ContactMessage(**values, is_read=False)
    return save_submission(
        record,
        ActivityType.NEW_MESSAGE,
        lambda r: {
            'description': f'New contact message from {r.name} with subject "{r.subject}".',
            'link': '/admin/messages',
            'message_id': r.id,
            'name': r.name,
            'subject': r.subject,
        },
        'Your message has been sent. We will get back to you soon.',
        'public/contact.html', values=values, errors={},
    )


@public_bp.route('/notices')
def notices():
    return render_template('public/notices.html', notices=latest(Notice))


@public_bp.route('/notes')
def notes():
    course = request.args.get('course')
    query = Note.query
    if course:
        query = query.filter(Note.course == course)
    return render_template('public/notes.html', notes=query.order_by(Note.created_at.desc()).all(),
                           courses=COURSES, selected=course)


@public_bp.route('/gallery')
def gallery():
    media_type = request.args.get('type')
    if media_type not in ('image', 'video'):
        media_type = None
    return render_template('public/gallery.html', items=get_gallery(media_type), media_type=media_type)
