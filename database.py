from models import db, ActivityLog, Application, Admission, ContactMessage, Enquiry, Notice, Note, GalleryItem, utcnow
from datetime import timedelta

RECENT_ACTIVITY_LIMIT = 20
STATS_WINDOW_DAYS = 30


def get_dashboard_stats(days=STATS_WINDOW_DAYS):
    """
    Counts shown on the admin dashboard. Applications, messages and enquiries
    are limited to the last ``days`` days, admissions are all-time.
    """
    since = utcnow() - timedelta(days=days)
    return {
        'applications': Application.query.filter(
            Application.status == 'pending',
            Application.created_at >= since
        ).count(),
        'admissions': Admission.query.count(),
        'messages': ContactMessage.query.filter(ContactMessage.created_at >= since).count(),
        'enquiries': Enquiry.query.filter(Enquiry.created_at >= since).count(),
    }


def get_recent_activity(limit=RECENT_ACTIVITY_LIMIT):
    """Latest activity records, newest first"""
    return ActivityLog.query.order_by(
        ActivityLog.timestamp.desc(), ActivityLog.id.desc()
    ).limit(limit).all()


def get_pending_applications(search=None, course=None, page=1, per_page=20):
    """
    Get pending applications with optional filters and pagination
    """
    query = Application.query.filter(Application.status == 'pending')

    if course:
        query = query.filter(Application.course == course)

    if search:
        query = query.filter(
            db.or_(
                Application.name.like(f'%{search}%'),
                Application.email.like(f'%{search}%'),
                Application.phone.like(f'%{search}%')
            )
        )

    total_count = query.count()
    results = query.order_by(Application.created_at.desc()).offset((page - 1) * per_page).limit(per_page).all()
    return results, total_count


def latest(model, limit=None):
    """Rows of ``model`` newest first"""
    query = model.query.order_by(model.created_at.desc(), model.id.desc())
    if limit:
        query = query.limit(limit)
    return query.all()


def get_student_overview(user, notices_limit=5, notes_limit=10):
    """Data for a student's dashboard: their admission plus recent notices and notes for their course"""
    admission = Admission.query.filter_by(user_id=user.id).first()
    notes_query = Note.query
    if admission:
        notes_query = notes_query.filter(Note.course == admission.course)
    return {
        'admission': admission,
        'notices': latest(Notice, notices_limit),
        'notes': notes_query.order_by(Note.created_at.desc(), Note.id.desc()).limit(notes_limit).all(),
    }


def get_gallery(media_type=None):
    query = GalleryItem.query
    if media_type:
        query = query.filter(GalleryItem.type == media_type)
    return query.order_by(GalleryItem.created_at.desc(), GalleryItem.id.desc()).all()
