from flask import Blueprint, render_template, redirect, url_for, request, flash, current_app
from flask_login import current_user
import traceback

from database import get_student_overview
from decorators import guard_blueprint
from models import db, Admission

student_bp = Blueprint('student', __name__, url_prefix='/dashboard')

# Every dashboard page needs a logged-in user, whatever the role
guard_blueprint(student_bp)

PROFILE_MEDIA_FIELDS = ('photo_url', 'signature_url')


@student_bp.route('')
def dashboard():
    overview = get_student_overview(current_user)
    return render_template('student/dashboard.html', **overview)


@student_bp.route('/profile-media', methods=['GET', 'POST'])
def profile_media():
    """Photo and signature for the student's records. The files themselves go
    through /api/upload-profile-media, this view only saves the hosted URLs."""
    admission = Admission.query.filter_by(user_id=current_user.id).first()
    if admission is None:
        flash('Could not load your student profile.', 'error')
        return render_template('student/profile_media.html', admission=None), 404

    if request.method == 'POST':
        updates = {}
        for field in PROFILE_MEDIA_FIELDS:
            value = (request.form.get(field) or '').strip()
            if value and not value.startswith('https://'):
                flash('Uploaded media links must use https.', 'error')
                return render_template('student/profile_media.html', admission=admission), 400
            if value:
                updates[field] = value

        if not updates:
            flash('Choose a photo or signature to upload first.', 'warning')
            return render_template('student/profile_media.html', admission=admission), 400

        try:
            # Reassign so SQLAlchemy sees the JSON column change
            admission.details = {**(admission.details or {}), **updates}
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            current_app.logger.error(f"Error saving profile media for user {current_user.id}: {e}")
            current_app.logger.debug(f"Traceback: {traceback.format_exc()}")
            flash('Could not save your profile media. Please try again.', 'error')
            return render_template('student/profile_media.html', admission=admission), 500

        flash('Your profile media has been updated.', 'success')
        return redirect(url_for('student.dashboard'))

    return render_template('student/profile_media.html', admission=admission)
