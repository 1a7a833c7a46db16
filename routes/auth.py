from flask import Blueprint, render_template, redirect, url_for, request, flash, session, current_app
from flask_login import login_user, logout_user, login_required, current_user
from urllib.parse import urlparse
from models import db, User, utcnow
from decorators import has_capability
from flask_mail import Message
from app import mail
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired

auth_bp = Blueprint('auth', __name__)


def home_for(user):
    """Landing page after login for the user's role"""
    if has_capability(user, 'admin_panel'):
        return url_for('admin.dashboard')
    return url_for('student.dashboard')


def safe_next(target):
    """Only follow ``next`` to a path on this site"""
    if not target:
        return None
    parsed = urlparse(target)
    if parsed.scheme or parsed.netloc or not target.startswith('/') or target.startswith('//'):
        return None
    return target


@auth_bp.route('/login', methods=['GET', 'POST'])
def login():
    error = None

    if current_user.is_authenticated:
        return redirect(home_for(current_user))

    if request.method == 'POST':
        email = (request.form.get('email') or '').strip().lower()
        password = request.form.get('password')

        # Validate input
        if not email or not password:
            error = 'Please enter your email and password'
            return render_template('auth/login.html', error=error), 400

        user = User.query.filter_by(email=email).first()

        if not user or not user.check_password(password):
            error = 'Invalid email or password'
            return render_template('auth/login.html', error=error), 401

        if not user.is_active:
            error = 'This account has been deactivated. Please contact the office.'
            return render_template('auth/login.html', error=error), 403

        user.last_login = utcnow()
        db.session.commit()

        login_user(user)
        session['role'] = user.role
        session['name'] = user.name
        current_app.logger.info(f"User {user.id} logged in ({user.role})")

        flash(f"Welcome, {user.name or user.email}", 'success')
        return redirect(safe_next(request.args.get('next')) or home_for(user))

    return render_template('auth/login.html', error=error)


@auth_bp.route('/logout')
@login_required
def logout():
    logout_user()
    session.clear()
    flash('You have been successfully logged out.', 'success')
    return redirect(url_for('auth.login'))


RESET_TOKEN_MAX_AGE = 60 * 60  # seconds
RESET_TOKEN_SALT = 'password-reset'


def reset_serializer():
    return URLSafeTimedSerializer(current_app.config['SECRET_KEY'], salt=RESET_TOKEN_SALT)


def send_reset_email(user):
    token = reset_serializer().dumps({'user_id': user.id, 'pw': (user.password or '')[-8:]})
    link = url_for('auth.reset_password', token=token, _external=True)
    message = Message(
        subject='Reset your password',
        recipients=[user.email],
        body=(
            f"Dear {user.name or user.email},\n\n"
            f"Use the link below to choose a new password. It expires in one hour.\n\n{link}\n\n"
            "If you did not ask for this, you can ignore this email."
        ),
    )
    mail.send(message)


@auth_bp.route('/forgot-password', methods=['GET', 'POST'])
def password_reset():
    error = None
    success_message = None

    if request.method == 'POST':
        email = request.form.get('email')

        # Validate email format
        if not email or '@' not in email:
            error = 'Please enter a valid email address.'
        else:
            user = User.query.filter_by(email=email.strip().lower()).first()
            if user and user.is_active:
                try:
                    send_reset_email(user)
                    current_app.logger.info(f"Password reset email sent to user {user.id}")
                except Exception as e:
                    current_app.logger.error(f"Failed to send password reset email to user {user.id}: {e}")
            # Same message either way to prevent email enumeration
            success_message = 'If an account exists with this email, you will receive a password reset link shortly.'

    return render_template('auth/password_reset.html', error=error, success_message=success_message)


@auth_bp.route('/reset-password/<token>', methods=['GET', 'POST'])
def reset_password(token):
    try:
        data = reset_serializer().loads(token, max_age=RESET_TOKEN_MAX_AGE)
    except (SignatureExpired, BadSignature):
        flash('This password reset link is invalid or has expired.', 'error')
        return redirect(url_for('auth.password_reset'))

    user = db.session.get(User, data.get('user_id'))
    # A link stops working once the password it was issued for has changed
    if not user or (user.password or '')[-8:] != data.get('pw'):
        flash('This password reset link is invalid or has expired.', 'error')
        return redirect(url_for('auth.password_reset'))

    error = None
    if request.method == 'POST':
        password = request.form.get('password') or ''
        confirm = request.form.get('confirm_password') or ''
        if len(password) < 8:
            error = 'Password must be at least 8 characters.'
        elif password != confirm:
            error = 'Passwords do not match.'
        else:
            user.set_password(password)
            db.session.commit()
            current_app.logger.info(f"Password reset completed for user {user.id}")
            flash('Your password has been updated. Please log in.', 'success')
            return redirect(url_for('auth.login'))

    return render_template('auth/reset_password.html', error=error, token=token)
