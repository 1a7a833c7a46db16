from flask import Flask, render_template, g
from flask_login import LoginManager, current_user
from flask_mail import Mail
from flask_migrate import Migrate
from flask_wtf.csrf import CSRFProtect
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from sqlalchemy.exc import SQLAlchemyError
import logging
import os
from datetime import datetime
from dotenv import load_dotenv
from urllib.parse import quote_plus
import pytz

# Load environment variables
load_dotenv()

# Extensions, bound to an app in create_app()
csrf = CSRFProtect()
mail = Mail()
migrate = Migrate()
limiter = Limiter(key_func=get_remote_address)
login_manager = LoginManager()
login_manager.login_view = 'auth.login'
login_manager.login_message = 'Please log in to access this page.'
login_manager.login_message_category = 'warning'

SQLITE_FALLBACK_URI = 'sqlite:///portal.db'


def env_flag(name, default=False):
    return os.environ.get(name, str(default)).lower() == 'true'


def database_uri(logger):
    """DATABASE_URL if given, otherwise a MySQL URI assembled from DB_* variables"""
    url = os.environ.get('DATABASE_URL')
    if url:
        return url

    settings = {name: os.environ.get(name) for name in ('DB_USER', 'DB_PASSWORD', 'DB_HOST', 'DB_NAME')}
    missing = [name for name, value in settings.items() if not value]
    if missing:
        for name in missing:
            logger.error(f"{name} environment variable is not set")
        logger.warning(f"Database configuration is incomplete, falling back to {SQLITE_FALLBACK_URI}")
        return SQLITE_FALLBACK_URI

    password = quote_plus(settings['DB_PASSWORD'])
    return f"mysql+pymysql://{settings['DB_USER']}:{password}@{settings['DB_HOST']}/{settings['DB_NAME']}"


def load_config(app):
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'your-secret-key')
    app.config['LOG_LEVEL'] = os.environ.get('LOG_LEVEL', 'INFO').upper()
    app.config['APP_TIMEZONE'] = os.environ.get('APP_TIMEZONE', 'Asia/Kolkata')

    # Database Configuration
    app.config['SQLALCHEMY_DATABASE_URI'] = database_uri(app.logger)
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['SQLALCHEMY_ENGINE_OPTIONS'] = {'pool_pre_ping': True}

    # Media host accounts. Checked per request, not at startup.
    for prefix in ('MEDIA_', 'MEDIA_PROFILE_'):
        for key in ('CLOUD_NAME', 'API_KEY', 'API_SECRET'):
            app.config[f'{prefix}{key}'] = os.environ.get(f'{prefix}{key}')
    # Unset means the SDK's default API host
    app.config['MEDIA_UPLOAD_PREFIX'] = os.environ.get('MEDIA_UPLOAD_PREFIX')
    app.config['MEDIA_FOLDER'] = os.environ.get('MEDIA_FOLDER', 'gallery')
    app.config['MEDIA_TIMEOUT'] = float(os.environ.get('MEDIA_TIMEOUT', 30))
    app.config['MEDIA_MAX_UPLOAD_BYTES'] = 25 * 1024 * 1024
    # Anonymous uploads (registration photos): images only, smaller and rate limited
    app.config['MEDIA_PUBLIC_MAX_UPLOAD_BYTES'] = 5 * 1024 * 1024
    app.config['MEDIA_PUBLIC_FOLDER'] = os.environ.get('MEDIA_PUBLIC_FOLDER', 'registrations')
    app.config['MEDIA_PROFILE_MAX_UPLOAD_BYTES'] = 2 * 1024 * 1024
    app.config['MEDIA_UPLOAD_RATE_LIMIT'] = os.environ.get('MEDIA_UPLOAD_RATE_LIMIT', '10 per hour')
    app.config['RATELIMIT_ENABLED'] = env_flag('RATELIMIT_ENABLED', True)
    app.config['RATELIMIT_STORAGE_URI'] = os.environ.get('RATELIMIT_STORAGE_URI', 'memory://')
    app.config['MAX_CONTENT_LENGTH'] = 26 * 1024 * 1024  # multipart overhead on top of the 25MB file limit

    # Activity feed
    app.config['ACTIVITY_LOG_ENABLED'] = env_flag('ACTIVITY_LOG_ENABLED', True)
    app.config['ACTIVITY_LOG_DISPATCH'] = os.environ.get('ACTIVITY_LOG_DISPATCH', 'scheduler')
    app.config['SCHEDULER_API_ENABLED'] = False

    # Mail Configuration
    app.config['MAIL_SERVER'] = os.environ.get('MAIL_SERVER', 'smtp.example.com')
    app.config['MAIL_PORT'] = int(os.environ.get('MAIL_PORT', 587))
    app.config['MAIL_USE_TLS'] = env_flag('MAIL_USE_TLS', True)
    app.config['MAIL_USERNAME'] = os.environ.get('MAIL_USERNAME')
    app.config['MAIL_PASSWORD'] = os.environ.get('MAIL_PASSWORD')
    app.config['MAIL_DEFAULT_SENDER'] = os.environ.get('MAIL_DEFAULT_SENDER', 'admissions@example.com')


def configure_logging(app):
    level = getattr(logging, app.config.get('LOG_LEVEL', 'INFO'), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )
    app.logger.setLevel(level)
    logging.getLogger('activity').setLevel(level)


# User loader callback for Flask-Login
@login_manager.user_loader
def load_user(user_id):
    from models import db, User
    try:
        return db.session.get(User, int(user_id))
    except ValueError:
        return None
    except SQLAlchemyError as e:
        # Identity is unknown rather than anonymous, guards show a loading page
        logging.getLogger(__name__).error(f"[GUARD] Could not resolve session user {user_id}: {e}")
        db.session.rollback()
        g.session_loading = True
        return None


def create_app(config_overrides=None):
    # Create Flask app
    app = Flask(__name__)
    load_config(app)
    if config_overrides:
        app.config.update(config_overrides)
    configure_logging(app)

    # Initialize SQLAlchemy with app
    from models import db
    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)
    mail.init_app(app)
    login_manager.init_app(app)
    limiter.init_app(app)

    from activity_log import init_activity_log
    init_activity_log(app)

    # Register blueprints
    from routes.auth import auth_bp
    from routes.public import public_bp
    from routes.student import student_bp
    from routes.admin import admin_bp
    from routes.media import media_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(public_bp)
    app.register_blueprint(student_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(media_bp)

    # JSON endpoints called from scripts and the upload widgets
    csrf.exempt(media_bp)

    # Template context processors
    @app.context_processor
    def inject_user():
        return {
            'current_user': current_user,
            'is_authenticated': current_user.is_authenticated
        }

    @app.context_processor
    def inject_current_year():
        return {'current_year': datetime.now().year}

    @app.template_filter('localtime')
    def localtime_filter(value, fmt='%d %b %Y, %H:%M'):
        """Render a naive UTC datetime in the institute's timezone"""
        if not value:
            return ''
        if value.tzinfo is None:
            value = pytz.utc.localize(value)
        return value.astimezone(pytz.timezone(app.config['APP_TIMEZONE'])).strftime(fmt)

    # Error handlers
    @app.errorhandler(404)
    def page_not_found(e):
        return render_template('errors/404.html'), 404

    @app.errorhandler(500)
    def internal_server_error(e):
        return render_template('errors/500.html'), 500

    app.logger.info(f"App created (database: {app.config['SQLALCHEMY_DATABASE_URI'].split('://', 1)[0]})")
    return app
