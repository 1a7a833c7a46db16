import cloudinary.api
import cloudinary.uploader
from flask.testing import FlaskClient
import pytest

from app import create_app
from models import db as _db, User

TEST_CONFIG = {
    'TESTING': True,
    'SECRET_KEY': 'test-secret',
    'SQLALCHEMY_DATABASE_URI': 'sqlite://',
    'SQLALCHEMY_ENGINE_OPTIONS': {},
    'WTF_CSRF_ENABLED': False,
    'MAIL_SUPPRESS_SEND': True,
    'ACTIVITY_LOG_ENABLED': True,
    'ACTIVITY_LOG_DISPATCH': 'inline',
    'RATELIMIT_ENABLED': False,
    'MEDIA_CLOUD_NAME': 'main-cloud',
    'MEDIA_API_KEY': 'main-key',
    'MEDIA_API_SECRET': 'main-secret',
    'MEDIA_PROFILE_CLOUD_NAME': 'profile-cloud',
    'MEDIA_PROFILE_API_KEY': 'profile-key',
    'MEDIA_PROFILE_API_SECRET': 'profile-secret',
}

PASSWORD = 'correct-horse'


class RequestContextClient(FlaskClient):
    """Gives every request its own app context, so nothing in g or the
    database session carries over from the test body or earlier requests"""

    def open(self, *args, **kwargs):
        with self.application.app_context():
            return super().open(*args, **kwargs)


@pytest.fixture
def app():
    app = create_app(dict(TEST_CONFIG))
    app.test_client_class = RequestContextClient
    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db(app):
    return _db


def make_user(email, role='student', name=None, password=PASSWORD, is_active=True):
    user = User(email=email, name=name or email.split('@')[0].title(), role=role, is_active=is_active)
    user.set_password(password)
    _db.session.add(user)
    _db.session.commit()
    return user


@pytest.fixture
def student(app):
    return make_user('student@example.com', role='student', name='Asha Kumari')


@pytest.fixture
def admin(app):
    return make_user('office@example.com', role='admin', name='Office')


def login(client, email, password=PASSWORD):
    return client.post('/login', data={'email': email, 'password': password})


@pytest.fixture
def student_client(client, student):
    login(client, student.email)
    return client


@pytest.fixture
def admin_client(client, admin):
    login(client, admin.email)
    return client


@pytest.fixture
def media_calls(monkeypatch):
    """Record Cloudinary SDK calls and answer with queued results"""

    class Recorder:
        def __init__(self):
            self.calls = []
            self.responses = []

        def respond(self, *responses):
            self.responses.extend(responses)

        def _answer(self, method, args, options):
            self.calls.append({'method': method, 'args': args, **options})
            response = self.responses.pop(0) if self.responses else {
                'secure_url': 'https://res.cloudinary.com/main-cloud/image/upload/v1/gallery/abc.jpg',
                'public_id': 'gallery/abc',
            }
            if isinstance(response, Exception):
                raise response
            return response

        def upload(self, file, **options):
            return self._answer('upload', (file,), options)

        def destroy(self, public_id, **options):
            return self._answer('destroy', (public_id,), options)

        def usage(self, **options):
            return self._answer('usage', (), options)

    recorder = Recorder()
    monkeypatch.setattr(cloudinary.uploader, 'upload', recorder.upload)
    monkeypatch.setattr(cloudinary.uploader, 'destroy', recorder.destroy)
    monkeypatch.setattr(cloudinary.api, 'usage', recorder.usage)
    return recorder
