import re

import pytest

from app import mail
from conftest import PASSWORD, login, make_user
from models import User


def test_login_sends_each_role_home(client, student, admin):
    response = login(client, student.email)
    assert response.headers['Location'] == '/dashboard'
    client.get('/logout')

    response = login(client, admin.email)
    assert response.headers['Location'] == '/admin/'


def test_login_records_last_login(client, db, student):
    login(client, student.email)
    db.session.expire_all()
    assert db.session.get(User, student.id).last_login is not None


@pytest.mark.parametrize('form, status', [
    ({'email': 'student@example.com', 'password': 'wrong-password'}, 401),
    ({'email': 'nobody@example.com', 'password': PASSWORD}, 401),
    ({'email': '', 'password': PASSWORD}, 400),
])
def test_bad_logins(client, student, form, status):
    response = client.post('/login', data=form)
    assert response.status_code == status
    assert b'Asha Kumari' not in response.data


def test_inactive_account_is_refused(client, db):
    make_user('gone@example.com', is_active=False)
    assert login(client, 'gone@example.com').status_code == 403


def test_login_follows_local_next(client, student):
    response = client.post('/login?next=/dashboard', data={'email': student.email, 'password': PASSWORD})
    assert response.headers['Location'] == '/dashboard'


def test_login_ignores_external_next(client, student):
    response = client.post('/login?next=https://evil.example/', data={'email': student.email, 'password': PASSWORD})
    assert response.headers['Location'] == '/dashboard'


def test_password_reset_flow(client, db, student):
    with mail.record_messages() as outbox:
        response = client.post('/forgot-password', data={'email': 'Student@Example.com'})
    assert response.status_code == 200
    assert b'If an account exists' in response.data
    assert len(outbox) == 1

    link = re.search(r'http://localhost(/reset-password/\S+)', outbox[0].body).group(1)
    assert client.get(link).status_code == 200

    response = client.post(link, data={'password': 'new-password-1', 'confirm_password': 'new-password-1'})
    assert response.headers['Location'] == '/login'
    assert login(client, student.email, 'new-password-1').status_code == 302

    # The link cannot be used a second time
    client.get('/logout')
    response = client.get(link)
    assert response.status_code == 302
    assert response.headers['Location'] == '/forgot-password'


def test_password_reset_for_unknown_email_sends_nothing(client, db):
    with mail.record_messages() as outbox:
        response = client.post('/forgot-password', data={'email': 'nobody@example.com'})
    assert b'If an account exists' in response.data
    assert outbox == []


def test_reset_password_rejects_mismatch(client, db, student):
    with mail.record_messages() as outbox:
        client.post('/forgot-password', data={'email': student.email})
    link = re.search(r'http://localhost(/reset-password/\S+)', outbox[0].body).group(1)

    response = client.post(link, data={'password': 'new-password-1', 'confirm_password': 'other-password'})
    assert response.status_code == 200
    assert b'Passwords do not match' in response.data
    db.session.expire_all()
    assert db.session.get(User, student.id).check_password(PASSWORD)


def test_tampered_reset_token(client):
    response = client.get('/reset-password/not-a-real-token')
    assert response.status_code == 302
    assert response.headers['Location'] == '/forgot-password'
