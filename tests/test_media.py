import io

from cloudinary.exceptions import Error as CloudinaryError
import pytest

from app import create_app
from conftest import TEST_CONFIG
from errors import ConfigurationError, UpstreamError
from media import determine_resource_type, get_media_account, MediaHostClient

MAIN_CREDENTIALS = {'cloud_name': 'main-cloud', 'api_key': 'main-key', 'api_secret': 'main-secret'}
PROFILE_CREDENTIALS = {'cloud_name': 'profile-cloud', 'api_key': 'profile-key', 'api_secret': 'profile-secret'}


def credentials(call):
    return {key: call[key] for key in ('cloud_name', 'api_key', 'api_secret')}


# --------------- Upload relay ---------------

def test_upload_from_url_requires_url(client, media_calls):
    response = client.post('/api/upload-from-url', json={})
    assert response.status_code == 400
    assert 'error' in response.get_json()
    assert media_calls.calls == []


def test_upload_from_url_rejects_blank_url(client, media_calls):
    response = client.post('/api/upload-from-url', json={'url': '   '})
    assert response.status_code == 400


@pytest.mark.parametrize('missing', ['MEDIA_CLOUD_NAME', 'MEDIA_API_KEY', 'MEDIA_API_SECRET'])
@pytest.mark.parametrize('body', [{}, {'url': 'https://example.com/photo.jpg'}])
def test_upload_from_url_unconfigured_is_server_error(app, client, media_calls, missing, body):
    app.config[missing] = None
    response = client.post('/api/upload-from-url', json=body)
    assert response.status_code == 500
    assert 'error' in response.get_json()
    assert media_calls.calls == []


def test_upload_from_url_success(client, media_calls):
    media_calls.respond({
        'secure_url': 'https://res.cloudinary.com/main-cloud/image/upload/v1/gallery/photo.jpg',
        'public_id': 'gallery/photo',
        'bytes': 1234,
    })
    response = client.post('/api/upload-from-url', json={'url': 'https://example.com/photo.jpg'})

    assert response.status_code == 200
    assert response.get_json() == {
        'secure_url': 'https://res.cloudinary.com/main-cloud/image/upload/v1/gallery/photo.jpg',
        'public_id': 'gallery/photo',
    }

    assert len(media_calls.calls) == 1
    call = media_calls.calls[0]
    assert call['method'] == 'upload'
    assert call['args'] == ('https://example.com/photo.jpg',)
    assert call['resource_type'] == 'auto'
    assert call['folder'] == 'gallery'
    assert credentials(call) == MAIN_CREDENTIALS


def test_upload_from_url_host_rejection_is_generic(client, media_calls):
    media_calls.respond(CloudinaryError('Resource not found - internal-bucket-7'))
    response = client.post('/api/upload-from-url', json={'url': 'https://example.com/missing.jpg'})

    assert response.status_code == 500
    body = response.get_json()
    assert body['error'] == 'Upload from URL failed. The URL might be invalid or inaccessible.'
    assert 'internal-bucket-7' not in response.get_data(as_text=True)


def test_upload_from_url_network_error(client, media_calls):
    media_calls.respond(CloudinaryError("Socket error: ConnectionRefusedError('connection refused')"))
    response = client.post('/api/upload-from-url', json={'url': 'https://example.com/photo.jpg'})
    assert response.status_code == 500
    assert 'connection refused' not in response.get_data(as_text=True)


def test_upload_from_url_incomplete_host_answer(client, media_calls):
    media_calls.respond({'secure_url': 'https://res.cloudinary.com/x.jpg'})
    response = client.post('/api/upload-from-url', json={'url': 'https://example.com/photo.jpg'})
    assert response.status_code == 500


# --------------- File uploads ---------------

def test_upload_without_file(client, media_calls):
    response = client.post('/api/upload', data={'title': 'no file here'}, content_type='multipart/form-data')
    assert response.status_code == 400
    assert response.get_json() == {'error': 'No file uploaded.'}


def test_public_upload_is_a_small_image(app, client, media_calls):
    response = client.post('/api/upload', data={'file': (io.BytesIO(b'jpeg'), 'me.jpg', 'image/jpeg')},
                           content_type='multipart/form-data')
    assert response.status_code == 200
    call = media_calls.calls[0]
    assert call['resource_type'] == 'image'
    assert call['folder'] == 'registrations'


def test_public_upload_rejects_video(client, media_calls):
    response = client.post('/api/upload', data={'file': (io.BytesIO(b'data'), 'clip.mp4', 'video/mp4')},
                           content_type='multipart/form-data')
    assert response.status_code == 400
    assert media_calls.calls == []


def test_public_upload_too_large(app, client, media_calls):
    app.config['MEDIA_PUBLIC_MAX_UPLOAD_BYTES'] = 10
    response = client.post('/api/upload', data={'file': (io.BytesIO(b'x' * 11), 'big.jpg', 'image/jpeg')},
                           content_type='multipart/form-data')
    assert response.status_code == 413
    assert media_calls.calls == []


def test_staff_upload_limit(app, admin_client, media_calls):
    app.config['MEDIA_MAX_UPLOAD_BYTES'] = 10
    response = admin_client.post('/api/upload', data={'file': (io.BytesIO(b'x' * 11), 'big.jpg', 'image/jpeg')},
                                 content_type='multipart/form-data')
    assert response.status_code == 413


def test_staff_video_upload(admin_client, media_calls):
    response = admin_client.post('/api/upload', data={'file': (io.BytesIO(b'data'), 'clip.mp4', 'video/mp4')},
                                 content_type='multipart/form-data')
    assert response.status_code == 200
    call = media_calls.calls[0]
    assert call['resource_type'] == 'video'
    assert call['folder'] == 'gallery'


def test_public_uploads_are_rate_limited(media_calls):
    app = create_app(dict(TEST_CONFIG, RATELIMIT_ENABLED=True, MEDIA_UPLOAD_RATE_LIMIT='2 per minute'))
    client = app.test_client()
    statuses = [
        client.post('/api/upload', data={'title': 'x'}, content_type='multipart/form-data').status_code
        for _ in range(3)
    ]
    assert statuses == [400, 400, 429]


# --------------- Profile media ---------------

PNG_DATA_URI = 'data:image/png;base64,iVBORw0KGgo='


def test_profile_upload_needs_login(client, media_calls):
    response = client.post('/api/upload-profile-media', json={'file': PNG_DATA_URI})
    assert response.status_code == 401
    assert media_calls.calls == []


def test_profile_upload_uses_profile_account(student_client, media_calls):
    response = student_client.post('/api/upload-profile-media', json={'file': PNG_DATA_URI})
    assert response.status_code == 200
    call = media_calls.calls[0]
    assert call['resource_type'] == 'image'
    assert call['folder'] == 'profiles'
    assert credentials(call) == PROFILE_CREDENTIALS


@pytest.mark.parametrize('body, status', [
    ({}, 400),
    ({'file': 'data:application/pdf;base64,JVBERi0='}, 400),
    ({'file': 'data:image/png;base64,' + 'A' * 40}, 413),
])
def test_profile_upload_rejects_bad_data(app, student_client, media_calls, body, status):
    app.config['MEDIA_PROFILE_MAX_UPLOAD_BYTES'] = 20
    assert student_client.post('/api/upload-profile-media', json=body).status_code == status
    assert media_calls.calls == []


def test_profile_upload_unconfigured(app, student_client, media_calls):
    app.config['MEDIA_PROFILE_API_SECRET'] = ''
    response = student_client.post('/api/upload-profile-media', json={'file': PNG_DATA_URI})
    assert response.status_code == 500
    assert media_calls.calls == []


# --------------- Admin media management ---------------

@pytest.mark.parametrize('result', ['ok', 'not found'])
def test_delete_media(admin_client, media_calls, result):
    media_calls.respond({'result': result})
    response = admin_client.post('/api/delete-media', json={'publicId': 'notes/week1.pdf'})
    assert response.status_code == 200
    assert response.get_json()['success'] is True
    call = media_calls.calls[0]
    assert call['method'] == 'destroy'
    assert call['args'] == ('notes/week1.pdf',)
    assert call['resource_type'] == 'raw'


def test_delete_media_on_profile_account(admin_client, media_calls):
    media_calls.respond({'result': 'ok'})
    admin_client.post('/api/delete-media', json={'public_id': 'profiles/sign.png', 'account': 'profile'})
    assert credentials(media_calls.calls[0]) == PROFILE_CREDENTIALS


def test_delete_media_unexpected_result(admin_client, media_calls):
    media_calls.respond({'result': 'error'})
    response = admin_client.post('/api/delete-media', json={'public_id': 'gallery/abc'})
    assert response.status_code == 500
    assert response.get_json() == {'error': 'Failed to delete media.'}


def test_delete_media_requires_public_id(admin_client, media_calls):
    assert admin_client.post('/api/delete-media', json={}).status_code == 400


def test_media_usage(admin_client, media_calls):
    media_calls.respond({'storage': {'usage': 2 * 1024 ** 3}})
    response = admin_client.get('/api/media-usage?account=profile')
    assert response.status_code == 200
    assert response.get_json() == {'used': 2.0, 'limit': 5, 'unit': 'GB'}
    call = media_calls.calls[0]
    assert call['method'] == 'usage'
    assert credentials(call) == PROFILE_CREDENTIALS


def test_media_usage_host_error(admin_client, media_calls):
    media_calls.respond(CloudinaryError('Invalid api_key'))
    response = admin_client.get('/api/media-usage')
    assert response.status_code == 500
    assert 'api_key' not in response.get_data(as_text=True)


# --------------- Helpers ---------------

@pytest.mark.parametrize('public_id, expected', [
    ('notes/chapter1', 'raw'),
    ('gallery/clip.MP4', 'video'),
    ('gallery/photo.jpg', 'image'),
    ('gallery/abc', 'image'),
])
def test_determine_resource_type(public_id, expected):
    assert determine_resource_type(public_id) == expected


def test_get_media_account_reports_missing_keys():
    with pytest.raises(ConfigurationError):
        get_media_account({'MEDIA_CLOUD_NAME': 'c', 'MEDIA_API_KEY': 'k'})

    account = get_media_account({
        'MEDIA_CLOUD_NAME': 'c', 'MEDIA_API_KEY': 'k', 'MEDIA_API_SECRET': 's',
    }, account='unknown')
    assert account.name == 'main'


def test_client_passes_credentials_and_prefix(media_calls):
    client = MediaHostClient.from_config({
        'MEDIA_CLOUD_NAME': 'c', 'MEDIA_API_KEY': 'k', 'MEDIA_API_SECRET': 's',
        'MEDIA_UPLOAD_PREFIX': 'https://media.internal', 'MEDIA_TIMEOUT': 5,
    })
    client.upload_data_uri(PNG_DATA_URI)

    call = media_calls.calls[0]
    assert credentials(call) == {'cloud_name': 'c', 'api_key': 'k', 'api_secret': 's'}
    assert call['upload_prefix'] == 'https://media.internal'
    assert call['timeout'] == 5
    assert call['folder'] == 'gallery'


def test_client_wraps_sdk_errors(media_calls):
    media_calls.respond(CloudinaryError('Stale request'))
    client = MediaHostClient.from_config({'MEDIA_CLOUD_NAME': 'c', 'MEDIA_API_KEY': 'k', 'MEDIA_API_SECRET': 's'})
    with pytest.raises(UpstreamError) as excinfo:
        client.destroy('gallery/abc')
    assert 'Stale request' in excinfo.value.detail
