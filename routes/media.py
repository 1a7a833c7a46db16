from flask import Blueprint, jsonify, request, current_app
from flask_login import current_user
import os

from app import limiter
from decorators import api_capability_required, has_capability
from errors import PortalError, ConfigurationError, InputError, UpstreamError
from media import MediaHostClient, MAX_UPLOAD_BYTES

media_bp = Blueprint('media', __name__, url_prefix='/api')


@media_bp.errorhandler(PortalError)
def handle_portal_error(e):
    """Map media errors to JSON without leaking upstream details"""
    if isinstance(e, UpstreamError):
        current_app.logger.error(f"[MEDIA] {request.method} {request.path} failed: {e.detail}")
    elif isinstance(e, ConfigurationError):
        current_app.logger.error(f"[MEDIA] {request.path} rejected: {e.public_message}")
    return jsonify(e.to_dict()), e.status_code


@media_bp.errorhandler(429)
def handle_rate_limit(e):
    current_app.logger.warning(f"[MEDIA] Upload rate limit hit on {request.path} by {request.remote_addr}")
    return jsonify({'error': 'Too many uploads. Please try again later.'}), 429


def relay(call, failure_message, *args, **kwargs):
    """Run a media host call, replacing any upstream error with a fixed message"""
    try:
        return call(*args, **kwargs)
    except UpstreamError as e:
        raise UpstreamError(failure_message, detail=e.detail) from e


def json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def required_string(data, *keys):
    """First non-empty string among ``keys`` in the request body"""
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def can_manage_media():
    return has_capability(current_user, 'manage_media')


def upload_rate_limit():
    return current_app.config['MEDIA_UPLOAD_RATE_LIMIT']


def stream_size(stream):
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(0)
    return size


def check_size(size, max_bytes):
    if size > max_bytes:
        raise InputError(f'File size exceeds {max_bytes // (1024 * 1024)} MB.', status_code=413)


@media_bp.route('/upload-from-url', methods=['POST'])
def upload_from_url():
    """Have the media host fetch a remote URL and store it"""
    client = MediaHostClient.from_config(current_app.config)

    url = required_string(json_body(), 'url')
    if not url:
        raise InputError('No URL provided.')

    result = relay(client.upload_from_url, 'Upload from URL failed. The URL might be invalid or inaccessible.', url)
    return jsonify(result.to_dict())


@media_bp.route('/upload', methods=['POST'])
@limiter.limit(upload_rate_limit, exempt_when=can_manage_media)
def upload():
    """Multipart upload. Staff may send any image or video, everyone else a small image."""
    client = MediaHostClient.from_config(current_app.config)

    file = request.files.get('file')
    if not file or not file.filename:
        raise InputError('No file uploaded.')

    mimetype = file.mimetype or ''
    if can_manage_media():
        max_bytes = current_app.config.get('MEDIA_MAX_UPLOAD_BYTES', MAX_UPLOAD_BYTES)
        folder = None
        resource_type = 'video' if mimetype.startswith('video') else 'image'
    else:
        if not mimetype.startswith('image/'):
            raise InputError('Only image files can be uploaded.')
        max_bytes = current_app.config['MEDIA_PUBLIC_MAX_UPLOAD_BYTES']
        folder = current_app.config['MEDIA_PUBLIC_FOLDER']
        resource_type = 'image'

    # Size check on the stream itself, multipart headers don't always carry it
    check_size(stream_size(file.stream), max_bytes)

    result = relay(
        client.upload_file, 'Upload failed. Check server logs for details.',
        file.stream, resource_type=resource_type, folder=folder,
    )
    return jsonify(result.to_dict())


@media_bp.route('/upload-profile-media', methods=['POST'])
@api_capability_required('dashboard')
def upload_profile_media():
    """Store a student's photo or signature (an image data URI) on the profile media account"""
    client = MediaHostClient.from_config(current_app.config, account='profile')

    data_uri = required_string(json_body(), 'file')
    if not data_uri:
        raise InputError('No file data provided.')
    if not data_uri.startswith('data:image/'):
        raise InputError('Only image files can be uploaded.')

    # Base64 carries 3 bytes in every 4 characters
    encoded = data_uri.split(',', 1)[-1]
    check_size(len(encoded) * 3 // 4, current_app.config['MEDIA_PROFILE_MAX_UPLOAD_BYTES'])

    result = relay(client.upload_data_uri, 'Upload from data URI failed.', data_uri, folder='profiles')
    return jsonify(result.to_dict())


@media_bp.route('/delete-media', methods=['POST'])
@api_capability_required('manage_media')
def delete_media():
    data = json_body()
    account = data.get('account') or 'main'
    client = MediaHostClient.from_config(current_app.config, account=account)

    public_id = required_string(data, 'public_id', 'publicId')
    if not public_id:
        raise InputError('Public ID is required.')

    relay(client.destroy, 'Failed to delete media.', public_id)
    return jsonify({'success': True, 'message': f'Deletion successful for {public_id}'})


@media_bp.route('/media-usage', methods=['GET'])
@api_capability_required('manage_media')
def media_usage():
    account = request.args.get('account') or 'main'
    client = MediaHostClient.from_config(current_app.config, account=account)
    usage = relay(client.usage, f"Could not fetch media usage data for the '{account}' account.")
    return jsonify(usage)
