"""
Client for the hosted media service, built on the Cloudinary SDK.

Each call passes the account's credentials explicitly, so the main and
profile accounts can be used side by side without touching the SDK's global
config. SDK failures are raised as UpstreamError with the host's detail
attached; callers decide what the client gets to see.
"""
from dataclasses import dataclass
import logging

import cloudinary
import cloudinary.api
import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError

from errors import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_FOLDER = 'gallery'
DEFAULT_TIMEOUT = 30
MAX_UPLOAD_BYTES = 25 * 1024 * 1024
USAGE_LIMIT_GB = 5

VIDEO_EXTENSIONS = {'mp4', 'mov', 'avi', 'wmv', 'flv', 'mkv', 'webm'}

# Config key prefix for each media account
ACCOUNT_PREFIXES = {
    'main': 'MEDIA_',
    'profile': 'MEDIA_PROFILE_',
}


@dataclass(frozen=True)
class MediaAccount:
    name: str
    cloud_name: str
    api_key: str
    api_secret: str


@dataclass(frozen=True)
class UploadResult:
    secure_url: str
    public_id: str

    def to_dict(self):
        return {'secure_url': self.secure_url, 'public_id': self.public_id}


def get_media_account(config, account='main'):
    """Read an account's credentials from config, failing if any is missing"""
    account = account if account in ACCOUNT_PREFIXES else 'main'
    prefix = ACCOUNT_PREFIXES[account]
    cloud_name = config.get(f'{prefix}CLOUD_NAME')
    api_key = config.get(f'{prefix}API_KEY')
    api_secret = config.get(f'{prefix}API_SECRET')

    if not cloud_name or not api_key or not api_secret:
        missing = [name for name, value in (('CLOUD_NAME', cloud_name), ('API_KEY', api_key), ('API_SECRET', api_secret)) if not value]
        logger.error(f"[MEDIA] Account '{account}' is missing {', '.join(prefix + m for m in missing)}")
        raise ConfigurationError(
            f"Media service credentials for the '{account}' account are not configured."
        )

    return MediaAccount(account, cloud_name, api_key, api_secret)


def determine_resource_type(public_id):
    """Guess the stored resource type of an object from its public id"""
    if public_id.startswith('notes/'):
        return 'raw'
    extension = public_id.rsplit('.', 1)[-1].lower() if '.' in public_id else ''
    if extension in VIDEO_EXTENSIONS:
        return 'video'
    return 'image'


class MediaHostClient:
    def __init__(self, account, folder=DEFAULT_FOLDER, timeout=DEFAULT_TIMEOUT, upload_prefix=None):
        self.account = account
        self.folder = folder
        self.timeout = timeout
        self.upload_prefix = upload_prefix

    @classmethod
    def from_config(cls, config, account='main'):
        return cls(
            get_media_account(config, account),
            folder=config.get('MEDIA_FOLDER') or DEFAULT_FOLDER,
            timeout=config.get('MEDIA_TIMEOUT') or DEFAULT_TIMEOUT,
            upload_prefix=config.get('MEDIA_UPLOAD_PREFIX'),
        )

    def _options(self, **options):
        options.update(
            cloud_name=self.account.cloud_name,
            api_key=self.account.api_key,
            api_secret=self.account.api_secret,
            timeout=self.timeout,
        )
        if self.upload_prefix:
            options['upload_prefix'] = self.upload_prefix
        return options

    def _call(self, func, *args, **options):
        try:
            return func(*args, **self._options(**options))
        except CloudinaryError as e:
            raise UpstreamError(detail=f'{type(e).__name__}: {e}') from e

    def _upload(self, file, resource_type, folder=None):
        body = self._call(cloudinary.uploader.upload, file,
                          resource_type=resource_type, folder=folder or self.folder)

        secure_url = body.get('secure_url')
        public_id = body.get('public_id')
        if not secure_url or not public_id:
            raise UpstreamError(detail=f'Upload response missing secure_url/public_id: {body}')
        logger.info(f"[MEDIA] Stored {public_id} on '{self.account.name}'")
        return UploadResult(secure_url, public_id)

    def upload_from_url(self, url, folder=None):
        """Ask the host to fetch the resource at ``url`` and store it"""
        return self._upload(url, 'auto', folder=folder)

    def upload_data_uri(self, data_uri, folder=None):
        return self._upload(data_uri, 'image', folder=folder)

    def upload_file(self, stream, resource_type='image', folder=None):
        return self._upload(stream, resource_type, folder=folder)

    def destroy(self, public_id):
        resource_type = determine_resource_type(public_id)
        body = self._call(cloudinary.uploader.destroy, public_id, resource_type=resource_type)
        result = body.get('result')
        if result not in ('ok', 'not found'):
            raise UpstreamError(detail=f'Destroy of {public_id} returned {result!r}')
        logger.info(f"[MEDIA] Deleted {public_id} from '{self.account.name}' ({result})")
        return result

    def usage(self):
        """Storage used by the account, in GB"""
        body = self._call(cloudinary.api.usage)
        try:
            used_bytes = float(body['storage']['usage'])
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamError(detail=f'Unexpected usage response: {body}') from e
        return {
            'used': round(used_bytes / (1024 ** 3), 2),
            'limit': USAGE_LIMIT_GB,
            'unit': 'GB',
        }
