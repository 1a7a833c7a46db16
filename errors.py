class PortalError(Exception):
    """Base error carrying the HTTP status and the message safe to show clients"""
    status_code = 500
    public_message = 'An unexpected error occurred.'

    def __init__(self, message=None, status_code=None):
        super().__init__(message or self.public_message)
        if message:
            self.public_message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {'error': self.public_message}


class ConfigurationError(PortalError):
    """Required secrets are missing from the environment"""
    status_code = 500
    public_message = 'Media service configuration is missing. Check server environment variables.'


class InputError(PortalError):
    """A required request field is missing or invalid"""
    status_code = 400
    public_message = 'Invalid request.'


class UpstreamError(PortalError):
    """The media host call failed. Details stay in the server log."""
    status_code = 500
    public_message = 'Upload failed. Check server logs for details.'

    def __init__(self, message=None, detail=None):
        super().__init__(message)
        self.detail = detail


class LoggingError(PortalError):
    """An activity record could not be written. Never surfaced to users."""
    public_message = 'Failed to log activity.'
