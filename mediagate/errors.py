"""Error taxonomy shared by the token, file and archive services.

Every error carries the HTTP status it maps to at the request boundary.
``expose`` is False for failures whose detail must stay server-side.
"""


class MediaGateError(Exception):
    status_code = 500
    expose = True

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class ValidationError(MediaGateError):
    status_code = 400


class UnsupportedTypeError(MediaGateError):
    status_code = 400


class AuthRequiredError(MediaGateError):
    status_code = 401


class InvalidTokenError(MediaGateError):
    status_code = 403


class ExpiredTokenError(MediaGateError):
    status_code = 403


class ScopeMismatchError(MediaGateError):
    status_code = 403


class RevokedTokenError(MediaGateError):
    status_code = 403


class NotFoundError(MediaGateError):
    status_code = 404


class ConflictError(MediaGateError):
    status_code = 409


class ProcessingError(MediaGateError):
    status_code = 500
    expose = False


class UpstreamError(MediaGateError):
    status_code = 502
    expose = False
