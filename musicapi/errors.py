"""Service-layer exceptions, each mapped to an HTTP status.

The message of every 401 is the same so that clients cannot tell a bad
signature from an expired token, a revoked session or a storage failure.
"""
from typing import Optional

UNAUTHORIZED = 'Unauthorized Access'
FORBIDDEN = 'Forbidden Access.'
SOMETHING_WRONG = 'Something went wrong'
ACTION_NOT_ALLOWED = 'Action not allowed'


class ServiceError(Exception):
    status_code: int = 400
    default_message: str = SOMETHING_WRONG

    def __init__(self, message: Optional[str] = None, *, status_code: Optional[int] = None):
        self.message = message or self.default_message
        super().__init__(self.message)
        if status_code is not None:
            self.status_code = status_code


class UnauthorizedError(ServiceError):
    status_code = 401
    default_message = UNAUTHORIZED


class InvalidTokenError(UnauthorizedError):
    """Bad signature, malformed token or expired token."""


class SessionNotLiveError(UnauthorizedError):
    """Token verifies but no live session row matches it (logged out or evicted)."""


class ForbiddenRoleError(ServiceError):
    status_code = 403
    default_message = FORBIDDEN


class PersistenceError(ServiceError):
    """Storage failure; the underlying error is logged, never surfaced."""
    status_code = 400
    default_message = SOMETHING_WRONG


class BadRequestError(ServiceError):
    status_code = 400


class NotFoundError(ServiceError):
    status_code = 404
    default_message = 'Resource does not exist.'


class ConflictError(ServiceError):
    status_code = 409
    default_message = 'Resource already exists.'
