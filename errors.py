"""Error taxonomy shared by the services and the HTTP layer."""


class TournamentError(Exception):
    """Base exception for tournament operations."""

    status_code = 500
    code = 'error'
    retryable = False
    default_message = 'Tournament operation failed'

    def __init__(self, message: str = None, code: str = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {
            'success': False,
            'error': self.message,
            'code': self.code,
            'retryable': self.retryable,
        }


class ValidationError(TournamentError):
    """Raised when input is malformed or a precondition does not hold."""

    status_code = 400
    code = 'validation_error'
    default_message = 'Invalid request'


class NotFoundError(TournamentError):
    """Raised when a referenced student, team or match is missing."""

    status_code = 404
    code = 'not_found'
    default_message = 'Not found'


class ConflictError(TournamentError):
    """Raised on uniqueness or locking violations. Safe to retry after refreshing."""

    status_code = 409
    code = 'conflict'
    retryable = True
    default_message = 'Conflict. Please refresh and try again.'


class ResourceBusyError(TournamentError):
    """Raised when a lock wait or connection pool wait timed out."""

    status_code = 503
    code = 'busy'
    retryable = True
    default_message = 'Server busy. Please wait a moment and try again.'


class InternalError(TournamentError):
    """Raised on unexpected store failures. Detail is kept server-side."""

    status_code = 500
    code = 'internal_error'
    default_message = 'Something went wrong!'

    def __init__(self, message: str = None, detail: str = None):
        super().__init__(message)
        # Never sent to clients unless EXPOSE_ERROR_DETAIL is on.
        self.detail = detail
