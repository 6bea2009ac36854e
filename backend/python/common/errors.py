"""
Application errors.

Raised by the sync and report layers; the Flask app turns them into
``{success: false, error}`` JSON responses with the error's status code.
"""


class AppError(Exception):
    """Base error carrying an HTTP status code."""
    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {'success': False, 'error': self.message}


class ValidationError(AppError):
    """Malformed or missing input."""
    status_code = 400


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    """State transition not allowed (e.g. changing a paid report)."""
    status_code = 409
