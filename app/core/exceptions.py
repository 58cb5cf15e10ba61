"""
Error taxonomy for the circle coordination service.

Business-rule failures are raised inside the managers and converted into an
OperationResult by CircleService; they never cross the public boundary as
exceptions. Each category carries the HTTP status the routes answer with.
"""

from typing import Optional


class CircleError(Exception):
    """Base class for every expected circle failure."""

    code = "CIRCLE_ERROR"
    status_code = 400
    default_message = "The operation could not be completed."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(CircleError):
    """Malformed or out-of-range input (name, nickname, date, code format)."""

    code = "VALIDATION_ERROR"
    status_code = 400
    default_message = "Invalid input."


class NotFoundError(CircleError):
    """Unknown code, circle, member or assignment."""

    code = "NOT_FOUND"
    status_code = 404
    default_message = "Not found."


class ConflictError(CircleError):
    """The request is well-formed but the current state forbids it."""

    code = "CONFLICT"
    status_code = 409
    default_message = "The circle state does not allow this operation."


class BackendUnavailableError(CircleError):
    """Store unreachable or not configured."""

    code = "BACKEND_UNAVAILABLE"
    status_code = 503
    default_message = "Service unavailable. Check your connection and try again."


class UnexpectedError(CircleError):
    code = "UNEXPECTED_ERROR"
    status_code = 500
    default_message = "An unexpected error occurred."


ERROR_STATUS_CODES = {
    cls.code: cls.status_code
    for cls in (ValidationError, NotFoundError, ConflictError, BackendUnavailableError, UnexpectedError)
}
