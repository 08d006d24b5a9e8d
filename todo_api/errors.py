"""Application error taxonomy and translation of store-level failures."""

from sqlalchemy.exc import IntegrityError

# SQLSTATE codes reported by PostgreSQL
UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"


class ErrorCode:
    """Centralized error codes for API responses."""
    VALIDATION_FAILED = "VALIDATION_FAILED"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    ROUTE_NOT_FOUND = "ROUTE_NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AppError(Exception):
    """Base class for failures the API reports deliberately.

    Carries the HTTP status and an optional machine-readable code and
    details payload; the error handlers render it into the error envelope.
    """

    status_code = 500
    default_code = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, status_code: int | None = None, details=None, code: str | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details
        self.code = code or self.default_code


class ValidationError(AppError):
    """Malformed or missing input (HTTP 400)."""
    status_code = 400
    default_code = ErrorCode.VALIDATION_FAILED


class NotFoundError(AppError):
    """Referenced entity does not exist (HTTP 404)."""
    status_code = 404
    default_code = ErrorCode.NOT_FOUND

    def __init__(
        self,
        resource: str,
        identifier: int | str | None = None,
        message: str | None = None,
        code: str | None = None,
    ):
        if message is None:
            if identifier is not None:
                message = f"{resource} with id {identifier} not found"
            else:
                message = f"{resource} not found"
        super().__init__(message, code=code)
        self.resource = resource
        self.identifier = identifier


class ConflictError(AppError):
    """Unique constraint would be violated (HTTP 409)."""
    status_code = 409
    default_code = ErrorCode.CONFLICT


def _sqlstate(error: IntegrityError) -> str | None:
    orig = error.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def translate_integrity_error(error: IntegrityError) -> AppError | None:
    """Map a store constraint violation onto the error taxonomy.

    PostgreSQL is matched on SQLSTATE; SQLite only reports text, so the
    message is checked as a fallback. Returns None for anything else.
    """
    sqlstate = _sqlstate(error)
    message = str(error.orig).lower()

    if sqlstate == UNIQUE_VIOLATION or "unique constraint" in message:
        return ConflictError("A record with this value already exists", code=sqlstate or ErrorCode.CONFLICT)
    if sqlstate == FOREIGN_KEY_VIOLATION or "foreign key constraint" in message:
        return NotFoundError("Record", message="Record not found", code=sqlstate or ErrorCode.NOT_FOUND)
    return None
