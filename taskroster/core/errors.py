"""Error kinds raised by the services and their classification for callers."""

from enum import Enum

from pydantic import BaseModel, ValidationError


class ErrorCategory(Enum):
    """Categories of errors surfaced to the request layer."""

    INVALID_ARGUMENT = "invalid_argument"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INTERNAL = "internal"


class ErrorCode:
    """Error codes for specific error conditions."""

    # Input errors
    ERR_INVALID_ARGUMENT = "ERR_INVALID_ARGUMENT"
    ERR_INVALID_QUERY = "ERR_INVALID_QUERY"
    ERR_INVALID_ID = "ERR_INVALID_ID"

    # Lookup errors
    ERR_TASK_NOT_FOUND = "ERR_TASK_NOT_FOUND"
    ERR_USER_NOT_FOUND = "ERR_USER_NOT_FOUND"

    # Uniqueness errors
    ERR_EMAIL_ALREADY_EXISTS = "ERR_EMAIL_ALREADY_EXISTS"

    # Generic errors
    ERR_INTERNAL = "ERR_INTERNAL"


class ServiceError(Exception):
    """Base class for every error the services raise on purpose."""

    category: ErrorCategory = ErrorCategory.INTERNAL
    default_code: str = ErrorCode.ERR_INTERNAL

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


class InvalidArgumentError(ServiceError):
    """Missing or malformed input, or a reference to a record that does not exist."""

    category = ErrorCategory.INVALID_ARGUMENT
    default_code = ErrorCode.ERR_INVALID_ARGUMENT


class NotFoundError(ServiceError):
    """The targeted record does not exist."""

    category = ErrorCategory.NOT_FOUND
    default_code = ErrorCode.ERR_TASK_NOT_FOUND


class ConflictError(InvalidArgumentError):
    """A uniqueness rule was violated.

    Subclasses InvalidArgumentError so callers that only distinguish bad input
    from missing records keep treating a duplicate email as bad input.
    """

    category = ErrorCategory.CONFLICT
    default_code = ErrorCode.ERR_EMAIL_ALREADY_EXISTS


class InternalError(ServiceError):
    """The store is unavailable or failed unexpectedly."""

    category = ErrorCategory.INTERNAL
    default_code = ErrorCode.ERR_INTERNAL


class ErrorResponse(BaseModel):
    """Structured error payload for the request layer."""

    code: str
    message: str
    category: ErrorCategory


def classify_error_with_response(exception: Exception) -> ErrorResponse:
    """Classify an exception raised by a service into a structured response.

    Service errors keep their own category, code and message. Pydantic
    validation errors that escaped a service are reported as invalid
    arguments. Anything else is an internal error whose details are not
    exposed to the caller.

    Args:
        exception: The exception raised during execution

    Returns:
        ErrorResponse with code, message, and category
    """
    if isinstance(exception, ServiceError):
        return ErrorResponse(code=exception.code, message=exception.message, category=exception.category)

    if isinstance(exception, ValidationError):
        return ErrorResponse(
            code=ErrorCode.ERR_INVALID_ARGUMENT,
            message="Invalid request data",
            category=ErrorCategory.INVALID_ARGUMENT,
        )

    return ErrorResponse(
        code=ErrorCode.ERR_INTERNAL,
        message="Server error",
        category=ErrorCategory.INTERNAL,
    )
