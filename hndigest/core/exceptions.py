from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class BadRequestError(AppError):
    def __init__(self, message: str = "Bad request", details: dict[str, Any] | None = None):
        super().__init__(message, code="BAD_REQUEST", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, code="FORBIDDEN", status_code=status.HTTP_403_FORBIDDEN)


# Validation: rejected before any storage access


class InvalidEmailError(BadRequestError):
    def __init__(self, message: str = "Invalid email address"):
        super().__init__(message)
        self.code = "INVALID_EMAIL"


class InvalidStrategyError(BadRequestError):
    def __init__(self, message: str = "Invalid strategy"):
        super().__init__(message)
        self.code = "INVALID_STRATEGY"


class InvalidTokenError(BadRequestError):
    def __init__(self, message: str = "Invalid token"):
        super().__init__(message)
        self.code = "INVALID_TOKEN"


class MalformedEventError(BadRequestError):
    """A delivery event declared a type but lacks the payload that type requires."""

    def __init__(self, message: str = "Malformed delivery event"):
        super().__init__(message)
        self.code = "MALFORMED_EVENT"


# Integrity: stored data breaks an invariant. Never resolved silently.


class IntegrityError(AppError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, code="INTEGRITY_ERROR", details=details)


# Transport: a backend or collaborator is unavailable. Propagated, never retried here.


class TransportError(AppError):
    def __init__(self, message: str, code: str = "UNAVAILABLE"):
        super().__init__(message, code=code, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)


class StorageError(TransportError):
    def __init__(self, message: str = "Storage backend unavailable"):
        super().__init__(message, code="STORAGE_UNAVAILABLE")


class MailerError(TransportError):
    def __init__(self, message: str = "Mail delivery failed"):
        super().__init__(message, code="MAILER_UNAVAILABLE")


class CaptchaError(TransportError):
    def __init__(self, message: str = "Captcha verification unavailable"):
        super().__init__(message, code="CAPTCHA_UNAVAILABLE")


class ContentSourceError(TransportError):
    def __init__(self, message: str = "Content source unavailable"):
        super().__init__(message, code="CONTENT_SOURCE_UNAVAILABLE")


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    body = {
        "error": {
            "message": exc.message,
            "code": exc.code,
            "details": exc.details,
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(status_code=exc.status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    if exc.status_code >= 500:
        from hndigest.core.logging import get_logger
        get_logger(__name__).error("app_error", code=exc.code, message=exc.message, exc_info=exc)
        # Internal detail stays in the log
        exc = AppError("Internal server error, please try again later", code=exc.code, status_code=exc.status_code)
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    body = {
        "error": {
            "message": "Validation error",
            "code": "VALIDATION_ERROR",
            "details": {"errors": exc.errors()},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from hndigest.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    body = {
        "error": {
            "message": "Internal server error",
            "code": "INTERNAL_ERROR",
            "details": {},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
    )
