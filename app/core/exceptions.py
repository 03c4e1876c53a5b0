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


class ConfigurationError(AppError):
    """Gateway credentials missing or invalid."""

    def __init__(self, message: str = "Payment gateway credentials not configured properly"):
        super().__init__(message, code="CONFIGURATION_ERROR", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


class ValidationError(AppError):
    def __init__(self, message: str = "Invalid request parameters", details: dict[str, Any] | None = None):
        super().__init__(message, code="VALIDATION_ERROR", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class GatewayError(AppError):
    """Payment gateway answered with a non-success envelope or could not be reached."""

    def __init__(self, message: str = "PhonePe request failed", details: dict[str, Any] | None = None):
        super().__init__(message, code="GATEWAY_ERROR", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND)


class InvalidStateError(AppError):
    def __init__(self, message: str = "Invalid state", details: dict[str, Any] | None = None):
        super().__init__(message, code="INVALID_STATE", status_code=status.HTTP_409_CONFLICT, details=details)


class InternalError(AppError):
    def __init__(self, message: str = "Internal server error"):
        super().__init__(message, code="INTERNAL_ERROR", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


def _body(request: Request, message: str, code: str, details: dict[str, Any]) -> dict[str, Any]:
    body = {
        "success": False,
        "message": message,
        "code": code,
        "details": details,
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return body


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    return ORJSONResponse(
        status_code=exc.status_code,
        content=_body(request, exc.message, exc.code, exc.details),
    )


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    if exc.status_code >= 500:
        from app.core.logging import get_logger
        get_logger(__name__).error("app_error", code=exc.code, message=exc.message)
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    # Bad or missing body fields are client errors like any other ValidationError
    errors = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg", ""), "type": e.get("type", "")}
        for e in exc.errors()
    ]
    return ORJSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_body(request, "Invalid request parameters", "VALIDATION_ERROR", {"errors": errors}),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from app.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_body(request, "Internal server error", "INTERNAL_ERROR", {}),
    )
