"""
Error taxonomy for the auth core and the JSON envelope handlers that expose it.

Services and dependencies raise ApiError subclasses carrying a stable ErrorCode;
handlers registered on the app turn them into
{"success": false, "message": ..., "code": ..., "errors"?: [...]} responses.
"""

import logging
from enum import Enum
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import get_settings

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Stable wire codes; never rename a value once clients depend on it."""

    # Authentication
    NO_TOKEN = "NO_TOKEN"
    INVALID_TOKEN_FORMAT = "INVALID_TOKEN_FORMAT"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    INVALID_TOKEN = "INVALID_TOKEN"
    TOKEN_VERIFICATION_FAILED = "TOKEN_VERIFICATION_FAILED"
    INVALID_TOKEN_PAYLOAD = "INVALID_TOKEN_PAYLOAD"
    ADMIN_NOT_FOUND = "ADMIN_NOT_FOUND"
    ACCOUNT_INACTIVE = "ACCOUNT_INACTIVE"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    INVALID_REFRESH_TOKEN = "INVALID_REFRESH_TOKEN"

    # Authorization
    AUTH_REQUIRED = "AUTH_REQUIRED"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    SUPER_ADMIN_REQUIRED = "SUPER_ADMIN_REQUIRED"

    # Verification tokens (TOKEN_EXPIRED is shared with authentication)
    TOKEN_REQUIRED = "TOKEN_REQUIRED"
    NO_STORED_TOKEN = "NO_STORED_TOKEN"
    TOKEN_MISMATCH = "TOKEN_MISMATCH"
    WRONG_TOKEN_TYPE = "WRONG_TOKEN_TYPE"
    SAME_PASSWORD = "SAME_PASSWORD"
    EMAIL_ALREADY_IN_USE = "EMAIL_ALREADY_IN_USE"
    INVALID_CURRENT_PASSWORD = "INVALID_CURRENT_PASSWORD"
    INVALID_RESET_TOKEN = "INVALID_RESET_TOKEN"

    # Infrastructure
    AUTH_ERROR = "AUTH_ERROR"
    PERMISSION_CHECK_ERROR = "PERMISSION_CHECK_ERROR"
    EMAIL_DELIVERY_FAILED = "EMAIL_DELIVERY_FAILED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    NOT_FOUND = "NOT_FOUND"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    HTTP_ERROR = "HTTP_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ApiError(Exception):
    """Base for errors that map directly to an HTTP status and an ErrorCode."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int | None = None,
        errors: list[Any] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.errors = errors
        super().__init__(message)


class AuthenticationError(ApiError):
    """Missing, malformed, expired or otherwise unusable credentials (401)."""

    status_code = status.HTTP_401_UNAUTHORIZED


class PermissionDeniedError(ApiError):
    """Authenticated caller lacks the role or permission for the route (403)."""

    status_code = status.HTTP_403_FORBIDDEN


class VerificationError(ApiError):
    """Verification-token or self-service mutation check failed (400)."""

    status_code = status.HTTP_400_BAD_REQUEST


class EmailDeliveryError(ApiError):
    """Outbound email could not be delivered; already persisted state is kept (502)."""

    status_code = status.HTTP_502_BAD_GATEWAY


class InternalAuthError(ApiError):
    """Unexpected failure inside the auth core (500); details stay server-side."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


def error_body(
    message: str,
    code: ErrorCode | str,
    errors: list[Any] | None = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "success": False,
        "message": message,
        "code": code.value if isinstance(code, ErrorCode) else code,
    }
    if errors:
        body["errors"] = errors
    return body


_HTTP_STATUS_CODES = {
    status.HTTP_404_NOT_FOUND: ErrorCode.NOT_FOUND,
    status.HTTP_405_METHOD_NOT_ALLOWED: ErrorCode.METHOD_NOT_ALLOWED,
}


def _headers_for(exc: ApiError) -> dict[str, str] | None:
    if isinstance(exc, AuthenticationError):
        return {"WWW-Authenticate": "Bearer"}
    return None


def register_exception_handlers(app: FastAPI) -> None:
    """Install envelope-producing handlers for domain, validation and unexpected errors."""

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
        log_fn = logger.error if exc.status_code >= 500 else logger.info
        log_fn(
            "Request rejected",
            extra={
                "path": request.url.path,
                "method": request.method,
                "status_code": exc.status_code,
                "error_code": exc.code.value,
            },
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=jsonable_encoder(error_body(exc.message, exc.code, exc.errors)),
            headers=_headers_for(exc),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = [
            {
                "field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"),
                "message": err.get("msg", "Invalid value"),
            }
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=jsonable_encoder(
                error_body("Validation failed", ErrorCode.VALIDATION_ERROR, errors)
            ),
        )

    @app.exception_handler(RateLimitExceeded)
    async def handle_rate_limited(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        logger.warning(
            "Rate limit exceeded",
            extra={"path": request.url.path, "limit": str(exc.detail)},
        )
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content=error_body(
                "Too many authentication attempts, please try again later",
                ErrorCode.RATE_LIMITED,
            ),
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        code = _HTTP_STATUS_CODES.get(exc.status_code)
        if code is None:
            code = ErrorCode.INTERNAL_ERROR if exc.status_code >= 500 else ErrorCode.HTTP_ERROR
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(str(exc.detail), code),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            "Unhandled error",
            extra={"path": request.url.path, "method": request.method},
        )
        message = "Internal server error"
        if get_settings().DEBUG:
            message = f"{message}: {exc}"
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body(message, ErrorCode.INTERNAL_ERROR),
        )
