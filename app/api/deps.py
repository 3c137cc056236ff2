"""
Authorization gate: resolve the bearer token to an active admin, then enforce
role or permission requirements.

get_current_admin stores the admin on request.state; require_permission and
require_super_admin read it from there and fail closed when it is missing, so
they must run after the gate (router-level `dependencies=[Depends(get_current_admin)]`
or an earlier parameter).
"""

import logging
from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import APIKeyHeader
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.database import get_db
from app.core.errors import (
    ApiError,
    AuthenticationError,
    ErrorCode,
    InternalAuthError,
    PermissionDeniedError,
)
from app.core.security import (
    TokenExpiredError,
    TokenInvalidError,
    TokenKind,
    TokenVerificationError,
    decode_token,
    is_token_shaped,
)
from app.models.admin import Admin, Permission
from app.services.auth import get_admin_by_id

logger = logging.getLogger(__name__)

# Raw header (not HTTPBearer) so that bare tokens without the "Bearer " prefix are accepted too.
authorization_header = APIKeyHeader(
    name="Authorization",
    auto_error=False,
    description="Bearer <access token>",
)


def extract_token(authorization: str | None) -> str | None:
    """Return the token from 'Bearer <token>' or a bare '<token>' header value."""
    if not authorization or not authorization.strip():
        return None
    parts = authorization.strip().split()
    if parts[0].lower() == "bearer":
        return parts[1] if len(parts) == 2 else None
    return authorization.strip()


def _resolve_admin(authorization: str | None, db: Session) -> Admin:
    token = extract_token(authorization)
    if not token:
        raise AuthenticationError(ErrorCode.NO_TOKEN, "Access token is required")
    if not is_token_shaped(token):
        raise AuthenticationError(ErrorCode.INVALID_TOKEN_FORMAT, "Invalid token format")
    try:
        payload = decode_token(token, TokenKind.ACCESS, get_settings())
    except TokenExpiredError as e:
        raise AuthenticationError(ErrorCode.TOKEN_EXPIRED, "Token has expired") from e
    except TokenInvalidError as e:
        raise AuthenticationError(ErrorCode.INVALID_TOKEN, "Invalid token") from e
    except TokenVerificationError as e:
        raise AuthenticationError(ErrorCode.TOKEN_VERIFICATION_FAILED, "Token verification failed") from e

    admin_id = payload.get("sub")
    if not admin_id:
        raise AuthenticationError(ErrorCode.INVALID_TOKEN_PAYLOAD, "Invalid token payload")
    admin = get_admin_by_id(db, str(admin_id))
    if admin is None:
        raise AuthenticationError(ErrorCode.ADMIN_NOT_FOUND, "Admin not found")
    if not admin.is_active:
        raise AuthenticationError(ErrorCode.ACCOUNT_INACTIVE, "Admin account is inactive")
    return admin


def get_current_admin(
    request: Request,
    authorization: Annotated[str | None, Depends(authorization_header)],
    db: Annotated[Session, Depends(get_db)],
) -> Admin:
    """Dependency: require a valid access token for an active admin. Raises 401 otherwise."""
    try:
        admin = _resolve_admin(authorization, db)
    except ApiError as e:
        logger.info("Authentication rejected", extra={"path": request.url.path, "error_code": e.code.value})
        raise
    except Exception as e:
        logger.exception("Authentication error", extra={"path": request.url.path})
        raise InternalAuthError(ErrorCode.AUTH_ERROR, "Authentication failed") from e
    request.state.admin = admin
    request.state.admin_id = admin.id
    return admin


def get_optional_admin(
    request: Request,
    authorization: Annotated[str | None, Depends(authorization_header)],
    db: Annotated[Session, Depends(get_db)],
) -> Admin | None:
    """Dependency: same resolution as get_current_admin, but any failure yields None."""
    admin: Admin | None
    try:
        admin = _resolve_admin(authorization, db)
    except ApiError:
        admin = None
    except Exception:
        logger.warning("Optional authentication failed", exc_info=True, extra={"path": request.url.path})
        admin = None
    request.state.admin = admin
    request.state.admin_id = admin.id if admin is not None else None
    return admin


def _admin_from_request(request: Request) -> Admin:
    admin = getattr(request.state, "admin", None)
    if admin is None:
        raise AuthenticationError(ErrorCode.AUTH_REQUIRED, "Authentication required")
    return admin


def require_permission(permission: Permission) -> Callable[[Request], Admin]:
    """Dependency factory: super admins pass; others must hold `permission`. Raises 403 otherwise."""

    def check_permission(request: Request) -> Admin:
        admin = _admin_from_request(request)
        try:
            allowed = admin.has_permission(permission)
        except Exception as e:
            logger.exception("Permission check error", extra={"admin_id": admin.id})
            raise InternalAuthError(ErrorCode.PERMISSION_CHECK_ERROR, "Permission check failed") from e
        if not allowed:
            logger.info(
                "Permission denied",
                extra={"admin_id": admin.id, "permission": permission.value},
            )
            raise PermissionDeniedError(
                ErrorCode.INSUFFICIENT_PERMISSIONS,
                f"Access denied. Required permission: {permission.value}",
            )
        return admin

    return check_permission


def require_super_admin(request: Request) -> Admin:
    """Dependency: require role super_admin. Raises 403 for other roles."""
    admin = _admin_from_request(request)
    if not admin.is_super_admin:
        raise PermissionDeniedError(ErrorCode.SUPER_ADMIN_REQUIRED, "Super admin access required")
    return admin


CurrentAdmin = Annotated[Admin, Depends(get_current_admin)]
OptionalAdmin = Annotated[Admin | None, Depends(get_optional_admin)]
SuperAdmin = Annotated[Admin, Depends(require_super_admin)]
