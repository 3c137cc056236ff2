"""
Session lifecycle for admin accounts: login, refresh-token rotation, logout,
lockout after repeated failures, and the forgot/reset password flow.

Each admin row holds at most one live refresh token. Login and refresh overwrite
it; logout and any password change clear it.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from app.core.errors import (
    AuthenticationError,
    ErrorCode,
    InternalAuthError,
    VerificationError,
)
from app.core.security import (
    CredentialError,
    TokenError,
    TokenExpiredError,
    TokenKind,
    as_utc,
    create_access_token,
    create_password_reset_token,
    create_refresh_token,
    decode_token,
    hash_password,
    peek_token_subject,
    tokens_match,
    utcnow,
    verify_password,
    verify_password_reset_token,
)
from app.models.admin import Admin
from app.services.email import EmailService, redact_email

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"
FORGOT_PASSWORD_MESSAGE = (
    "If an account with that email exists, a password reset link has been sent."
)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


def normalize_email(email: str) -> str:
    return email.strip().lower()


def get_admin_by_id(db: Session, admin_id: str) -> Admin | None:
    return db.query(Admin).filter(Admin.id == admin_id).first()


def get_admin_by_email(db: Session, email: str) -> Admin | None:
    return db.query(Admin).filter(Admin.email == normalize_email(email)).first()


def issue_token_pair(admin_id: str, settings: "Settings") -> TokenPair:
    return TokenPair(
        access_token=create_access_token(admin_id, settings),
        refresh_token=create_refresh_token(admin_id, settings),
    )


def _invalid_credentials() -> AuthenticationError:
    return AuthenticationError(ErrorCode.INVALID_CREDENTIALS, INVALID_CREDENTIALS_MESSAGE)


def check_password(plain: str, admin: Admin) -> bool:
    try:
        return verify_password(plain, admin.password_hash)
    except CredentialError as e:
        logger.exception("Password verification error", extra={"admin_id": admin.id})
        raise InternalAuthError(ErrorCode.AUTH_ERROR, "Authentication failed") from e


def _register_failed_login(db: Session, admin: Admin, settings: "Settings") -> None:
    attempts = (admin.failed_login_attempts or 0) + 1
    if attempts >= settings.LOGIN_MAX_FAILED_ATTEMPTS:
        admin.locked_until = utcnow() + timedelta(minutes=settings.LOGIN_LOCKOUT_MINUTES)
        admin.failed_login_attempts = 0
        logger.warning(
            "Admin account locked after repeated failed logins",
            extra={"admin_id": admin.id, "attempts": attempts},
        )
    else:
        admin.failed_login_attempts = attempts
    db.commit()


def login(db: Session, email: str, password: str, settings: "Settings") -> tuple[Admin, TokenPair]:
    """
    Verify credentials and start a new session.

    Unknown email, inactive account, locked account and wrong password all raise
    the same INVALID_CREDENTIALS error; only the log records which one it was.
    """
    admin = get_admin_by_email(db, email)
    if admin is None:
        logger.warning("Login failed", extra={"reason": "unknown_email", "email": redact_email(email)})
        raise _invalid_credentials()
    if not admin.is_active:
        logger.warning("Login failed", extra={"reason": "inactive", "admin_id": admin.id})
        raise _invalid_credentials()
    locked_until = as_utc(admin.locked_until)
    if locked_until is not None and locked_until > utcnow():
        logger.warning("Login failed", extra={"reason": "locked", "admin_id": admin.id})
        raise _invalid_credentials()
    if not check_password(password, admin):
        logger.warning("Login failed", extra={"reason": "bad_password", "admin_id": admin.id})
        _register_failed_login(db, admin, settings)
        raise _invalid_credentials()

    pair = issue_token_pair(admin.id, settings)
    admin.refresh_token = pair.refresh_token
    admin.last_login = utcnow()
    admin.failed_login_attempts = 0
    admin.locked_until = None
    db.commit()
    db.refresh(admin)
    logger.info("Admin login successful", extra={"admin_id": admin.id})
    return admin, pair


def refresh_session(db: Session, refresh_token: str, settings: "Settings") -> tuple[Admin, TokenPair]:
    """
    Rotate the session: exchange the stored refresh token for a new pair.

    A refresh token whose signature still verifies but which is no longer the
    stored value (superseded by a later login/refresh, or cleared by logout) is
    rejected. Two concurrent refreshes presenting the same token can both pass
    the match check before either write lands; the last write wins and the
    other caller's new refresh token fails on its next use. There is no
    row-level lock here to prevent that.
    """
    invalid = AuthenticationError(ErrorCode.INVALID_REFRESH_TOKEN, "Invalid refresh token")
    try:
        payload = decode_token(refresh_token, TokenKind.REFRESH, settings)
    except TokenError as e:
        logger.info("Refresh rejected", extra={"reason": type(e).__name__})
        raise invalid from e
    admin_id = payload.get("sub")
    if not admin_id:
        raise invalid
    admin = get_admin_by_id(db, str(admin_id))
    if admin is None or not admin.is_active:
        logger.info("Refresh rejected", extra={"reason": "admin_missing_or_inactive", "admin_id": admin_id})
        raise invalid
    if not admin.refresh_token or not tokens_match(refresh_token, admin.refresh_token):
        logger.warning("Refresh rejected", extra={"reason": "stale_refresh_token", "admin_id": admin.id})
        raise invalid

    pair = issue_token_pair(admin.id, settings)
    admin.refresh_token = pair.refresh_token
    db.commit()
    db.refresh(admin)
    return admin, pair


def logout(db: Session, admin: Admin) -> None:
    """Clear the refresh token. Idempotent."""
    admin.refresh_token = None
    db.commit()
    logger.info("Admin logout", extra={"admin_id": admin.id})


def set_password(admin: Admin, new_password: str) -> None:
    """Hash and store a new password and end every outstanding session and reset link."""
    try:
        admin.password_hash = hash_password(new_password)
    except CredentialError as e:
        logger.exception("Password hashing error", extra={"admin_id": admin.id})
        raise InternalAuthError(ErrorCode.AUTH_ERROR, "Password update failed") from e
    admin.refresh_token = None
    admin.clear_password_reset_token()
    admin.failed_login_attempts = 0
    admin.locked_until = None


def forgot_password(
    db: Session,
    email: str,
    email_service: EmailService,
    settings: "Settings",
) -> None:
    """
    Issue a reset link for an active account. Returns normally whether or not the
    account exists, and regardless of email delivery, so callers cannot enumerate
    accounts.
    """
    admin = get_admin_by_email(db, email)
    if admin is None or not admin.is_active:
        logger.info("Password reset requested for unknown or inactive email", extra={"email": redact_email(email)})
        return

    token = create_password_reset_token(admin.id, admin.password_hash, settings)
    admin.password_reset_token = token
    admin.password_reset_expires = utcnow() + timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES)
    db.commit()
    logger.info("Password reset requested", extra={"admin_id": admin.id})

    if not email_service.send_password_reset_email(admin, token, settings.PASSWORD_RESET_EXPIRE_MINUTES):
        logger.error("Password reset email delivery failed", extra={"admin_id": admin.id})


def reset_password(db: Session, token: str, new_password: str, settings: "Settings") -> Admin:
    """
    Consume a reset token and set a new password.

    The signing key includes the account's current password hash, so the account
    is located from the unverified `sub` claim first and the signature is checked
    against that account's key afterwards.
    """
    invalid = VerificationError(ErrorCode.INVALID_RESET_TOKEN, "Invalid or expired password reset token")
    admin_id = peek_token_subject(token)
    if not admin_id:
        raise invalid
    admin = get_admin_by_id(db, admin_id)
    if admin is None or not admin.is_active:
        raise invalid
    try:
        verify_password_reset_token(token, admin.password_hash, settings)
    except TokenExpiredError as e:
        logger.info("Password reset rejected", extra={"reason": "expired", "admin_id": admin.id})
        raise invalid from e
    except TokenError as e:
        logger.info("Password reset rejected", extra={"reason": "invalid", "admin_id": admin.id})
        raise invalid from e
    stored = admin.password_reset_token
    expires = as_utc(admin.password_reset_expires)
    if not stored or not tokens_match(token, stored) or expires is None or utcnow() >= expires:
        logger.info("Password reset rejected", extra={"reason": "not_current", "admin_id": admin.id})
        raise invalid

    set_password(admin, new_password)
    db.commit()
    db.refresh(admin)
    logger.info("Password reset completed", extra={"admin_id": admin.id})
    return admin
