"""
Single-use, 15-minute verification tokens gating self-service profile and
password changes.

Two independent slots live on the admin row: profile-update (purpose "email" or
"profile") and password-change. Requesting a token overwrites the slot and emails
the value; verifying is read-only; consuming happens inside the mutation and
clears the slot in the same commit.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from app.core.errors import EmailDeliveryError, ErrorCode, VerificationError
from app.core.security import (
    VERIFICATION_TOKEN_TTL,
    as_utc,
    generate_verification_token,
    tokens_match,
    utcnow,
)
from app.models.admin import Admin, ProfileUpdateType
from app.services.auth import check_password, normalize_email, set_password
from app.services.email import EmailService

logger = logging.getLogger(__name__)

TOKEN_TTL_MINUTES = int(VERIFICATION_TOKEN_TTL.total_seconds() // 60)

PROFILE_FIELDS = ("name", "email", "phone", "position")


@dataclass(frozen=True)
class TokenCheck:
    """Outcome of a read-only token check."""

    valid: bool
    type: str | None = None
    expires_at: datetime | None = None
    reason: ErrorCode | None = None


def _reject(code: ErrorCode, message: str) -> VerificationError:
    return VerificationError(code, message)


def _validate_slot(
    presented: str | None,
    stored: str | None,
    expires: datetime | None,
    other_slot: str | None,
) -> None:
    """
    Check a presented token against one slot: present, stored, equal, unexpired.

    A value that instead matches the other slot is reported as WRONG_TOKEN_TYPE.
    """
    if not presented:
        raise _reject(ErrorCode.TOKEN_REQUIRED, "Verification token is required")
    belongs_elsewhere = bool(other_slot) and tokens_match(presented, other_slot)
    if not stored:
        if belongs_elsewhere:
            raise _reject(ErrorCode.WRONG_TOKEN_TYPE, "Token was issued for a different operation")
        raise _reject(
            ErrorCode.NO_STORED_TOKEN,
            "No verification token was requested. Please request a new token",
        )
    if not tokens_match(presented, stored):
        if belongs_elsewhere:
            raise _reject(ErrorCode.WRONG_TOKEN_TYPE, "Token was issued for a different operation")
        raise _reject(ErrorCode.TOKEN_MISMATCH, "Invalid verification token")
    expires_at = as_utc(expires)
    if expires_at is None or utcnow() >= expires_at:
        raise _reject(
            ErrorCode.TOKEN_EXPIRED,
            "Verification token has expired. Please request a new token",
        )


def _validate_profile_token(admin: Admin, presented: str | None, purpose: ProfileUpdateType) -> None:
    _validate_slot(
        presented,
        admin.profile_update_token,
        admin.profile_update_expires,
        admin.password_change_token,
    )
    if admin.profile_update_type != purpose.value:
        raise _reject(
            ErrorCode.WRONG_TOKEN_TYPE,
            f"Token was issued for a '{admin.profile_update_type}' update, not '{purpose.value}'",
        )


def _validate_password_token(admin: Admin, presented: str | None) -> None:
    _validate_slot(
        presented,
        admin.password_change_token,
        admin.password_change_expires,
        admin.profile_update_token,
    )


def request_profile_update_token(
    db: Session,
    admin: Admin,
    update_type: ProfileUpdateType,
    email_service: EmailService,
) -> datetime:
    """Store a fresh profile-update token (replacing any previous one) and email it."""
    token = generate_verification_token()
    expires_at = utcnow() + VERIFICATION_TOKEN_TTL
    admin.profile_update_token = token
    admin.profile_update_expires = expires_at
    admin.profile_update_type = update_type.value
    db.commit()
    logger.info(
        "Profile update token issued",
        extra={"admin_id": admin.id, "token_type": update_type.value},
    )
    # The stored token stays valid if delivery fails; the caller may request a resend.
    if not email_service.send_profile_update_email(admin, token, update_type.value, TOKEN_TTL_MINUTES):
        logger.error("Profile update token email failed", extra={"admin_id": admin.id})
        raise EmailDeliveryError(
            ErrorCode.EMAIL_DELIVERY_FAILED,
            "Verification email could not be sent. Please try again",
        )
    return expires_at


def request_password_change_token(
    db: Session,
    admin: Admin,
    current_password: str,
    email_service: EmailService,
) -> datetime:
    """Re-verify the current password, then store and email a password-change token."""
    if not check_password(current_password, admin):
        logger.warning("Password change token refused", extra={"admin_id": admin.id, "reason": "bad_current_password"})
        raise _reject(ErrorCode.INVALID_CURRENT_PASSWORD, "Current password is incorrect")
    token = generate_verification_token()
    expires_at = utcnow() + VERIFICATION_TOKEN_TTL
    admin.password_change_token = token
    admin.password_change_expires = expires_at
    db.commit()
    logger.info("Password change token issued", extra={"admin_id": admin.id})
    if not email_service.send_password_change_email(admin, token, TOKEN_TTL_MINUTES):
        logger.error("Password change token email failed", extra={"admin_id": admin.id})
        raise EmailDeliveryError(
            ErrorCode.EMAIL_DELIVERY_FAILED,
            "Verification email could not be sent. Please try again",
        )
    return expires_at


def check_profile_update_token(admin: Admin, token: str) -> TokenCheck:
    """Read-only validity check; never consumes the token."""
    try:
        _validate_slot(
            token,
            admin.profile_update_token,
            admin.profile_update_expires,
            admin.password_change_token,
        )
    except VerificationError as e:
        return TokenCheck(valid=False, type=admin.profile_update_type, reason=e.code)
    return TokenCheck(
        valid=True,
        type=admin.profile_update_type,
        expires_at=as_utc(admin.profile_update_expires),
    )


def check_password_change_token(admin: Admin, token: str) -> TokenCheck:
    """Read-only validity check; never consumes the token."""
    try:
        _validate_password_token(admin, token)
    except VerificationError as e:
        return TokenCheck(valid=False, type="password", reason=e.code)
    return TokenCheck(
        valid=True,
        type="password",
        expires_at=as_utc(admin.password_change_expires),
    )


def update_profile(db: Session, admin: Admin, changes: dict[str, Any], token: str | None) -> Admin:
    """
    Apply a verified profile update and consume the token in the same commit.

    Changing the email requires an "email" token; any other change requires a
    "profile" token.
    """
    updates = {k: v for k, v in changes.items() if k in PROFILE_FIELDS and v is not None}
    if not updates:
        raise _reject(ErrorCode.VALIDATION_ERROR, "No profile changes provided")

    # The token may have been issued, or the row changed, after this request loaded it.
    db.refresh(admin)

    new_email = normalize_email(updates["email"]) if "email" in updates else None
    email_changes = new_email is not None and new_email != normalize_email(admin.email)
    purpose = ProfileUpdateType.EMAIL if email_changes else ProfileUpdateType.PROFILE
    _validate_profile_token(admin, token, purpose)

    if email_changes:
        taken = (
            db.query(Admin)
            .filter(Admin.email == new_email, Admin.id != admin.id)
            .first()
        )
        if taken is not None:
            raise _reject(ErrorCode.EMAIL_ALREADY_IN_USE, "Email is already in use by another admin")
        updates["email"] = new_email
    else:
        updates.pop("email", None)

    for field, value in updates.items():
        setattr(admin, field, value)
    admin.clear_profile_update_token()
    db.commit()
    db.refresh(admin)
    logger.info(
        "Admin profile updated",
        extra={"admin_id": admin.id, "fields": ",".join(sorted(updates))},
    )
    return admin


def change_password(
    db: Session,
    admin: Admin,
    token: str | None,
    current_password: str,
    new_password: str,
) -> Admin:
    """Consume a password-change token, re-verify the current password and set the new one."""
    db.refresh(admin)
    _validate_password_token(admin, token)
    if not check_password(current_password, admin):
        raise _reject(ErrorCode.INVALID_CURRENT_PASSWORD, "Current password is incorrect")
    if check_password(new_password, admin):
        raise _reject(ErrorCode.SAME_PASSWORD, "New password must be different from current password")

    set_password(admin, new_password)
    admin.clear_password_change_token()
    db.commit()
    db.refresh(admin)
    logger.info("Admin password changed", extra={"admin_id": admin.id})
    return admin
