"""Auth endpoints: login, token rotation, logout, self-service profile/password changes."""

import logging
from typing import Annotated

from fastapi import APIRouter, Body, Depends, Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session

from app.api.deps import CurrentAdmin, authorization_header, extract_token
from app.core.config import get_settings, settings
from app.core.database import get_db
from app.core.errors import AuthenticationError, ErrorCode
from app.models.admin import Admin
from app.schemas.auth import (
    AccountData,
    AccountOut,
    AccountResponse,
    ChangePasswordRequest,
    Envelope,
    ForgotPasswordRequest,
    LoginRequest,
    PasswordChangeTokenRequest,
    ProfileUpdateTokenRequest,
    RefreshRequest,
    ResetPasswordRequest,
    TokenCheckData,
    TokenCheckRequest,
    TokenCheckResponse,
    TokenPairData,
    TokenPairResponse,
    TokenSentData,
    TokenSentResponse,
    UpdateProfileRequest,
    VerifyData,
    VerifyResponse,
)
from app.services import auth as auth_service
from app.services import verification as verification_service
from app.services.email import EmailService, get_email_service
from app.services.verification import TokenCheck

logger = logging.getLogger(__name__)
router = APIRouter()

limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)

DbSession = Annotated[Session, Depends(get_db)]
Mailer = Annotated[EmailService, Depends(get_email_service)]


def _account_data(admin: Admin) -> AccountData:
    account = AccountOut.model_validate(admin)
    return AccountData(account=account, admin=account)


def _token_pair_response(message: str, admin: Admin, pair: auth_service.TokenPair) -> TokenPairResponse:
    account = AccountOut.model_validate(admin)
    return TokenPairResponse(
        message=message,
        data=TokenPairData(
            account=account,
            admin=account,
            access_token=pair.access_token,
            token=pair.access_token,
            refresh_token=pair.refresh_token,
        ),
    )


def _token_check_response(check: TokenCheck) -> TokenCheckResponse:
    return TokenCheckResponse(
        message="Token is valid" if check.valid else "Token is invalid or expired",
        data=TokenCheckData(
            valid=check.valid,
            type=check.type,
            expires_at=check.expires_at,
            reason=check.reason.value if check.reason else None,
        ),
    )


@router.post("/login", response_model=TokenPairResponse)
@limiter.limit(settings.AUTH_RATE_LIMIT)
def login(request: Request, body: LoginRequest, db: DbSession) -> TokenPairResponse:
    """
    Authenticate with email and password; returns an access/refresh token pair.
    Send the access token as: Authorization: Bearer <accessToken>
    """
    admin, pair = auth_service.login(db, body.email, body.password, get_settings())
    return _token_pair_response("Login successful", admin, pair)


@router.post("/refresh", response_model=TokenPairResponse)
def refresh(
    authorization: Annotated[str | None, Depends(authorization_header)],
    db: DbSession,
    body: Annotated[RefreshRequest | None, Body()] = None,
) -> TokenPairResponse:
    """
    Exchange the refresh token for a new pair; the old one stops working.
    Send it as Authorization: Bearer <refreshToken>; older clients may post {"refreshToken": ...}.
    """
    token = extract_token(authorization) or (body.refresh_token if body is not None else None)
    if not token:
        raise AuthenticationError(ErrorCode.NO_TOKEN, "Refresh token is required")
    admin, pair = auth_service.refresh_session(db, token, get_settings())
    return _token_pair_response("Token refreshed successfully", admin, pair)


@router.get("/verify", response_model=VerifyResponse)
def verify(admin: CurrentAdmin) -> VerifyResponse:
    data = _account_data(admin)
    return VerifyResponse(
        message="Token is valid",
        data=VerifyData(account=data.account, admin=data.admin, valid=True),
    )


@router.post("/logout", response_model=Envelope)
def logout(admin: CurrentAdmin, db: DbSession) -> Envelope:
    auth_service.logout(db, admin)
    return Envelope(message="Logged out successfully")


@router.get("/me", response_model=AccountResponse)
def me(admin: CurrentAdmin) -> AccountResponse:
    return AccountResponse(
        message="Admin information retrieved successfully",
        data=_account_data(admin),
    )


@router.post("/request-profile-update", response_model=TokenSentResponse)
def request_profile_update(
    body: ProfileUpdateTokenRequest,
    admin: CurrentAdmin,
    db: DbSession,
    mailer: Mailer,
) -> TokenSentResponse:
    """Email a 15-minute verification token for an email change or profile update."""
    expires_at = verification_service.request_profile_update_token(db, admin, body.type, mailer)
    return TokenSentResponse(
        message="Verification token sent to your email",
        data=TokenSentData(type=body.type.value, expires_at=expires_at),
    )


@router.put("/profile", response_model=AccountResponse)
def update_profile(body: UpdateProfileRequest, admin: CurrentAdmin, db: DbSession) -> AccountResponse:
    changes = body.model_dump(include={"name", "email", "phone", "position"})
    updated = verification_service.update_profile(db, admin, changes, body.token)
    return AccountResponse(message="Profile updated successfully", data=_account_data(updated))


@router.post("/verify-profile-token", response_model=TokenCheckResponse)
def verify_profile_token(body: TokenCheckRequest, admin: CurrentAdmin) -> TokenCheckResponse:
    return _token_check_response(verification_service.check_profile_update_token(admin, body.token))


@router.post("/request-password-change", response_model=TokenSentResponse)
def request_password_change(
    body: PasswordChangeTokenRequest,
    admin: CurrentAdmin,
    db: DbSession,
    mailer: Mailer,
) -> TokenSentResponse:
    """Re-check the current password and email a 15-minute password-change token."""
    expires_at = verification_service.request_password_change_token(
        db, admin, body.current_password, mailer
    )
    return TokenSentResponse(
        message="Verification token sent to your email",
        data=TokenSentData(type="password", expires_at=expires_at),
    )


@router.put("/change-password", response_model=Envelope)
def change_password(body: ChangePasswordRequest, admin: CurrentAdmin, db: DbSession) -> Envelope:
    """Consume the password-change token and set the new password; all sessions end."""
    verification_service.change_password(
        db, admin, body.token, body.current_password, body.new_password
    )
    return Envelope(message="Password changed successfully. Please log in again.")


@router.post("/verify-password-token", response_model=TokenCheckResponse)
def verify_password_token(body: TokenCheckRequest, admin: CurrentAdmin) -> TokenCheckResponse:
    return _token_check_response(verification_service.check_password_change_token(admin, body.token))


@router.post("/forgot-password", response_model=Envelope)
@limiter.limit(settings.AUTH_RATE_LIMIT)
def forgot_password(
    request: Request,
    body: ForgotPasswordRequest,
    db: DbSession,
    mailer: Mailer,
) -> Envelope:
    """Always answers with the same message whether or not the email belongs to an admin."""
    auth_service.forgot_password(db, body.email, mailer, get_settings())
    return Envelope(message=auth_service.FORGOT_PASSWORD_MESSAGE)


@router.post("/reset-password", response_model=Envelope)
@limiter.limit(settings.AUTH_RATE_LIMIT)
def reset_password(request: Request, body: ResetPasswordRequest, db: DbSession) -> Envelope:
    auth_service.reset_password(db, body.token, body.new_password, get_settings())
    return Envelope(message="Password has been reset. Please log in with your new password.")
