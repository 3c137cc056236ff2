"""Request/response schemas for auth endpoints (camelCase on the wire)."""

import re
from datetime import datetime
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from app.core.security import (
    PASSWORD_MAX_BYTES,
    PASSWORD_MAX_LEN,
    PASSWORD_MIN_LEN,
    password_fits_bcrypt,
)
from app.models.admin import ProfileUpdateType

# At least one lowercase letter, one uppercase letter and one digit.
_PASSWORD_STRENGTH = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")
# Digits with optional leading +, spaces, dashes, dots and parentheses.
_PHONE = re.compile(r"^\+?[0-9 ()\-.]{7,20}$")


class CamelModel(BaseModel):
    """Accepts camelCase or snake_case input and serializes camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def _check_new_password(value: str) -> str:
    if not _PASSWORD_STRENGTH.match(value):
        raise ValueError(
            "Password must contain at least one lowercase letter, one uppercase letter, and one number"
        )
    if not password_fits_bcrypt(value):
        raise ValueError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes when UTF-8 encoded")
    return value


NewPassword = Annotated[
    str,
    Field(min_length=PASSWORD_MIN_LEN, max_length=PASSWORD_MAX_LEN),
    AfterValidator(_check_new_password),
]


class Envelope(CamelModel):
    """Uniform success envelope: {success, message, data?}."""

    success: bool = True
    message: str
    data: Any | None = None


class AccountOut(CamelModel):
    """Admin account as exposed to clients. Never includes password or token fields."""

    id: str
    name: str
    email: str
    role: str
    permissions: list[str]
    is_active: bool
    phone: str | None = None
    position: str | None = None
    avatar: str | None = None
    last_login: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("permissions", mode="before")
    @classmethod
    def default_permissions(cls, v: Any) -> list[str]:
        return list(v or [])


class AccountData(CamelModel):
    account: AccountOut
    admin: AccountOut


class AccountResponse(Envelope):
    data: AccountData


class VerifyData(AccountData):
    valid: bool = True


class VerifyResponse(Envelope):
    data: VerifyData


class TokenPairData(CamelModel):
    """Login/refresh payload; `admin` and `token` are legacy aliases kept for older clients."""

    account: AccountOut
    admin: AccountOut
    access_token: str
    token: str
    refresh_token: str
    token_type: str = "bearer"


class TokenPairResponse(Envelope):
    data: TokenPairData


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=PASSWORD_MIN_LEN, max_length=PASSWORD_MAX_LEN)


class ForgotPasswordRequest(CamelModel):
    email: EmailStr


class ResetPasswordRequest(CamelModel):
    token: str = Field(..., min_length=1, max_length=4096)
    new_password: NewPassword


class ProfileUpdateTokenRequest(CamelModel):
    type: ProfileUpdateType = ProfileUpdateType.PROFILE


class PasswordChangeTokenRequest(CamelModel):
    current_password: str = Field(..., min_length=1, max_length=PASSWORD_MAX_LEN)


class TokenCheckRequest(CamelModel):
    token: str = Field(..., min_length=1, max_length=256)


class TokenCheckData(CamelModel):
    valid: bool
    type: str | None = None
    expires_at: datetime | None = None
    reason: str | None = None


class TokenCheckResponse(Envelope):
    data: TokenCheckData


class TokenSentData(CamelModel):
    type: str
    expires_at: datetime
    email_sent: bool = True


class TokenSentResponse(Envelope):
    data: TokenSentData


class UpdateProfileRequest(CamelModel):
    name: str | None = Field(default=None, min_length=2, max_length=100)
    email: EmailStr | None = None
    phone: str | None = None
    position: str | None = Field(default=None, max_length=100)
    token: str | None = Field(default=None, max_length=256)

    @field_validator("name", "position", mode="before")
    @classmethod
    def strip_text(cls, v: Any) -> Any:
        # Length bounds apply to the stripped value.
        return v.strip() if isinstance(v, str) else v

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        if not _PHONE.match(v.strip()):
            raise ValueError("Please provide a valid phone number")
        return v.strip()


class ChangePasswordRequest(CamelModel):
    token: str | None = Field(default=None, max_length=256)
    current_password: str = Field(..., min_length=1, max_length=PASSWORD_MAX_LEN)
    new_password: NewPassword


class AdminListResponse(Envelope):
    data: list[AccountOut]


class RefreshRequest(CamelModel):
    """Legacy body form of POST /refresh; the Authorization header takes precedence."""

    refresh_token: str | None = Field(default=None, max_length=4096)
