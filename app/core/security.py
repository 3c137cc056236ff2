"""Password hashing, JWT issuance/verification and random verification tokens."""

import re
import secrets
import uuid
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

import bcrypt
import jwt

from app.core.config import Settings, get_settings

# Bcrypt cost (rounds); 12 is a good default for security vs speed.
BCRYPT_ROUNDS = 12

PASSWORD_MIN_LEN = 6
PASSWORD_MAX_LEN = 128
# bcrypt only reads the first 72 bytes; longer passwords are refused rather than truncated.
PASSWORD_MAX_BYTES = 72

# Verification tokens (profile update / password change) are fixed at 15 minutes.
VERIFICATION_TOKEN_TTL = timedelta(minutes=15)
# 32 random bytes = 256 bits of entropy, hex-encoded to 64 characters.
VERIFICATION_TOKEN_BYTES = 32

# Three base64url segments separated by dots.
_JWT_SHAPE = re.compile(r"^[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*$")


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class CredentialError(Exception):
    """The hashing primitive failed (corrupt digest, library error)."""


class TokenError(Exception):
    """Base for token verification failures."""


class TokenExpiredError(TokenError):
    """Signature is valid but the token is past its exp claim."""


class TokenInvalidError(TokenError):
    """Token is malformed, has a bad signature, or is of the wrong kind."""


class TokenVerificationError(TokenError):
    """Any other failure raised by the JWT library."""


def utcnow() -> datetime:
    """Current time as an aware UTC datetime (patched in tests to simulate a clock)."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from stores that drop tzinfo."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def password_fits_bcrypt(plain_password: str) -> bool:
    return len(plain_password.encode("utf-8")) <= PASSWORD_MAX_BYTES


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password for storage. Do not store plain passwords."""
    if not password_fits_bcrypt(plain_password):
        raise CredentialError(f"Password exceeds {PASSWORD_MAX_BYTES} bytes")
    pw_bytes = plain_password.encode("utf-8")
    try:
        return bcrypt.hashpw(pw_bytes, bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")
    except (ValueError, TypeError) as e:
        raise CredentialError("Password hashing failed") from e


def verify_password(plain_password: str, hashed: str) -> bool:
    """Verify a plain password against a stored hash via bcrypt's own comparison."""
    # No stored digest can come from a password bcrypt would have to truncate.
    if not password_fits_bcrypt(plain_password):
        return False
    pw_bytes = plain_password.encode("utf-8")
    try:
        return bcrypt.checkpw(pw_bytes, hashed.encode("utf-8"))
    except (ValueError, TypeError) as e:
        raise CredentialError("Password comparison failed") from e


def _secret_for(kind: TokenKind, settings: Settings) -> str:
    if kind is TokenKind.REFRESH:
        return settings.JWT_REFRESH_SECRET.get_secret_value()
    return settings.JWT_SECRET.get_secret_value()


def _lifetime_for(kind: TokenKind, settings: Settings) -> timedelta:
    if kind is TokenKind.REFRESH:
        return timedelta(days=settings.JWT_REFRESH_EXPIRE_DAYS)
    return timedelta(minutes=settings.JWT_ACCESS_EXPIRE_MINUTES)


def _create_token(
    admin_id: str,
    kind: TokenKind,
    settings: Settings | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    settings = settings or get_settings()
    now = utcnow()
    expire = now + (expires_delta if expires_delta is not None else _lifetime_for(kind, settings))
    payload: dict[str, Any] = {
        "sub": str(admin_id),
        "type": kind.value,
        # Unique per token so two tokens minted in the same second never collide.
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": expire,
    }
    return jwt.encode(payload, _secret_for(kind, settings), algorithm=settings.JWT_ALGORITHM)


def create_access_token(
    admin_id: str,
    settings: Settings | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a short-lived access token signed with JWT_SECRET."""
    return _create_token(admin_id, TokenKind.ACCESS, settings, expires_delta)


def create_refresh_token(
    admin_id: str,
    settings: Settings | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a long-lived refresh token signed with JWT_REFRESH_SECRET."""
    return _create_token(admin_id, TokenKind.REFRESH, settings, expires_delta)


def is_token_shaped(token: str) -> bool:
    """Cheap structural check run before any cryptographic verification."""
    return bool(token) and len(token) <= 4096 and _JWT_SHAPE.match(token) is not None


def decode_token(
    token: str,
    kind: TokenKind = TokenKind.ACCESS,
    settings: Settings | None = None,
) -> dict[str, Any]:
    """
    Verify signature and expiry with the secret for `kind`; return the payload.

    Raises TokenExpiredError, TokenInvalidError or TokenVerificationError.
    """
    settings = settings or get_settings()
    try:
        payload = jwt.decode(
            token,
            _secret_for(kind, settings),
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["exp", "iat"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise TokenExpiredError("Token has expired") from e
    except (jwt.DecodeError, jwt.InvalidSignatureError, jwt.MissingRequiredClaimError) as e:
        raise TokenInvalidError("Invalid token") from e
    except jwt.PyJWTError as e:
        raise TokenVerificationError("Token verification failed") from e
    # Typed tokens must not cross over; untyped tokens are rejected as well.
    if payload.get("type") != kind.value:
        raise TokenInvalidError("Invalid token")
    return payload


def _reset_key(password_hash: str, settings: Settings) -> str:
    return settings.JWT_SECRET.get_secret_value() + password_hash


def create_password_reset_token(
    admin_id: str,
    password_hash: str,
    settings: Settings | None = None,
) -> str:
    """
    Create a password-reset JWT keyed on JWT_SECRET plus the current password hash.

    Any password change alters the key, which invalidates every outstanding reset link.
    """
    settings = settings or get_settings()
    now = utcnow()
    payload = {
        "sub": str(admin_id),
        "type": "password_reset",
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": now + timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES),
    }
    return jwt.encode(payload, _reset_key(password_hash, settings), algorithm=settings.JWT_ALGORITHM)


def peek_token_subject(token: str) -> str | None:
    """
    Read `sub` WITHOUT verifying the signature.

    Only used to locate the account whose password hash is part of the reset key;
    the token is then verified with verify_password_reset_token.
    """
    try:
        payload = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None
    sub = payload.get("sub")
    return str(sub) if sub else None


def verify_password_reset_token(
    token: str,
    password_hash: str,
    settings: Settings | None = None,
) -> dict[str, Any]:
    """Verify a reset token against the account's current password hash."""
    settings = settings or get_settings()
    try:
        payload = jwt.decode(
            token,
            _reset_key(password_hash, settings),
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise TokenExpiredError("Reset token has expired") from e
    except jwt.PyJWTError as e:
        raise TokenInvalidError("Invalid reset token") from e
    if payload.get("type") != "password_reset":
        raise TokenInvalidError("Invalid reset token")
    return payload


def generate_verification_token() -> str:
    """High-entropy single-use token delivered out of band by email."""
    return secrets.token_hex(VERIFICATION_TOKEN_BYTES)


def tokens_match(presented: str, stored: str) -> bool:
    """Constant-time comparison of a presented token with the stored value."""
    return secrets.compare_digest(presented.encode("utf-8"), stored.encode("utf-8"))
