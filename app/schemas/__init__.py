"""Pydantic request/response schemas."""

from app.schemas.auth import (
    AccountOut,
    ChangePasswordRequest,
    Envelope,
    LoginRequest,
    TokenPairResponse,
    UpdateProfileRequest,
)
from app.schemas.health import HealthResponse

__all__ = [
    "AccountOut",
    "ChangePasswordRequest",
    "Envelope",
    "HealthResponse",
    "LoginRequest",
    "TokenPairResponse",
    "UpdateProfileRequest",
]
