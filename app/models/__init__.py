"""SQLAlchemy ORM models."""

from app.models.admin import Admin, AdminRole, Permission, ProfileUpdateType
from app.models.base import Base

__all__ = ["Admin", "AdminRole", "Base", "Permission", "ProfileUpdateType"]
