"""ORM model for admin accounts (credentials, session and verification-token state)."""

import uuid
from enum import Enum

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text, func

from app.models.base import Base


class AdminRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"


class Permission(str, Enum):
    """
    Capability tags an admin may hold.

    The first four are the tags routes check; the manage_* / view_* tags are the
    catalogue accepted by admin management. No route treats "manage_events" as
    equivalent to "events".
    """

    MEMBERS = "members"
    EVENTS = "events"
    ATTENDANCE = "attendance"
    CELEBRATIONS = "celebrations"
    MANAGE_EVENTS = "manage_events"
    MANAGE_MEMBERS = "manage_members"
    MANAGE_CELEBRATIONS = "manage_celebrations"
    VIEW_REPORTS = "view_reports"
    MANAGE_ANNOUNCEMENTS = "manage_announcements"
    MANAGE_DONATIONS = "manage_donations"
    MANAGE_ATTENDANCE = "manage_attendance"


class ProfileUpdateType(str, Enum):
    EMAIL = "email"
    PROFILE = "profile"


DEFAULT_PERMISSIONS = [
    Permission.MEMBERS.value,
    Permission.EVENTS.value,
    Permission.ATTENDANCE.value,
    Permission.CELEBRATIONS.value,
]


def _new_id() -> str:
    return str(uuid.uuid4())


class Admin(Base):
    """
    Admin account used for JWT authentication and permission checks.

    Rows are created by the operator CLI / admin management; the auth core only
    mutates the session, lockout and verification-token columns (plus the
    profile and password fields through verified self-service changes).
    """

    __tablename__ = "admins"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(32), nullable=False, default=AdminRole.ADMIN.value, index=True)
    permissions = Column(JSON, nullable=False, default=lambda: list(DEFAULT_PERMISSIONS))
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    phone = Column(String(32), nullable=True)
    position = Column(String(100), nullable=True)
    avatar = Column(String(1024), nullable=True)

    # Session: a single live refresh token; overwritten on login/refresh, cleared on logout
    refresh_token = Column(Text, nullable=True)
    last_login = Column(DateTime(timezone=True), nullable=True)

    # Lockout after repeated failed logins
    failed_login_attempts = Column(Integer, nullable=False, default=0)
    locked_until = Column(DateTime(timezone=True), nullable=True)

    # Profile-update verification slot (purpose: email | profile)
    profile_update_token = Column(String(128), nullable=True)
    profile_update_expires = Column(DateTime(timezone=True), nullable=True)
    profile_update_type = Column(String(16), nullable=True)

    # Password-change verification slot
    password_change_token = Column(String(128), nullable=True)
    password_change_expires = Column(DateTime(timezone=True), nullable=True)

    # Forgot-password reset slot
    password_reset_token = Column(Text, nullable=True)
    password_reset_expires = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    @property
    def is_super_admin(self) -> bool:
        return self.role == AdminRole.SUPER_ADMIN.value

    @property
    def permission_set(self) -> frozenset[Permission]:
        """Stored permission tags as enum members; unknown strings (e.g. legacy 'all') are dropped."""
        known = {p.value for p in Permission}
        return frozenset(Permission(p) for p in (self.permissions or []) if p in known)

    def has_permission(self, permission: Permission) -> bool:
        # Super admins hold every permission regardless of the stored list.
        if self.is_super_admin:
            return True
        return permission in self.permission_set

    def clear_profile_update_token(self) -> None:
        self.profile_update_token = None
        self.profile_update_expires = None
        self.profile_update_type = None

    def clear_password_change_token(self) -> None:
        self.password_change_token = None
        self.password_change_expires = None

    def clear_password_reset_token(self) -> None:
        self.password_reset_token = None
        self.password_reset_expires = None
