"""Admin account listing (super admin only)."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import SuperAdmin, get_current_admin
from app.core.database import get_db
from app.models.admin import Admin
from app.schemas.auth import AccountOut, AdminListResponse

router = APIRouter(dependencies=[Depends(get_current_admin)])


@router.get("", response_model=AdminListResponse)
def list_admins(
    _admin: SuperAdmin,
    db: Annotated[Session, Depends(get_db)],
) -> AdminListResponse:
    """List all admin accounts, newest first. Never includes credentials or tokens."""
    admins = db.query(Admin).order_by(Admin.created_at.desc(), Admin.email).all()
    return AdminListResponse(
        message="Admins retrieved successfully",
        data=[AccountOut.model_validate(a) for a in admins],
    )
