"""HTTP API routes, mounted under API_PREFIX (default /api)."""

from fastapi import APIRouter

from app.api import admin, auth, health

router = APIRouter()
router.include_router(health.router, prefix="/health", tags=["health"])
router.include_router(auth.router, prefix="/auth", tags=["auth"])
router.include_router(admin.router, prefix="/admin", tags=["admin"])
