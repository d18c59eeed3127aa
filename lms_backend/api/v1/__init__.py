# API v1 routes
from fastapi import APIRouter

from lms_backend.api.v1 import admin, auth, calendar

router = APIRouter()

router.include_router(auth.router, prefix="/auth", tags=["auth"])
router.include_router(admin.router, prefix="/admin", tags=["admin"])
router.include_router(calendar.router, prefix="/calendar", tags=["calendar"])
