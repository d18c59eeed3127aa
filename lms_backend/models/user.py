"""
User Pydantic Models
Request/response schemas for admin user management
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from lms_backend.services.calendar.models import to_naive_utc
from lms_backend.services.users.models import CourseAccessItem, ToolAccessItem, UserDetails


class UserListResponse(BaseModel):
    """User list response schema"""
    total: int
    limit: int
    offset: int
    results: List[UserDetails]


class GrantPermissionsRequest(BaseModel):
    """Capabilities to grant, optionally until ``expires_at``"""
    permissions: List[str] = Field(..., min_length=1)
    expires_at: Optional[datetime] = None

    normalize_times = field_validator("expires_at")(to_naive_utc)


class RevokePermissionsRequest(BaseModel):
    permissions: List[str] = Field(..., min_length=1)


class CourseAccessRequest(BaseModel):
    """Replacement set of per-course grants"""
    courses: List[CourseAccessItem] = Field(default_factory=list)


class ToolAccessRequest(BaseModel):
    """Replacement set of per-tool grants"""
    tools: List[ToolAccessItem] = Field(default_factory=list)
