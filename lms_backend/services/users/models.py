"""
User Management Models
Pydantic models for admin user management
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from lms_backend.core.permissions import Capability, Role, UserStatus


class UserChanges(BaseModel):
    """Admin-editable user fields; only fields that were set are applied"""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    role: Optional[Role] = None
    status: Optional[UserStatus] = None
    is_active: Optional[bool] = None


class UserDetails(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: str
    name: Optional[str] = None
    role: Role
    status: UserStatus
    is_active: bool
    is_super_user: bool
    last_login_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class GrantDetails(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    capability: Capability
    granted: bool
    expires_at: Optional[datetime] = None
    granted_by: Optional[uuid.UUID] = None
    granted_at: datetime


class CourseAccessItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    course_id: uuid.UUID
    can_view: bool = True
    can_edit: bool = False


class ToolAccessItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tool_name: str = Field(..., min_length=1, max_length=100)
    can_access: bool = True
    expires_at: Optional[datetime] = None


class UserPermissions(BaseModel):
    """Explicit grants plus the effective capability list"""

    user_id: uuid.UUID
    role: Role
    grants: List[GrantDetails] = Field(default_factory=list)
    course_access: List[CourseAccessItem] = Field(default_factory=list)
    tool_access: List[ToolAccessItem] = Field(default_factory=list)
    effective_capabilities: List[Capability] = Field(default_factory=list)


class CapabilityInfo(BaseModel):
    """One grantable capability and the roles that hold it by default"""

    capability: Capability
    description: str
    default_roles: List[Role] = Field(default_factory=list)
