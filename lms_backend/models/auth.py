"""
Authentication Pydantic Models
Request/response schemas for authentication endpoints
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field

from lms_backend.core.permissions import Capability, PermissionManager, Role, UserStatus
from lms_backend.core.sessions import AuthSession


class LoginRequest(BaseModel):
    """Login request schema"""
    email: EmailStr
    password: str = Field(..., min_length=1)


class RegisterRequest(BaseModel):
    """Registration request schema; new accounts are students"""
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)


class UserResponse(BaseModel):
    """User response schema"""
    id: uuid.UUID
    email: str
    name: Optional[str] = None
    role: Role
    status: UserStatus
    is_super_user: bool


class SessionResponse(BaseModel):
    """Resolved session with the caller's effective capabilities"""
    user: UserResponse
    capabilities: List[Capability]
    can_access_admin_panel: bool
    can_manage_users: bool
    expires_at: datetime

    @classmethod
    def from_session(cls, session: AuthSession, **extra) -> "SessionResponse":
        return cls(
            user=UserResponse(**session.user.model_dump(exclude={"is_active"})),
            capabilities=session.permissions.capabilities(),
            can_access_admin_panel=PermissionManager.can_access_admin_panel(session.permissions),
            can_manage_users=PermissionManager.can_manage_users(session.permissions),
            expires_at=session.expires_at,
            **extra,
        )


class LoginResponse(SessionResponse):
    """Login response schema; the token is also set as a cookie"""
    token: str
    token_type: str = "Bearer"
