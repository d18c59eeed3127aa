"""
Admin API Routes
User management: accounts, capability grants, course and tool access
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from lms_backend.api.dependencies import get_current_session, get_user_service
from lms_backend.core.logging import get_logger
from lms_backend.core.permissions import Role, UserStatus
from lms_backend.core.sessions import AuthSession
from lms_backend.models.user import (
    CourseAccessRequest,
    GrantPermissionsRequest,
    RevokePermissionsRequest,
    ToolAccessRequest,
    UserListResponse,
)
from lms_backend.services.users import (
    CapabilityInfo,
    UserChanges,
    UserDetails,
    UserPermissions,
    UserService,
)

logger = get_logger(__name__)
router = APIRouter()


@router.get("/users", response_model=UserListResponse)
async def list_users(
    limit: int = Query(20, ge=1),
    offset: int = Query(0, ge=0),
    role: Optional[Role] = None,
    status: Optional[UserStatus] = None,
    search: Optional[str] = None,
    session: AuthSession = Depends(get_current_session),
    service: UserService = Depends(get_user_service),
):
    """List users (admin panel + USER_VIEW); limit is capped at 100"""
    total, users = await service.list_users(
        session.permissions, limit=limit, offset=offset, role=role, status=status, search=search
    )
    return UserListResponse(total=total, limit=min(limit, 100), offset=offset, results=users)


@router.get("/capabilities", response_model=List[CapabilityInfo])
async def list_capabilities(
    session: AuthSession = Depends(get_current_session),
    service: UserService = Depends(get_user_service),
):
    """Grantable capabilities with descriptions and default roles (admin panel + USER_VIEW)"""
    return service.list_capabilities(session.permissions)


@router.get("/users/{user_id}", response_model=UserDetails)
async def get_user(
    user_id: uuid.UUID,
    session: AuthSession = Depends(get_current_session),
    service: UserService = Depends(get_user_service),
):
    """Get one user (admin panel + USER_VIEW)"""
    return await service.get_user(session.permissions, user_id)


@router.patch("/users/{user_id}", response_model=UserDetails)
async def update_user(
    user_id: uuid.UUID,
    changes: UserChanges,
    session: AuthSession = Depends(get_current_session),
    service: UserService = Depends(get_user_service),
):
    """
    Update a user (admin panel + USER_EDIT)

    Own role changes, self deactivation and non-super-user edits of a
    super-user are rejected whatever the caller's grants.
    """
    return await service.update_user(session.permissions, user_id, changes)


@router.delete("/users/{user_id}", response_model=UserDetails)
async def delete_user(
    user_id: uuid.UUID,
    session: AuthSession = Depends(get_current_session),
    service: UserService = Depends(get_user_service),
):
    """Soft-delete a user (admin panel + USER_DELETE); the row is kept"""
    return await service.delete_user(session.permissions, user_id)


@router.get("/users/{user_id}/permissions", response_model=UserPermissions)
async def get_user_permissions(
    user_id: uuid.UUID,
    session: AuthSession = Depends(get_current_session),
    service: UserService = Depends(get_user_service),
):
    """List a user's grants and effective capabilities"""
    return await service.get_permissions(session.permissions, user_id)


@router.post("/users/{user_id}/permissions", response_model=UserPermissions)
async def grant_user_permissions(
    user_id: uuid.UUID,
    request: GrantPermissionsRequest,
    session: AuthSession = Depends(get_current_session),
    service: UserService = Depends(get_user_service),
):
    """Grant capabilities (upsert per capability)"""
    return await service.grant_permissions(
        session.permissions, user_id, request.permissions, request.expires_at
    )


@router.delete("/users/{user_id}/permissions", response_model=UserPermissions)
async def revoke_user_permissions(
    user_id: uuid.UUID,
    request: RevokePermissionsRequest,
    session: AuthSession = Depends(get_current_session),
    service: UserService = Depends(get_user_service),
):
    """Revoke capabilities"""
    return await service.revoke_permissions(session.permissions, user_id, request.permissions)


@router.put("/users/{user_id}/course-access", response_model=UserPermissions)
async def set_user_course_access(
    user_id: uuid.UUID,
    request: CourseAccessRequest,
    session: AuthSession = Depends(get_current_session),
    service: UserService = Depends(get_user_service),
):
    """Replace a user's per-course grants"""
    return await service.set_course_access(session.permissions, user_id, request.courses)


@router.put("/users/{user_id}/tool-access", response_model=UserPermissions)
async def set_user_tool_access(
    user_id: uuid.UUID,
    request: ToolAccessRequest,
    session: AuthSession = Depends(get_current_session),
    service: UserService = Depends(get_user_service),
):
    """Replace a user's per-tool grants"""
    return await service.set_tool_access(session.permissions, user_id, request.tools)
