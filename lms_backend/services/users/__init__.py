"""
User Management Service
Admin operations on accounts, capability grants, course and tool access
"""

from lms_backend.services.users.models import (
    CapabilityInfo,
    CourseAccessItem,
    GrantDetails,
    ToolAccessItem,
    UserChanges,
    UserDetails,
    UserPermissions,
)
from lms_backend.services.users.service import UserService

__all__ = [
    # Service
    "UserService",
    # Models
    "CapabilityInfo",
    "CourseAccessItem",
    "GrantDetails",
    "ToolAccessItem",
    "UserChanges",
    "UserDetails",
    "UserPermissions",
]
