"""
Custom Exceptions
Error taxonomy of the LMS backend; each kind maps to one HTTP status and error code

Partial failures of companion services are not exceptions at the API
boundary: they are caught by the calendar service and returned as warnings.
"""

from datetime import datetime
from typing import Any, Dict, Optional


class AppException(Exception):
    """
    Base application exception

    Subclasses set ``code``, ``status_code`` and ``default_message``; the
    FastAPI handler in ``main.py`` renders them as
    ``{"error": {code, message, details, timestamp}}``.
    """

    code: str = "app_error"
    status_code: int = 500
    default_message: str = "Internal error"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.message = message or self.default_message
        self.details = details or {}
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.timestamp = datetime.utcnow().isoformat()
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class ValidationException(AppException):
    """Malformed input: recurrence rule, time window, unknown capability"""

    code = "validation_error"
    status_code = 400
    default_message = "Invalid request"


class AuthenticationException(AppException):
    """No valid session; the message never reveals why"""

    code = "authentication_error"
    status_code = 401
    default_message = "Authentication required"


class AuthorizationException(AppException):
    """Authenticated, but a permission check or policy guard failed"""

    code = "authorization_error"
    status_code = 403
    default_message = "Permission denied"


class NotFoundException(AppException):
    """Principal, event, course or attendee does not exist"""

    code = "not_found"
    status_code = 404

    def __init__(self, resource: str = "Resource", details: Optional[Dict[str, Any]] = None):
        super().__init__(message=f"{resource} not found", details=details)


class ConflictException(AppException):
    """Duplicate attendee, taken email, or similar uniqueness clash"""

    code = "conflict"
    status_code = 409
    default_message = "Resource conflict"


class VideoConferenceException(AppException):
    """Video-conference provider call failed"""

    code = "video_conference_error"
    status_code = 502
    default_message = "Video conference provider error"

    def __init__(
        self,
        message: Optional[str] = None,
        provider: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if provider:
            details["provider"] = provider
        super().__init__(message=message, details=details)


class CalendarSyncException(AppException):
    """External calendar provider call failed, or its tokens are unusable"""

    code = "calendar_sync_error"
    status_code = 502
    default_message = "Calendar sync provider error"

    def __init__(
        self,
        message: Optional[str] = None,
        provider: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if provider:
            details["provider"] = provider
        super().__init__(message=message, details=details)
