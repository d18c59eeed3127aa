"""
Common Pydantic Models
Shared schemas used across the application
"""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """Error detail model"""
    code: str = Field(..., description="Error code")
    message: str = Field(..., description="Error message")
    details: Dict[str, Any] = Field(default_factory=dict, description="Additional error details")
    timestamp: Optional[str] = Field(None, description="Error timestamp")


class ErrorResponse(BaseModel):
    """Standard error response"""
    error: ErrorDetail

    @classmethod
    def content(cls, code: str, message: str, details: Optional[Dict[str, Any]] = None,
                timestamp: Optional[str] = None) -> Dict[str, Any]:
        """JSON-ready body for an error response"""
        detail = ErrorDetail(code=code, message=message, details=details or {}, timestamp=timestamp)
        return cls(error=detail).model_dump(mode="json")


class HealthResponse(BaseModel):
    """Health check response"""
    status: str = Field(..., description="Health status: healthy or degraded")
    version: str = Field(..., description="Application version")
    timestamp: Optional[str] = Field(None, description="Response timestamp")
    services: Optional[Dict[str, str]] = Field(None, description="Service health status")
