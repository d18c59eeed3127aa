"""
Security Utilities
Password hashing, opaque session tokens and signed fallback tokens
"""

import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from lms_backend.core.config import settings
from lms_backend.core.exceptions import AuthenticationException

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

SESSION_TOKEN_BYTES = 32
SIGNED_TOKEN_TYPE = "session"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash"""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a password"""
    return pwd_context.hash(password)


def generate_session_token() -> str:
    """Generate an opaque, URL-safe session token"""
    return secrets.token_urlsafe(SESSION_TOKEN_BYTES)


def session_expiry(now: Optional[datetime] = None) -> datetime:
    """Absolute expiry for a session created at ``now``"""
    return (now or datetime.utcnow()) + timedelta(hours=settings.SESSION_DURATION_HOURS)


def create_signed_session_token(
    user_id: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a tamper-evident session token carrying the user id and expiry.

    Only accepted by the resolver when SESSION_SIGNED_FALLBACK_ENABLED is set
    and the token is not present in the session store.
    """
    expire = datetime.utcnow() + (
        expires_delta or timedelta(hours=settings.SESSION_DURATION_HOURS)
    )
    to_encode: Dict[str, Any] = {
        "sub": str(user_id),
        "exp": expire,
        "type": SIGNED_TOKEN_TYPE,
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm="HS256")


def decode_signed_session_token(token: str) -> Dict[str, Any]:
    """Decode and verify a signed session token"""
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=["HS256"],
        )
    except JWTError as e:
        raise AuthenticationException(
            message="Invalid token",
            details={"error": str(e)},
        )

    if payload.get("type") != SIGNED_TOKEN_TYPE:
        raise AuthenticationException(
            message="Invalid token type",
            details={"expected": SIGNED_TOKEN_TYPE, "got": payload.get("type")},
        )

    return payload


def looks_like_signed_token(token: str) -> bool:
    """Signed tokens are JWTs: three dot-separated segments"""
    return token.count(".") == 2
