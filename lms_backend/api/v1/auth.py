"""
Authentication API Routes
Login, logout, session lookup and registration
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, Response, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from lms_backend.api.dependencies import (
    extract_session_token,
    get_current_session,
    get_session_resolver,
)
from lms_backend.core.config import settings
from lms_backend.core.exceptions import ConflictException
from lms_backend.core.logging import get_logger
from lms_backend.core.permissions import Role, UserStatus
from lms_backend.core.security import get_password_hash
from lms_backend.core.sessions import AuthSession, SessionResolver
from lms_backend.db.models import User as UserModel
from lms_backend.db.session import get_db_session
from lms_backend.models.auth import (
    LoginRequest,
    LoginResponse,
    RegisterRequest,
    SessionResponse,
    UserResponse,
)

logger = get_logger(__name__)
router = APIRouter()


def _set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=token,
        max_age=settings.SESSION_DURATION_HOURS * 3600,
        httponly=True,
        secure=settings.ENVIRONMENT == "production",
        samesite="lax",
    )


@router.post("/login", response_model=LoginResponse)
async def login(
    request: LoginRequest,
    response: Response,
    resolver: SessionResolver = Depends(get_session_resolver),
):
    """
    Authenticate user and open a session

    - **email**: User email address (case-insensitive)
    - **password**: User password
    """
    token, session = await resolver.login(request.email, request.password)
    _set_session_cookie(response, token)
    return LoginResponse.from_session(session, token=token)


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    authorization: Optional[str] = Header(None),
    resolver: SessionResolver = Depends(get_session_resolver),
):
    """
    End the current session

    Logging out twice, or without a session, still succeeds.
    """
    await resolver.logout(extract_session_token(request, authorization))
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    return {"message": "Successfully logged out"}


@router.get("/session", response_model=SessionResponse)
async def get_session(session: AuthSession = Depends(get_current_session)):
    """Resolve the current session and its effective capabilities"""
    return SessionResponse.from_session(session)


@router.get("/me", response_model=UserResponse)
async def get_me(session: AuthSession = Depends(get_current_session)):
    """
    Get current authenticated user information
    """
    return UserResponse(**session.user.model_dump(exclude={"is_active"}))


@router.post("/register", response_model=LoginResponse, status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    response: Response,
    db: AsyncSession = Depends(get_db_session),
    resolver: SessionResolver = Depends(get_session_resolver),
):
    """
    Register a new student account and log it in

    - **email**: User email address (must be unique)
    - **password**: User password (min 8 characters)
    - **name**: Display name
    """
    email = request.email.lower()

    result = await db.execute(select(UserModel).where(func.lower(UserModel.email) == email))
    if result.scalar_one_or_none():
        raise ConflictException(message="Email already registered", details={"email": email})

    user = UserModel(
        email=email,
        name=request.name,
        hashed_password=get_password_hash(request.password),
        role=Role.STUDENT.value,
        status=UserStatus.ACTIVE.value,
        is_active=True,
        is_super_user=False,
    )
    db.add(user)
    await db.commit()

    logger.info(f"New user registered: {user.id}")

    token, session = await resolver.login(email, request.password)
    _set_session_cookie(response, token)
    return LoginResponse.from_session(session, token=token)
