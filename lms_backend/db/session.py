"""
Database Session Management
PostgreSQL connection and session handling
"""

from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from lms_backend.core.config import settings
from lms_backend.core.logging import get_logger
from lms_backend.db.base import Base

logger = get_logger(__name__)

# Engine
engine = None
async_session_maker: Optional[async_sessionmaker] = None


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {
            "echo": settings.DEBUG,
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    return {
        "echo": settings.DEBUG,
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
    }


async def init_db(database_url: Optional[str] = None) -> None:
    """Initialize database engine and create tables"""
    global engine, async_session_maker

    url = database_url or settings.POSTGRES_URL
    logger.info(f"Connecting to database ({url.split('://', 1)[0]})")

    engine = create_async_engine(url, **_engine_kwargs(url))

    async_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    # Import all SQLAlchemy models to ensure they're registered with Base
    from lms_backend.db import models  # noqa: F401

    # Create tables (use Alembic for production migrations)
    if settings.ENVIRONMENT in ("development", "test") or url.startswith("sqlite"):
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created")


async def close_db() -> None:
    """Close database connections"""
    global engine

    if engine:
        await engine.dispose()
        logger.info("Database connection closed")


def get_session_maker() -> async_sessionmaker:
    """Return the configured session factory"""
    if async_session_maker is None:
        raise RuntimeError("Database not initialized; call init_db() first")
    return async_session_maker


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session (dependency injection)"""
    async with get_session_maker()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def check_database() -> bool:
    """Check if the database answers a trivial query"""
    try:
        async with get_session_maker()() as session:
            await session.execute(text("SELECT 1"))
            return True
    except Exception as e:
        logger.warning(f"Database check failed: {e}")
        return False
