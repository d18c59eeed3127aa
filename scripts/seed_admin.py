#!/usr/bin/env python3
"""
Seed Admin User Script
Creates the super-user admin account, or resets its password if it exists

Credentials come from ADMIN_EMAIL / ADMIN_PASSWORD.
"""

import asyncio
import os
import sys

from sqlalchemy import select

from lms_backend.core.logging import get_logger, setup_logging
from lms_backend.core.permissions import Role, UserStatus
from lms_backend.core.security import get_password_hash
from lms_backend.db.models import User
from lms_backend.db.session import close_db, get_session_maker, init_db

setup_logging()
logger = get_logger(__name__)


async def seed_admin_user(email: str, password: str) -> None:
    """Create or refresh the super-user admin"""
    await init_db()

    try:
        async with get_session_maker()() as session:
            result = await session.execute(select(User).where(User.email == email))
            user = result.scalar_one_or_none()

            if user:
                user.hashed_password = get_password_hash(password)
                user.role = Role.ADMIN.value
                user.status = UserStatus.ACTIVE.value
                user.is_active = True
                user.is_super_user = True
                logger.info(f"Admin user already exists, password reset: {email}")
            else:
                session.add(User(
                    email=email,
                    name="Administrator",
                    hashed_password=get_password_hash(password),
                    role=Role.ADMIN.value,
                    status=UserStatus.ACTIVE.value,
                    is_active=True,
                    is_super_user=True,
                ))
                logger.info(f"Created admin user: {email}")

            await session.commit()
    finally:
        await close_db()


def main() -> int:
    email = os.environ.get("ADMIN_EMAIL", "admin@example.com").strip().lower()
    password = os.environ.get("ADMIN_PASSWORD")
    if not password or len(password) < 8:
        logger.error("ADMIN_PASSWORD must be set to at least 8 characters")
        return 1

    asyncio.run(seed_admin_user(email, password))
    return 0


if __name__ == "__main__":
    sys.exit(main())
