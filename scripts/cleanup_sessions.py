#!/usr/bin/env python3
"""
Expired Session Cleanup Script
Deletes login sessions whose expiry has passed; safe to run from cron
"""

import asyncio
import sys

from lms_backend.core.logging import get_logger, setup_logging
from lms_backend.core.sessions import DatabaseSessionStore
from lms_backend.db.session import close_db, get_session_maker, init_db

setup_logging()
logger = get_logger(__name__)


async def main() -> int:
    await init_db()
    try:
        async with get_session_maker()() as session:
            removed = await DatabaseSessionStore(session).purge_expired()
        logger.info(f"Removed {removed} expired session(s)")
        return 0
    except Exception as e:
        logger.error(f"Session cleanup failed: {e}")
        return 1
    finally:
        await close_db()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
