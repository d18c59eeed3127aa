#!/usr/bin/env python3
"""
External Calendar Sync Script
Runs every enabled, healthy calendar integration; safe to run from cron
"""

import asyncio
import sys

from lms_backend.core.logging import get_logger, setup_logging
from lms_backend.db.session import close_db, get_session_maker, init_db
from lms_backend.services.audit import DatabaseAuditSink
from lms_backend.services.calendar_sync import (
    CalendarSyncService,
    close_sync_providers,
    get_sync_provider,
)

setup_logging()
logger = get_logger(__name__)


async def main() -> int:
    await init_db()
    try:
        session_maker = get_session_maker()
        async with session_maker() as session:
            service = CalendarSyncService(
                session, providers=get_sync_provider, audit=DatabaseAuditSink(session_maker)
            )
            _, failed = await service.sync_all()
        return 1 if failed else 0
    except Exception as e:
        logger.error(f"Calendar sync failed: {e}")
        return 1
    finally:
        await close_sync_providers()
        await close_db()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
