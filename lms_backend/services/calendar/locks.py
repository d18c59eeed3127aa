"""
Series Locks
Per-series asyncio locks serializing calendar mutations in one process
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List

from lms_backend.core.logging import get_logger

logger = get_logger(__name__)


class SeriesLockManager:
    """
    Hands out one asyncio.Lock per series id

    A single edit and a series edit touching the same row resolve to the
    same series id, so they never interleave. Entries are dropped once no
    task holds or waits on them. Bookkeeping happens between awaits, so the
    table itself needs no lock.
    """

    def __init__(self):
        # series id -> [lock, number of holders and waiters]
        self._locks: Dict[uuid.UUID, List] = {}

    @asynccontextmanager
    async def hold(self, series_id: uuid.UUID) -> AsyncIterator[None]:
        entry = self._locks.get(series_id)
        if entry is None:
            entry = [asyncio.Lock(), 0]
            self._locks[series_id] = entry
        entry[1] += 1

        try:
            async with entry[0]:
                logger.debug(f"Series lock acquired: {series_id}")
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[series_id]

    def is_locked(self, series_id: uuid.UUID) -> bool:
        entry = self._locks.get(series_id)
        return entry is not None and entry[0].locked()

    def __len__(self) -> int:
        return len(self._locks)


# Global lock manager; mutations for one series must share it
series_locks = SeriesLockManager()
