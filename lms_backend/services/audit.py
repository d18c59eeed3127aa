"""
Audit Sink
Best-effort audit trail for permission-gated mutations
"""

import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from lms_backend.core.logging import get_logger
from lms_backend.db.models import AuditLog

logger = get_logger(__name__)


class AuditSink(ABC):
    """Destination for audit records"""

    @abstractmethod
    async def record(
        self,
        principal_id: uuid.UUID,
        action: str,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Record one audited action; must never raise"""


class DatabaseAuditSink(AuditSink):
    """
    Writes audit rows through its own session so a failed audit write never
    rolls back (or blocks) the primary mutation.
    """

    def __init__(self, session_maker: async_sessionmaker):
        self._session_maker = session_maker

    async def record(
        self,
        principal_id: uuid.UUID,
        action: str,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        try:
            async with self._session_maker() as session:
                session.add(
                    AuditLog(
                        user_id=principal_id,
                        action=action,
                        entity_type=entity_type,
                        entity_id=str(entity_id),
                        meta=metadata or {},
                    )
                )
                await session.commit()
        except Exception as e:
            logger.error(
                f"Audit write failed: action={action} entity={entity_type}:{entity_id} "
                f"principal={principal_id}: {e}"
            )
