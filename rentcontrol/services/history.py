"""
History / audit sink.

Controllers hand every committed transition to a HistorySink after the unit
of work has landed. Recording is fire-and-forget: a failing sink never rolls
a transition back, it only turns into a warning on the result.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rentcontrol.core.database import get_db_session
from rentcontrol.core.utc import to_utc
from rentcontrol.models.models import AuditRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditEntry:
    entity_type: str
    entity_id: str
    action: str
    old_value: Optional[str]
    new_value: Optional[str]
    actor: Optional[str]
    timestamp: datetime


class HistorySink(ABC):

    @abstractmethod
    async def record(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        old_value: Optional[str],
        new_value: Optional[str],
        actor: Optional[str],
        timestamp: datetime,
    ) -> None:
        """Append one entry. May raise; callers treat failures as warnings."""


class InMemoryHistorySink(HistorySink):
    """Ordered, append-only list of entries."""

    def __init__(self):
        self.entries: List[AuditEntry] = []

    async def record(self, entity_type, entity_id, action, old_value, new_value, actor, timestamp) -> None:
        self.entries.append(
            AuditEntry(entity_type, entity_id, action, old_value, new_value, actor, timestamp)
        )

    def for_entity(self, entity_type: str, entity_id: str) -> List[AuditEntry]:
        return [
            entry for entry in self.entries
            if entry.entity_type == entity_type and entry.entity_id == entity_id
        ]


class DatabaseHistorySink(HistorySink):
    """Writes entries to the audit_records table, one short transaction each."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def record(self, entity_type, entity_id, action, old_value, new_value, actor, timestamp) -> None:
        async with get_db_session(self._session_factory) as session:
            session.add(
                AuditRecord(
                    entity_type=entity_type,
                    entity_id=entity_id,
                    action=action,
                    old_value=old_value,
                    new_value=new_value,
                    actor=actor,
                    timestamp=to_utc(timestamp),
                )
            )

    async def for_entity(self, entity_type: str, entity_id: str) -> List[AuditEntry]:
        async with get_db_session(self._session_factory) as session:
            result = await session.execute(
                select(AuditRecord)
                .where(AuditRecord.entity_type == entity_type, AuditRecord.entity_id == entity_id)
                .order_by(AuditRecord.id)
            )
            return [
                AuditEntry(
                    row.entity_type,
                    row.entity_id,
                    row.action,
                    row.old_value,
                    row.new_value,
                    row.actor,
                    row.timestamp,
                )
                for row in result.scalars().all()
            ]


async def publish(sink: HistorySink, entries: Sequence[AuditEntry]) -> List[str]:
    """
    Send committed entries to the sink.

    Returns one warning string per entry the sink refused.
    """
    warnings: List[str] = []
    for entry in entries:
        try:
            await sink.record(
                entry.entity_type,
                entry.entity_id,
                entry.action,
                entry.old_value,
                entry.new_value,
                entry.actor,
                entry.timestamp,
            )
        except Exception as e:
            message = f"history not recorded for {entry.entity_type} {entry.entity_id} {entry.action}: {e}"
            logger.warning("History sink failure: %s", message)
            warnings.append(message)
    return warnings
