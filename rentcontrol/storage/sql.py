"""
SQL repository on async SQLAlchemy.

Entities are stored as JSON snapshots in lifecycle_records. Updates are
versioned (UPDATE ... WHERE version = :expected) so a concurrent writer is
detected by the row count, and every commit batch runs in one transaction.
"""

import logging
from typing import Any, List, Optional, Sequence, Type

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rentcontrol.core.database import get_db_session
from rentcontrol.core.errors import Conflict
from rentcontrol.core.utc import utc_now
from rentcontrol.models.entities import Entity
from rentcontrol.models.models import LifecycleRecord
from rentcontrol.storage.base import Change, E, Repository, matches_filters

logger = logging.getLogger(__name__)


def _to_entity(model: Type[E], record: LifecycleRecord) -> E:
    entity = model.model_validate(record.payload)
    entity.version = record.version
    return entity


class SqlRepository(Repository):
    """
    Repository backed by a SQLAlchemy async session factory.

    Usage:
        engine = create_engine_for("sqlite+aiosqlite:///./rentcontrol.db")
        await init_db(engine)
        repository = SqlRepository(make_session_factory(engine))
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def find(self, model: Type[E], entity_id: str) -> Optional[E]:
        async with get_db_session(self._session_factory) as session:
            record = await session.get(LifecycleRecord, (model.entity_type(), entity_id))
            if record is None:
                return None
            return _to_entity(model, record)

    async def query(self, model: Type[E], **filters: Any) -> List[E]:
        # Filters run in Python on the decoded snapshots; payload columns are opaque JSON
        async with get_db_session(self._session_factory) as session:
            result = await session.execute(
                select(LifecycleRecord).where(LifecycleRecord.entity_type == model.entity_type())
            )
            entities = [_to_entity(model, record) for record in result.scalars().all()]
        return [entity for entity in entities if matches_filters(entity, filters)]

    async def commit(self, changes: Sequence[Change]) -> List[Entity]:
        stored: List[Entity] = []
        async with get_db_session(self._session_factory) as session:
            for entity, expected in changes:
                if expected is None:
                    await self._insert(session, entity)
                    new_version = 1
                else:
                    await self._update(session, entity, expected)
                    new_version = expected + 1
                snapshot = entity.model_copy(deep=True)
                snapshot.version = new_version
                stored.append(snapshot)

        logger.debug("Committed %d record(s)", len(stored))
        return stored

    async def _insert(self, session: AsyncSession, entity: Entity) -> None:
        existing = await session.get(LifecycleRecord, (entity.entity_type(), entity.id))
        if existing is not None:
            raise Conflict(
                f"{entity.entity_type()} {entity.id} already exists",
                entity_type=entity.entity_type(),
                entity_id=entity.id,
            )
        session.add(
            LifecycleRecord(
                entity_type=entity.entity_type(),
                entity_id=entity.id,
                version=1,
                payload=entity.model_dump(mode="json"),
                updated_at=utc_now(),
            )
        )
        try:
            await session.flush()
        except IntegrityError as exc:
            raise Conflict(
                f"{entity.entity_type()} {entity.id} already exists",
                entity_type=entity.entity_type(),
                entity_id=entity.id,
            ) from exc

    async def _update(self, session: AsyncSession, entity: Entity, expected: int) -> None:
        payload = entity.model_dump(mode="json")
        payload["version"] = expected + 1
        result = await session.execute(
            update(LifecycleRecord)
            .where(
                LifecycleRecord.entity_type == entity.entity_type(),
                LifecycleRecord.entity_id == entity.id,
                LifecycleRecord.version == expected,
            )
            .values(version=expected + 1, payload=payload, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise Conflict(
                f"{entity.entity_type()} {entity.id} was modified concurrently",
                entity_type=entity.entity_type(),
                entity_id=entity.id,
                attempted=f"save over version {expected}",
            )
