"""
In-memory repository.

Default backend for tests and single-process use. Every read hands out a deep
copy, and commits are serialized behind an asyncio lock so version checks and
writes of one batch cannot interleave with another.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Type

from rentcontrol.core.errors import Conflict
from rentcontrol.models.entities import Entity
from rentcontrol.storage.base import (
    Change,
    E,
    EntityKey,
    Repository,
    entity_key,
    matches_filters,
)

logger = logging.getLogger(__name__)


class InMemoryRepository(Repository):

    def __init__(self):
        self._rows: Dict[EntityKey, Entity] = {}
        self._lock = asyncio.Lock()

    async def find(self, model: Type[E], entity_id: str) -> Optional[E]:
        entity = self._rows.get((model.entity_type(), entity_id))
        if entity is None:
            return None
        return entity.model_copy(deep=True)  # type: ignore[return-value]

    async def query(self, model: Type[E], **filters: Any) -> List[E]:
        entity_type = model.entity_type()
        return [
            entity.model_copy(deep=True)  # type: ignore[misc]
            for (row_type, _), entity in self._rows.items()
            if row_type == entity_type and matches_filters(entity, filters)
        ]

    async def commit(self, changes: Sequence[Change]) -> List[Entity]:
        async with self._lock:
            for entity, expected in changes:
                self._check_version(entity, expected)

            stored: List[Entity] = []
            for entity, expected in changes:
                snapshot = entity.model_copy(deep=True)
                snapshot.version = (expected or 0) + 1
                self._rows[entity_key(snapshot)] = snapshot
                stored.append(snapshot.model_copy(deep=True))

        logger.debug("Committed %d entit%s", len(stored), "y" if len(stored) == 1 else "ies")
        return stored

    def _check_version(self, entity: Entity, expected: Optional[int]) -> None:
        current = self._rows.get(entity_key(entity))
        if expected is None:
            if current is not None:
                raise Conflict(
                    f"{entity.entity_type()} {entity.id} already exists",
                    entity_type=entity.entity_type(),
                    entity_id=entity.id,
                )
            return
        if current is None or current.version != expected:
            raise Conflict(
                f"{entity.entity_type()} {entity.id} was modified concurrently",
                entity_type=entity.entity_type(),
                entity_id=entity.id,
                current_state=None if current is None else f"version {current.version}",
                attempted=f"save over version {expected}",
            )

    def __len__(self) -> int:
        return len(self._rows)
