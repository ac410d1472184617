"""
Repository capability.

Controllers read and write entities only through a UnitOfWork obtained from a
Repository. A unit caches what it reads, stages what it writes and commits the
whole batch atomically with optimistic version checks, so a transition either
lands completely or not at all.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Type, TypeVar

from rentcontrol.core.errors import InvalidState, NotFound
from rentcontrol.models.entities import Entity

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Entity)

# (entity, expected stored version); None means the entity must not exist yet
Change = Tuple[Entity, Optional[int]]
EntityKey = Tuple[str, str]

MEMBERSHIP_TYPES = (set, frozenset, list, tuple)


def matches_filters(entity: Entity, filters: Dict[str, Any]) -> bool:
    """Equality on every filter, or membership when the filter value is a collection."""
    for field_name, expected in filters.items():
        actual = getattr(entity, field_name)
        if isinstance(expected, MEMBERSHIP_TYPES):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


def entity_key(entity: Entity) -> EntityKey:
    return (entity.entity_type(), entity.id)


class Repository(ABC):
    """
    Storage for domain entities.

    Implementations must return detached copies from every read and apply a
    commit batch all-or-nothing, raising Conflict when any expected version
    does not match what is stored.
    """

    @abstractmethod
    async def find(self, model: Type[E], entity_id: str) -> Optional[E]:
        """Return a copy of the stored entity, or None."""

    @abstractmethod
    async def query(self, model: Type[E], **filters: Any) -> List[E]:
        """Return copies of every stored entity of this type matching the filters."""

    @abstractmethod
    async def commit(self, changes: Sequence[Change]) -> List[Entity]:
        """
        Persist a batch atomically.

        Returns copies of the stored entities carrying their new versions,
        in the order given.
        """

    async def get(self, model: Type[E], entity_id: str) -> E:
        entity = await self.find(model, entity_id)
        if entity is None:
            raise NotFound(
                f"{model.entity_type()} {entity_id} not found",
                entity_type=model.entity_type(),
                entity_id=entity_id,
            )
        return entity

    async def save(self, entity: E, expected_version: Optional[int]) -> E:
        stored = await self.commit([(entity, expected_version)])
        return stored[0]  # type: ignore[return-value]

    def unit_of_work(self) -> "UnitOfWork":
        return UnitOfWork(self)


class UnitOfWork:
    """
    One atomic transition against a Repository.

    Usage:
        async with repository.unit_of_work() as uow:
            case = await uow.get(Case, case_id)
            case.status = CaseStatus.SUBMITTED
            uow.save(case)
            await uow.commit()

    Leaving the block without commit() discards everything staged.
    """

    def __init__(self, repository: Repository):
        self._repository = repository
        self._identity: Dict[EntityKey, Entity] = {}
        self._loaded_versions: Dict[EntityKey, int] = {}
        self._new: Set[EntityKey] = set()
        self._staged: Dict[EntityKey, Entity] = {}
        self.committed = False

    async def __aenter__(self) -> "UnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if not self.committed and self._staged:
            logger.debug("Discarding %d staged change(s)", len(self._staged))
            self._staged.clear()
        return False

    # =========================================================================
    # Reads
    # =========================================================================

    def _remember(self, entity: E) -> E:
        key = entity_key(entity)
        if key in self._identity:
            return self._identity[key]  # type: ignore[return-value]
        self._identity[key] = entity
        self._loaded_versions[key] = entity.version
        return entity

    async def find(self, model: Type[E], entity_id: str) -> Optional[E]:
        key = (model.entity_type(), entity_id)
        if key in self._identity:
            return self._identity[key]  # type: ignore[return-value]
        entity = await self._repository.find(model, entity_id)
        if entity is None:
            return None
        return self._remember(entity)

    async def get(self, model: Type[E], entity_id: str) -> E:
        entity = await self.find(model, entity_id)
        if entity is None:
            raise NotFound(
                f"{model.entity_type()} {entity_id} not found",
                entity_type=model.entity_type(),
                entity_id=entity_id,
            )
        return entity

    async def query(self, model: Type[E], **filters: Any) -> List[E]:
        """
        Query the store, seen through this unit.

        Entities already read or added here are returned as their in-unit
        instances and re-checked against the filters, so staged changes are
        visible to later validation in the same transition.
        """
        results: List[E] = []
        seen: Set[EntityKey] = set()
        for row in await self._repository.query(model, **filters):
            entity = self._remember(row)
            seen.add(entity_key(entity))
            if matches_filters(entity, filters):
                results.append(entity)

        entity_type = model.entity_type()
        for key, entity in self._identity.items():
            if key[0] == entity_type and key not in seen and matches_filters(entity, filters):
                results.append(entity)  # type: ignore[arg-type]
        return results

    # =========================================================================
    # Writes
    # =========================================================================

    def add(self, entity: E) -> E:
        """Stage a new entity for insertion."""
        key = entity_key(entity)
        if key in self._identity and key not in self._new:
            raise InvalidState(
                f"{key[0]} {key[1]} already exists",
                entity_type=key[0],
                entity_id=key[1],
            )
        self._identity[key] = entity
        self._new.add(key)
        self._staged[key] = entity
        return entity

    def save(self, entity: E) -> E:
        """Stage an update to an entity read through this unit."""
        key = entity_key(entity)
        if key not in self._identity:
            self._identity[key] = entity
            self._loaded_versions[key] = entity.version
        self._staged[key] = entity
        return entity

    @property
    def pending(self) -> List[Entity]:
        return list(self._staged.values())

    async def commit(self) -> List[Entity]:
        """Write every staged entity in one atomic batch."""
        changes: List[Change] = []
        keys: List[EntityKey] = []
        for key, entity in self._staged.items():
            expected = None if key in self._new else self._loaded_versions[key]
            changes.append((entity, expected))
            keys.append(key)

        stored = await self._repository.commit(changes) if changes else []

        for key, (entity, _), saved in zip(keys, changes, stored):
            entity.version = saved.version
            self._loaded_versions[key] = saved.version
            self._new.discard(key)
        self._staged.clear()
        self.committed = True
        return stored
