"""
Shared plumbing for the lifecycle controllers.

Every mutating operation follows the same shape:

    async with self.repository.unit_of_work() as uow:
        ... read, validate, mutate, stage ...
        return await self._commit(uow, result, audit)

Nothing is written until _commit, and history is published only after the
unit has landed, so a rejected operation leaves storage and the audit trail
untouched.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar

from rentcontrol.core.errors import InvalidValue
from rentcontrol.core.utc import Clock
from rentcontrol.models.entities import Entity
from rentcontrol.services.history import AuditEntry, HistorySink, publish
from rentcontrol.services.identity import IdentityLookup
from rentcontrol.services.policy import LifecyclePolicy
from rentcontrol.storage.base import Repository, UnitOfWork

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Entity)


@dataclass
class TransitionResult(Generic[E]):
    """Outcome of one committed operation."""
    entity: E
    event: str
    old_state: Optional[str] = None
    new_state: Optional[str] = None
    created: List[Entity] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.warnings


def state_label(value: Any) -> Optional[str]:
    if value is None:
        return None
    return getattr(value, "value", str(value))


def require_text(value: Optional[str], field_name: str, entity: Optional[Entity] = None) -> str:
    if value is None or not value.strip():
        raise InvalidValue(
            f"{field_name} is required",
            entity_type=entity.entity_type() if entity else None,
            entity_id=entity.id if entity else None,
        )
    return value.strip()


class LifecycleController:
    """Base for the controllers: collaborators plus commit / audit helpers."""

    def __init__(
        self,
        repository: Repository,
        clock: Clock,
        history: HistorySink,
        identity: IdentityLookup,
        policy: LifecyclePolicy,
    ):
        self.repository = repository
        self.clock = clock
        self.history_sink = history
        self.identity = identity
        self.policy = policy

    def now(self) -> datetime:
        return self.clock.now()

    def today(self) -> date:
        return self.clock.now().date()

    def audit(
        self,
        entity: Entity,
        action: str,
        old_value: Any = None,
        new_value: Any = None,
        actor: Optional[str] = None,
    ) -> AuditEntry:
        return AuditEntry(
            entity_type=entity.entity_type(),
            entity_id=entity.id,
            action=action,
            old_value=state_label(old_value),
            new_value=state_label(new_value),
            actor=actor,
            timestamp=self.now(),
        )

    def touch(self, uow: UnitOfWork, entity: E, actor: Optional[str]) -> E:
        entity.touch(actor, self.now())
        return uow.save(entity)

    async def _commit(
        self,
        uow: UnitOfWork,
        result: TransitionResult,
        audit: List[AuditEntry],
    ) -> TransitionResult:
        await uow.commit()
        logger.info(
            "%s %s %s: %s -> %s",
            result.entity.entity_type(),
            result.entity.id,
            result.event,
            result.old_state,
            result.new_state,
        )
        result.warnings.extend(await publish(self.history_sink, audit))
        return result
