"""
RentControl Lifecycle Engine

Wires the collaborators (repository, clock, history sink, identity lookup,
policy) into the controllers and exposes them as one object.

Usage:
    engine = get_lifecycle_engine()
    await init_storage()
    created = await engine.tenancy.create_agreement(...)
    await run_with_retry(lambda: engine.tenancy.activate(created.entity.id))
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

from rentcontrol.core.config import Settings, get_settings
from rentcontrol.core.database import get_engine, get_session_factory, init_db
from rentcontrol.core.errors import Conflict
from rentcontrol.core.logging_config import setup_logging
from rentcontrol.core.utc import Clock, SystemClock
from rentcontrol.services.case_lifecycle import CaseLifecycleController
from rentcontrol.services.hearing_scheduler import HearingScheduler
from rentcontrol.services.history import DatabaseHistorySink, HistorySink, InMemoryHistorySink
from rentcontrol.services.identity import IdentityLookup, RepositoryIdentityLookup
from rentcontrol.services.mediation import MediationController
from rentcontrol.services.policy import LifecyclePolicy
from rentcontrol.services.property_registry import PropertyRegistry
from rentcontrol.services.tenancy_lifecycle import TenancyLifecycleController
from rentcontrol.storage.base import Repository
from rentcontrol.storage.memory import InMemoryRepository
from rentcontrol.storage.sql import SqlRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LifecycleEngine:

    def __init__(
        self,
        repository: Repository,
        clock: Optional[Clock] = None,
        history: Optional[HistorySink] = None,
        identity: Optional[IdentityLookup] = None,
        policy: Optional[LifecyclePolicy] = None,
    ):
        self.repository = repository
        self.clock = clock or SystemClock()
        self.history = history or InMemoryHistorySink()
        self.identity = identity or RepositoryIdentityLookup(repository)
        self.policy = policy or LifecyclePolicy()

        collaborators = (self.repository, self.clock, self.history, self.identity, self.policy)
        self.properties = PropertyRegistry(*collaborators)
        self.tenancy = TenancyLifecycleController(*collaborators)
        self.cases = CaseLifecycleController(*collaborators)
        self.hearings = HearingScheduler(*collaborators, cases=self.cases)
        self.mediation = MediationController(*collaborators, cases=self.cases)


def build_engine(settings: Settings, clock: Optional[Clock] = None) -> LifecycleEngine:
    """Build an engine with the backends selected in settings."""
    if settings.storage_backend == "database":
        repository: Repository = SqlRepository(get_session_factory())
    else:
        repository = InMemoryRepository()

    if settings.history_backend == "database":
        history: HistorySink = DatabaseHistorySink(get_session_factory())
    else:
        history = InMemoryHistorySink()

    logger.info(
        "Lifecycle engine: storage=%s history=%s reopen_grace_days=%s",
        settings.storage_backend,
        settings.history_backend,
        settings.reopen_grace_days,
    )
    return LifecycleEngine(repository, clock=clock, history=history, policy=settings.lifecycle_policy())


@lru_cache
def get_lifecycle_engine() -> LifecycleEngine:
    """
    Get the cached application engine.
    Configures logging from settings on first use.
    """
    settings = get_settings()
    setup_logging(
        level=settings.log_level,
        json_format=settings.log_json_format,
        log_file=Path(settings.log_file) if settings.log_file else None,
    )
    return build_engine(settings)


async def init_storage(settings: Optional[Settings] = None) -> None:
    """Create SQL tables when a database backend is selected. Call on startup."""
    settings = settings or get_settings()
    if "database" in (settings.storage_backend, settings.history_backend):
        await init_db(get_engine())
        logger.info("Database tables ready")


async def run_with_retry(operation: Callable[[], Awaitable[T]], attempts: int = 3) -> T:
    """
    Run an operation, re-running it on Conflict.

    The operation must perform its own fresh read each time. Every other
    error propagates immediately.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Conflict as e:
            if attempt == attempts:
                raise
            logger.warning("Conflict on attempt %d/%d, retrying: %s", attempt, attempts, e.message)
    raise AssertionError("unreachable")
