"""
RentControl - Shared Test Fixtures
Provides a fixed clock, in-memory storage and history, a fully wired engine
and seed helpers for properties, personnel and cases.
"""

import os
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

import pytest

# Configure test environment BEFORE importing settings
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["HISTORY_BACKEND"] = "memory"

from rentcontrol.core.utc import FixedClock
from rentcontrol.models.entities import Mediator, Officer
from rentcontrol.models.enums import CaseType, HearingStatus
from rentcontrol.services.case_lifecycle import Party
from rentcontrol.services.engine import LifecycleEngine
from rentcontrol.services.history import InMemoryHistorySink
from rentcontrol.services.policy import LifecyclePolicy
from rentcontrol.storage.memory import InMemoryRepository


NOW = datetime(2024, 3, 20, 9, 0, tzinfo=timezone.utc)


# =============================================================================
# Core Fixtures
# =============================================================================

@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def sink() -> InMemoryHistorySink:
    return InMemoryHistorySink()


@pytest.fixture
def policy() -> LifecyclePolicy:
    return LifecyclePolicy(reopen_grace_period=timedelta(days=30))


@pytest.fixture
def engine(repository, clock, sink, policy) -> LifecycleEngine:
    return LifecycleEngine(repository, clock=clock, history=sink, policy=policy)


# =============================================================================
# Seed Helpers
# =============================================================================

@pytest.fixture
def seed_property(engine):
    """Register a property; returns the stored Property."""
    counter = {"n": 0}

    async def _seed(monthly_rent: Decimal = Decimal("1200"), **kwargs):
        counter["n"] += 1
        kwargs.setdefault("code", f"PROP-{counter['n']:03d}")
        kwargs.setdefault("landlord_id", "landlord-1")
        kwargs.setdefault("address", f"{counter['n']} Harbour Road")
        result = await engine.properties.register_property(monthly_rent=monthly_rent, **kwargs)
        return result.entity

    return _seed


@pytest.fixture
def seed_officer(repository):
    async def _seed(officer_id: str = "officer-1", **flags):
        existing = await repository.find(Officer, officer_id)
        if existing is not None:
            return existing
        flags.setdefault("can_preside_hearings", True)
        flags.setdefault("can_assign_cases", True)
        flags.setdefault("can_close_cases", True)
        officer = Officer(id=officer_id, user_id=f"user-{officer_id}", full_name=f"Officer {officer_id}", **flags)
        return await repository.save(officer, None)

    return _seed


@pytest.fixture
def seed_mediator(repository):
    async def _seed(mediator_id: str = "mediator-1", max_active_cases: int = 10, **kwargs):
        mediator = Mediator(
            id=mediator_id,
            user_id=f"user-{mediator_id}",
            full_name=f"Mediator {mediator_id}",
            max_active_cases=max_active_cases,
            **kwargs,
        )
        return await repository.save(mediator, None)

    return _seed


def complainant() -> Party:
    return Party(id="tenant-1", name="Ama Mensah", phone="0244000001", email="ama@example.com")


def respondent() -> Party:
    return Party(id="landlord-1", name="Kofi Boateng", phone="0244000002", email="kofi@example.com")


@pytest.fixture
def seed_case(engine):
    """Create a case and optionally walk it to investigation with an assigned officer."""

    async def _seed(case_type: CaseType = CaseType.RENT_ARREARS, investigate: bool = False,
                    officer_id: str = "officer-1", **kwargs):
        kwargs.setdefault("title", "Unpaid rent dispute")
        result = await engine.cases.create_case(
            case_type=case_type, complainant=complainant(), respondent=respondent(), **kwargs
        )
        case_id = result.entity.id
        if investigate:
            await engine.cases.submit(case_id)
            await engine.cases.begin_review(case_id)
            await engine.cases.assign_officer(case_id, officer_id)
            await engine.cases.open_investigation(case_id)
        return await engine.repository.get(type(result.entity), case_id)

    return _seed


@pytest.fixture
def seed_active_agreement(engine, seed_property):
    async def _seed(start_date: date = date(2024, 1, 15), end_date: date = date(2024, 12, 31), **kwargs):
        prop = await seed_property()
        created = await engine.tenancy.create_agreement(
            property_id=prop.id,
            tenant_id="tenant-1",
            start_date=start_date,
            end_date=end_date,
            monthly_rent=kwargs.pop("monthly_rent", Decimal("1000")),
            **kwargs,
        )
        result = await engine.tenancy.activate(created.entity.id)
        return result.entity

    return _seed


@pytest.fixture
def hearing_ready_case(engine, seed_officer, seed_case):
    """A case in investigation with officer-1 able to preside."""

    async def _seed(**kwargs):
        await seed_officer("officer-1")
        return await seed_case(investigate=True, **kwargs)

    return _seed


@pytest.fixture
def decision_pending_case(engine, hearing_ready_case):
    """A case walked through one completed hearing to decision_pending."""

    async def _seed(**kwargs):
        case = await hearing_ready_case(**kwargs)
        scheduled = await engine.hearings.schedule_hearing(
            case.id, date(2024, 4, 2), time(9, 0), time(11, 0), "officer-1", location="Hall A"
        )
        await engine.hearings.start(scheduled.entity.id)
        completed = await engine.hearings.complete(scheduled.entity.id, outcome="Heard both parties")
        assert completed.entity.status == HearingStatus.COMPLETED
        return await engine.repository.get(type(case), case.id)

    return _seed
