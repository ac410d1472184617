"""
Tests for the repositories and units of work.
Covers read isolation, optimistic versioning, atomic batches and the SQL
backend on a temporary SQLite file.
"""

from datetime import date, datetime, time, timezone
from decimal import Decimal

import pytest

from rentcontrol.core.database import create_engine_for, init_db, make_session_factory
from rentcontrol.core.errors import Conflict, InvalidState, NotFound
from rentcontrol.core.utc import FixedClock
from rentcontrol.models.entities import Case, Mediator, Officer, Property
from rentcontrol.models.enums import CaseStatus, CaseType, PropertyStatus
from rentcontrol.services.case_lifecycle import Party
from rentcontrol.services.engine import LifecycleEngine
from rentcontrol.services.history import DatabaseHistorySink
from rentcontrol.services.policy import LifecyclePolicy
from rentcontrol.storage.sql import SqlRepository


def make_property(code: str = "PROP-001", **kwargs) -> Property:
    kwargs.setdefault("landlord_id", "landlord-1")
    kwargs.setdefault("monthly_rent", Decimal("1200"))
    return Property(code=code, **kwargs)


# =============================================================================
# Units of Work (in memory)
# =============================================================================

class TestUnitOfWork:

    @pytest.mark.asyncio
    async def test_reads_are_detached_copies(self, repository):
        stored = await repository.save(make_property(), None)
        copy = await repository.get(Property, stored.id)
        copy.status = PropertyStatus.OCCUPIED
        assert (await repository.get(Property, stored.id)).status == PropertyStatus.AVAILABLE

    @pytest.mark.asyncio
    async def test_uncommitted_unit_is_discarded(self, repository):
        stored = await repository.save(make_property(), None)
        async with repository.unit_of_work() as uow:
            prop = await uow.get(Property, stored.id)
            prop.status = PropertyStatus.OCCUPIED
            uow.save(prop)
        assert (await repository.get(Property, stored.id)).status == PropertyStatus.AVAILABLE

    @pytest.mark.asyncio
    async def test_identity_map_returns_same_instance(self, repository):
        stored = await repository.save(make_property(), None)
        async with repository.unit_of_work() as uow:
            first = await uow.get(Property, stored.id)
            second = await uow.get(Property, stored.id)
            assert first is second

    @pytest.mark.asyncio
    async def test_query_sees_staged_changes(self, repository):
        """Entities changed in the unit are re-filtered by later queries in it."""
        stored = await repository.save(make_property(), None)
        async with repository.unit_of_work() as uow:
            prop = await uow.get(Property, stored.id)
            prop.status = PropertyStatus.OCCUPIED
            uow.save(prop)
            added = uow.add(make_property("PROP-002", status=PropertyStatus.OCCUPIED))

            occupied = await uow.query(Property, status=PropertyStatus.OCCUPIED)
            available = await uow.query(Property, status=PropertyStatus.AVAILABLE)

        assert {p.id for p in occupied} == {stored.id, added.id}
        assert available == []

    @pytest.mark.asyncio
    async def test_membership_filter(self, repository):
        await repository.save(make_property("A", status=PropertyStatus.OCCUPIED), None)
        await repository.save(make_property("B", status=PropertyStatus.UNDER_MAINTENANCE), None)
        await repository.save(make_property("C"), None)
        found = await repository.query(
            Property, status={PropertyStatus.OCCUPIED, PropertyStatus.UNDER_MAINTENANCE}
        )
        assert sorted(p.code for p in found) == ["A", "B"]

    @pytest.mark.asyncio
    async def test_commit_bumps_versions(self, repository):
        stored = await repository.save(make_property(), None)
        assert stored.version == 1
        async with repository.unit_of_work() as uow:
            prop = await uow.get(Property, stored.id)
            prop.city = "Accra"
            uow.save(prop)
            await uow.commit()
            assert prop.version == 2
        assert (await repository.get(Property, stored.id)).version == 2

    @pytest.mark.asyncio
    async def test_add_over_loaded_entity_refused(self, repository):
        stored = await repository.save(make_property(), None)
        async with repository.unit_of_work() as uow:
            prop = await uow.get(Property, stored.id)
            with pytest.raises(InvalidState):
                uow.add(prop)

    @pytest.mark.asyncio
    async def test_missing_entity(self, repository):
        async with repository.unit_of_work() as uow:
            assert await uow.find(Property, "nope") is None
            with pytest.raises(NotFound):
                await uow.get(Property, "nope")


# =============================================================================
# Optimistic Versioning
# =============================================================================

class TestVersioning:

    @pytest.mark.asyncio
    async def test_stale_save_conflicts(self, repository):
        stored = await repository.save(make_property(), None)
        first = await repository.get(Property, stored.id)
        second = await repository.get(Property, stored.id)

        first.city = "Accra"
        await repository.save(first, first.version)
        second.city = "Kumasi"
        with pytest.raises(Conflict):
            await repository.save(second, second.version)
        assert (await repository.get(Property, stored.id)).city == "Accra"

    @pytest.mark.asyncio
    async def test_duplicate_insert_conflicts(self, repository):
        await repository.save(Officer(id="officer-1", user_id="u1", full_name="A"), None)
        with pytest.raises(Conflict):
            await repository.save(Officer(id="officer-1", user_id="u2", full_name="B"), None)

    @pytest.mark.asyncio
    async def test_batch_is_all_or_nothing(self, repository):
        stored = await repository.save(make_property(), None)
        stale = await repository.get(Property, stored.id)
        await repository.save(stale.model_copy(), stale.version)

        fresh = make_property("PROP-NEW")
        with pytest.raises(Conflict):
            await repository.commit([(fresh, None), (stale, stale.version)])
        assert await repository.find(Property, fresh.id) is None
        assert len(repository) == 1


# =============================================================================
# SQL Backend
# =============================================================================

@pytest.fixture
async def sql_factory(tmp_path):
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'lifecycle.db'}")
    await init_db(engine)
    yield make_session_factory(engine)
    await engine.dispose()


class TestSqlRepository:

    @pytest.mark.asyncio
    async def test_round_trip_keeps_types(self, sql_factory):
        repository = SqlRepository(sql_factory)
        stored = await repository.save(make_property(monthly_rent=Decimal("1250.50")), None)
        loaded = await repository.get(Property, stored.id)
        assert loaded.version == 1
        assert loaded.monthly_rent == Decimal("1250.50")
        assert loaded.status == PropertyStatus.AVAILABLE

    @pytest.mark.asyncio
    async def test_versioned_update(self, sql_factory):
        repository = SqlRepository(sql_factory)
        stored = await repository.save(make_property(), None)
        first = await repository.get(Property, stored.id)
        second = await repository.get(Property, stored.id)

        first.city = "Accra"
        updated = await repository.save(first, first.version)
        assert updated.version == 2
        with pytest.raises(Conflict):
            await repository.save(second, second.version)

    @pytest.mark.asyncio
    async def test_duplicate_insert(self, sql_factory):
        repository = SqlRepository(sql_factory)
        await repository.save(Mediator(id="mediator-1", user_id="u1", full_name="M"), None)
        with pytest.raises(Conflict):
            await repository.save(Mediator(id="mediator-1", user_id="u1", full_name="M"), None)

    @pytest.mark.asyncio
    async def test_failed_batch_rolls_back(self, sql_factory):
        repository = SqlRepository(sql_factory)
        stored = await repository.save(make_property(), None)
        stale = await repository.get(Property, stored.id)
        await repository.save(stale.model_copy(), stale.version)

        fresh = make_property("PROP-NEW")
        with pytest.raises(Conflict):
            await repository.commit([(fresh, None), (stale, stale.version)])
        assert await repository.find(Property, fresh.id) is None

    @pytest.mark.asyncio
    async def test_query_filters(self, sql_factory):
        repository = SqlRepository(sql_factory)
        await repository.save(make_property("A", status=PropertyStatus.OCCUPIED), None)
        await repository.save(make_property("B"), None)
        found = await repository.query(Property, status=PropertyStatus.OCCUPIED)
        assert [p.code for p in found] == ["A"]

    @pytest.mark.asyncio
    async def test_engine_over_sql(self, sql_factory):
        """A case walked to investigation over SQL, with history in the database."""
        repository = SqlRepository(sql_factory)
        sink = DatabaseHistorySink(sql_factory)
        clock = FixedClock(datetime(2024, 3, 20, 9, 0, tzinfo=timezone.utc))
        engine = LifecycleEngine(repository, clock=clock, history=sink,
                                 policy=LifecyclePolicy())
        await repository.save(
            Officer(id="officer-1", user_id="u1", full_name="Officer One",
                    can_preside_hearings=True, can_assign_cases=True, can_close_cases=True),
            None,
        )

        created = await engine.cases.create_case(
            CaseType.RENT_ARREARS, "Arrears",
            Party("tenant-1", "Ama", "0244000001", "ama@example.com"),
            Party("landlord-1", "Kofi", "0244000002", "kofi@example.com"),
        )
        case_id = created.entity.id
        await engine.cases.submit(case_id)
        await engine.cases.begin_review(case_id)
        await engine.cases.assign_officer(case_id, "officer-1")
        await engine.cases.open_investigation(case_id)
        hearing = await engine.hearings.schedule_hearing(
            case_id, date(2024, 4, 2), time(9, 0), time(10, 0), "officer-1"
        )

        case = await repository.get(Case, case_id)
        assert case.status == CaseStatus.SCHEDULED_FOR_HEARING
        assert case.case_number == "RA/2024/03/0001"
        assert hearing.entity.version == 1

        entries = await sink.for_entity("Case", case_id)
        assert entries[0].action == "CREATED"
        assert [e.new_value for e in entries if e.action == "StatusChange"] == [
            "submitted", "under_review", "investigation", "scheduled_for_hearing",
        ]
