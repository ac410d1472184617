"""
Tests for the case lifecycle - creation, the twelve-state workflow, guards,
officer and mediator assignment, and reopening.
"""

from decimal import Decimal

import pytest

from rentcontrol.core.errors import (
    CapacityExceeded,
    InvalidState,
    InvalidTransition,
    NotFound,
)
from rentcontrol.models.entities import Case, CaseParticipant, Mediator, Officer
from rentcontrol.models.enums import (
    CasePriority,
    CaseStatus,
    CaseType,
    ParticipantType,
    ResolutionType,
)
from rentcontrol.services.case_lifecycle import Party, determine_priority
from rentcontrol.services.engine import LifecycleEngine
from rentcontrol.services.policy import LifecyclePolicy


def complainant() -> Party:
    return Party(id="tenant-1", name="Ama Mensah", phone="0244000001", email="ama@example.com")


def respondent() -> Party:
    return Party(id="landlord-1", name="Kofi Boateng", phone="0244000002", email="kofi@example.com")


# =============================================================================
# Creation
# =============================================================================

class TestCreateCase:

    @pytest.mark.asyncio
    async def test_case_number_uses_type_prefix(self, engine, seed_case):
        case = await seed_case(case_type=CaseType.ILLEGAL_EVICTION)
        assert case.case_number == "IE/2024/03/0001"
        assert case.status == CaseStatus.DRAFT
        assert case.priority == CasePriority.CRITICAL

    @pytest.mark.asyncio
    async def test_participants_created(self, engine, seed_case, repository):
        case = await seed_case()
        participants = await repository.query(CaseParticipant, case_id=case.id)
        kinds = {p.participant_type: p for p in participants}
        assert set(kinds) == {ParticipantType.COMPLAINANT, ParticipantType.RESPONDENT}
        assert kinds[ParticipantType.COMPLAINANT].is_primary_contact

    @pytest.mark.asyncio
    async def test_unknown_property_reference(self, engine):
        with pytest.raises(NotFound):
            await engine.cases.create_case(
                CaseType.OTHER, "Noise", complainant(), respondent(), property_id="nowhere",
            )

    @pytest.mark.asyncio
    async def test_property_address_copied(self, engine, seed_property):
        prop = await seed_property(address="7 Ring Road")
        result = await engine.cases.create_case(
            CaseType.REPAIR_NEGLECT, "Leaking roof", complainant(), respondent(), property_id=prop.id,
        )
        assert result.entity.property_address == "7 Ring Road"

    @pytest.mark.parametrize("case_type,claim,expected", [
        (CaseType.HARASSMENT, None, CasePriority.CRITICAL),
        (CaseType.HEALTH_AND_SAFETY, None, CasePriority.CRITICAL),
        (CaseType.RENT_ARREARS, Decimal("5001"), CasePriority.HIGH),
        (CaseType.RENT_ARREARS, Decimal("5000"), CasePriority.MEDIUM),
        (CaseType.REPAIR_NEGLECT, None, CasePriority.HIGH),
        (CaseType.NOISE_COMPLAINT, Decimal("99999"), CasePriority.MEDIUM),
    ])
    def test_priority(self, case_type, claim, expected):
        assert determine_priority(case_type, claim) == expected


# =============================================================================
# Workflow
# =============================================================================

class TestWorkflow:

    @pytest.mark.asyncio
    async def test_draft_cannot_skip_to_review(self, engine, seed_case):
        """Draft -> UnderReview must pass through Submitted."""
        case = await seed_case()
        with pytest.raises(InvalidTransition) as exc_info:
            await engine.cases.begin_review(case.id)
        assert exc_info.value.current_state == "draft"
        assert exc_info.value.entity_id == case.id

    @pytest.mark.asyncio
    async def test_submit_sets_timestamp(self, engine, seed_case, clock):
        case = await seed_case()
        result = await engine.cases.submit(case.id)
        assert result.entity.status == CaseStatus.SUBMITTED
        assert result.entity.submitted_at == clock.now()

    @pytest.mark.asyncio
    async def test_submit_requires_contact_fields(self, engine):
        created = await engine.cases.create_case(
            CaseType.OTHER, "Incomplete", complainant(), Party(id="r1", name="R", phone="", email=""),
        )
        with pytest.raises(InvalidState) as exc_info:
            await engine.cases.submit(created.entity.id)
        assert "respondent_phone" in exc_info.value.message
        assert "respondent_email" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_investigation_requires_officer(self, engine, seed_case):
        case = await seed_case()
        await engine.cases.submit(case.id)
        await engine.cases.begin_review(case.id)
        with pytest.raises(InvalidState):
            await engine.cases.open_investigation(case.id)

    @pytest.mark.asyncio
    async def test_investigation_with_inactive_officer(self, engine, seed_case, seed_officer):
        await seed_officer("officer-1")
        case = await seed_case()
        await engine.cases.submit(case.id)
        await engine.cases.begin_review(case.id)
        await engine.cases.assign_officer(case.id, "officer-1")

        officer = await engine.repository.get(Officer, "officer-1")
        officer.is_active = False
        await engine.repository.save(officer, officer.version)
        with pytest.raises(InvalidState):
            await engine.cases.open_investigation(case.id)

    @pytest.mark.asyncio
    async def test_capability_policy_on_assignment(self, repository, clock, sink, seed_officer, seed_case):
        await seed_officer("officer-2", can_assign_cases=False)
        strict = LifecycleEngine(repository, clock=clock, history=sink,
                                 policy=LifecyclePolicy(officer_assign_requires_capability=True))
        case = await seed_case()
        with pytest.raises(InvalidState):
            await strict.cases.assign_officer(case.id, "officer-2")

    @pytest.mark.asyncio
    async def test_every_transition_writes_one_status_change(self, engine, seed_case, seed_officer):
        await seed_officer("officer-1")
        case = await seed_case(investigate=True)
        changes = await engine.cases.status_changes(case.id)
        assert [(c.old_value, c.new_value) for c in changes] == [
            ("draft", "submitted"),
            ("submitted", "under_review"),
            ("under_review", "investigation"),
        ]

    @pytest.mark.asyncio
    async def test_schedule_hearing_event_needs_hearing(self, engine, seed_case, seed_officer, repository):
        """The case cannot enter scheduled_for_hearing without a scheduled hearing."""
        await seed_officer("officer-1")
        case = await seed_case(investigate=True)
        async with repository.unit_of_work() as uow:
            stored = await uow.get(Case, case.id)
            with pytest.raises(InvalidState):
                await engine.cases.apply_transition(uow, stored, "schedule_hearing")

    @pytest.mark.asyncio
    async def test_withdraw_from_any_open_state(self, engine, seed_case, clock):
        case = await seed_case()
        result = await engine.cases.withdraw(case.id, "Settled privately")
        assert result.entity.status == CaseStatus.WITHDRAWN
        assert result.entity.closed_at == clock.now()
        assert result.entity.is_active is False
        with pytest.raises(InvalidTransition):
            await engine.cases.dismiss(case.id, "Already withdrawn")


# =============================================================================
# Resolution & Closure
# =============================================================================

class TestResolution:

    @pytest.mark.asyncio
    async def test_award_bearing_resolution_needs_amount(self, engine, decision_pending_case):
        case = await decision_pending_case()
        assert case.status == CaseStatus.DECISION_PENDING
        with pytest.raises(InvalidState):
            await engine.cases.resolve(case.id, ResolutionType.ARBITRATION_AWARD)
        result = await engine.cases.resolve(case.id, ResolutionType.ARBITRATION_AWARD,
                                            awarded_amount=Decimal("2500"))
        assert result.entity.status == CaseStatus.RESOLVED
        assert result.entity.awarded_amount == Decimal("2500")

    @pytest.mark.asyncio
    async def test_close_requires_closing_capability(self, engine, decision_pending_case, seed_officer):
        case = await decision_pending_case()
        await engine.cases.resolve(case.id, ResolutionType.SETTLEMENT, "Parties settled")
        await seed_officer("clerk", can_close_cases=False)
        with pytest.raises(InvalidState):
            await engine.cases.close(case.id, closing_officer_id="clerk")
        result = await engine.cases.close(case.id)
        assert result.entity.status == CaseStatus.CLOSED
        assert result.entity.is_active is False

    @pytest.mark.asyncio
    async def test_reopen_within_grace_window(self, engine, seed_case, clock):
        case = await seed_case()
        await engine.cases.dismiss(case.id, "Out of jurisdiction")
        clock.advance(days=10)
        result = await engine.cases.reopen(case.id, "New evidence")
        assert result.entity.status == CaseStatus.REOPENED
        assert result.entity.closed_at is None
        assert result.entity.is_active is True

    @pytest.mark.asyncio
    async def test_reopen_after_grace_window(self, engine, seed_case, clock):
        case = await seed_case()
        await engine.cases.dismiss(case.id, "Out of jurisdiction")
        clock.advance(days=31)
        with pytest.raises(InvalidState):
            await engine.cases.reopen(case.id, "Too late")

    @pytest.mark.asyncio
    async def test_reopen_refused_without_policy(self, repository, clock, sink, seed_case):
        case = await seed_case()
        no_window = LifecycleEngine(repository, clock=clock, history=sink, policy=LifecyclePolicy())
        await no_window.cases.withdraw(case.id, "Changed mind")
        with pytest.raises(InvalidState):
            await no_window.cases.reopen(case.id, "Changed mind again")


# =============================================================================
# Mediator Capacity
# =============================================================================

class TestMediatorAssignment:

    @pytest.mark.asyncio
    async def test_assignment_counts_cases(self, engine, seed_case, seed_mediator, repository):
        await seed_mediator("mediator-1", max_active_cases=2)
        case = await seed_case()
        await engine.cases.assign_mediator(case.id, "mediator-1")
        assert (await repository.get(Mediator, "mediator-1")).current_active_cases == 1

    @pytest.mark.asyncio
    async def test_full_mediator_refused_and_counter_unchanged(self, engine, seed_case, seed_mediator, repository):
        await seed_mediator("mediator-1", max_active_cases=2)
        for _ in range(2):
            case = await seed_case()
            await engine.cases.assign_mediator(case.id, "mediator-1")
        assert (await repository.get(Mediator, "mediator-1")).current_active_cases == 2

        extra = await seed_case()
        with pytest.raises(CapacityExceeded):
            await engine.cases.assign_mediator(extra.id, "mediator-1")
        assert (await repository.get(Mediator, "mediator-1")).current_active_cases == 2
        assert (await repository.get(Case, extra.id)).assigned_mediator_id is None

    @pytest.mark.asyncio
    async def test_withdrawal_releases_capacity(self, engine, seed_case, seed_mediator, repository):
        await seed_mediator("mediator-1", max_active_cases=1)
        first = await seed_case()
        await engine.cases.assign_mediator(first.id, "mediator-1")
        await engine.cases.withdraw(first.id, "Resolved informally")
        assert (await repository.get(Mediator, "mediator-1")).current_active_cases == 0

        second = await seed_case()
        await engine.cases.assign_mediator(second.id, "mediator-1")
        assert (await repository.get(Mediator, "mediator-1")).current_active_cases == 1

    @pytest.mark.asyncio
    async def test_reopen_refused_when_mediator_full(self, engine, seed_case, seed_mediator, repository):
        """A reopened case rejoins its mediator's load, so a full mediator blocks the reopen."""
        await seed_mediator("mediator-1", max_active_cases=1)
        first = await seed_case()
        await engine.cases.assign_mediator(first.id, "mediator-1")
        await engine.cases.withdraw(first.id, "Parties talking again")
        second = await seed_case()
        await engine.cases.assign_mediator(second.id, "mediator-1")

        with pytest.raises(CapacityExceeded):
            await engine.cases.reopen(first.id, "Talks broke down")
        assert (await repository.get(Case, first.id)).status == CaseStatus.WITHDRAWN
        assert (await repository.get(Mediator, "mediator-1")).current_active_cases == 1

    @pytest.mark.asyncio
    async def test_reopen_with_spare_capacity_recounts(self, engine, seed_case, seed_mediator, repository):
        await seed_mediator("mediator-1", max_active_cases=2)
        case = await seed_case()
        await engine.cases.assign_mediator(case.id, "mediator-1")
        await engine.cases.withdraw(case.id, "Parties talking again")
        assert (await repository.get(Mediator, "mediator-1")).current_active_cases == 0

        await engine.cases.reopen(case.id, "Talks broke down")
        assert (await repository.get(Case, case.id)).status == CaseStatus.REOPENED
        assert (await repository.get(Mediator, "mediator-1")).current_active_cases == 1

    @pytest.mark.asyncio
    async def test_reassignment_recounts_previous(self, engine, seed_case, seed_mediator, repository):
        await seed_mediator("mediator-1")
        await seed_mediator("mediator-2")
        case = await seed_case()
        await engine.cases.assign_mediator(case.id, "mediator-1")
        await engine.cases.assign_mediator(case.id, "mediator-2")
        assert (await repository.get(Mediator, "mediator-1")).current_active_cases == 0
        assert (await repository.get(Mediator, "mediator-2")).current_active_cases == 1

    @pytest.mark.asyncio
    async def test_inactive_mediator_refused(self, engine, seed_case, seed_mediator):
        await seed_mediator("mediator-1", is_active=False)
        case = await seed_case()
        with pytest.raises(InvalidState):
            await engine.cases.assign_mediator(case.id, "mediator-1")

    @pytest.mark.asyncio
    async def test_duplicate_participant(self, engine, seed_case):
        case = await seed_case()
        await engine.cases.add_participant(case.id, "witness-1", "Yaw Owusu", ParticipantType.WITNESS)
        with pytest.raises(InvalidState):
            await engine.cases.add_participant(case.id, "witness-1", "Yaw Owusu", ParticipantType.WITNESS)
