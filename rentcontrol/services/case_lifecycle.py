"""
Case Lifecycle Controller

Drives a Case through its twelve-state workflow, from draft to closure (or
withdrawal / dismissal) and back through reopening. Each status change stages
exactly one CaseUpdate of type "StatusChange" in the same unit as the case.

Officer and mediator assignment live here too. Mediator active-case counters
are recounted from the cases themselves inside the assigning unit, so the
counter and the assignment it guards always commit together.

The hearing scheduler and mediation controller reuse apply_transition and
assign_mediator_in_unit to move a case inside their own units of work.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional

from rentcontrol.core.errors import (
    CapacityExceeded,
    InvalidState,
    InvalidValue,
    NotFound,
)
from rentcontrol.models.entities import (
    Case,
    CaseParticipant,
    CaseUpdate,
    Hearing,
    Mediator,
    Property,
    TenancyAgreement,
)
from rentcontrol.models.enums import (
    TERMINAL_CASE_STATUSES,
    CasePriority,
    CaseStatus,
    CaseType,
    HearingStatus,
    ParticipantType,
    ResolutionType,
)
from rentcontrol.services.controller import (
    LifecycleController,
    TransitionResult,
    require_text,
    state_label,
)
from rentcontrol.services.history import AuditEntry
from rentcontrol.services.numbering import next_case_number
from rentcontrol.services.transitions import CASE_TRANSITIONS, NON_TERMINAL_CASE_STATUSES
from rentcontrol.storage.base import UnitOfWork

logger = logging.getLogger(__name__)

STATUS_CHANGE = "StatusChange"

CRITICAL_CASE_TYPES = {
    CaseType.ILLEGAL_EVICTION,
    CaseType.HARASSMENT,
    CaseType.HEALTH_AND_SAFETY,
}
HIGH_PRIORITY_ARREARS_THRESHOLD = Decimal("5000")

CONTACT_FIELDS = ("id", "name", "phone", "email")


@dataclass
class Party:
    """Identity and contact details of a complainant or respondent."""
    id: str = ""
    name: str = ""
    phone: str = ""
    email: str = ""


def determine_priority(case_type: CaseType, claim_amount: Optional[Decimal]) -> CasePriority:
    if case_type in CRITICAL_CASE_TYPES:
        return CasePriority.CRITICAL
    if case_type == CaseType.RENT_ARREARS and claim_amount is not None \
            and claim_amount > HIGH_PRIORITY_ARREARS_THRESHOLD:
        return CasePriority.HIGH
    if case_type == CaseType.REPAIR_NEGLECT:
        return CasePriority.HIGH
    return CasePriority.MEDIUM


def missing_contact_fields(case: Case) -> List[str]:
    missing = []
    for role in ("complainant", "respondent"):
        for name in CONTACT_FIELDS:
            if not (getattr(case, f"{role}_{name}") or "").strip():
                missing.append(f"{role}_{name}")
    return missing


class CaseLifecycleController(LifecycleController):

    # =========================================================================
    # In-unit building blocks (shared with hearings and mediation)
    # =========================================================================

    async def stage_update(
        self,
        uow: UnitOfWork,
        case: Case,
        update_type: str,
        description: str = "",
        old_value=None,
        new_value=None,
        actor: Optional[str] = None,
    ) -> CaseUpdate:
        existing = await uow.query(CaseUpdate, case_id=case.id)
        return uow.add(
            CaseUpdate(
                case_id=case.id,
                sequence=len(existing) + 1,
                update_type=update_type,
                description=description,
                old_value=state_label(old_value),
                new_value=state_label(new_value),
                created_at=self.now(),
                created_by=actor,
            )
        )

    async def apply_transition(
        self,
        uow: UnitOfWork,
        case: Case,
        event: str,
        actor: Optional[str] = None,
        description: str = "",
    ) -> AuditEntry:
        """
        Validate and apply one case event inside the caller's unit.

        Stages the case and its StatusChange update; the caller commits.
        Raises before mutating anything when the table or a guard refuses.
        """
        old_status = case.status
        new_status = CASE_TRANSITIONS.next_state(old_status, event, case.id)
        await self._guard(uow, case, event)

        case.status = new_status
        now = self.now()
        if event == "submit":
            case.submitted_at = now
        elif event == "resolve":
            case.resolution_date = now
        elif new_status in TERMINAL_CASE_STATUSES:
            case.closed_at = now
            case.is_active = False
        elif event == "reopen":
            case.closed_at = None
            case.is_active = True
        self.touch(uow, case, actor)

        await self.stage_update(uow, case, STATUS_CHANGE, description or f"{event}",
                                old_status, new_status, actor)
        if case.assigned_mediator_id and (new_status in TERMINAL_CASE_STATUSES or event == "reopen"):
            await self.recount_mediator(uow, case.assigned_mediator_id)

        logger.debug("Case %s staged %s: %s -> %s", case.id, event, old_status.value, new_status.value)
        return self.audit(case, STATUS_CHANGE, old_status, new_status, actor)

    async def _guard(self, uow: UnitOfWork, case: Case, event: str) -> None:
        if event == "submit":
            missing = missing_contact_fields(case)
            if missing:
                raise self._refuse(case, event, f"missing required fields: {', '.join(missing)}")

        elif event == "open_investigation" and case.status == CaseStatus.UNDER_REVIEW:
            if not case.assigned_officer_id:
                raise self._refuse(case, event, "an officer must be assigned before investigation")
            officer = await self.identity.get_officer(case.assigned_officer_id)
            if officer is None or not officer.is_active:
                raise self._refuse(case, event, f"assigned officer {case.assigned_officer_id} is not active")
            if self.policy.officer_assign_requires_capability and not officer.can_assign_cases:
                raise self._refuse(case, event, f"officer {officer.id} may not take case assignments")

        elif event == "schedule_hearing":
            scheduled = await uow.query(Hearing, case_id=case.id, status=HearingStatus.SCHEDULED)
            if not scheduled:
                raise self._refuse(case, event, "no scheduled hearing exists for this case")

        elif event == "resolve":
            if case.resolution is None:
                raise self._refuse(case, event, "a resolution is required")
            if self.policy.requires_award(case.resolution) and case.awarded_amount is None:
                raise self._refuse(case, event, f"{case.resolution.value} requires an awarded amount")

        elif event == "reopen":
            grace = self.policy.reopen_grace_period
            if grace is None:
                raise self._refuse(case, event, "no reopen grace window is configured")
            if case.closed_at is None or self.now() - case.closed_at > grace:
                raise self._refuse(case, event, "the reopen grace window has elapsed")
            if case.assigned_mediator_id:
                # the case is still finished here, so the recount excludes it
                mediator = await self.recount_mediator(uow, case.assigned_mediator_id)
                if mediator.current_active_cases >= mediator.max_active_cases:
                    raise CapacityExceeded(
                        f"Mediator {mediator.id} already has {mediator.current_active_cases} "
                        f"of {mediator.max_active_cases} active cases",
                        entity_type="Mediator",
                        entity_id=mediator.id,
                        current_state=str(mediator.current_active_cases),
                        attempted="reopen",
                    )

    @staticmethod
    def _refuse(case: Case, event: str, message: str) -> InvalidState:
        return InvalidState(
            message,
            entity_type="Case",
            entity_id=case.id,
            current_state=case.status.value,
            attempted=event,
        )

    async def recount_mediator(self, uow: UnitOfWork, mediator_id: str) -> Mediator:
        """Set the mediator's counter to the open cases assigned to them, as seen by this unit."""
        mediator = await uow.get(Mediator, mediator_id)
        open_cases = await uow.query(
            Case, assigned_mediator_id=mediator_id, status=NON_TERMINAL_CASE_STATUSES, is_active=True
        )
        if mediator.current_active_cases != len(open_cases):
            mediator.current_active_cases = len(open_cases)
            mediator.touch(None, self.now())
            uow.save(mediator)
        return mediator

    async def assign_mediator_in_unit(
        self,
        uow: UnitOfWork,
        case: Case,
        mediator_id: str,
        actor: Optional[str] = None,
    ) -> List[AuditEntry]:
        if case.status in TERMINAL_CASE_STATUSES:
            raise self._refuse(case, "assign_mediator", "cannot assign a mediator to a finished case")
        if case.assigned_mediator_id == mediator_id:
            return []

        profile = await self.identity.get_mediator(mediator_id)
        if profile is None:
            raise NotFound(f"Mediator {mediator_id} not found", entity_type="Mediator", entity_id=mediator_id)
        if not profile.is_active:
            raise InvalidState(
                f"Mediator {mediator_id} is not active",
                entity_type="Mediator",
                entity_id=mediator_id,
                attempted="assign_mediator",
            )

        mediator = await self.recount_mediator(uow, mediator_id)
        if mediator.current_active_cases >= mediator.max_active_cases:
            raise CapacityExceeded(
                f"Mediator {mediator_id} already has {mediator.current_active_cases} "
                f"of {mediator.max_active_cases} active cases",
                entity_type="Mediator",
                entity_id=mediator_id,
                current_state=str(mediator.current_active_cases),
                attempted="assign_mediator",
            )

        previous = case.assigned_mediator_id
        case.assigned_mediator_id = mediator_id
        self.touch(uow, case, actor)
        await self.recount_mediator(uow, mediator_id)
        if previous:
            await self.recount_mediator(uow, previous)

        await self.stage_update(uow, case, "MediatorAssigned", f"Mediator {profile.full_name} assigned",
                                previous, mediator_id, actor)
        return [self.audit(case, "MEDIATOR_ASSIGNED", previous, mediator_id, actor)]

    # =========================================================================
    # Creation
    # =========================================================================

    async def create_case(
        self,
        case_type: CaseType,
        title: str,
        complainant: Party,
        respondent: Party,
        description: str = "",
        property_id: Optional[str] = None,
        agreement_id: Optional[str] = None,
        incident_date: Optional[date] = None,
        claim_amount: Optional[Decimal] = None,
        actor: Optional[str] = None,
    ) -> TransitionResult[Case]:
        title = require_text(title, "title")
        if claim_amount is not None and claim_amount < 0:
            raise InvalidValue("claim_amount cannot be negative", entity_type="Case")

        async with self.repository.unit_of_work() as uow:
            address = None
            if property_id:
                prop = await uow.get(Property, property_id)
                address = prop.address
            if agreement_id:
                agreement = await uow.get(TenancyAgreement, agreement_id)
                if property_id and agreement.property_id != property_id:
                    raise InvalidState(
                        f"Agreement {agreement.agreement_number} is not for property {property_id}",
                        entity_type="TenancyAgreement",
                        entity_id=agreement.id,
                        attempted="create_case",
                    )

            now = self.now()
            case = uow.add(
                Case(
                    case_number=await next_case_number(uow, case_type, now),
                    case_type=case_type,
                    title=title,
                    description=description,
                    complainant_id=complainant.id,
                    complainant_name=complainant.name,
                    complainant_phone=complainant.phone,
                    complainant_email=complainant.email,
                    respondent_id=respondent.id,
                    respondent_name=respondent.name,
                    respondent_phone=respondent.phone,
                    respondent_email=respondent.email,
                    property_id=property_id,
                    agreement_id=agreement_id,
                    property_address=address,
                    priority=determine_priority(case_type, claim_amount),
                    incident_date=incident_date,
                    claim_amount=claim_amount,
                    created_at=now,
                    created_by=actor,
                )
            )
            participants = []
            for party, kind, primary in (
                (complainant, ParticipantType.COMPLAINANT, True),
                (respondent, ParticipantType.RESPONDENT, False),
            ):
                if party.id:
                    participants.append(uow.add(
                        CaseParticipant(
                            case_id=case.id,
                            participant_id=party.id,
                            name=party.name,
                            email=party.email or None,
                            phone=party.phone or None,
                            participant_type=kind,
                            is_primary_contact=primary,
                            created_at=now,
                            created_by=actor,
                        )
                    ))
            await self.stage_update(uow, case, "Created", f"Case {case.case_number} created",
                                    None, case.status, actor)

            result = TransitionResult(case, "create", None, case.status.value, created=participants)
            return await self._commit(uow, result, [self.audit(case, "CREATED", None, case.status, actor)])

    # =========================================================================
    # Status transitions
    # =========================================================================

    async def _transition(
        self,
        case_id: str,
        event: str,
        actor: Optional[str],
        description: str = "",
        prepare=None,
    ) -> TransitionResult[Case]:
        async with self.repository.unit_of_work() as uow:
            case = await uow.get(Case, case_id)
            old_status = case.status
            if prepare is not None:
                await prepare(uow, case)
            audit = [await self.apply_transition(uow, case, event, actor, description)]
            result = TransitionResult(case, event, old_status.value, case.status.value)
            return await self._commit(uow, result, audit)

    async def submit(self, case_id: str, actor: Optional[str] = None) -> TransitionResult[Case]:
        return await self._transition(case_id, "submit", actor, "Case submitted")

    async def begin_review(self, case_id: str, actor: Optional[str] = None) -> TransitionResult[Case]:
        return await self._transition(case_id, "begin_review", actor, "Review started")

    async def open_investigation(self, case_id: str, actor: Optional[str] = None) -> TransitionResult[Case]:
        return await self._transition(case_id, "open_investigation", actor, "Investigation opened")

    async def resolve(
        self,
        case_id: str,
        resolution: ResolutionType,
        resolution_details: Optional[str] = None,
        awarded_amount: Optional[Decimal] = None,
        actor: Optional[str] = None,
    ) -> TransitionResult[Case]:
        if awarded_amount is not None and awarded_amount < 0:
            raise InvalidValue("awarded_amount cannot be negative", entity_type="Case", entity_id=case_id)

        async def prepare(uow: UnitOfWork, case: Case) -> None:
            CASE_TRANSITIONS.next_state(case.status, "resolve", case.id)
            case.resolution = resolution
            case.resolution_details = resolution_details
            if awarded_amount is not None:
                case.awarded_amount = awarded_amount

        return await self._transition(case_id, "resolve", actor, f"Resolved by {resolution.value}", prepare)

    async def close(
        self,
        case_id: str,
        closing_officer_id: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> TransitionResult[Case]:
        """
        Resolved -> Closed.

        The closing officer defaults to the assigned officer and must hold
        can_close_cases.
        """
        async def prepare(uow: UnitOfWork, case: Case) -> None:
            CASE_TRANSITIONS.next_state(case.status, "close", case.id)
            officer_id = closing_officer_id or case.assigned_officer_id
            if not officer_id:
                raise self._refuse(case, "close", "a closing officer is required")
            officer = await self.identity.get_officer(officer_id)
            if officer is None:
                raise NotFound(f"Officer {officer_id} not found", entity_type="Officer", entity_id=officer_id)
            if not officer.is_active or not officer.can_close_cases:
                raise self._refuse(case, "close", f"officer {officer_id} may not close cases")

        return await self._transition(case_id, "close", actor, "Case closed", prepare)

    async def withdraw(self, case_id: str, reason: str, actor: Optional[str] = None) -> TransitionResult[Case]:
        reason = require_text(reason, "withdrawal reason")
        return await self._transition(case_id, "withdraw", actor, reason)

    async def dismiss(self, case_id: str, reason: str, actor: Optional[str] = None) -> TransitionResult[Case]:
        reason = require_text(reason, "dismissal reason")
        return await self._transition(case_id, "dismiss", actor, reason)

    async def reopen(self, case_id: str, reason: str, actor: Optional[str] = None) -> TransitionResult[Case]:
        reason = require_text(reason, "reopen reason")
        return await self._transition(case_id, "reopen", actor, reason)

    # =========================================================================
    # Assignment & participants
    # =========================================================================

    async def assign_officer(self, case_id: str, officer_id: str, actor: Optional[str] = None) -> TransitionResult[Case]:
        officer = await self.identity.get_officer(officer_id)
        if officer is None:
            raise NotFound(f"Officer {officer_id} not found", entity_type="Officer", entity_id=officer_id)
        if not officer.is_active:
            raise InvalidState(
                f"Officer {officer_id} is not active",
                entity_type="Officer",
                entity_id=officer_id,
                attempted="assign_officer",
            )
        if self.policy.officer_assign_requires_capability and not officer.can_assign_cases:
            raise InvalidState(
                f"Officer {officer_id} may not take case assignments",
                entity_type="Officer",
                entity_id=officer_id,
                attempted="assign_officer",
            )

        async with self.repository.unit_of_work() as uow:
            case = await uow.get(Case, case_id)
            if case.status in TERMINAL_CASE_STATUSES:
                raise self._refuse(case, "assign_officer", "cannot assign an officer to a finished case")
            previous = case.assigned_officer_id
            case.assigned_officer_id = officer.id
            self.touch(uow, case, actor)
            await self.stage_update(uow, case, "OfficerAssigned", f"Officer {officer.full_name} assigned",
                                    previous, officer.id, actor)
            result = TransitionResult(case, "assign_officer", case.status.value, case.status.value)
            audit = [self.audit(case, "OFFICER_ASSIGNED", previous, officer.id, actor)]
            return await self._commit(uow, result, audit)

    async def assign_mediator(self, case_id: str, mediator_id: str, actor: Optional[str] = None) -> TransitionResult[Case]:
        async with self.repository.unit_of_work() as uow:
            case = await uow.get(Case, case_id)
            audit = await self.assign_mediator_in_unit(uow, case, mediator_id, actor)
            result = TransitionResult(case, "assign_mediator", case.status.value, case.status.value)
            return await self._commit(uow, result, audit)

    async def add_participant(
        self,
        case_id: str,
        participant_id: str,
        name: str,
        participant_type: ParticipantType,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        is_primary_contact: bool = False,
        actor: Optional[str] = None,
    ) -> TransitionResult[CaseParticipant]:
        participant_id = require_text(participant_id, "participant_id")
        name = require_text(name, "name")
        async with self.repository.unit_of_work() as uow:
            case = await uow.get(Case, case_id)
            if case.status in TERMINAL_CASE_STATUSES:
                raise self._refuse(case, "add_participant", "cannot add participants to a finished case")
            if await uow.query(CaseParticipant, case_id=case.id, participant_id=participant_id, is_active=True):
                raise InvalidState(
                    f"{participant_id} is already a participant",
                    entity_type="CaseParticipant",
                    entity_id=participant_id,
                    attempted="add_participant",
                )
            participant = uow.add(
                CaseParticipant(
                    case_id=case.id,
                    participant_id=participant_id,
                    name=name,
                    email=email,
                    phone=phone,
                    participant_type=participant_type,
                    is_primary_contact=is_primary_contact,
                    created_at=self.now(),
                    created_by=actor,
                )
            )
            self.touch(uow, case, actor)
            await self.stage_update(uow, case, "ParticipantAdded", f"{name} added as {participant_type.value}",
                                    None, participant_id, actor)
            result = TransitionResult(participant, "add_participant", None, participant_type.value)
            return await self._commit(uow, result, [self.audit(case, "PARTICIPANT_ADDED", None, participant_id, actor)])

    # =========================================================================
    # Reads
    # =========================================================================

    async def updates(self, case_id: str) -> List[CaseUpdate]:
        await self.repository.get(Case, case_id)
        entries = await self.repository.query(CaseUpdate, case_id=case_id)
        return sorted(entries, key=lambda entry: entry.sequence)

    async def status_changes(self, case_id: str) -> List[CaseUpdate]:
        return [update for update in await self.updates(case_id) if update.update_type == STATUS_CHANGE]
