"""
Mediation Session Controller

Mediation sessions follow the hearing pattern (requested, scheduled, in
progress, adjourned) and end completed, successful, failed or cancelled.

An agreed outcome only proposes a resolution: the proposal is handed to the
case controller's resolve() in its own unit, and a refusal there is logged and
reported on the result instead of being forced through.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, time
from decimal import Decimal
from typing import Optional

from rentcontrol.core.errors import InvalidState, InvalidTimeRange, InvalidValue, LifecycleError
from rentcontrol.models.entities import Case, MediationSession
from rentcontrol.models.enums import TERMINAL_CASE_STATUSES, MediationStatus, ResolutionType
from rentcontrol.services.case_lifecycle import CaseLifecycleController
from rentcontrol.services.controller import LifecycleController, TransitionResult
from rentcontrol.services.numbering import MEDIATION_PREFIX, next_number
from rentcontrol.services.transitions import MEDIATION_TRANSITIONS

logger = logging.getLogger(__name__)

OUTCOME_STATUSES = {MediationStatus.COMPLETED, MediationStatus.SUCCESSFUL}


@dataclass(frozen=True)
class CaseResolutionProposal:
    case_id: str
    session_id: str
    resolution: ResolutionType
    resolution_details: str
    awarded_amount: Optional[Decimal] = None


@dataclass
class OutcomeResult(TransitionResult[MediationSession]):
    """Result of record_outcome, with what happened to the resolution proposal."""
    proposal: Optional[CaseResolutionProposal] = None
    case_result: Optional[TransitionResult[Case]] = None
    proposal_error: Optional[LifecycleError] = field(default=None)

    @property
    def proposal_accepted(self) -> bool:
        return self.case_result is not None


class MediationController(LifecycleController):

    def __init__(self, *args, cases: CaseLifecycleController, **kwargs):
        super().__init__(*args, **kwargs)
        self.cases = cases

    async def request_session(
        self,
        case_id: str,
        title: str = "",
        actor: Optional[str] = None,
    ) -> TransitionResult[MediationSession]:
        async with self.repository.unit_of_work() as uow:
            case = await uow.get(Case, case_id)
            if not case.is_active or case.status in TERMINAL_CASE_STATUSES:
                raise InvalidState(
                    f"Case {case.case_number} is {case.status.value}",
                    entity_type="Case",
                    entity_id=case.id,
                    current_state=case.status.value,
                    attempted="request_mediation",
                )
            now = self.now()
            session = uow.add(MediationSession(
                case_id=case.id,
                session_number=await next_number(uow, MEDIATION_PREFIX, now),
                title=title or f"Mediation for {case.case_number}",
                requested_date=now,
                created_at=now,
                created_by=actor,
            ))
            await self.cases.stage_update(uow, case, "MediationRequested", session.title,
                                          None, session.session_number, actor)
            result = TransitionResult(session, "request", None, session.status.value)
            return await self._commit(uow, result, [self.audit(session, "REQUESTED", None, session.status, actor)])

    async def schedule_session(
        self,
        session_id: str,
        mediator_id: str,
        scheduled_date: date,
        start_time: time,
        end_time: time,
        location: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> TransitionResult[MediationSession]:
        """
        Requested -> Scheduled.

        When the mediator is not yet on the case, they are assigned in the
        same unit, capacity check and counter included.
        """
        if end_time <= start_time:
            raise InvalidTimeRange(
                f"end_time {end_time:%H:%M} must be after start_time {start_time:%H:%M}",
                entity_type="MediationSession",
                entity_id=session_id,
                attempted="schedule",
            )
        async with self.repository.unit_of_work() as uow:
            session = await uow.get(MediationSession, session_id)
            old_status = session.status
            new_status = MEDIATION_TRANSITIONS.next_state(old_status, "schedule", session.id)
            case = await uow.get(Case, session.case_id)

            audit = await self.cases.assign_mediator_in_unit(uow, case, mediator_id, actor)
            session.assigned_mediator_id = mediator_id
            session.scheduled_date = scheduled_date
            session.start_time = start_time
            session.end_time = end_time
            session.location = location
            session.status = new_status
            self.touch(uow, session, actor)

            audit.insert(0, self.audit(session, "SCHEDULED", old_status, new_status, actor))
            result = TransitionResult(session, "schedule", old_status.value, new_status.value)
            return await self._commit(uow, result, audit)

    async def _advance(
        self,
        session_id: str,
        event: str,
        actor: Optional[str],
        notes: Optional[str] = None,
        **changes,
    ) -> TransitionResult[MediationSession]:
        async with self.repository.unit_of_work() as uow:
            session = await uow.get(MediationSession, session_id)
            old_status = session.status
            session.status = MEDIATION_TRANSITIONS.next_state(old_status, event, session.id)
            for name, value in changes.items():
                setattr(session, name, value)
            if notes:
                session.mediator_notes = notes
            if session.status in OUTCOME_STATUSES and session.completed_at is None:
                session.completed_at = self.now()
            self.touch(uow, session, actor)
            result = TransitionResult(session, event, old_status.value, session.status.value)
            audit = [self.audit(session, event.upper(), old_status, session.status, actor)]
            return await self._commit(uow, result, audit)

    async def start_session(self, session_id: str, actor: Optional[str] = None):
        return await self._advance(session_id, "start", actor)

    async def adjourn_session(self, session_id: str, notes: Optional[str] = None, actor: Optional[str] = None):
        return await self._advance(session_id, "adjourn", actor, notes)

    async def reconvene_session(
        self,
        session_id: str,
        scheduled_date: date,
        start_time: time,
        end_time: time,
        actor: Optional[str] = None,
    ):
        if end_time <= start_time:
            raise InvalidTimeRange(
                f"end_time {end_time:%H:%M} must be after start_time {start_time:%H:%M}",
                entity_type="MediationSession",
                entity_id=session_id,
                attempted="reconvene",
            )
        return await self._advance(
            session_id, "reconvene", actor,
            scheduled_date=scheduled_date, start_time=start_time, end_time=end_time,
        )

    async def complete_session(self, session_id: str, outcome_summary: Optional[str] = None,
                               actor: Optional[str] = None):
        return await self._advance(session_id, "complete", actor, outcome_summary=outcome_summary)

    async def cancel_session(self, session_id: str, reason: Optional[str] = None, actor: Optional[str] = None):
        return await self._advance(session_id, "cancel", actor, reason)

    async def fail_session(self, session_id: str, notes: Optional[str] = None, actor: Optional[str] = None):
        return await self._advance(session_id, "fail", actor, notes)

    async def mark_successful(self, session_id: str, notes: Optional[str] = None, actor: Optional[str] = None):
        return await self._advance(session_id, "succeed", actor, notes)

    async def record_outcome(
        self,
        session_id: str,
        agreement_reached: bool,
        agreement_summary: Optional[str] = None,
        outcome_summary: Optional[str] = None,
        complainant_satisfied: Optional[bool] = None,
        respondent_satisfied: Optional[bool] = None,
        awarded_amount: Optional[Decimal] = None,
        actor: Optional[str] = None,
    ) -> OutcomeResult:
        """
        Record the outcome of a completed or successful session.

        With an agreement, a CaseResolutionProposal is submitted to the case
        controller after the outcome is committed. The outcome stands whether
        or not the case accepts the proposal.
        """
        async with self.repository.unit_of_work() as uow:
            session = await uow.get(MediationSession, session_id)
            if session.status not in OUTCOME_STATUSES:
                raise InvalidState(
                    f"Outcomes need a completed or successful session, not {session.status.value}",
                    entity_type="MediationSession",
                    entity_id=session.id,
                    current_state=session.status.value,
                    attempted="record_outcome",
                )
            summary = (agreement_summary or "").strip()
            if agreement_reached and not summary:
                raise InvalidValue(
                    "agreement_summary is required when an agreement is reached",
                    entity_type="MediationSession",
                    entity_id=session.id,
                    attempted="record_outcome",
                )

            session.agreement_reached = agreement_reached
            session.agreement_summary = summary or None
            if outcome_summary is not None:
                session.outcome_summary = outcome_summary
            session.complainant_satisfied = complainant_satisfied
            session.respondent_satisfied = respondent_satisfied
            self.touch(uow, session, actor)

            result = OutcomeResult(session, "record_outcome", session.status.value, session.status.value)
            audit = [self.audit(session, "OUTCOME_RECORDED", None,
                                "agreement" if agreement_reached else "no_agreement", actor)]
            await self._commit(uow, result, audit)

        if not agreement_reached:
            return result

        result.proposal = CaseResolutionProposal(
            case_id=session.case_id,
            session_id=session.id,
            resolution=ResolutionType.MEDIATION_AGREEMENT,
            resolution_details=summary,
            awarded_amount=awarded_amount,
        )
        try:
            result.case_result = await self.cases.resolve(
                result.proposal.case_id,
                result.proposal.resolution,
                resolution_details=result.proposal.resolution_details,
                awarded_amount=result.proposal.awarded_amount,
                actor=actor,
            )
        except LifecycleError as e:
            logger.warning(
                "Case %s did not accept mediation resolution from %s: %s",
                session.case_id, session.session_number, e.message,
            )
            result.proposal_error = e
            result.warnings.append(f"resolution proposal rejected: {e.message}")
        return result
