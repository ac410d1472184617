"""
Hearing Scheduler

Creates hearings for cases that are ready for them, keeps presiding officers
from being double-booked, mirrors hearing progress onto the case, and tracks
participant attendance.

Officer bookings are guarded by an OfficerDocket entity (one per officer per
day) written in the same unit as the hearing. Two concurrent bookings for the
same officer and day therefore collide on the docket version and the loser
gets a Conflict instead of an overlapping hearing.
"""

import logging
from datetime import date, datetime, time
from typing import List, Optional

from rentcontrol.core.errors import (
    CaseNotReady,
    InvalidState,
    InvalidTimeRange,
    NotFound,
    OfficerUnavailable,
)
from rentcontrol.models.entities import Case, Hearing, HearingParticipant, OfficerDocket
from rentcontrol.models.enums import CaseStatus, HearingStatus, ParticipantType
from rentcontrol.services.case_lifecycle import CaseLifecycleController
from rentcontrol.services.controller import LifecycleController, TransitionResult, require_text
from rentcontrol.services.history import AuditEntry
from rentcontrol.services.numbering import HEARING_PREFIX, next_number
from rentcontrol.services.transitions import CASE_TRANSITIONS, HEARING_TRANSITIONS
from rentcontrol.storage.base import UnitOfWork

logger = logging.getLogger(__name__)

HEARING_READY_CASE_STATUSES = {
    CaseStatus.INVESTIGATION,
    CaseStatus.SCHEDULED_FOR_HEARING,
    CaseStatus.REOPENED,
}
HEARING_RUNNING_CASE_STATUSES = {
    CaseStatus.SCHEDULED_FOR_HEARING,
    CaseStatus.HEARING_IN_PROGRESS,
}
# Cases that may have hearings moved onto a new date
BOOKABLE_CASE_STATUSES = HEARING_READY_CASE_STATUSES | HEARING_RUNNING_CASE_STATUSES
# Hearings that no longer occupy their officer's time
RELEASED_HEARING_STATUSES = {HearingStatus.CANCELLED, HearingStatus.RESCHEDULED}
FINISHED_HEARING_STATUSES = {HearingStatus.COMPLETED, HearingStatus.CANCELLED, HearingStatus.RESCHEDULED}
PENDING_HEARING_STATUSES = {HearingStatus.SCHEDULED, HearingStatus.IN_PROGRESS, HearingStatus.ADJOURNED}


def windows_overlap(start_a: time, end_a: time, start_b: time, end_b: time) -> bool:
    return start_a < end_b and start_b < end_a


class HearingScheduler(LifecycleController):

    def __init__(self, *args, cases: CaseLifecycleController, **kwargs):
        super().__init__(*args, **kwargs)
        self.cases = cases

    # =========================================================================
    # Officer bookings
    # =========================================================================

    async def _check_presiding_officer(self, officer_id: str) -> None:
        officer = await self.identity.get_officer(officer_id)
        if officer is None:
            raise NotFound(f"Officer {officer_id} not found", entity_type="Officer", entity_id=officer_id)
        if not officer.is_active or not officer.can_preside_hearings:
            raise InvalidState(
                f"Officer {officer_id} may not preside hearings",
                entity_type="Officer",
                entity_id=officer_id,
                attempted="preside",
            )

    async def _book(self, uow: UnitOfWork, hearing: Hearing) -> OfficerDocket:
        """Reserve the hearing's window on its officer's docket, or raise OfficerUnavailable."""
        key = OfficerDocket.key(hearing.presiding_officer_id, hearing.hearing_date)
        docket = await uow.find(OfficerDocket, key)
        if docket is None:
            docket = uow.add(OfficerDocket(
                id=key,
                officer_id=hearing.presiding_officer_id,
                docket_date=hearing.hearing_date,
                created_at=self.now(),
            ))

        same_day = await uow.query(
            Hearing,
            presiding_officer_id=hearing.presiding_officer_id,
            hearing_date=hearing.hearing_date,
        )
        for other in same_day:
            if other.id == hearing.id or other.status in RELEASED_HEARING_STATUSES:
                continue
            if windows_overlap(hearing.start_time, hearing.end_time, other.start_time, other.end_time):
                raise OfficerUnavailable(
                    f"Officer {hearing.presiding_officer_id} presides {other.hearing_number} "
                    f"from {other.start_time:%H:%M} to {other.end_time:%H:%M} on {other.hearing_date}",
                    entity_type="Hearing",
                    entity_id=other.id,
                    current_state=other.status.value,
                    attempted="schedule",
                )

        if hearing.id not in docket.hearing_ids:
            docket.hearing_ids.append(hearing.id)
        docket.touch(None, self.now())
        uow.save(docket)
        return docket

    async def _release(self, uow: UnitOfWork, hearing: Hearing) -> None:
        docket = await uow.find(OfficerDocket, OfficerDocket.key(hearing.presiding_officer_id, hearing.hearing_date))
        if docket is not None and hearing.id in docket.hearing_ids:
            docket.hearing_ids.remove(hearing.id)
            docket.touch(None, self.now())
            uow.save(docket)

    @staticmethod
    async def _ready_case(uow: UnitOfWork, case_id: str, statuses, attempted: str) -> Case:
        case = await uow.get(Case, case_id)
        if case.status not in statuses:
            raise CaseNotReady(
                f"Case {case.case_number} is {case.status.value}; hearings need "
                f"{', '.join(sorted(status.value for status in statuses))}",
                entity_type="Case",
                entity_id=case.id,
                current_state=case.status.value,
                attempted=attempted,
            )
        return case

    @staticmethod
    def _check_window(start_time: time, end_time: time) -> None:
        if end_time <= start_time:
            raise InvalidTimeRange(
                f"end_time {end_time:%H:%M} must be after start_time {start_time:%H:%M}",
                entity_type="Hearing",
                attempted="schedule",
            )

    # =========================================================================
    # Case mirroring
    # =========================================================================

    async def _other_hearings(self, uow: UnitOfWork, hearing: Hearing, statuses) -> List[Hearing]:
        return [
            other for other in await uow.query(Hearing, case_id=hearing.case_id, status=statuses)
            if other.id != hearing.id
        ]

    async def _mirror(self, uow: UnitOfWork, case: Case, event: str, actor: Optional[str]) -> List[AuditEntry]:
        if not CASE_TRANSITIONS.allows(case.status, event):
            return []
        return [await self.cases.apply_transition(uow, case, event, actor, f"Hearing {event.replace('_', ' ')}")]

    # =========================================================================
    # Scheduling
    # =========================================================================

    async def schedule_hearing(
        self,
        case_id: str,
        hearing_date: date,
        start_time: time,
        end_time: time,
        presiding_officer_id: str,
        location: str = "",
        title: str = "",
        virtual_meeting_link: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> TransitionResult[Hearing]:
        self._check_window(start_time, end_time)
        async with self.repository.unit_of_work() as uow:
            case = await self._ready_case(uow, case_id, HEARING_READY_CASE_STATUSES, "schedule_hearing")
            await self._check_presiding_officer(presiding_officer_id)

            now = self.now()
            hearing = Hearing(
                case_id=case.id,
                hearing_number=await next_number(uow, HEARING_PREFIX, now),
                title=title or f"Hearing for {case.case_number}",
                hearing_date=hearing_date,
                start_time=start_time,
                end_time=end_time,
                location=location,
                virtual_meeting_link=virtual_meeting_link,
                presiding_officer_id=presiding_officer_id,
                created_at=now,
                created_by=actor,
            )
            await self._book(uow, hearing)
            uow.add(hearing)

            audit = [self.audit(hearing, "SCHEDULED", None, hearing.status, actor)]
            audit += await self._mirror(uow, case, "schedule_hearing", actor)
            await self.cases.stage_update(uow, case, "HearingScheduled",
                                          f"{hearing.hearing_number} on {hearing_date} at {start_time:%H:%M}",
                                          None, hearing.hearing_number, actor)
            result = TransitionResult(hearing, "schedule", None, hearing.status.value)
            return await self._commit(uow, result, audit)

    async def reschedule(
        self,
        hearing_id: str,
        hearing_date: date,
        start_time: time,
        end_time: time,
        presiding_officer_id: Optional[str] = None,
        reason: str = "",
        actor: Optional[str] = None,
    ) -> TransitionResult[Hearing]:
        """Scheduled -> Rescheduled; a new scheduled hearing takes its place."""
        self._check_window(start_time, end_time)
        async with self.repository.unit_of_work() as uow:
            old = await uow.get(Hearing, hearing_id)
            old_status = old.status
            old.status = HEARING_TRANSITIONS.next_state(old_status, "reschedule", old.id)
            case = await self._ready_case(uow, old.case_id, BOOKABLE_CASE_STATUSES, "reschedule")
            officer_id = presiding_officer_id or old.presiding_officer_id
            await self._check_presiding_officer(officer_id)
            self.touch(uow, old, actor)
            await self._release(uow, old)

            now = self.now()
            replacement = Hearing(
                case_id=old.case_id,
                hearing_number=await next_number(uow, HEARING_PREFIX, now),
                title=old.title,
                hearing_date=hearing_date,
                start_time=start_time,
                end_time=end_time,
                location=old.location,
                virtual_meeting_link=old.virtual_meeting_link,
                presiding_officer_id=officer_id,
                rescheduled_from_id=old.id,
                created_at=now,
                created_by=actor,
            )
            await self._book(uow, replacement)
            uow.add(replacement)

            await self.cases.stage_update(uow, case, "HearingRescheduled",
                                          reason or f"{old.hearing_number} moved to {hearing_date}",
                                          old.hearing_number, replacement.hearing_number, actor)
            audit = [
                self.audit(old, "RESCHEDULED", old_status, old.status, actor),
                self.audit(replacement, "SCHEDULED", None, replacement.status, actor),
            ]
            result = TransitionResult(
                old, "reschedule", old_status.value, old.status.value,
                created=[replacement], details={"replacement_id": replacement.id},
            )
            return await self._commit(uow, result, audit)

    # =========================================================================
    # Hearing transitions
    # =========================================================================

    async def start(self, hearing_id: str, actor: Optional[str] = None) -> TransitionResult[Hearing]:
        async with self.repository.unit_of_work() as uow:
            hearing = await uow.get(Hearing, hearing_id)
            old_status = hearing.status
            new_status = HEARING_TRANSITIONS.next_state(old_status, "start", hearing.id)
            case = await self._ready_case(uow, hearing.case_id, HEARING_RUNNING_CASE_STATUSES, "start_hearing")

            hearing.status = new_status
            self.touch(uow, hearing, actor)
            audit = [self.audit(hearing, "STARTED", old_status, new_status, actor)]
            audit += await self._mirror(uow, case, "start_hearing", actor)
            result = TransitionResult(hearing, "start", old_status.value, new_status.value)
            return await self._commit(uow, result, audit)

    async def adjourn(self, hearing_id: str, minutes: Optional[str] = None,
                      actor: Optional[str] = None) -> TransitionResult[Hearing]:
        async with self.repository.unit_of_work() as uow:
            hearing = await uow.get(Hearing, hearing_id)
            old_status = hearing.status
            hearing.status = HEARING_TRANSITIONS.next_state(old_status, "adjourn", hearing.id)
            if minutes:
                hearing.minutes = minutes
            self.touch(uow, hearing, actor)

            audit = [self.audit(hearing, "ADJOURNED", old_status, hearing.status, actor)]
            case = await uow.get(Case, hearing.case_id)
            if not await self._other_hearings(uow, hearing, HearingStatus.IN_PROGRESS):
                audit += await self._mirror(uow, case, "adjourn_hearing", actor)
            result = TransitionResult(hearing, "adjourn", old_status.value, hearing.status.value)
            return await self._commit(uow, result, audit)

    async def reconvene(
        self,
        hearing_id: str,
        hearing_date: date,
        start_time: time,
        end_time: time,
        actor: Optional[str] = None,
    ) -> TransitionResult[Hearing]:
        """Adjourned -> Scheduled on a new date and window."""
        self._check_window(start_time, end_time)
        async with self.repository.unit_of_work() as uow:
            hearing = await uow.get(Hearing, hearing_id)
            old_status = hearing.status
            new_status = HEARING_TRANSITIONS.next_state(old_status, "reconvene", hearing.id)
            await self._ready_case(uow, hearing.case_id, BOOKABLE_CASE_STATUSES, "reconvene")
            await self._check_presiding_officer(hearing.presiding_officer_id)

            await self._release(uow, hearing)
            hearing.hearing_date = hearing_date
            hearing.start_time = start_time
            hearing.end_time = end_time
            hearing.status = new_status
            await self._book(uow, hearing)
            self.touch(uow, hearing, actor)

            audit = [self.audit(hearing, "RECONVENED", old_status, new_status, actor)]
            result = TransitionResult(hearing, "reconvene", old_status.value, new_status.value)
            return await self._commit(uow, result, audit)

    async def complete(
        self,
        hearing_id: str,
        outcome: Optional[str] = None,
        minutes: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> TransitionResult[Hearing]:
        """
        InProgress -> Completed.

        The case moves to decision_pending once no scheduled, running or
        adjourned hearing remains; otherwise it returns to scheduled_for_hearing.
        """
        async with self.repository.unit_of_work() as uow:
            hearing = await uow.get(Hearing, hearing_id)
            old_status = hearing.status
            hearing.status = HEARING_TRANSITIONS.next_state(old_status, "complete", hearing.id)
            hearing.outcome = outcome
            if minutes:
                hearing.minutes = minutes
            self.touch(uow, hearing, actor)

            audit = [self.audit(hearing, "COMPLETED", old_status, hearing.status, actor)]
            case = await uow.get(Case, hearing.case_id)
            remaining = await self._other_hearings(uow, hearing, PENDING_HEARING_STATUSES)
            if not remaining:
                audit += await self._mirror(uow, case, "await_decision", actor)
            elif not any(other.status == HearingStatus.IN_PROGRESS for other in remaining):
                audit += await self._mirror(uow, case, "adjourn_hearing", actor)
            if outcome:
                await self.cases.stage_update(uow, case, "HearingOutcomeRecorded", outcome,
                                              None, hearing.hearing_number, actor)
            result = TransitionResult(hearing, "complete", old_status.value, hearing.status.value)
            return await self._commit(uow, result, audit)

    async def cancel(self, hearing_id: str, reason: str, actor: Optional[str] = None) -> TransitionResult[Hearing]:
        reason = require_text(reason, "cancellation reason")
        async with self.repository.unit_of_work() as uow:
            hearing = await uow.get(Hearing, hearing_id)
            old_status = hearing.status
            hearing.status = HEARING_TRANSITIONS.next_state(old_status, "cancel", hearing.id)
            self.touch(uow, hearing, actor)
            await self._release(uow, hearing)

            audit = [self.audit(hearing, "CANCELLED", old_status, hearing.status, actor)]
            case = await uow.get(Case, hearing.case_id)
            waiting = await self._other_hearings(
                uow, hearing, {HearingStatus.SCHEDULED, HearingStatus.ADJOURNED}
            )
            if case.status == CaseStatus.SCHEDULED_FOR_HEARING and not waiting:
                audit += await self._mirror(uow, case, "unschedule_hearing", actor)
            await self.cases.stage_update(uow, case, "HearingCancelled", reason,
                                          hearing.hearing_number, None, actor)
            result = TransitionResult(hearing, "cancel", old_status.value, hearing.status.value)
            return await self._commit(uow, result, audit)

    # =========================================================================
    # Participants
    # =========================================================================

    async def add_participant(
        self,
        hearing_id: str,
        participant_id: str,
        name: str,
        participant_type: ParticipantType,
        is_required: bool = True,
        actor: Optional[str] = None,
    ) -> TransitionResult[HearingParticipant]:
        participant_id = require_text(participant_id, "participant_id")
        name = require_text(name, "name")
        async with self.repository.unit_of_work() as uow:
            hearing = await uow.get(Hearing, hearing_id)
            self._require_open(hearing, "add_participant")
            if await uow.query(HearingParticipant, hearing_id=hearing.id, participant_id=participant_id):
                raise InvalidState(
                    f"{participant_id} is already listed for {hearing.hearing_number}",
                    entity_type="HearingParticipant",
                    entity_id=participant_id,
                    attempted="add_participant",
                )
            participant = uow.add(HearingParticipant(
                hearing_id=hearing.id,
                participant_id=participant_id,
                name=name,
                participant_type=participant_type,
                is_required=is_required,
                created_at=self.now(),
                created_by=actor,
            ))
            result = TransitionResult(participant, "add_participant")
            return await self._commit(uow, result, [self.audit(participant, "ADDED", None, hearing.id, actor)])

    async def confirm_attendance(self, participant_id: str, actor: Optional[str] = None) -> TransitionResult[HearingParticipant]:
        async with self.repository.unit_of_work() as uow:
            participant = await uow.get(HearingParticipant, participant_id)
            hearing = await uow.get(Hearing, participant.hearing_id)
            self._require_open(hearing, "confirm_attendance")
            participant.has_confirmed_attendance = True
            participant.confirmed_at = self.now()
            self.touch(uow, participant, actor)
            result = TransitionResult(participant, "confirm_attendance")
            return await self._commit(uow, result, [self.audit(participant, "ATTENDANCE_CONFIRMED", None, True, actor)])

    async def check_in(self, participant_id: str, at: Optional[datetime] = None,
                       actor: Optional[str] = None) -> TransitionResult[HearingParticipant]:
        async with self.repository.unit_of_work() as uow:
            participant = await uow.get(HearingParticipant, participant_id)
            hearing = await uow.get(Hearing, participant.hearing_id)
            if hearing.status not in {HearingStatus.SCHEDULED, HearingStatus.IN_PROGRESS}:
                raise InvalidState(
                    f"Cannot check in to a {hearing.status.value} hearing",
                    entity_type="Hearing",
                    entity_id=hearing.id,
                    current_state=hearing.status.value,
                    attempted="check_in",
                )
            if participant.checked_in_at is not None:
                raise InvalidState(
                    "Participant is already checked in",
                    entity_type="HearingParticipant",
                    entity_id=participant.id,
                    attempted="check_in",
                )
            participant.checked_in_at = at or self.now()
            self.touch(uow, participant, actor)
            result = TransitionResult(participant, "check_in")
            audit = [self.audit(participant, "CHECKED_IN", None, participant.checked_in_at.isoformat(), actor)]
            return await self._commit(uow, result, audit)

    async def check_out(self, participant_id: str, at: Optional[datetime] = None,
                        actor: Optional[str] = None) -> TransitionResult[HearingParticipant]:
        async with self.repository.unit_of_work() as uow:
            participant = await uow.get(HearingParticipant, participant_id)
            if participant.checked_in_at is None:
                raise InvalidState(
                    "Participant never checked in",
                    entity_type="HearingParticipant",
                    entity_id=participant.id,
                    attempted="check_out",
                )
            at = at or self.now()
            if at < participant.checked_in_at:
                raise InvalidTimeRange(
                    f"check-out {at.isoformat()} is before check-in {participant.checked_in_at.isoformat()}",
                    entity_type="HearingParticipant",
                    entity_id=participant.id,
                    attempted="check_out",
                )
            participant.checked_out_at = at
            self.touch(uow, participant, actor)
            result = TransitionResult(participant, "check_out")
            return await self._commit(uow, result, [self.audit(participant, "CHECKED_OUT", None, at.isoformat(), actor)])

    async def mark_attended(self, participant_id: str, attended: bool = True,
                            actor: Optional[str] = None) -> TransitionResult[HearingParticipant]:
        async with self.repository.unit_of_work() as uow:
            participant = await uow.get(HearingParticipant, participant_id)
            if attended and participant.checked_in_at is None:
                raise InvalidState(
                    "Attendance requires a check-in",
                    entity_type="HearingParticipant",
                    entity_id=participant.id,
                    attempted="mark_attended",
                )
            old = participant.attended
            participant.attended = attended
            self.touch(uow, participant, actor)
            result = TransitionResult(participant, "mark_attended", str(old), str(attended))
            return await self._commit(uow, result, [self.audit(participant, "ATTENDANCE", old, attended, actor)])

    @staticmethod
    def _require_open(hearing: Hearing, attempted: str) -> None:
        if hearing.status in FINISHED_HEARING_STATUSES:
            raise InvalidState(
                f"Hearing {hearing.hearing_number} is {hearing.status.value}",
                entity_type="Hearing",
                entity_id=hearing.id,
                current_state=hearing.status.value,
                attempted=attempted,
            )

    # =========================================================================
    # Reads
    # =========================================================================

    async def hearings_for_case(self, case_id: str) -> List[Hearing]:
        hearings = await self.repository.query(Hearing, case_id=case_id)
        return sorted(hearings, key=lambda h: (h.hearing_date, h.start_time))

    async def officer_docket(self, officer_id: str, docket_date: date) -> List[Hearing]:
        hearings = await self.repository.query(
            Hearing, presiding_officer_id=officer_id, hearing_date=docket_date
        )
        return sorted(
            (h for h in hearings if h.status not in RELEASED_HEARING_STATUSES),
            key=lambda h: h.start_time,
        )
