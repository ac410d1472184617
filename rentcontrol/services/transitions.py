"""
Transition tables for every lifecycle.

Each table is an explicit mapping (state, event) -> next state. Controllers
ask the table first and apply their guards second, so the whole matrix can be
read and tested here without touching storage.
"""

from typing import Dict, Generic, Iterable, List, Mapping, Optional, Tuple, TypeVar

from rentcontrol.core.errors import InvalidTransition
from rentcontrol.models.enums import (
    TERMINAL_CASE_STATUSES,
    CaseStatus,
    HearingStatus,
    MediationStatus,
    PaymentStatus,
    TenancyStatus,
)

S = TypeVar("S")


class TransitionTable(Generic[S]):
    """A reviewable state machine: (state, event) -> next state, nothing implicit."""

    def __init__(self, entity_type: str, transitions: Mapping[Tuple[S, str], S]):
        self.entity_type = entity_type
        self._transitions: Dict[Tuple[S, str], S] = dict(transitions)

    def allows(self, current: S, event: str) -> bool:
        return (current, event) in self._transitions

    def next_state(self, current: S, event: str, entity_id: Optional[str] = None) -> S:
        try:
            return self._transitions[(current, event)]
        except KeyError:
            raise InvalidTransition(
                f"{self.entity_type} cannot '{event}' from {_label(current)}",
                entity_type=self.entity_type,
                entity_id=entity_id,
                current_state=_label(current),
                attempted=event,
            ) from None

    def events_from(self, state: S) -> List[str]:
        return sorted(event for (source, event) in self._transitions if source == state)

    def __iter__(self):
        return iter(self._transitions.items())

    def __len__(self) -> int:
        return len(self._transitions)


def _label(state) -> str:
    return getattr(state, "value", str(state))


def _each(states: Iterable[S], event: str, target: S) -> Dict[Tuple[S, str], S]:
    return {(state, event): target for state in states}


# =============================================================================
# Tenancy
# =============================================================================

TENANCY_TRANSITIONS: TransitionTable[TenancyStatus] = TransitionTable("TenancyAgreement", {
    (TenancyStatus.DRAFT, "activate"): TenancyStatus.ACTIVE,
    (TenancyStatus.ACTIVE, "expire"): TenancyStatus.EXPIRED,
    (TenancyStatus.ACTIVE, "terminate"): TenancyStatus.TERMINATED,
    (TenancyStatus.ACTIVE, "suspend"): TenancyStatus.SUSPENDED,
    (TenancyStatus.SUSPENDED, "resume"): TenancyStatus.ACTIVE,
    (TenancyStatus.ACTIVE, "renew"): TenancyStatus.RENEWED,
})

PAYMENT_TRANSITIONS: TransitionTable[PaymentStatus] = TransitionTable("RentPayment", {
    (PaymentStatus.PENDING, "complete"): PaymentStatus.COMPLETED,
    (PaymentStatus.PENDING, "fail"): PaymentStatus.FAILED,
    (PaymentStatus.PENDING, "partial"): PaymentStatus.PARTIALLY_PAID,
    (PaymentStatus.COMPLETED, "refund"): PaymentStatus.REFUNDED,
})


# =============================================================================
# Cases
# =============================================================================

NON_TERMINAL_CASE_STATUSES = frozenset(CaseStatus) - TERMINAL_CASE_STATUSES

CASE_TRANSITIONS: TransitionTable[CaseStatus] = TransitionTable("Case", {
    (CaseStatus.DRAFT, "submit"): CaseStatus.SUBMITTED,
    (CaseStatus.SUBMITTED, "begin_review"): CaseStatus.UNDER_REVIEW,
    (CaseStatus.REOPENED, "begin_review"): CaseStatus.UNDER_REVIEW,
    (CaseStatus.UNDER_REVIEW, "open_investigation"): CaseStatus.INVESTIGATION,
    (CaseStatus.REOPENED, "open_investigation"): CaseStatus.INVESTIGATION,
    (CaseStatus.INVESTIGATION, "schedule_hearing"): CaseStatus.SCHEDULED_FOR_HEARING,
    (CaseStatus.REOPENED, "schedule_hearing"): CaseStatus.SCHEDULED_FOR_HEARING,
    (CaseStatus.SCHEDULED_FOR_HEARING, "unschedule_hearing"): CaseStatus.INVESTIGATION,
    (CaseStatus.SCHEDULED_FOR_HEARING, "start_hearing"): CaseStatus.HEARING_IN_PROGRESS,
    (CaseStatus.HEARING_IN_PROGRESS, "adjourn_hearing"): CaseStatus.SCHEDULED_FOR_HEARING,
    (CaseStatus.HEARING_IN_PROGRESS, "await_decision"): CaseStatus.DECISION_PENDING,
    (CaseStatus.DECISION_PENDING, "resolve"): CaseStatus.RESOLVED,
    (CaseStatus.RESOLVED, "close"): CaseStatus.CLOSED,
    **_each(NON_TERMINAL_CASE_STATUSES, "withdraw", CaseStatus.WITHDRAWN),
    **_each(NON_TERMINAL_CASE_STATUSES, "dismiss", CaseStatus.DISMISSED),
    **_each(TERMINAL_CASE_STATUSES, "reopen", CaseStatus.REOPENED),
})


# =============================================================================
# Hearings & Mediation
# =============================================================================

HEARING_TRANSITIONS: TransitionTable[HearingStatus] = TransitionTable("Hearing", {
    (HearingStatus.SCHEDULED, "start"): HearingStatus.IN_PROGRESS,
    (HearingStatus.SCHEDULED, "reschedule"): HearingStatus.RESCHEDULED,
    (HearingStatus.SCHEDULED, "cancel"): HearingStatus.CANCELLED,
    (HearingStatus.IN_PROGRESS, "adjourn"): HearingStatus.ADJOURNED,
    (HearingStatus.IN_PROGRESS, "complete"): HearingStatus.COMPLETED,
    (HearingStatus.ADJOURNED, "reconvene"): HearingStatus.SCHEDULED,
    (HearingStatus.ADJOURNED, "cancel"): HearingStatus.CANCELLED,
})

MEDIATION_TRANSITIONS: TransitionTable[MediationStatus] = TransitionTable("MediationSession", {
    (MediationStatus.REQUESTED, "schedule"): MediationStatus.SCHEDULED,
    (MediationStatus.REQUESTED, "cancel"): MediationStatus.CANCELLED,
    (MediationStatus.SCHEDULED, "start"): MediationStatus.IN_PROGRESS,
    (MediationStatus.SCHEDULED, "cancel"): MediationStatus.CANCELLED,
    (MediationStatus.SCHEDULED, "fail"): MediationStatus.FAILED,
    (MediationStatus.SCHEDULED, "succeed"): MediationStatus.SUCCESSFUL,
    (MediationStatus.IN_PROGRESS, "adjourn"): MediationStatus.ADJOURNED,
    (MediationStatus.IN_PROGRESS, "complete"): MediationStatus.COMPLETED,
    (MediationStatus.IN_PROGRESS, "cancel"): MediationStatus.CANCELLED,
    (MediationStatus.IN_PROGRESS, "fail"): MediationStatus.FAILED,
    (MediationStatus.IN_PROGRESS, "succeed"): MediationStatus.SUCCESSFUL,
    (MediationStatus.ADJOURNED, "reconvene"): MediationStatus.SCHEDULED,
    (MediationStatus.ADJOURNED, "cancel"): MediationStatus.CANCELLED,
})
