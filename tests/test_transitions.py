"""
Tests for the transition tables themselves, independent of storage.
"""

import pytest

from rentcontrol.core.errors import InvalidTransition
from rentcontrol.models.enums import (
    TERMINAL_CASE_STATUSES,
    CaseStatus,
    HearingStatus,
    MediationStatus,
    PaymentStatus,
    TenancyStatus,
)
from rentcontrol.services.transitions import (
    CASE_TRANSITIONS,
    HEARING_TRANSITIONS,
    MEDIATION_TRANSITIONS,
    PAYMENT_TRANSITIONS,
    TENANCY_TRANSITIONS,
)


class TestTenancyTable:

    def test_draft_only_activates(self):
        assert TENANCY_TRANSITIONS.events_from(TenancyStatus.DRAFT) == ["activate"]

    @pytest.mark.parametrize("status", [
        TenancyStatus.EXPIRED, TenancyStatus.TERMINATED, TenancyStatus.RENEWED,
    ])
    def test_end_states_are_final(self, status):
        assert TENANCY_TRANSITIONS.events_from(status) == []

    def test_rejection_carries_context(self):
        with pytest.raises(InvalidTransition) as exc_info:
            TENANCY_TRANSITIONS.next_state(TenancyStatus.EXPIRED, "activate", "agreement-1")
        error = exc_info.value
        assert error.entity_id == "agreement-1"
        assert error.current_state == "expired"
        assert error.attempted == "activate"


class TestCaseTable:

    def test_every_open_status_can_withdraw_and_dismiss(self):
        for status in set(CaseStatus) - TERMINAL_CASE_STATUSES:
            assert CASE_TRANSITIONS.allows(status, "withdraw")
            assert CASE_TRANSITIONS.allows(status, "dismiss")

    def test_only_finished_cases_reopen(self):
        reopenable = {status for status in CaseStatus if CASE_TRANSITIONS.allows(status, "reopen")}
        assert reopenable == set(TERMINAL_CASE_STATUSES)

    def test_resolve_only_from_decision_pending(self):
        assert [s for s in CaseStatus if CASE_TRANSITIONS.allows(s, "resolve")] == [CaseStatus.DECISION_PENDING]

    def test_reopened_resumes_workflow(self):
        assert CASE_TRANSITIONS.next_state(CaseStatus.REOPENED, "begin_review") == CaseStatus.UNDER_REVIEW


class TestSessionTables:

    def test_payment_refund_only_after_completion(self):
        assert PAYMENT_TRANSITIONS.events_from(PaymentStatus.COMPLETED) == ["refund"]
        assert not PAYMENT_TRANSITIONS.allows(PaymentStatus.FAILED, "refund")

    def test_hearing_completed_is_final(self):
        assert HEARING_TRANSITIONS.events_from(HearingStatus.COMPLETED) == []

    @pytest.mark.parametrize("status", [
        MediationStatus.COMPLETED, MediationStatus.SUCCESSFUL,
        MediationStatus.FAILED, MediationStatus.CANCELLED,
    ])
    def test_mediation_end_states_are_final(self, status):
        assert MEDIATION_TRANSITIONS.events_from(status) == []
