"""
Tests for the temporal calculator - next payment dates, expiry, balances and
calendar helpers.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from rentcontrol.models.entities import TenancyAgreement
from rentcontrol.models.enums import PaymentFrequency, TenancyStatus
from rentcontrol.services import temporal


def agreement(start: date, end: date = date(2025, 1, 14), status: TenancyStatus = TenancyStatus.ACTIVE,
              rent: Decimal = Decimal("1000")) -> TenancyAgreement:
    return TenancyAgreement(
        agreement_number="TA/2024/01/0001",
        property_id="p1",
        landlord_id="l1",
        tenant_id="t1",
        monthly_rent=rent,
        start_date=start,
        end_date=end,
        status=status,
    )


# =============================================================================
# Next Payment Date
# =============================================================================

class TestNextPaymentDate:
    """Derived due date of an agreement."""

    def test_mid_term(self):
        """Started 2024-01-15, asked 2024-03-20: due 2024-04-15."""
        result = temporal.next_payment_date(agreement(date(2024, 1, 15)), datetime(2024, 3, 20, tzinfo=timezone.utc))
        assert result == date(2024, 4, 15)

    @pytest.mark.parametrize("status", [s for s in TenancyStatus if s != TenancyStatus.ACTIVE])
    def test_none_unless_active(self, status):
        """Every non-active status yields no due date."""
        assert temporal.next_payment_date(agreement(date(2024, 1, 15), status=status), date(2024, 3, 20)) is None

    def test_future_start_returns_start(self):
        """An agreement that has not started yet is first due on its start date."""
        start = date(2024, 6, 1)
        assert temporal.next_payment_date(agreement(start), date(2024, 3, 20)) == start

    def test_same_month_as_start(self):
        """Elapsed months ignore the day: the first month rolls to the next one."""
        assert temporal.next_payment_date(agreement(date(2024, 3, 25)), date(2024, 3, 1)) == date(2024, 4, 25)

    def test_end_of_month_clamps(self):
        """Jan 31 plus one month lands on the last day of February."""
        assert temporal.next_payment_date(agreement(date(2024, 1, 31)), date(2024, 1, 31)) == date(2024, 2, 29)

    def test_repeatable(self):
        """Same inputs, same answer; the agreement is not modified."""
        a = agreement(date(2024, 1, 15))
        before = a.model_dump()
        first = temporal.next_payment_date(a, date(2024, 3, 20))
        second = temporal.next_payment_date(a, date(2024, 3, 20))
        assert first == second
        assert a.model_dump() == before


# =============================================================================
# Expiry & Balance
# =============================================================================

class TestExpiryAndBalance:

    def test_is_expired_strictly_after_end(self):
        a = agreement(date(2024, 1, 1), end=date(2024, 6, 30))
        assert not temporal.is_expired(a, date(2024, 6, 30))
        assert temporal.is_expired(a, date(2024, 7, 1))

    def test_balance_counts_whole_months(self):
        """Two months elapsed on the 20th of March for a 15 January start."""
        a = agreement(date(2024, 1, 15))
        assert temporal.rent_balance_due(a, Decimal("0"), date(2024, 3, 20)) == Decimal("2000")

    def test_balance_before_start_day(self):
        """Before the start day-of-month, the current month is not yet owed."""
        a = agreement(date(2024, 1, 15))
        assert temporal.rent_balance_due(a, Decimal("0"), date(2024, 3, 10)) == Decimal("1000")

    def test_balance_floors_at_zero(self):
        a = agreement(date(2024, 1, 15))
        assert temporal.rent_balance_due(a, Decimal("9999"), date(2024, 3, 20)) == Decimal("0")

    def test_balance_zero_when_not_active(self):
        a = agreement(date(2024, 1, 15), status=TenancyStatus.TERMINATED)
        assert temporal.rent_balance_due(a, Decimal("0"), date(2024, 3, 20)) == Decimal("0")


# =============================================================================
# Calendar Helpers
# =============================================================================

class TestCalendarHelpers:

    def test_months_elapsed(self):
        assert temporal.months_elapsed(date(2023, 11, 30), date(2024, 2, 1)) == 3
        assert temporal.months_elapsed(date(2024, 5, 1), date(2024, 2, 1)) == -3

    def test_lease_expiry_date(self):
        assert temporal.lease_expiry_date(date(2024, 1, 15), 12) == date(2025, 1, 14)

    def test_lease_expiry_rejects_zero_duration(self):
        with pytest.raises(ValueError):
            temporal.lease_expiry_date(date(2024, 1, 15), 0)

    def test_notice_deadline(self):
        assert temporal.notice_deadline(datetime(2024, 3, 20, 9, tzinfo=timezone.utc), 30) == date(2024, 4, 19)

    @pytest.mark.parametrize("frequency,expected", [
        (PaymentFrequency.WEEKLY, date(2024, 1, 22)),
        (PaymentFrequency.MONTHLY, date(2024, 2, 15)),
        (PaymentFrequency.QUARTERLY, date(2024, 4, 15)),
        (PaymentFrequency.SEMI_ANNUALLY, date(2024, 7, 15)),
        (PaymentFrequency.ANNUALLY, date(2025, 1, 15)),
    ])
    def test_next_due_after(self, frequency, expected):
        assert temporal.next_due_after(date(2024, 1, 15), frequency) == expected
