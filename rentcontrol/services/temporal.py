"""
Temporal calculations for tenancy agreements.

Pure functions of their arguments: nothing here reads the clock or storage,
and nothing computed here is persisted. Callers pass "now" from their Clock
and recompute on every read.

Month arithmetic uses dateutil.relativedelta, which clamps to the last day of
a shorter month (Jan 31 + 1 month = Feb 29 in a leap year).
"""

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional, Union

from dateutil.relativedelta import relativedelta

from rentcontrol.models.entities import TenancyAgreement
from rentcontrol.models.enums import PaymentFrequency, TenancyStatus

DateLike = Union[date, datetime]


def _as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def add_months(start: date, months: int) -> date:
    return start + relativedelta(months=months)


def months_elapsed(start: DateLike, now: DateLike) -> int:
    """Whole calendar months between two dates, ignoring day-of-month."""
    start, now = _as_date(start), _as_date(now)
    return (now.year - start.year) * 12 + now.month - start.month


# =============================================================================
# Agreement-level derivations
# =============================================================================

def next_payment_date(agreement: TenancyAgreement, now: DateLike) -> Optional[date]:
    """
    Next rent due date of an agreement.

    None unless the agreement is active. Before the start date the first
    payment is due on the start date itself; afterwards it is due one month
    past the last whole month elapsed: started 2024-01-15, asked on
    2024-03-20, the answer is 2024-04-15.
    """
    if agreement.status != TenancyStatus.ACTIVE:
        return None
    elapsed = months_elapsed(agreement.start_date, now)
    if elapsed < 0:
        return agreement.start_date
    return add_months(agreement.start_date, elapsed + 1)


def is_expired(agreement: TenancyAgreement, as_of: DateLike) -> bool:
    return _as_date(as_of) > agreement.end_date


def rent_balance_due(agreement: TenancyAgreement, completed_total: Decimal, now: DateLike) -> Decimal:
    """
    Outstanding rent on an active agreement.

    Whole months elapsed (one fewer when this month's start day has not been
    reached yet) times the monthly rent, minus everything completed. Never
    negative; advance payments simply push it to zero.
    """
    if agreement.status != TenancyStatus.ACTIVE:
        return Decimal("0")
    today = _as_date(now)
    elapsed = months_elapsed(agreement.start_date, today)
    if today.day < agreement.start_date.day:
        elapsed -= 1
    owed = Decimal(max(elapsed, 0)) * agreement.monthly_rent
    return max(Decimal("0"), owed - completed_total)


# =============================================================================
# Calendar helpers
# =============================================================================

def lease_expiry_date(start: date, duration_months: int) -> date:
    """Last day covered by a lease of duration_months starting on start."""
    if duration_months <= 0:
        raise ValueError("duration_months must be positive")
    return add_months(start, duration_months) - timedelta(days=1)


def notice_deadline(issued_on: DateLike, notice_days: int) -> date:
    if notice_days < 0:
        raise ValueError("notice_days must be zero or positive")
    return _as_date(issued_on) + timedelta(days=notice_days)


_FREQUENCY_STEPS = {
    PaymentFrequency.WEEKLY: relativedelta(days=7),
    PaymentFrequency.MONTHLY: relativedelta(months=1),
    PaymentFrequency.QUARTERLY: relativedelta(months=3),
    PaymentFrequency.SEMI_ANNUALLY: relativedelta(months=6),
    PaymentFrequency.ANNUALLY: relativedelta(years=1),
}


def next_due_after(due: date, frequency: PaymentFrequency) -> date:
    """The due date one billing period after due."""
    return due + _FREQUENCY_STEPS.get(frequency, relativedelta(months=1))
