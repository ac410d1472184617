"""
Human-readable record numbers.

Numbers have the form {prefix}/{yyyy}/{mm}/{seq:04}, with the sequence
restarting every month. The counter lives in a NumberSequence entity written
in the same unit as the record it numbers, so two concurrent creations
collide on its version rather than issuing the same number twice.
"""

from datetime import datetime

from rentcontrol.models.entities import NumberSequence
from rentcontrol.models.enums import CaseType
from rentcontrol.storage.base import UnitOfWork

AGREEMENT_PREFIX = "TA"
HEARING_PREFIX = "HE"
MEDIATION_PREFIX = "MS"

CASE_NUMBER_PREFIXES = {
    CaseType.RENT_ARREARS: "RA",
    CaseType.PROPERTY_MAINTENANCE: "PM",
    CaseType.ILLEGAL_EVICTION: "IE",
    CaseType.RENT_INCREASE_DISPUTE: "RI",
    CaseType.SECURITY_DEPOSIT_DISPUTE: "SD",
    CaseType.HARASSMENT: "HR",
    CaseType.UTILITY_DISPUTE: "UD",
    CaseType.REPAIR_NEGLECT: "RN",
    CaseType.OVERCROWDING: "OC",
    CaseType.HEALTH_AND_SAFETY: "HS",
    CaseType.NOISE_COMPLAINT: "NC",
    CaseType.LEASE_VIOLATION: "LV",
    CaseType.OTHER: "OT",
}


async def next_number(uow: UnitOfWork, prefix: str, at: datetime) -> str:
    key = f"{prefix}/{at:%Y}/{at:%m}"
    sequence = await uow.find(NumberSequence, key)
    if sequence is None:
        sequence = uow.add(NumberSequence(id=key, created_at=at))
    sequence.last_value += 1
    sequence.updated_at = at
    uow.save(sequence)
    return f"{key}/{sequence.last_value:04d}"


async def next_case_number(uow: UnitOfWork, case_type: CaseType, at: datetime) -> str:
    return await next_number(uow, CASE_NUMBER_PREFIXES.get(case_type, "OT"), at)
