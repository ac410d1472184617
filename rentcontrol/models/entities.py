"""
RentControl Domain Entities

Pydantic models for every record the lifecycle engine reads or writes.
Relationships are explicit foreign-key ids resolved through the repository;
nothing here navigates an object graph. Records are soft-deleted through
is_active / status, never removed.
"""

import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field

from rentcontrol.core.utc import utc_now
from rentcontrol.models.enums import (
    CasePriority,
    CaseStatus,
    CaseType,
    HearingStatus,
    MediationStatus,
    ParticipantType,
    PaymentFrequency,
    PaymentMethod,
    PaymentStatus,
    PropertyStatus,
    PropertyType,
    ResolutionType,
    TenancyStatus,
)


def new_id() -> str:
    return str(uuid.uuid4())


class Entity(BaseModel):
    """
    Common shape of every persisted record.

    version is the optimistic-concurrency token: 0 for a record that has never
    been stored, incremented by the repository on every committed save.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=new_id)
    version: int = 0
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    @classmethod
    def entity_type(cls) -> str:
        return cls.__name__

    def touch(self, actor: Optional[str], at: datetime) -> None:
        self.updated_at = at
        self.updated_by = actor


# =============================================================================
# Properties & Tenancy
# =============================================================================

class GeoPoint(BaseModel):
    """A stored location. No geographic computation is performed on it."""
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class Property(Entity):
    code: str
    landlord_id: str
    property_type: PropertyType = PropertyType.RESIDENTIAL
    address: str = ""
    city: str = ""
    region: str = ""
    location: Optional[GeoPoint] = None
    monthly_rent: Decimal
    status: PropertyStatus = PropertyStatus.AVAILABLE


class Occupancy(Entity):
    property_id: str
    tenant_id: str
    agreement_id: str
    occupancy_start_date: date
    occupancy_end_date: Optional[date] = None
    is_current: bool = True


class TenancyAgreement(Entity):
    agreement_number: str
    property_id: str
    landlord_id: str
    tenant_id: str
    monthly_rent: Decimal
    security_deposit: Decimal = Decimal("0")
    start_date: date
    end_date: date
    status: TenancyStatus = TenancyStatus.DRAFT
    payment_frequency: PaymentFrequency = PaymentFrequency.MONTHLY
    actual_vacate_date: Optional[date] = None
    termination_reason: Optional[str] = None
    suspension_reason: Optional[str] = None
    renewed_from_id: Optional[str] = None


class RentPayment(Entity):
    agreement_id: str
    tenant_id: str
    landlord_id: str
    amount: Decimal
    payment_method: PaymentMethod
    status: PaymentStatus = PaymentStatus.PENDING
    payment_date: datetime
    period_start: date
    period_end: date
    is_advance_payment: bool = False
    reference_number: Optional[str] = None
    transaction_id: Optional[str] = None
    notes: Optional[str] = None


class TenancyHistory(Entity):
    agreement_id: str
    sequence: int = 0
    action: str
    description: str = ""
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    changed_by: Optional[str] = None
    changed_at: datetime


# =============================================================================
# Personnel
# =============================================================================

class Officer(Entity):
    """Rent Control Department officer."""
    user_id: str
    full_name: str
    can_preside_hearings: bool = False
    can_assign_cases: bool = False
    can_close_cases: bool = False


class Mediator(Entity):
    user_id: str
    full_name: str
    max_active_cases: int = 10
    current_active_cases: int = 0


class NumberSequence(Entity):
    """Last number issued under one prefix/year/month; id is the prefix key."""
    last_value: int = 0


class OfficerDocket(Entity):
    """
    One officer's bookings for one day. Written in the same unit as every
    hearing that books the officer, so concurrent bookings collide on its
    version instead of double-booking.
    """
    officer_id: str
    docket_date: date
    hearing_ids: List[str] = Field(default_factory=list)

    @staticmethod
    def key(officer_id: str, docket_date: date) -> str:
        return f"{officer_id}:{docket_date.isoformat()}"


# =============================================================================
# Cases
# =============================================================================

class Case(Entity):
    case_number: str
    case_type: CaseType
    title: str
    description: str = ""

    complainant_id: str = ""
    complainant_name: str = ""
    complainant_phone: str = ""
    complainant_email: str = ""

    respondent_id: str = ""
    respondent_name: str = ""
    respondent_phone: str = ""
    respondent_email: str = ""

    property_id: Optional[str] = None
    agreement_id: Optional[str] = None
    property_address: Optional[str] = None

    status: CaseStatus = CaseStatus.DRAFT
    priority: CasePriority = CasePriority.MEDIUM
    incident_date: Optional[date] = None
    claim_amount: Optional[Decimal] = None
    awarded_amount: Optional[Decimal] = None
    resolution: Optional[ResolutionType] = None
    resolution_details: Optional[str] = None
    resolution_date: Optional[datetime] = None

    assigned_officer_id: Optional[str] = None
    assigned_mediator_id: Optional[str] = None

    submitted_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None


class CaseParticipant(Entity):
    case_id: str
    participant_id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    participant_type: ParticipantType
    is_primary_contact: bool = False


class CaseUpdate(Entity):
    case_id: str
    sequence: int = 0
    update_type: str
    description: str = ""
    old_value: Optional[str] = None
    new_value: Optional[str] = None


# =============================================================================
# Hearings
# =============================================================================

class Hearing(Entity):
    case_id: str
    hearing_number: str
    title: str = ""
    hearing_date: date
    start_time: time
    end_time: time
    location: str = ""
    virtual_meeting_link: Optional[str] = None
    status: HearingStatus = HearingStatus.SCHEDULED
    presiding_officer_id: str
    outcome: Optional[str] = None
    minutes: Optional[str] = None
    rescheduled_from_id: Optional[str] = None


class HearingParticipant(Entity):
    hearing_id: str
    participant_id: str
    name: str
    participant_type: ParticipantType
    is_required: bool = True
    has_confirmed_attendance: bool = False
    confirmed_at: Optional[datetime] = None
    attended: bool = False
    checked_in_at: Optional[datetime] = None
    checked_out_at: Optional[datetime] = None


# =============================================================================
# Mediation
# =============================================================================

class MediationSession(Entity):
    case_id: str
    session_number: str
    title: str = ""
    status: MediationStatus = MediationStatus.REQUESTED
    requested_date: Optional[datetime] = None
    scheduled_date: Optional[date] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    location: Optional[str] = None
    assigned_mediator_id: Optional[str] = None

    agreement_reached: Optional[bool] = None
    agreement_summary: Optional[str] = None
    outcome_summary: Optional[str] = None
    mediator_notes: Optional[str] = None
    complainant_satisfied: Optional[bool] = None
    respondent_satisfied: Optional[bool] = None
    completed_at: Optional[datetime] = None


ENTITY_MODELS: Dict[str, Type[Entity]] = {
    model.entity_type(): model
    for model in (
        Property,
        Occupancy,
        TenancyAgreement,
        RentPayment,
        TenancyHistory,
        Officer,
        Mediator,
        OfficerDocket,
        NumberSequence,
        Case,
        CaseParticipant,
        CaseUpdate,
        Hearing,
        HearingParticipant,
        MediationSession,
    )
}
