"""
Status and classification enums for tenancy and case records.
"""

from enum import Enum


# =============================================================================
# Tenancy
# =============================================================================

class TenancyStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    EXPIRED = "expired"
    TERMINATED = "terminated"
    RENEWED = "renewed"
    SUSPENDED = "suspended"


class PaymentFrequency(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMI_ANNUALLY = "semi_annually"
    ANNUALLY = "annually"
    WEEKLY = "weekly"


class PropertyType(str, Enum):
    RESIDENTIAL = "residential"
    COMMERCIAL = "commercial"
    INDUSTRIAL = "industrial"
    MIXED_USE = "mixed_use"


class PropertyStatus(str, Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    UNDER_MAINTENANCE = "under_maintenance"
    UNAVAILABLE = "unavailable"


class PaymentMethod(str, Enum):
    MOBILE_MONEY = "mobile_money"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"
    CHEQUE = "cheque"
    ONLINE_PAYMENT = "online_payment"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_PAID = "partially_paid"


# =============================================================================
# Cases
# =============================================================================

class CaseStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    INVESTIGATION = "investigation"
    SCHEDULED_FOR_HEARING = "scheduled_for_hearing"
    HEARING_IN_PROGRESS = "hearing_in_progress"
    DECISION_PENDING = "decision_pending"
    RESOLVED = "resolved"
    CLOSED = "closed"
    REOPENED = "reopened"
    WITHDRAWN = "withdrawn"
    DISMISSED = "dismissed"


TERMINAL_CASE_STATUSES = frozenset({
    CaseStatus.CLOSED,
    CaseStatus.WITHDRAWN,
    CaseStatus.DISMISSED,
})


class CasePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class CaseType(str, Enum):
    RENT_ARREARS = "rent_arrears"
    PROPERTY_MAINTENANCE = "property_maintenance"
    ILLEGAL_EVICTION = "illegal_eviction"
    RENT_INCREASE_DISPUTE = "rent_increase_dispute"
    SECURITY_DEPOSIT_DISPUTE = "security_deposit_dispute"
    HARASSMENT = "harassment"
    UTILITY_DISPUTE = "utility_dispute"
    REPAIR_NEGLECT = "repair_neglect"
    OVERCROWDING = "overcrowding"
    HEALTH_AND_SAFETY = "health_and_safety"
    NOISE_COMPLAINT = "noise_complaint"
    LEASE_VIOLATION = "lease_violation"
    OTHER = "other"


class ResolutionType(str, Enum):
    SETTLEMENT = "settlement"
    MEDIATION_AGREEMENT = "mediation_agreement"
    ARBITRATION_AWARD = "arbitration_award"
    RULING = "ruling"
    CONSENT_ORDER = "consent_order"
    DISMISSAL = "dismissal"
    WITHDRAWAL = "withdrawal"


class ParticipantType(str, Enum):
    COMPLAINANT = "complainant"
    RESPONDENT = "respondent"
    WITNESS = "witness"
    LEGAL_REPRESENTATIVE = "legal_representative"
    EXPERT_WITNESS = "expert_witness"
    INTERPRETER = "interpreter"
    OBSERVER = "observer"


# =============================================================================
# Hearings & Mediation
# =============================================================================

class HearingStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    ADJOURNED = "adjourned"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"


class MediationStatus(str, Enum):
    REQUESTED = "requested"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    ADJOURNED = "adjourned"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    SUCCESSFUL = "successful"
