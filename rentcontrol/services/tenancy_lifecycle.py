"""
Tenancy Lifecycle Controller

Owns TenancyAgreement transitions (draft, active, suspended, expired,
terminated, renewed), the occupancy and property-status side effects they
carry, and rent payment recording.

Every transition writes a TenancyHistory row in the same unit as the
agreement and hands the same entry to the history sink once committed.
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional

from rentcontrol.core.errors import (
    InvalidPeriod,
    InvalidState,
    InvalidValue,
    LifecycleError,
    NotFound,
)
from rentcontrol.models.entities import (
    Occupancy,
    Property,
    RentPayment,
    TenancyAgreement,
    TenancyHistory,
)
from rentcontrol.models.enums import (
    PaymentFrequency,
    PaymentMethod,
    PaymentStatus,
    TenancyStatus,
)
from rentcontrol.services import temporal
from rentcontrol.services.controller import (
    LifecycleController,
    TransitionResult,
    require_text,
    state_label,
)
from rentcontrol.services.history import AuditEntry
from rentcontrol.services.numbering import AGREEMENT_PREFIX, next_number
from rentcontrol.services.property_registry import BINDING_AGREEMENT_STATUSES, recompute_status
from rentcontrol.services.transitions import PAYMENT_TRANSITIONS, TENANCY_TRANSITIONS
from rentcontrol.storage.base import UnitOfWork

logger = logging.getLogger(__name__)

PAYMENT_EVENTS = {
    PaymentStatus.COMPLETED: "complete",
    PaymentStatus.FAILED: "fail",
    PaymentStatus.PARTIALLY_PAID: "partial",
    PaymentStatus.REFUNDED: "refund",
}


class TenancyLifecycleController(LifecycleController):

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _history(
        self,
        uow: UnitOfWork,
        agreement: TenancyAgreement,
        action: str,
        description: str = "",
        old_value=None,
        new_value=None,
        actor: Optional[str] = None,
    ) -> AuditEntry:
        """Stage a TenancyHistory row and return the matching audit entry."""
        existing = await uow.query(TenancyHistory, agreement_id=agreement.id)
        uow.add(
            TenancyHistory(
                agreement_id=agreement.id,
                sequence=len(existing) + 1,
                action=action,
                description=description,
                old_value=state_label(old_value),
                new_value=state_label(new_value),
                changed_by=actor,
                changed_at=self.now(),
                created_at=self.now(),
                created_by=actor,
            )
        )
        return self.audit(agreement, action, old_value, new_value, actor)

    async def _close_occupancy(self, uow: UnitOfWork, agreement: TenancyAgreement, end_date: date) -> None:
        for occupancy in await uow.query(Occupancy, agreement_id=agreement.id, is_current=True):
            occupancy.is_current = False
            occupancy.occupancy_end_date = end_date
            uow.save(occupancy)
        prop = await uow.get(Property, agreement.property_id)
        await recompute_status(uow, prop)

    def _advance(self, agreement: TenancyAgreement, event: str) -> TenancyStatus:
        return TENANCY_TRANSITIONS.next_state(agreement.status, event, agreement.id)

    # =========================================================================
    # Creation & transitions
    # =========================================================================

    async def create_agreement(
        self,
        property_id: str,
        tenant_id: str,
        start_date: date,
        end_date: date,
        monthly_rent: Decimal,
        security_deposit: Decimal = Decimal("0"),
        payment_frequency: PaymentFrequency = PaymentFrequency.MONTHLY,
        landlord_id: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> TransitionResult[TenancyAgreement]:
        tenant_id = require_text(tenant_id, "tenant_id")
        if end_date <= start_date:
            raise InvalidPeriod(
                f"end_date {end_date} must be after start_date {start_date}",
                entity_type="TenancyAgreement",
                attempted="create",
            )
        if monthly_rent <= 0:
            raise InvalidValue("monthly_rent must be positive", entity_type="TenancyAgreement")
        if security_deposit < 0:
            raise InvalidValue("security_deposit cannot be negative", entity_type="TenancyAgreement")

        async with self.repository.unit_of_work() as uow:
            prop = await uow.get(Property, property_id)
            if not prop.is_active:
                raise NotFound(
                    f"Property {property_id} is retired",
                    entity_type="Property",
                    entity_id=property_id,
                )

            now = self.now()
            agreement = uow.add(
                TenancyAgreement(
                    agreement_number=await next_number(uow, AGREEMENT_PREFIX, now),
                    property_id=prop.id,
                    landlord_id=landlord_id or prop.landlord_id,
                    tenant_id=tenant_id,
                    monthly_rent=monthly_rent,
                    security_deposit=security_deposit,
                    start_date=start_date,
                    end_date=end_date,
                    payment_frequency=payment_frequency,
                    created_at=now,
                    created_by=actor,
                )
            )
            audit = [await self._history(uow, agreement, "CREATED", "Tenancy agreement created",
                                         None, agreement.status, actor)]
            result = TransitionResult(agreement, "create", None, agreement.status.value)
            return await self._commit(uow, result, audit)

    async def activate(self, agreement_id: str, actor: Optional[str] = None) -> TransitionResult[TenancyAgreement]:
        """Draft -> Active. Opens an occupancy and marks the property occupied."""
        async with self.repository.unit_of_work() as uow:
            agreement = await uow.get(TenancyAgreement, agreement_id)
            old_status = agreement.status
            new_status = self._advance(agreement, "activate")

            others = [
                other for other in await uow.query(
                    TenancyAgreement, property_id=agreement.property_id, status=BINDING_AGREEMENT_STATUSES
                )
                if other.id != agreement.id
            ]
            if others:
                raise InvalidState(
                    f"Property already held by agreement {others[0].agreement_number}",
                    entity_type="TenancyAgreement",
                    entity_id=agreement.id,
                    current_state=old_status.value,
                    attempted="activate",
                )
            prop = await uow.get(Property, agreement.property_id)
            if not prop.is_active:
                raise InvalidState(
                    "Property is retired",
                    entity_type="TenancyAgreement",
                    entity_id=agreement.id,
                    current_state=old_status.value,
                    attempted="activate",
                )

            agreement.status = new_status
            self.touch(uow, agreement, actor)
            occupancy = uow.add(
                Occupancy(
                    property_id=prop.id,
                    tenant_id=agreement.tenant_id,
                    agreement_id=agreement.id,
                    occupancy_start_date=agreement.start_date,
                    created_at=self.now(),
                    created_by=actor,
                )
            )
            await recompute_status(uow, prop)

            audit = [await self._history(uow, agreement, "ACTIVATED", "Tenancy agreement activated",
                                         old_status, new_status, actor)]
            result = TransitionResult(agreement, "activate", old_status.value, new_status.value, created=[occupancy])
            return await self._commit(uow, result, audit)

    async def expire(
        self,
        agreement_id: str,
        as_of: Optional[date] = None,
        actor: Optional[str] = "system",
    ) -> TransitionResult[TenancyAgreement]:
        """Active -> Expired, only once as_of is past the end date."""
        as_of = as_of or self.today()
        async with self.repository.unit_of_work() as uow:
            agreement = await uow.get(TenancyAgreement, agreement_id)
            old_status = agreement.status
            new_status = self._advance(agreement, "expire")
            if not temporal.is_expired(agreement, as_of):
                raise InvalidState(
                    f"Agreement runs until {agreement.end_date}; not expired as of {as_of}",
                    entity_type="TenancyAgreement",
                    entity_id=agreement.id,
                    current_state=old_status.value,
                    attempted="expire",
                )

            agreement.status = new_status
            self.touch(uow, agreement, actor)
            await self._close_occupancy(uow, agreement, agreement.end_date)

            audit = [await self._history(uow, agreement, "EXPIRED", f"Tenancy expired on {agreement.end_date}",
                                         old_status, new_status, actor)]
            result = TransitionResult(agreement, "expire", old_status.value, new_status.value)
            return await self._commit(uow, result, audit)

    async def expire_due(self, as_of: Optional[date] = None) -> List[TransitionResult[TenancyAgreement]]:
        """
        Expire every active agreement whose end date has passed.

        Each agreement is expired in its own unit; one that fails (typically a
        Conflict with a concurrent change) is logged and left for the next sweep.
        """
        as_of = as_of or self.today()
        results = []
        for agreement in await self.repository.query(TenancyAgreement, status=TenancyStatus.ACTIVE):
            if not temporal.is_expired(agreement, as_of):
                continue
            try:
                results.append(await self.expire(agreement.id, as_of))
            except LifecycleError as e:
                logger.warning("Could not expire agreement %s: %s", agreement.id, e.message)
        return results

    async def terminate(
        self,
        agreement_id: str,
        reason: str,
        vacate_date: Optional[date] = None,
        actor: Optional[str] = None,
    ) -> TransitionResult[TenancyAgreement]:
        async with self.repository.unit_of_work() as uow:
            agreement = await uow.get(TenancyAgreement, agreement_id)
            old_status = agreement.status
            new_status = self._advance(agreement, "terminate")
            reason = require_text(reason, "termination reason", agreement)

            agreement.status = new_status
            agreement.termination_reason = reason
            agreement.actual_vacate_date = vacate_date or self.today()
            self.touch(uow, agreement, actor)
            await self._close_occupancy(uow, agreement, agreement.actual_vacate_date)

            audit = [await self._history(uow, agreement, "TERMINATED", reason, old_status, new_status, actor)]
            result = TransitionResult(agreement, "terminate", old_status.value, new_status.value)
            return await self._commit(uow, result, audit)

    async def suspend(self, agreement_id: str, reason: str, actor: Optional[str] = None) -> TransitionResult[TenancyAgreement]:
        async with self.repository.unit_of_work() as uow:
            agreement = await uow.get(TenancyAgreement, agreement_id)
            old_status = agreement.status
            new_status = self._advance(agreement, "suspend")
            reason = require_text(reason, "suspension reason", agreement)

            agreement.status = new_status
            agreement.suspension_reason = reason
            self.touch(uow, agreement, actor)

            audit = [await self._history(uow, agreement, "SUSPENDED", reason, old_status, new_status, actor)]
            result = TransitionResult(agreement, "suspend", old_status.value, new_status.value)
            return await self._commit(uow, result, audit)

    async def resume(self, agreement_id: str, reason: str, actor: Optional[str] = None) -> TransitionResult[TenancyAgreement]:
        async with self.repository.unit_of_work() as uow:
            agreement = await uow.get(TenancyAgreement, agreement_id)
            old_status = agreement.status
            new_status = self._advance(agreement, "resume")
            reason = require_text(reason, "resumption reason", agreement)

            agreement.status = new_status
            agreement.suspension_reason = None
            self.touch(uow, agreement, actor)

            audit = [await self._history(uow, agreement, "RESUMED", reason, old_status, new_status, actor)]
            result = TransitionResult(agreement, "resume", old_status.value, new_status.value)
            return await self._commit(uow, result, audit)

    async def renew(
        self,
        agreement_id: str,
        new_end_date: date,
        new_monthly_rent: Optional[Decimal] = None,
        actor: Optional[str] = None,
    ) -> TransitionResult[TenancyAgreement]:
        """
        Active -> Renewed.

        The old tenancy ends (occupancy closed) and a new draft agreement for the
        same property and tenant starts the day after the old end date. The new
        agreement is returned in result.created and must be activated separately.
        """
        async with self.repository.unit_of_work() as uow:
            agreement = await uow.get(TenancyAgreement, agreement_id)
            old_status = agreement.status
            new_status = self._advance(agreement, "renew")

            new_start = agreement.end_date + timedelta(days=1)
            if new_end_date <= agreement.end_date or new_end_date <= new_start:
                raise InvalidPeriod(
                    f"new end date {new_end_date} must be after {new_start}",
                    entity_type="TenancyAgreement",
                    entity_id=agreement.id,
                    current_state=old_status.value,
                    attempted="renew",
                )
            rent = agreement.monthly_rent if new_monthly_rent is None else new_monthly_rent
            if rent <= 0:
                raise InvalidValue(
                    "monthly_rent must be positive",
                    entity_type="TenancyAgreement",
                    entity_id=agreement.id,
                )

            agreement.status = new_status
            self.touch(uow, agreement, actor)
            await self._close_occupancy(uow, agreement, agreement.end_date)

            now = self.now()
            successor = uow.add(
                TenancyAgreement(
                    agreement_number=await next_number(uow, AGREEMENT_PREFIX, now),
                    property_id=agreement.property_id,
                    landlord_id=agreement.landlord_id,
                    tenant_id=agreement.tenant_id,
                    monthly_rent=rent,
                    security_deposit=agreement.security_deposit,
                    start_date=new_start,
                    end_date=new_end_date,
                    payment_frequency=agreement.payment_frequency,
                    renewed_from_id=agreement.id,
                    created_at=now,
                    created_by=actor,
                )
            )

            audit = [
                await self._history(uow, agreement, "RENEWED", f"Renewed as {successor.agreement_number}",
                                    old_status, new_status, actor),
                await self._history(uow, successor, "CREATED", f"Renewal of {agreement.agreement_number}",
                                    None, successor.status, actor),
            ]
            result = TransitionResult(
                agreement, "renew", old_status.value, new_status.value,
                created=[successor], details={"successor_id": successor.id},
            )
            return await self._commit(uow, result, audit)

    # =========================================================================
    # Payments
    # =========================================================================

    async def record_payment(
        self,
        agreement_id: str,
        amount: Decimal,
        period_start: date,
        period_end: date,
        method: PaymentMethod,
        payment_date=None,
        is_advance_payment: bool = False,
        reference_number: Optional[str] = None,
        notes: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> TransitionResult[RentPayment]:
        """Record a pending payment against an active agreement."""
        async with self.repository.unit_of_work() as uow:
            agreement = await uow.get(TenancyAgreement, agreement_id)
            if agreement.status != TenancyStatus.ACTIVE:
                raise InvalidState(
                    "Payments can only be recorded against an active agreement",
                    entity_type="TenancyAgreement",
                    entity_id=agreement.id,
                    current_state=agreement.status.value,
                    attempted="record_payment",
                )
            if period_end <= period_start:
                raise InvalidPeriod(
                    f"period_end {period_end} must be after period_start {period_start}",
                    entity_type="RentPayment",
                    attempted="record_payment",
                )
            if amount <= 0:
                raise InvalidValue("amount must be positive", entity_type="RentPayment")
            if not is_advance_payment and (
                period_start < agreement.start_date or period_end > agreement.end_date
            ):
                raise InvalidPeriod(
                    f"period {period_start}..{period_end} is outside the agreement "
                    f"{agreement.start_date}..{agreement.end_date}",
                    entity_type="RentPayment",
                    attempted="record_payment",
                )
            duplicates = await uow.query(
                RentPayment,
                agreement_id=agreement.id,
                status=PaymentStatus.COMPLETED,
                period_start=period_start,
                period_end=period_end,
            )
            if duplicates:
                raise InvalidState(
                    f"A completed payment already covers {period_start}..{period_end}",
                    entity_type="RentPayment",
                    entity_id=duplicates[0].id,
                    current_state=PaymentStatus.COMPLETED.value,
                    attempted="record_payment",
                )

            now = self.now()
            payment = uow.add(
                RentPayment(
                    agreement_id=agreement.id,
                    tenant_id=agreement.tenant_id,
                    landlord_id=agreement.landlord_id,
                    amount=amount,
                    payment_method=method,
                    payment_date=payment_date or now,
                    period_start=period_start,
                    period_end=period_end,
                    is_advance_payment=is_advance_payment,
                    reference_number=reference_number,
                    notes=notes,
                    created_at=now,
                    created_by=actor,
                )
            )
            self.touch(uow, agreement, actor)
            audit = [
                await self._history(uow, agreement, "PAYMENT_RECORDED",
                                    f"{amount} for {period_start}..{period_end}", None, payment.status, actor),
                self.audit(payment, "RECORDED", None, payment.status, actor),
            ]
            result = TransitionResult(payment, "record_payment", None, payment.status.value)
            return await self._commit(uow, result, audit)

    async def apply_payment_confirmation(
        self,
        payment_id: str,
        status: PaymentStatus,
        transaction_id: Optional[str] = None,
        actor: Optional[str] = "system",
    ) -> TransitionResult[RentPayment]:
        """Apply an external confirmation (gateway callback, bank statement) to a payment."""
        event = PAYMENT_EVENTS.get(status)
        if event is None:
            raise InvalidValue(
                f"{status.value} is not a confirmation outcome",
                entity_type="RentPayment",
                entity_id=payment_id,
            )
        async with self.repository.unit_of_work() as uow:
            payment = await uow.get(RentPayment, payment_id)
            old_status = payment.status
            payment.status = PAYMENT_TRANSITIONS.next_state(old_status, event, payment.id)
            if transaction_id:
                payment.transaction_id = transaction_id
            self.touch(uow, payment, actor)

            agreement = await uow.get(TenancyAgreement, payment.agreement_id)
            self.touch(uow, agreement, actor)
            audit = [
                self.audit(payment, event.upper(), old_status, payment.status, actor),
                await self._history(uow, agreement, f"PAYMENT_{payment.status.value.upper()}",
                                    f"Payment {payment.id}", old_status, payment.status, actor),
            ]
            result = TransitionResult(payment, event, old_status.value, payment.status.value)
            return await self._commit(uow, result, audit)

    # =========================================================================
    # Notices
    # =========================================================================

    async def issue_notice(
        self,
        agreement_id: str,
        notice_type: str,
        reason: str,
        notice_days: int,
        actor: Optional[str] = None,
    ) -> TransitionResult[TenancyAgreement]:
        """Record a notice against an active agreement; result.details holds the deadline."""
        notice_type = require_text(notice_type, "notice_type")
        if notice_days < 0:
            raise InvalidValue("notice_days must be zero or positive", entity_type="TenancyAgreement")
        async with self.repository.unit_of_work() as uow:
            agreement = await uow.get(TenancyAgreement, agreement_id)
            reason = require_text(reason, "notice reason", agreement)
            if agreement.status != TenancyStatus.ACTIVE:
                raise InvalidState(
                    "Notices can only be issued on an active agreement",
                    entity_type="TenancyAgreement",
                    entity_id=agreement.id,
                    current_state=agreement.status.value,
                    attempted="issue_notice",
                )
            deadline = temporal.notice_deadline(self.now(), notice_days)
            self.touch(uow, agreement, actor)
            audit = [await self._history(uow, agreement, "NOTICE_ISSUED", f"{notice_type}: {reason}",
                                         None, deadline.isoformat(), actor)]
            result = TransitionResult(
                agreement, "issue_notice", agreement.status.value, agreement.status.value,
                details={"notice_type": notice_type, "deadline": deadline},
            )
            return await self._commit(uow, result, audit)

    # =========================================================================
    # Reads
    # =========================================================================

    async def next_payment_date(self, agreement_id: str) -> Optional[date]:
        agreement = await self.repository.get(TenancyAgreement, agreement_id)
        return temporal.next_payment_date(agreement, self.now())

    async def balance_due(self, agreement_id: str) -> Decimal:
        agreement = await self.repository.get(TenancyAgreement, agreement_id)
        completed = await self.repository.query(
            RentPayment, agreement_id=agreement.id, status=PaymentStatus.COMPLETED
        )
        paid = sum((payment.amount for payment in completed), Decimal("0"))
        return temporal.rent_balance_due(agreement, paid, self.now())

    async def history(self, agreement_id: str) -> List[TenancyHistory]:
        await self.repository.get(TenancyAgreement, agreement_id)
        entries = await self.repository.query(TenancyHistory, agreement_id=agreement_id)
        return sorted(entries, key=lambda entry: entry.sequence)
