"""
Property registry.

Registers properties, retires them once nothing binds them, and keeps
Property.status consistent with occupancy: a property is occupied exactly
when a current Occupancy references it.
"""

import logging
from decimal import Decimal
from typing import Optional

from rentcontrol.core.errors import InvalidState, InvalidValue
from rentcontrol.models.entities import GeoPoint, Occupancy, Property, TenancyAgreement
from rentcontrol.models.enums import PropertyStatus, PropertyType, TenancyStatus
from rentcontrol.services.controller import LifecycleController, TransitionResult, require_text
from rentcontrol.storage.base import UnitOfWork

logger = logging.getLogger(__name__)

BINDING_AGREEMENT_STATUSES = {TenancyStatus.ACTIVE, TenancyStatus.SUSPENDED}


async def recompute_status(uow: UnitOfWork, prop: Property) -> bool:
    """
    Derive Property.status from the current occupancies seen by this unit.

    Maintenance and unavailable statuses survive while the property is empty.
    Returns True when the status changed (and the property was staged).
    """
    occupied = bool(await uow.query(Occupancy, property_id=prop.id, is_current=True))
    if occupied:
        new_status = PropertyStatus.OCCUPIED
    elif prop.status == PropertyStatus.OCCUPIED:
        new_status = PropertyStatus.AVAILABLE
    else:
        new_status = prop.status

    if new_status == prop.status:
        return False
    logger.debug("Property %s status %s -> %s", prop.id, prop.status.value, new_status.value)
    prop.status = new_status
    uow.save(prop)
    return True


class PropertyRegistry(LifecycleController):

    async def register_property(
        self,
        code: str,
        landlord_id: str,
        monthly_rent: Decimal,
        property_type: PropertyType = PropertyType.RESIDENTIAL,
        address: str = "",
        city: str = "",
        region: str = "",
        location: Optional[GeoPoint] = None,
        actor: Optional[str] = None,
    ) -> TransitionResult[Property]:
        code = require_text(code, "code")
        landlord_id = require_text(landlord_id, "landlord_id")
        if monthly_rent <= 0:
            raise InvalidValue("monthly_rent must be positive", entity_type="Property")

        async with self.repository.unit_of_work() as uow:
            if await uow.query(Property, code=code):
                raise InvalidState(
                    f"Property code {code} is already registered",
                    entity_type="Property",
                    attempted="register",
                )
            prop = uow.add(
                Property(
                    code=code,
                    landlord_id=landlord_id,
                    property_type=property_type,
                    address=address,
                    city=city,
                    region=region,
                    location=location,
                    monthly_rent=monthly_rent,
                    created_at=self.now(),
                    created_by=actor,
                )
            )
            result = TransitionResult(prop, "register", None, prop.status.value)
            return await self._commit(uow, result, [self.audit(prop, "REGISTERED", None, prop.status, actor)])

    async def retire_property(self, property_id: str, actor: Optional[str] = None) -> TransitionResult[Property]:
        """Soft-delete a property. Refused while an active or suspended agreement references it."""
        async with self.repository.unit_of_work() as uow:
            prop = await uow.get(Property, property_id)
            if not prop.is_active:
                raise InvalidState(
                    "Property is already retired",
                    entity_type="Property",
                    entity_id=prop.id,
                    current_state=prop.status.value,
                    attempted="retire",
                )
            binding = await uow.query(
                TenancyAgreement, property_id=prop.id, status=BINDING_AGREEMENT_STATUSES
            )
            if binding:
                raise InvalidState(
                    f"Property has {len(binding)} active or suspended agreement(s)",
                    entity_type="Property",
                    entity_id=prop.id,
                    current_state=prop.status.value,
                    attempted="retire",
                )

            old_status = prop.status
            prop.is_active = False
            prop.status = PropertyStatus.UNAVAILABLE
            self.touch(uow, prop, actor)
            result = TransitionResult(prop, "retire", old_status.value, prop.status.value)
            return await self._commit(uow, result, [self.audit(prop, "RETIRED", old_status, prop.status, actor)])
