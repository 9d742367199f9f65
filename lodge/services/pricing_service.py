"""Stay pricing: room tariff, special charges and discounts in fixed-point money."""

from __future__ import annotations

import math
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Sequence, Union

from lodge.domain.constraints import validate_discount
from lodge.domain.models import (
    ZERO,
    ChargeRateType,
    Discount,
    DiscountKind,
    PaymentCalculation,
    RoomAllocation,
    SpecialCharge,
    to_money,
    total_guests,
)
from lodge.repository.data_repository import DataRepository
from lodge.utils.config import Settings, get_settings
from lodge.utils.logger import get_logger


logger = get_logger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


class PricingValidationError(Exception):
    """Raised when a quote is requested for an invalid stay."""


def number_of_nights(
    check_in: Union[date, datetime],
    check_out: Union[date, datetime],
) -> int:
    """Ceiling of the day difference; an empty or reversed stay is an error."""
    if isinstance(check_in, datetime) and isinstance(check_out, datetime):
        seconds = (check_out - check_in).total_seconds()
        nights = math.ceil(seconds / SECONDS_PER_DAY)
    elif isinstance(check_in, datetime) or isinstance(check_out, datetime):
        raise PricingValidationError("check_in and check_out must be the same type")
    else:
        nights = (check_out - check_in).days
    if nights < 1:
        raise PricingValidationError("check_out must be at least one night after check_in")
    return nights


def special_charge_amount(
    charge: SpecialCharge,
    guests: int,
    nights: int,
    *,
    per_person_per_night: bool = True,
) -> Decimal:
    """Charge total for `quantity` units of one catalog entry."""
    if charge.quantity < 1:
        raise PricingValidationError(f"{charge.name} quantity must be >= 1")
    units = charge.rate * charge.quantity
    if charge.rate_type is ChargeRateType.PER_DAY:
        return to_money(units * nights)
    if per_person_per_night:
        return to_money(units * guests * nights)
    return to_money(units * guests)


def discount_amount(discount: Discount, subtotal: Decimal) -> Decimal:
    if discount.kind is DiscountKind.PERCENTAGE:
        raw = to_money(subtotal * discount.value / Decimal(100))
    elif discount.kind is DiscountKind.AMOUNT:
        raw = to_money(discount.value)
    else:
        return ZERO
    return min(max(raw, ZERO), subtotal)


def compute_payment(
    allocations: Sequence[RoomAllocation],
    special_charges: Sequence[SpecialCharge],
    discount: Discount,
    nights: int,
    *,
    per_person_per_night: bool = True,
) -> PaymentCalculation:
    """Price a stay. Pure: identical inputs always give identical output."""
    if nights < 1:
        raise PricingValidationError("number_of_nights must be >= 1")

    room_tariff = to_money(
        sum((to_money(item.tariff) * nights for item in allocations), ZERO)
    )
    guests = total_guests(allocations)
    charges_total = to_money(
        sum(
            (
                special_charge_amount(
                    charge,
                    guests,
                    nights,
                    per_person_per_night=per_person_per_night,
                )
                for charge in special_charges
            ),
            ZERO,
        )
    )
    subtotal = room_tariff + charges_total
    discount_value = discount_amount(discount, subtotal)
    total = max(subtotal - discount_value, ZERO)
    return PaymentCalculation(
        number_of_nights=nights,
        room_tariff=room_tariff,
        special_charges_total=charges_total,
        subtotal=subtotal,
        discount=discount_value,
        total=total,
    )


class PricingService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def list_special_charges(self) -> list[SpecialCharge]:
        return self._repository.list_special_charges()

    def quote(
        self,
        *,
        allocations: Sequence[RoomAllocation],
        special_charges: Sequence[SpecialCharge],
        discount: Discount,
        check_in_date: date,
        check_out_date: date,
        per_person_per_night: Optional[bool] = None,
    ) -> PaymentCalculation:
        try:
            validate_discount(discount)
        except ValueError as exc:
            raise PricingValidationError(str(exc)) from exc
        nights = number_of_nights(check_in_date, check_out_date)
        resolved_per_night = (
            per_person_per_night
            if per_person_per_night is not None
            else self._settings.per_person_charge_per_night
        )
        calculation = compute_payment(
            allocations,
            special_charges,
            discount,
            nights,
            per_person_per_night=resolved_per_night,
        )
        logger.info(
            "Quote computed | nights=%s | rooms=%s | subtotal=%s | discount=%s | total=%s %s",
            nights,
            len(allocations),
            calculation.subtotal,
            calculation.discount,
            calculation.total,
            self._settings.currency_code,
        )
        return calculation
