"""Domain-level validation rules for allocation, pricing and reservations."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from lodge.domain.models import Discount, DiscountKind, ReservationStatus


STATUS_ALIASES: dict[str, ReservationStatus] = {
    "pending": ReservationStatus.RESERVATION,
    "confirmed": ReservationStatus.BOOKING,
    "completed": ReservationStatus.CHECKED_OUT,
}

ALLOWED_TRANSITIONS: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    ReservationStatus.RESERVATION: frozenset(
        {
            ReservationStatus.BOOKING,
            ReservationStatus.CHECKED_IN,
            ReservationStatus.CANCELLED,
        }
    ),
    ReservationStatus.BOOKING: frozenset(
        {ReservationStatus.CHECKED_IN, ReservationStatus.CANCELLED}
    ),
    ReservationStatus.CHECKED_IN: frozenset({ReservationStatus.CHECKED_OUT}),
    ReservationStatus.CHECKED_OUT: frozenset(),
    ReservationStatus.CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class SolverConfig:
    max_time_seconds: float
    random_seed: int
    workers: int


def validate_solver_config(config: SolverConfig) -> None:
    if config.max_time_seconds <= 0:
        raise ValueError("max_time_seconds must be > 0")
    if config.random_seed < 0:
        raise ValueError("random_seed must be >= 0")
    if config.workers <= 0:
        raise ValueError("workers must be > 0")


def validate_discount(discount: Discount) -> None:
    """Reject discounts outside the range the calculator documents."""
    if discount.value < Decimal("0"):
        raise ValueError("discount value must be >= 0")
    if discount.kind is DiscountKind.PERCENTAGE and discount.value > Decimal("100"):
        raise ValueError("percentage discount must be between 0 and 100")


def validate_stay_dates(check_in_date: date, check_out_date: date) -> None:
    if check_in_date >= check_out_date:
        raise ValueError("check_in_date must be before check_out_date")


def normalize_status(value: str | ReservationStatus) -> ReservationStatus:
    """Map any accepted status spelling onto the canonical vocabulary."""
    if isinstance(value, ReservationStatus):
        return value
    cleaned = str(value).strip().lower()
    if cleaned in STATUS_ALIASES:
        return STATUS_ALIASES[cleaned]
    try:
        return ReservationStatus(cleaned)
    except ValueError as exc:
        raise ValueError(f"unknown reservation status: {value!r}") from exc


def can_transition(current: ReservationStatus, target: ReservationStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]
