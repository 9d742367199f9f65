"""Domain models for room allocation, pricing and reservation calendars."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional, Sequence, Union


CENT = Decimal("0.01")
ZERO = Decimal("0.00")

MoneyLike = Union[Decimal, int, str]


def to_money(value: MoneyLike) -> Decimal:
    """Quantize a monetary value to two decimal places."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(value: MoneyLike) -> int:
    return int(to_money(value) * 100)


def from_minor_units(value: int) -> Decimal:
    return to_money(Decimal(int(value)) / 100)


_NATURAL_SPLIT = re.compile(r"(\d+)")


def room_number_key(room_number: str) -> tuple:
    """Sort key that orders "9" before "10" and "A2" before "A10"."""
    parts = _NATURAL_SPLIT.split(room_number.strip().lower())
    return tuple(
        (0, int(part), "") if part.isdigit() else (1, 0, part)
        for part in parts
        if part != ""
    )


class AllocationStrategy(str, Enum):
    COMFORT_FIRST = "comfort_first"
    PRICE_OPTIMIZED = "price_optimized"
    MINIMAL_ROOMS = "minimal_rooms"


class ChargeRateType(str, Enum):
    PER_DAY = "per_day"
    PER_PERSON = "per_person"


class DiscountKind(str, Enum):
    NONE = "none"
    PERCENTAGE = "percentage"
    AMOUNT = "amount"


class ReservationStatus(str, Enum):
    RESERVATION = "reservation"
    BOOKING = "booking"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"
    CANCELLED = "cancelled"


ACTIVE_STATUSES: frozenset[ReservationStatus] = frozenset(
    {
        ReservationStatus.RESERVATION,
        ReservationStatus.BOOKING,
        ReservationStatus.CHECKED_IN,
    }
)


@dataclass(frozen=True)
class Room:
    room_id: str
    room_number: str
    room_type: str
    capacity: int
    tariff: Decimal


@dataclass(frozen=True)
class RoomAllocation:
    allocation_id: str
    room_id: str
    room_number: str
    room_type: str
    capacity: int
    tariff: Decimal
    guest_count: int

    @classmethod
    def for_room(cls, room: Room, allocation_id: str, guest_count: int) -> "RoomAllocation":
        return cls(
            allocation_id=allocation_id,
            room_id=room.room_id,
            room_number=room.room_number,
            room_type=room.room_type,
            capacity=room.capacity,
            tariff=room.tariff,
            guest_count=guest_count,
        )


@dataclass(frozen=True)
class AllocationOption:
    strategy: AllocationStrategy
    allocations: tuple[RoomAllocation, ...]

    @property
    def total_tariff(self) -> Decimal:
        return to_money(sum((item.tariff for item in self.allocations), ZERO))

    @property
    def total_guests(self) -> int:
        return sum(item.guest_count for item in self.allocations)

    @property
    def room_count(self) -> int:
        return len(self.allocations)


@dataclass(frozen=True)
class SpecialCharge:
    name: str
    rate: Decimal
    rate_type: ChargeRateType
    charge_id: Optional[str] = None
    quantity: int = 1


@dataclass(frozen=True)
class Discount:
    kind: DiscountKind = DiscountKind.NONE
    value: Decimal = ZERO


@dataclass(frozen=True)
class PaymentCalculation:
    number_of_nights: int
    room_tariff: Decimal
    special_charges_total: Decimal
    subtotal: Decimal
    discount: Decimal
    total: Decimal


@dataclass(frozen=True)
class ReservationRoom:
    room_id: str
    room_number: str
    room_type: str
    guest_count: int


@dataclass(frozen=True)
class Reservation:
    reservation_id: str
    reference_number: str
    check_in_date: date
    check_out_date: date
    guest_count: int
    status: str
    guest_name: str = ""
    guest_phone: str = ""
    total_quote: Decimal = ZERO
    rooms: tuple[ReservationRoom, ...] = field(default_factory=tuple)

    @property
    def room_numbers(self) -> list[str]:
        return [room.room_number for room in self.rooms]


@dataclass(frozen=True)
class CalendarEvent:
    event_id: str
    title: str
    start: date
    end: date
    color: str
    text_color: str
    status: str
    room_numbers: tuple[str, ...] = ()


@dataclass(frozen=True)
class ReservationChange:
    """Notification emitted after a reservation is written."""

    reservation_id: str
    status: ReservationStatus
    check_in_date: date
    check_out_date: date
    room_ids: tuple[str, ...]


def total_guests(allocations: Sequence[RoomAllocation]) -> int:
    return sum(item.guest_count for item in allocations)


def total_tariff(allocations: Sequence[RoomAllocation]) -> Decimal:
    return to_money(sum((item.tariff for item in allocations), ZERO))
