"""Reservation creation, room changes and status lifecycle."""

from __future__ import annotations

import secrets
from datetime import date, datetime, timezone
from typing import Optional, Sequence
from uuid import uuid4

from lodge.domain.constraints import can_transition, normalize_status, validate_discount
from lodge.domain.models import (
    ACTIVE_STATUSES,
    Discount,
    PaymentCalculation,
    Reservation,
    ReservationChange,
    ReservationStatus,
    RoomAllocation,
    SpecialCharge,
    to_minor_units,
)
from lodge.repository.data_repository import DataRepository, RoomUnavailableError
from lodge.services.allocation_service import AllocationValidationError
from lodge.services.change_feed import ChangeFeed
from lodge.services.pricing_service import PricingService
from lodge.services.selection_service import validate_allocations
from lodge.utils.config import Settings, get_settings
from lodge.utils.logger import get_logger


logger = get_logger(__name__)


class BookingValidationError(Exception):
    """Raised when reservation inputs are invalid."""


class RoomConflictError(Exception):
    """Raised when another reservation claimed a room first."""

    def __init__(self, room_ids: Sequence[str]) -> None:
        self.room_ids = tuple(room_ids)
        super().__init__(
            "Rooms no longer available for these dates: " + ", ".join(self.room_ids)
        )


class ReservationNotFoundError(Exception):
    """Raised when a reservation id does not exist."""


class InvalidStatusTransitionError(Exception):
    """Raised when a status change is not allowed from the current status."""


class BookingService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        pricing_service: Optional[PricingService] = None,
        change_feed: Optional[ChangeFeed] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._pricing_service = pricing_service or PricingService(
            repository=self._repository,
            settings=self._settings,
        )
        self._change_feed = change_feed or ChangeFeed()

    @property
    def change_feed(self) -> ChangeFeed:
        return self._change_feed

    def _new_reference_number(self, check_in_date: date) -> str:
        suffix = secrets.token_hex(2).upper()
        return f"{self._settings.reference_prefix}-{check_in_date:%Y%m%d}-{suffix}"

    def build_allocations(
        self,
        selections: Sequence[tuple[str, int]],
    ) -> list[RoomAllocation]:
        """Snapshot stored rooms for (room_id, guest_count) pairs."""
        allocations: list[RoomAllocation] = []
        for room_id, guest_count in selections:
            room = self._repository.get_room(room_id)
            if room is None:
                raise BookingValidationError(f"room {room_id} does not exist")
            allocations.append(RoomAllocation.for_room(room, str(uuid4()), guest_count))
        return allocations

    def create_reservation(
        self,
        *,
        guest_name: str,
        guest_phone: str,
        check_in_date: date,
        check_out_date: date,
        guest_count: int,
        allocations: Sequence[RoomAllocation],
        special_charges: Sequence[SpecialCharge] = (),
        discount: Discount = Discount(),
        status: str | ReservationStatus = ReservationStatus.RESERVATION,
    ) -> tuple[Reservation, PaymentCalculation]:
        """Validate, price and persist a reservation atomically."""
        try:
            resolved_status = normalize_status(status)
            validate_discount(discount)
        except ValueError as exc:
            raise BookingValidationError(str(exc)) from exc
        if resolved_status not in (ReservationStatus.RESERVATION, ReservationStatus.BOOKING):
            raise BookingValidationError(
                "new reservations must start as 'reservation' or 'booking'"
            )
        try:
            validate_allocations(allocations, guest_count)
        except AllocationValidationError as exc:
            raise BookingValidationError(str(exc)) from exc

        calculation = self._pricing_service.quote(
            allocations=allocations,
            special_charges=special_charges,
            discount=discount,
            check_in_date=check_in_date,
            check_out_date=check_out_date,
        )

        try:
            reservation_id = self._repository.insert_reservation_if_available(
                reference_number=self._new_reference_number(check_in_date),
                guest_name=guest_name,
                guest_phone=guest_phone,
                check_in_date=check_in_date,
                check_out_date=check_out_date,
                guest_count=guest_count,
                status=resolved_status,
                total_quote_minor=to_minor_units(calculation.total),
                rooms=[(item.room_id, item.guest_count) for item in allocations],
                special_charges=special_charges,
            )
        except RoomUnavailableError as exc:
            logger.warning(
                "Reservation rejected, rooms taken | check_in=%s | check_out=%s | rooms=%s",
                check_in_date,
                check_out_date,
                exc.room_ids,
            )
            raise RoomConflictError(exc.room_ids) from exc

        reservation = self._repository.get_reservation(reservation_id)
        if reservation is None:  # pragma: no cover - written in the same call
            raise ReservationNotFoundError(reservation_id)

        logger.info(
            "Reservation created | reservation_id=%s | reference=%s | rooms=%s | total=%s",
            reservation.reservation_id,
            reservation.reference_number,
            len(allocations),
            calculation.total,
        )
        self._publish(reservation, resolved_status)
        return reservation, calculation

    def update_status(
        self,
        reservation_id: str,
        status: str | ReservationStatus,
    ) -> Reservation:
        try:
            target = normalize_status(status)
        except ValueError as exc:
            raise BookingValidationError(str(exc)) from exc

        reservation = self._repository.get_reservation(reservation_id)
        if reservation is None:
            raise ReservationNotFoundError(f"reservation {reservation_id} not found")

        current = normalize_status(reservation.status)
        if current is target:
            return reservation
        if not can_transition(current, target):
            raise InvalidStatusTransitionError(
                f"cannot move reservation from {current.value} to {target.value}"
            )

        if not self._repository.update_reservation_status(
            reservation_id,
            target,
            expected_status=reservation.status,
        ):
            logger.warning(
                "Status change lost to a concurrent update | reservation_id=%s | from=%s | to=%s",
                reservation_id,
                current.value,
                target.value,
            )
            raise InvalidStatusTransitionError(
                f"reservation {reservation_id} is no longer {current.value}"
            )
        updated = self._repository.get_reservation(reservation_id)
        if updated is None:  # pragma: no cover - row cannot vanish
            raise ReservationNotFoundError(f"reservation {reservation_id} not found")

        logger.info(
            "Reservation status changed | reservation_id=%s | from=%s | to=%s | at=%s",
            reservation_id,
            current.value,
            target.value,
            datetime.now(timezone.utc).isoformat(),
        )
        self._publish(updated, target)
        return updated

    def change_room(
        self,
        reservation_id: str,
        old_room_id: str,
        new_room_id: str,
    ) -> Reservation:
        """Swap one room of an active reservation for a free room."""
        reservation = self._repository.get_reservation(reservation_id)
        if reservation is None:
            raise ReservationNotFoundError(f"reservation {reservation_id} not found")

        current = normalize_status(reservation.status)
        if current not in ACTIVE_STATUSES:
            raise BookingValidationError(
                f"rooms cannot be changed on a {current.value} reservation"
            )
        held = {room.room_id: room for room in reservation.rooms}
        if old_room_id not in held:
            raise BookingValidationError(
                f"room {old_room_id} is not part of reservation {reservation_id}"
            )
        if new_room_id == old_room_id:
            return reservation
        if new_room_id in held:
            raise BookingValidationError(
                f"room {new_room_id} is already part of reservation {reservation_id}"
            )

        new_room = self._repository.get_room(new_room_id)
        if new_room is None:
            raise BookingValidationError(f"room {new_room_id} does not exist")
        guest_count = held[old_room_id].guest_count
        if new_room.capacity < guest_count:
            raise BookingValidationError(
                f"room {new_room.room_number} sleeps {new_room.capacity}, "
                f"{guest_count} guests are assigned"
            )

        try:
            moved = self._repository.change_reservation_room(
                reservation_id,
                old_room_id,
                new_room_id,
            )
        except RoomUnavailableError as exc:
            logger.warning(
                "Room change rejected, room taken | reservation_id=%s | room=%s",
                reservation_id,
                new_room_id,
            )
            raise RoomConflictError(exc.room_ids) from exc
        if not moved:
            raise BookingValidationError(
                f"room {old_room_id} is not part of reservation {reservation_id}"
            )

        updated = self._repository.get_reservation(reservation_id)
        if updated is None:  # pragma: no cover - row cannot vanish
            raise ReservationNotFoundError(f"reservation {reservation_id} not found")

        logger.info(
            "Reservation room changed | reservation_id=%s | from_room=%s | to_room=%s",
            reservation_id,
            old_room_id,
            new_room_id,
        )
        self._publish(updated, current)
        return updated

    def list_reservations(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[Reservation]:
        return self._repository.list_reservations(start_date=start_date, end_date=end_date)

    def _publish(self, reservation: Reservation, status: ReservationStatus) -> None:
        self._change_feed.publish(
            ReservationChange(
                reservation_id=reservation.reservation_id,
                status=status,
                check_in_date=reservation.check_in_date,
                check_out_date=reservation.check_out_date,
                room_ids=tuple(room.room_id for room in reservation.rooms),
            )
        )
