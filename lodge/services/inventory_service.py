"""Room inventory: availability queries keyed by stay dates and room intake."""

from __future__ import annotations

from datetime import date
from typing import Optional

from lodge.domain.constraints import validate_stay_dates
from lodge.domain.models import MoneyLike, Room, to_money
from lodge.repository.data_repository import DataRepository, RepositoryError
from lodge.utils.config import Settings, get_settings
from lodge.utils.logger import get_logger


logger = get_logger(__name__)


class InventoryValidationError(Exception):
    """Raised when an availability query has invalid inputs."""


class InventoryQueryError(Exception):
    """Raised when availability could not be read from storage."""


def intervals_overlap(
    existing_start: date,
    existing_end: date,
    requested_start: date,
    requested_end: date,
) -> bool:
    """Half-open overlap: a checkout and a check-in on the same day do not clash."""
    return existing_start < requested_end and existing_end > requested_start


class InventoryService:
    """Answers "which rooms are free for this stay" without mutating anything."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def get_available_rooms(
        self,
        check_in_date: date,
        check_out_date: date,
        guest_count: int,
        guest_type: Optional[str] = None,
    ) -> list[Room]:
        try:
            validate_stay_dates(check_in_date, check_out_date)
        except ValueError as exc:
            raise InventoryValidationError(str(exc)) from exc
        if guest_count < 1:
            raise InventoryValidationError("guest_count must be >= 1")

        try:
            rooms = self._repository.list_available_rooms(check_in_date, check_out_date)
        except RepositoryError as exc:
            logger.error(
                "Availability query failed | check_in=%s | check_out=%s | error=%s",
                check_in_date,
                check_out_date,
                exc,
            )
            raise InventoryQueryError(str(exc)) from exc

        logger.info(
            "Availability query | check_in=%s | check_out=%s | guests=%s | guest_type=%s | rooms=%s",
            check_in_date,
            check_out_date,
            guest_count,
            guest_type,
            len(rooms),
        )
        return rooms

    def list_rooms(self) -> list[Room]:
        try:
            return self._repository.list_rooms()
        except RepositoryError as exc:
            raise InventoryQueryError(str(exc)) from exc

    def add_room(
        self,
        room_number: str,
        room_type: str,
        capacity: int,
        tariff: MoneyLike,
    ) -> Room:
        """Register a new room; room numbers are unique across the lodge."""
        room_number = room_number.strip()
        room_type = room_type.strip()
        if not room_number or not room_type:
            raise InventoryValidationError("room_number and room_type are required")
        if capacity < 1:
            raise InventoryValidationError("capacity must be >= 1")
        if to_money(tariff) < 0:
            raise InventoryValidationError("tariff must be >= 0")
        if any(room.room_number == room_number for room in self.list_rooms()):
            raise InventoryValidationError(f"room {room_number} already exists")

        try:
            room = self._repository.create_room(room_number, room_type, capacity, tariff)
        except RepositoryError as exc:
            logger.error("Room insert failed | room_number=%s | error=%s", room_number, exc)
            raise InventoryQueryError(str(exc)) from exc

        logger.info(
            "Room added | room_id=%s | room_number=%s | type=%s | capacity=%s | tariff=%s",
            room.room_id,
            room.room_number,
            room.room_type,
            room.capacity,
            room.tariff,
        )
        return room
