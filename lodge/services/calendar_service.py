"""Reservation calendar: event projection, filters and view state."""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from enum import Enum
from typing import Iterable, Optional, Sequence

from lodge.domain.constraints import normalize_status
from lodge.domain.models import CalendarEvent, Reservation, ReservationStatus, Room
from lodge.repository.data_repository import DataRepository
from lodge.utils.config import Settings, get_settings
from lodge.utils.logger import get_logger


logger = get_logger(__name__)

ALL = "all"
NEUTRAL_COLOR = "#6b7280"
EVENT_TEXT_COLOR = "#ffffff"

STATUS_COLORS: dict[ReservationStatus, str] = {
    ReservationStatus.RESERVATION: "#fbbf24",
    ReservationStatus.BOOKING: "#3b82f6",
    ReservationStatus.CHECKED_IN: "#10b981",
    ReservationStatus.CHECKED_OUT: "#6b7280",
    ReservationStatus.CANCELLED: "#ef4444",
}


class ViewMode(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


def status_color(status: Optional[str]) -> str:
    """Color for a status; unknown or missing statuses get the neutral gray."""
    if not status:
        return NEUTRAL_COLOR
    try:
        return STATUS_COLORS[normalize_status(status)]
    except ValueError:
        return NEUTRAL_COLOR


def project_reservation(reservation: Reservation) -> CalendarEvent:
    return CalendarEvent(
        event_id=reservation.reservation_id,
        title=f"{reservation.reference_number} - {reservation.guest_count} guests",
        start=reservation.check_in_date,
        end=reservation.check_out_date,
        color=status_color(reservation.status),
        text_color=EVENT_TEXT_COLOR,
        status=reservation.status,
        room_numbers=tuple(reservation.room_numbers),
    )


def project_reservations(reservations: Iterable[Reservation]) -> list[CalendarEvent]:
    return [project_reservation(reservation) for reservation in reservations]


def filter_rooms_by_type(rooms: Sequence[Room], room_type: str) -> list[Room]:
    if room_type == ALL:
        return list(rooms)
    return [room for room in rooms if room.room_type == room_type]


def filter_reservations_by_status(
    reservations: Sequence[Reservation],
    status: str,
) -> list[Reservation]:
    """Match on canonical status so "pending" also finds "reservation" rows."""
    if status == ALL:
        return list(reservations)
    try:
        wanted = normalize_status(status)
    except ValueError:
        return [reservation for reservation in reservations if reservation.status == status]

    def matches(reservation: Reservation) -> bool:
        try:
            return normalize_status(reservation.status) is wanted
        except ValueError:
            return False

    return [reservation for reservation in reservations if matches(reservation)]


def visible_range(selected_date: date, view_mode: ViewMode) -> tuple[date, date]:
    """Half-open date range shown by the calendar for a view mode."""
    if view_mode is ViewMode.DAY:
        return selected_date, selected_date + timedelta(days=1)
    if view_mode is ViewMode.WEEK:
        start = selected_date - timedelta(days=selected_date.weekday())
        return start, start + timedelta(days=7)
    start = selected_date.replace(day=1)
    days_in_month = calendar.monthrange(selected_date.year, selected_date.month)[1]
    return start, start + timedelta(days=days_in_month)


@dataclass(frozen=True)
class CalendarFilters:
    room_type: str = ALL
    status: str = ALL


@dataclass
class CalendarState:
    """View-owned calendar state; pass it around instead of sharing a global."""

    rooms: list[Room] = field(default_factory=list)
    reservations: list[Reservation] = field(default_factory=list)
    selected_date: date = field(default_factory=date.today)
    view_mode: ViewMode = ViewMode.MONTH
    filters: CalendarFilters = field(default_factory=CalendarFilters)

    def set_rooms(self, rooms: Sequence[Room]) -> None:
        self.rooms = list(rooms)

    def set_reservations(self, reservations: Sequence[Reservation]) -> None:
        self.reservations = list(reservations)

    def set_selected_date(self, selected_date: date) -> None:
        self.selected_date = selected_date

    def set_view_mode(self, view_mode: ViewMode | str) -> None:
        self.view_mode = ViewMode(view_mode)

    def set_room_type_filter(self, room_type: str) -> None:
        self.filters = replace(self.filters, room_type=room_type)

    def set_status_filter(self, status: str) -> None:
        self.filters = replace(self.filters, status=status)

    def reset_filters(self) -> None:
        self.filters = CalendarFilters()

    def reset(self) -> None:
        self.rooms = []
        self.reservations = []
        self.selected_date = date.today()
        self.view_mode = ViewMode.MONTH
        self.filters = CalendarFilters()

    @property
    def filtered_rooms(self) -> list[Room]:
        return filter_rooms_by_type(self.rooms, self.filters.room_type)

    @property
    def filtered_reservations(self) -> list[Reservation]:
        return filter_reservations_by_status(self.reservations, self.filters.status)

    @property
    def room_types(self) -> list[str]:
        return sorted({room.room_type for room in self.rooms})

    @property
    def status_types(self) -> list[str]:
        return sorted({reservation.status for reservation in self.reservations})

    @property
    def visible_range(self) -> tuple[date, date]:
        return visible_range(self.selected_date, self.view_mode)

    def events(self) -> list[CalendarEvent]:
        """Filtered reservations projected as events inside the visible range.

        When a room type filter is active only reservations holding at least
        one room of that type are shown.
        """
        start, end = self.visible_range
        reservations = self.filtered_reservations
        if self.filters.room_type != ALL:
            room_ids = {room.room_id for room in self.filtered_rooms}
            reservations = [
                reservation
                for reservation in reservations
                if any(room.room_id in room_ids for room in reservation.rooms)
            ]
        in_range = [
            reservation
            for reservation in reservations
            if reservation.check_in_date < end and reservation.check_out_date > start
        ]
        return project_reservations(in_range)


class CalendarService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def load(self, state: CalendarState) -> CalendarState:
        """Fill `state` with rooms and the reservations of its visible range."""
        start, end = state.visible_range
        rooms = self._repository.list_rooms()
        reservations = self._repository.list_reservations(start_date=start, end_date=end)
        state.set_rooms(rooms)
        state.set_reservations(reservations)
        logger.info(
            "Calendar loaded | view=%s | start=%s | end=%s | rooms=%s | reservations=%s",
            state.view_mode.value,
            start,
            end,
            len(rooms),
            len(reservations),
        )
        return state
