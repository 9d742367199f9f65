from __future__ import annotations

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from lodge.domain.models import (
    Reservation,
    ReservationRoom,
    ReservationStatus,
    Room,
)
from lodge.repository.data_repository import DataRepository
from lodge.services.calendar_service import (
    ALL,
    NEUTRAL_COLOR,
    STATUS_COLORS,
    CalendarService,
    CalendarState,
    ViewMode,
    filter_reservations_by_status,
    filter_rooms_by_type,
    project_reservation,
    status_color,
    visible_range,
)
from lodge.services.inventory_service import intervals_overlap
from lodge.utils.config import get_settings


ROOMS = [
    Room("r101", "101", "Standard", 2, Decimal("1500.00")),
    Room("r201", "201", "Family Suite", 4, Decimal("3000.00")),
    Room("r203", "203", "Dormitory", 8, Decimal("4000.00")),
]


def _reservation(
    reservation_id: str,
    start: date,
    end: date,
    status: str,
    room: Room,
    guests: int = 2,
) -> Reservation:
    return Reservation(
        reservation_id=reservation_id,
        reference_number=f"RES-{reservation_id}",
        check_in_date=start,
        check_out_date=end,
        guest_count=guests,
        status=status,
        rooms=(ReservationRoom(room.room_id, room.room_number, room.room_type, guests),),
    )


def test_every_known_status_has_a_color() -> None:
    for status in ReservationStatus:
        assert status_color(status.value) == STATUS_COLORS[status]


def test_status_color_aliases_and_unknowns() -> None:
    assert status_color("pending") == STATUS_COLORS[ReservationStatus.RESERVATION]
    assert status_color("confirmed") == STATUS_COLORS[ReservationStatus.BOOKING]
    assert status_color("archived") == NEUTRAL_COLOR
    assert status_color(None) == NEUTRAL_COLOR
    assert status_color("") == NEUTRAL_COLOR


def test_project_reservation_builds_event() -> None:
    reservation = _reservation("1", date(2026, 6, 1), date(2026, 6, 3), "booking", ROOMS[1], 3)

    event = project_reservation(reservation)

    assert event.event_id == "1"
    assert event.title == "RES-1 - 3 guests"
    assert event.start == date(2026, 6, 1)
    assert event.end == date(2026, 6, 3)
    assert event.color == "#3b82f6"
    assert event.text_color == "#ffffff"
    assert event.room_numbers == ("201",)


def test_room_type_filter_and_all_sentinel() -> None:
    assert filter_rooms_by_type(ROOMS, ALL) == ROOMS
    assert filter_rooms_by_type(ROOMS, "Dormitory") == [ROOMS[2]]
    assert filter_rooms_by_type(ROOMS, "Cottage") == []


def test_status_filter_matches_canonical_status() -> None:
    reservations = [
        _reservation("1", date(2026, 6, 1), date(2026, 6, 3), "pending", ROOMS[0]),
        _reservation("2", date(2026, 6, 1), date(2026, 6, 3), "reservation", ROOMS[1]),
        _reservation("3", date(2026, 6, 1), date(2026, 6, 3), "cancelled", ROOMS[2]),
    ]

    matched = filter_reservations_by_status(reservations, "reservation")

    assert [item.reservation_id for item in matched] == ["1", "2"]
    assert filter_reservations_by_status(reservations, ALL) == reservations


def test_half_open_overlap_rule() -> None:
    booked_start, booked_end = date(2026, 6, 1), date(2026, 6, 3)

    assert not intervals_overlap(booked_start, booked_end, date(2026, 6, 3), date(2026, 6, 5))
    assert intervals_overlap(booked_start, booked_end, date(2026, 6, 2), date(2026, 6, 4))
    assert not intervals_overlap(booked_start, booked_end, date(2026, 5, 30), date(2026, 6, 1))


@pytest.mark.parametrize(
    ("mode", "expected"),
    [
        (ViewMode.DAY, (date(2026, 6, 17), date(2026, 6, 18))),
        (ViewMode.WEEK, (date(2026, 6, 15), date(2026, 6, 22))),
        (ViewMode.MONTH, (date(2026, 6, 1), date(2026, 7, 1))),
    ],
)
def test_visible_range_per_view_mode(mode: ViewMode, expected) -> None:
    assert visible_range(date(2026, 6, 17), mode) == expected


def test_state_events_compose_filters_and_range() -> None:
    state = CalendarState(selected_date=date(2026, 6, 17), view_mode=ViewMode.WEEK)
    state.set_rooms(ROOMS)
    state.set_reservations(
        [
            _reservation("in-week", date(2026, 6, 14), date(2026, 6, 16), "booking", ROOMS[1]),
            _reservation("ends-monday", date(2026, 6, 12), date(2026, 6, 15), "booking", ROOMS[1]),
            _reservation("dorm", date(2026, 6, 18), date(2026, 6, 20), "checked_in", ROOMS[2]),
            _reservation("cancelled", date(2026, 6, 18), date(2026, 6, 19), "cancelled", ROOMS[0]),
        ]
    )

    assert [event.event_id for event in state.events()] == ["in-week", "dorm", "cancelled"]

    state.set_room_type_filter("Family Suite")
    assert [event.event_id for event in state.events()] == ["in-week"]

    state.reset_filters()
    state.set_status_filter("checked_in")
    assert [event.event_id for event in state.events()] == ["dorm"]
    assert state.room_types == ["Dormitory", "Family Suite", "Standard"]
    assert state.status_types == ["booking", "cancelled", "checked_in"]


def test_state_reset_clears_everything() -> None:
    state = CalendarState(selected_date=date(2020, 1, 1), view_mode=ViewMode.DAY)
    state.set_rooms(ROOMS)
    state.set_status_filter("booking")

    state.reset()

    assert state.rooms == []
    assert state.view_mode is ViewMode.MONTH
    assert state.filters.status == ALL
    assert state.selected_date == date.today()


def test_states_do_not_share_data() -> None:
    first = CalendarState()
    second = CalendarState()

    first.set_rooms(ROOMS)

    assert second.rooms == []


def test_calendar_service_loads_visible_range(tmp_path) -> None:
    settings = replace(get_settings(), database_path=tmp_path / "calendar.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    suite = repository.create_room("201", "Family Suite", 4, "3000.00")
    standard = repository.create_room("101", "Standard", 2, "1500.00")
    repository.insert_reservation_if_available(
        reference_number="RES-20260610-AAAA",
        guest_name="Asha",
        guest_phone="",
        check_in_date=date(2026, 6, 10),
        check_out_date=date(2026, 6, 12),
        guest_count=3,
        status=ReservationStatus.BOOKING,
        total_quote_minor=600000,
        rooms=[(suite.room_id, 3)],
    )
    repository.insert_reservation_if_available(
        reference_number="RES-20260720-BBBB",
        guest_name="Ravi",
        guest_phone="",
        check_in_date=date(2026, 7, 20),
        check_out_date=date(2026, 7, 21),
        guest_count=1,
        status=ReservationStatus.RESERVATION,
        total_quote_minor=150000,
        rooms=[(standard.room_id, 1)],
    )

    state = CalendarState(selected_date=date(2026, 6, 17), view_mode=ViewMode.MONTH)
    CalendarService(repository=repository, settings=settings).load(state)

    assert [room.room_number for room in state.rooms] == ["101", "201"]
    events = state.events()
    assert [event.title for event in events] == ["RES-20260610-AAAA - 3 guests"]
    assert events[0].room_numbers == ("201",)
    assert events[0].color == STATUS_COLORS[ReservationStatus.BOOKING]
