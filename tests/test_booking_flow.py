from __future__ import annotations

import sqlite3
from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

pytest.importorskip("ortools")

from lodge.controllers.allocation_controller import router as allocation_router
from lodge.controllers.reservation_controller import router as reservation_router
from lodge.domain.models import ReservationChange, ReservationStatus
from lodge.repository.data_repository import DataRepository
from lodge.services.allocation_service import AllocationService
from lodge.services.booking_service import BookingService, InvalidStatusTransitionError
from lodge.services.calendar_service import CalendarService
from lodge.services.change_feed import ChangeFeed
from lodge.services.inventory_service import InventoryService
from lodge.services.pricing_service import PricingService
from lodge.utils.config import get_settings


CHECK_IN = "2026-10-01"
CHECK_OUT = "2026-10-03"


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        seed_demo_data=True,
        allocation_solver_max_time_seconds=5,
        allocation_cp_sat_workers=1,
        per_person_charge_per_night=True,
    )


def _build_test_app(tmp_path) -> tuple[FastAPI, DataRepository, ChangeFeed]:
    settings = _build_test_settings(tmp_path, "booking_flow.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.seed_demo_data()

    inventory_service = InventoryService(repository=repository, settings=settings)
    allocation_service = AllocationService(
        inventory_service=inventory_service,
        settings=settings,
    )
    pricing_service = PricingService(repository=repository, settings=settings)
    change_feed = ChangeFeed()
    booking_service = BookingService(
        repository=repository,
        pricing_service=pricing_service,
        change_feed=change_feed,
        settings=settings,
    )

    app = FastAPI()
    app.include_router(allocation_router)
    app.include_router(reservation_router)
    app.state.repository = repository
    app.state.inventory_service = inventory_service
    app.state.allocation_service = allocation_service
    app.state.pricing_service = pricing_service
    app.state.booking_service = booking_service
    app.state.calendar_service = CalendarService(repository=repository, settings=settings)
    return app, repository, change_feed


def _money(value) -> Decimal:
    return Decimal(str(value))


def _room_id(repository: DataRepository, number: str) -> str:
    return next(room.room_id for room in repository.list_rooms() if room.room_number == number)


def _kitchen(client: TestClient) -> dict:
    charges = client.get("/special_charges").json()["special_charges"]
    return next(charge for charge in charges if charge["name"] == "Kitchen")


def test_reservation_end_to_end_flow(tmp_path):
    app, repository, change_feed = _build_test_app(tmp_path)
    changes: list[ReservationChange] = []
    subscription = change_feed.subscribe(changes.append)
    client = TestClient(app)

    # Step 1: availability for the stay
    available = client.get(
        "/rooms/available",
        params={"check_in_date": CHECK_IN, "check_out_date": CHECK_OUT, "guest_count": 4},
    )
    assert available.status_code == 200
    assert len(available.json()["rooms"]) == 8

    # Step 2: strategy options
    options_response = client.post(
        "/allocations/options",
        json={"check_in_date": CHECK_IN, "check_out_date": CHECK_OUT, "guest_count": 4},
    )
    assert options_response.status_code == 200
    options = {option["strategy"]: option for option in options_response.json()["options"]}
    assert set(options) == {"comfort_first", "price_optimized", "minimal_rooms"}
    price_option = options["price_optimized"]
    assert [item["room_number"] for item in price_option["allocations"]] == ["201"]
    assert _money(price_option["total_tariff"]) == Decimal("3000")
    assert [item["room_number"] for item in options["comfort_first"]["allocations"]] == ["203"]
    for option in options.values():
        assert option["total_guests"] == 4

    # Step 3: quote
    kitchen = _kitchen(client)
    discount = {"kind": "percentage", "value": "10"}
    quote = client.post(
        "/payments/quote",
        json={
            "check_in_date": CHECK_IN,
            "check_out_date": CHECK_OUT,
            "allocations": price_option["allocations"],
            "special_charges": [kitchen],
            "discount": discount,
        },
    )
    assert quote.status_code == 200
    payment = quote.json()
    assert payment["number_of_nights"] == 2
    assert _money(payment["room_tariff"]) == Decimal("6000")
    assert _money(payment["special_charges_total"]) == Decimal("4000")
    assert _money(payment["subtotal"]) == Decimal("10000")
    assert _money(payment["discount"]) == Decimal("1000")
    assert _money(payment["total"]) == Decimal("9000")

    # Step 4: reserve the quoted room
    suite_id = price_option["allocations"][0]["room_id"]
    created = client.post(
        "/reservations",
        json={
            "check_in_date": CHECK_IN,
            "check_out_date": CHECK_OUT,
            "guest_name": "Meera",
            "guest_phone": "+91 90000 00000",
            "guest_count": 4,
            "rooms": [{"room_id": suite_id, "guest_count": 4}],
            "special_charges": [kitchen],
            "discount": discount,
            "status": "pending",
        },
    )
    assert created.status_code == 201
    reservation = created.json()["reservation"]
    assert reservation["status"] == "reservation"
    assert reservation["reference_number"].startswith("RES-20261001-")
    assert _money(reservation["total_quote"]) == Decimal("9000")
    assert _money(created.json()["payment"]["total"]) == Decimal("9000")

    # Step 5: the same room can no longer be claimed for overlapping dates
    conflict = client.post(
        "/reservations",
        json={
            "check_in_date": "2026-10-02",
            "check_out_date": "2026-10-04",
            "guest_name": "Late",
            "guest_count": 2,
            "rooms": [{"room_id": suite_id, "guest_count": 2}],
        },
    )
    assert conflict.status_code == 409
    assert repository.count_reservations() == 1

    # Step 6: checkout day is free for the next guest
    next_stay = client.post(
        "/reservations",
        json={
            "check_in_date": CHECK_OUT,
            "check_out_date": "2026-10-05",
            "guest_name": "Next",
            "guest_count": 3,
            "rooms": [{"room_id": suite_id, "guest_count": 3}],
        },
    )
    assert next_stay.status_code == 201

    after = client.get(
        "/rooms/available",
        params={"check_in_date": CHECK_IN, "check_out_date": CHECK_OUT, "guest_count": 4},
    )
    assert suite_id not in {room["room_id"] for room in after.json()["rooms"]}

    # Step 7: lifecycle transitions
    reservation_id = reservation["reservation_id"]
    confirmed = client.patch(
        f"/reservations/{reservation_id}/status",
        json={"status": "booking"},
    )
    assert confirmed.status_code == 200
    assert confirmed.json()["status"] == "booking"

    skipped = client.patch(
        f"/reservations/{reservation_id}/status",
        json={"status": "checked_out"},
    )
    assert skipped.status_code == 409

    # Step 8: calendar for October with filters
    calendar = client.get(
        "/calendar/events",
        params={"selected_date": "2026-10-02", "view_mode": "month"},
    )
    assert calendar.status_code == 200
    body = calendar.json()
    assert body["range_start"] == "2026-10-01"
    assert body["range_end"] == "2026-11-01"
    assert len(body["events"]) == 2

    booked_only = client.get(
        "/calendar/events",
        params={"selected_date": "2026-10-02", "view_mode": "month", "status": "booking"},
    )
    events = booked_only.json()["events"]
    assert [event["event_id"] for event in events] == [reservation_id]
    assert events[0]["color"] == "#3b82f6"
    assert events[0]["room_numbers"] == ["201"]

    subscription.unsubscribe()
    assert [change.status for change in changes] == [
        ReservationStatus.RESERVATION,
        ReservationStatus.RESERVATION,
        ReservationStatus.BOOKING,
    ]


def test_reservation_request_validation(tmp_path):
    app, repository, change_feed = _build_test_app(tmp_path)
    client = TestClient(app)
    changes: list[ReservationChange] = []
    change_feed.subscribe(changes.append)
    standard_id = _room_id(repository, "101")

    over_capacity = client.post(
        "/reservations",
        json={
            "check_in_date": CHECK_IN,
            "check_out_date": CHECK_OUT,
            "guest_name": "Too many",
            "guest_count": 3,
            "rooms": [{"room_id": standard_id, "guest_count": 3}],
        },
    )
    assert over_capacity.status_code == 400

    short = client.post(
        "/reservations",
        json={
            "check_in_date": CHECK_IN,
            "check_out_date": CHECK_OUT,
            "guest_name": "Short",
            "guest_count": 4,
            "rooms": [{"room_id": standard_id, "guest_count": 2}],
        },
    )
    assert short.status_code == 400

    unknown_room = client.post(
        "/reservations",
        json={
            "check_in_date": CHECK_IN,
            "check_out_date": CHECK_OUT,
            "guest_name": "Ghost",
            "guest_count": 1,
            "rooms": [{"room_id": "missing", "guest_count": 1}],
        },
    )
    assert unknown_room.status_code == 400

    checked_in_start = client.post(
        "/reservations",
        json={
            "check_in_date": CHECK_IN,
            "check_out_date": CHECK_OUT,
            "guest_name": "Walk-in",
            "guest_count": 1,
            "rooms": [{"room_id": standard_id, "guest_count": 1}],
            "status": "checked_in",
        },
    )
    assert checked_in_start.status_code == 400

    same_day = client.post(
        "/reservations",
        json={
            "check_in_date": CHECK_IN,
            "check_out_date": CHECK_IN,
            "guest_name": "Same day",
            "guest_count": 1,
            "rooms": [{"room_id": standard_id, "guest_count": 1}],
        },
    )
    assert same_day.status_code == 422

    assert repository.count_reservations() == 0
    assert changes == []


def test_status_and_query_errors(tmp_path):
    app, repository, _ = _build_test_app(tmp_path)
    client = TestClient(app)

    missing = client.patch("/reservations/does-not-exist/status", json={"status": "booking"})
    assert missing.status_code == 404

    created = client.post(
        "/reservations",
        json={
            "check_in_date": CHECK_IN,
            "check_out_date": CHECK_OUT,
            "guest_name": "Status",
            "guest_count": 2,
            "rooms": [{"room_id": _room_id(repository, "102"), "guest_count": 2}],
        },
    )
    reservation_id = created.json()["reservation"]["reservation_id"]

    unknown_status = client.patch(
        f"/reservations/{reservation_id}/status",
        json={"status": "archived"},
    )
    assert unknown_status.status_code == 400

    unchanged = client.patch(
        f"/reservations/{reservation_id}/status",
        json={"status": "pending"},
    )
    assert unchanged.status_code == 200
    assert unchanged.json()["status"] == "reservation"

    same_day = client.get(
        "/rooms/available",
        params={"check_in_date": CHECK_IN, "check_out_date": CHECK_IN, "guest_count": 1},
    )
    assert same_day.status_code == 400

    too_many = client.post(
        "/allocations/options",
        json={"check_in_date": CHECK_IN, "check_out_date": CHECK_OUT, "guest_count": 500},
    )
    assert too_many.status_code == 200
    assert too_many.json()["options"] == []


def test_missing_services_return_503():
    app = FastAPI()
    app.include_router(allocation_router)
    client = TestClient(app)

    response = client.get("/special_charges")

    assert response.status_code == 503


def _reserve(client: TestClient, room_id: str, guest_count: int, guest_name: str) -> str:
    response = client.post(
        "/reservations",
        json={
            "check_in_date": CHECK_IN,
            "check_out_date": CHECK_OUT,
            "guest_name": guest_name,
            "guest_count": guest_count,
            "rooms": [{"room_id": room_id, "guest_count": guest_count}],
        },
    )
    assert response.status_code == 201
    return response.json()["reservation"]["reservation_id"]


def test_room_change_flow(tmp_path):
    app, repository, change_feed = _build_test_app(tmp_path)
    changes: list[ReservationChange] = []
    change_feed.subscribe(changes.append)
    client = TestClient(app)
    suite_id = _room_id(repository, "201")
    other_suite_id = _room_id(repository, "202")
    dorm_id = _room_id(repository, "203")
    reservation_id = _reserve(client, suite_id, 3, "Mover")
    _reserve(client, other_suite_id, 2, "Neighbour")
    changes.clear()

    moved = client.patch(
        f"/reservations/{reservation_id}/rooms/{suite_id}",
        json={"new_room_id": dorm_id},
    )
    assert moved.status_code == 200
    assert [room["room_number"] for room in moved.json()["rooms"]] == ["203"]
    assert moved.json()["rooms"][0]["guest_count"] == 3
    assert [change.room_ids for change in changes] == [(dorm_id,)]

    available = client.get(
        "/rooms/available",
        params={"check_in_date": CHECK_IN, "check_out_date": CHECK_OUT, "guest_count": 1},
    )
    free_ids = {room["room_id"] for room in available.json()["rooms"]}
    assert suite_id in free_ids
    assert dorm_id not in free_ids

    taken = client.patch(
        f"/reservations/{reservation_id}/rooms/{dorm_id}",
        json={"new_room_id": other_suite_id},
    )
    assert taken.status_code == 409

    too_small = client.patch(
        f"/reservations/{reservation_id}/rooms/{dorm_id}",
        json={"new_room_id": _room_id(repository, "101")},
    )
    assert too_small.status_code == 400

    not_held = client.patch(
        f"/reservations/{reservation_id}/rooms/{suite_id}",
        json={"new_room_id": _room_id(repository, "301")},
    )
    assert not_held.status_code == 400

    unknown_room = client.patch(
        f"/reservations/{reservation_id}/rooms/{dorm_id}",
        json={"new_room_id": "missing"},
    )
    assert unknown_room.status_code == 400

    missing = client.patch(
        f"/reservations/does-not-exist/rooms/{dorm_id}",
        json={"new_room_id": suite_id},
    )
    assert missing.status_code == 404

    cancelled = client.patch(
        f"/reservations/{reservation_id}/status",
        json={"status": "cancelled"},
    )
    assert cancelled.status_code == 200
    after_cancel = client.patch(
        f"/reservations/{reservation_id}/rooms/{dorm_id}",
        json={"new_room_id": suite_id},
    )
    assert after_cancel.status_code == 400

    final = repository.get_reservation(reservation_id)
    assert [room.room_id for room in final.rooms] == [dorm_id]
    assert len(changes) == 2


def test_storage_failure_on_reservation_writes_returns_503(tmp_path):
    app, repository, _ = _build_test_app(tmp_path)
    client = TestClient(app)
    suite_id = _room_id(repository, "201")
    reservation_id = _reserve(client, suite_id, 2, "Outage")

    connection = sqlite3.connect(repository.database_path)
    try:
        connection.execute("DROP TABLE Reservations;")
        connection.commit()
    finally:
        connection.close()

    status_update = client.patch(
        f"/reservations/{reservation_id}/status",
        json={"status": "booking"},
    )
    room_change = client.patch(
        f"/reservations/{reservation_id}/rooms/{suite_id}",
        json={"new_room_id": _room_id(repository, "203")},
    )
    calendar = client.get("/calendar/events", params={"selected_date": CHECK_IN})

    assert status_update.status_code == 503
    assert room_change.status_code == 503
    assert calendar.status_code == 503


class _StaleSnapshotRepository(DataRepository):
    """Serves the first read of a reservation even after it was changed."""

    def __init__(self, settings) -> None:
        super().__init__(settings)
        self.snapshots: dict = {}

    def get_reservation(self, reservation_id):
        if reservation_id in self.snapshots:
            return self.snapshots.pop(reservation_id)
        return super().get_reservation(reservation_id)


def test_status_change_racing_another_writer_is_rejected(tmp_path):
    settings = _build_test_settings(tmp_path, "status_race.db")
    repository = _StaleSnapshotRepository(settings)
    repository.initialize_database()
    repository.seed_demo_data()
    changes: list[ReservationChange] = []
    feed = ChangeFeed()
    feed.subscribe(changes.append)
    service = BookingService(repository=repository, change_feed=feed, settings=settings)
    reservation, _ = service.create_reservation(
        guest_name="Race",
        guest_phone="",
        check_in_date=date.fromisoformat(CHECK_IN),
        check_out_date=date.fromisoformat(CHECK_OUT),
        guest_count=2,
        allocations=service.build_allocations([(_room_id(repository, "101"), 2)]),
    )
    changes.clear()

    service.update_status(reservation.reservation_id, "checked_in")
    repository.snapshots[reservation.reservation_id] = reservation

    with pytest.raises(InvalidStatusTransitionError):
        service.update_status(reservation.reservation_id, "cancelled")

    assert repository.get_reservation(reservation.reservation_id).status == "checked_in"
    assert [change.status for change in changes] == [ReservationStatus.CHECKED_IN]


def test_quote_and_reservation_carry_charge_quantity(tmp_path):
    app, repository, _ = _build_test_app(tmp_path)
    client = TestClient(app)
    suite = next(room for room in repository.list_rooms() if room.room_number == "201")
    kitchens = {**_kitchen(client), "quantity": 2}
    allocation = {
        "allocation_id": "a1",
        "room_id": suite.room_id,
        "room_number": suite.room_number,
        "room_type": suite.room_type,
        "capacity": suite.capacity,
        "tariff": str(suite.tariff),
        "guest_count": 4,
    }

    quote = client.post(
        "/payments/quote",
        json={
            "check_in_date": CHECK_IN,
            "check_out_date": CHECK_OUT,
            "allocations": [allocation],
            "special_charges": [kitchens],
        },
    )
    assert quote.status_code == 200
    assert _money(quote.json()["special_charges_total"]) == Decimal("8000")
    assert _money(quote.json()["total"]) == Decimal("14000")

    none_ordered = client.post(
        "/payments/quote",
        json={
            "check_in_date": CHECK_IN,
            "check_out_date": CHECK_OUT,
            "allocations": [allocation],
            "special_charges": [{**kitchens, "quantity": 0}],
        },
    )
    assert none_ordered.status_code == 422

    created = client.post(
        "/reservations",
        json={
            "check_in_date": CHECK_IN,
            "check_out_date": CHECK_OUT,
            "guest_name": "Cook",
            "guest_count": 4,
            "rooms": [{"room_id": suite.room_id, "guest_count": 4}],
            "special_charges": [kitchens],
        },
    )
    assert created.status_code == 201
    assert _money(created.json()["reservation"]["total_quote"]) == Decimal("14000")

    connection = sqlite3.connect(repository.database_path)
    try:
        stored = connection.execute(
            "SELECT charge_name, quantity FROM ReservationSpecialCharges;"
        ).fetchall()
    finally:
        connection.close()
    assert stored == [("Kitchen", 2)]


def test_register_room_route(tmp_path):
    app, repository, _ = _build_test_app(tmp_path)
    client = TestClient(app)

    created = client.post(
        "/rooms",
        json={"room_number": "302", "room_type": "Cottage", "capacity": 6, "tariff": "4800.00"},
    )
    duplicate = client.post(
        "/rooms",
        json={"room_number": "302", "room_type": "Cottage", "capacity": 6, "tariff": "4800.00"},
    )
    no_beds = client.post(
        "/rooms",
        json={"room_number": "303", "room_type": "Cottage", "capacity": 0, "tariff": "4800.00"},
    )

    assert created.status_code == 201
    assert created.json()["room_number"] == "302"
    assert _money(created.json()["tariff"]) == Decimal("4800")
    assert duplicate.status_code == 400
    assert no_beds.status_code == 422
    assert len(repository.list_rooms()) == 9
