"""Repository layer responsible for all database access."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, Optional, Sequence
from uuid import uuid4

from lodge.domain.models import (
    ACTIVE_STATUSES,
    ChargeRateType,
    MoneyLike,
    Reservation,
    ReservationRoom,
    ReservationStatus,
    Room,
    SpecialCharge,
    from_minor_units,
    room_number_key,
    to_minor_units,
)
from lodge.utils.config import Settings, get_settings
from lodge.utils.logger import get_logger


logger = get_logger(__name__)


class RepositoryError(Exception):
    """Raised when the underlying storage fails."""


class RoomUnavailableError(Exception):
    """Raised when a room is already held by an overlapping reservation."""

    def __init__(self, room_ids: Sequence[str]) -> None:
        self.room_ids = tuple(room_ids)
        super().__init__(
            "Rooms already reserved for the requested dates: " + ", ".join(self.room_ids)
        )


DEMO_ROOMS: tuple[tuple[str, str, int, str], ...] = (
    ("101", "Standard", 2, "1500.00"),
    ("102", "Standard", 2, "1500.00"),
    ("103", "Deluxe", 3, "2200.00"),
    ("104", "Deluxe", 3, "2200.00"),
    ("201", "Family Suite", 4, "3000.00"),
    ("202", "Family Suite", 5, "3600.00"),
    ("203", "Dormitory", 8, "4000.00"),
    ("301", "Cottage", 6, "4500.00"),
)

DEMO_SPECIAL_CHARGES: tuple[tuple[str, str, str], ...] = (
    ("Kitchen", "2000.00", ChargeRateType.PER_DAY.value),
    ("Campfire", "300.00", ChargeRateType.PER_DAY.value),
    ("Conference Hall", "5000.00", ChargeRateType.PER_DAY.value),
    ("Extra Person", "300.00", ChargeRateType.PER_PERSON.value),
)

_ACTIVE_STATUS_VALUES = tuple(sorted(status.value for status in ACTIVE_STATUSES))


def _row_to_room(row: sqlite3.Row) -> Room:
    return Room(
        room_id=str(row["id"]),
        room_number=str(row["room_number"]),
        room_type=str(row["room_type"]),
        capacity=int(row["capacity"]),
        tariff=from_minor_units(int(row["tariff_minor"])),
    )


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path, isolation_level=None)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def _transaction(self, immediate: bool = False) -> Iterator[sqlite3.Cursor]:
        """Run statements in one transaction and map storage failures."""
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Could not open database: {exc}") from exc
        try:
            conn.execute("BEGIN IMMEDIATE;" if immediate else "BEGIN;")
            cursor = conn.cursor()
            try:
                yield cursor
            except BaseException:
                conn.execute("ROLLBACK;")
                raise
            conn.execute("COMMIT;")
        except sqlite3.Error as exc:
            raise RepositoryError(f"Database operation failed: {exc}") from exc
        finally:
            conn.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        with self._transaction() as cursor:
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS Rooms (
                    id TEXT PRIMARY KEY,
                    room_number TEXT NOT NULL UNIQUE,
                    room_type TEXT NOT NULL,
                    capacity INTEGER NOT NULL CHECK (capacity > 0),
                    tariff_minor INTEGER NOT NULL CHECK (tariff_minor >= 0),
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                );
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS Reservations (
                    id TEXT PRIMARY KEY,
                    reference_number TEXT NOT NULL UNIQUE,
                    guest_name TEXT NOT NULL DEFAULT '',
                    guest_phone TEXT NOT NULL DEFAULT '',
                    check_in_date TEXT NOT NULL,
                    check_out_date TEXT NOT NULL,
                    guest_count INTEGER NOT NULL CHECK (guest_count > 0),
                    status TEXT NOT NULL,
                    total_quote_minor INTEGER NOT NULL DEFAULT 0,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    CHECK (check_in_date < check_out_date)
                );
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS ReservationRooms (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    reservation_id TEXT NOT NULL,
                    room_id TEXT NOT NULL,
                    guest_count INTEGER NOT NULL CHECK (guest_count > 0),
                    FOREIGN KEY (reservation_id) REFERENCES Reservations(id),
                    FOREIGN KEY (room_id) REFERENCES Rooms(id)
                );
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS ReservationSpecialCharges (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    reservation_id TEXT NOT NULL,
                    charge_name TEXT NOT NULL,
                    rate_minor INTEGER NOT NULL,
                    rate_type TEXT NOT NULL,
                    quantity INTEGER NOT NULL DEFAULT 1 CHECK (quantity >= 1),
                    FOREIGN KEY (reservation_id) REFERENCES Reservations(id)
                );
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS SpecialChargesMaster (
                    id TEXT PRIMARY KEY,
                    charge_name TEXT NOT NULL UNIQUE,
                    default_rate_minor INTEGER NOT NULL CHECK (default_rate_minor >= 0),
                    rate_type TEXT NOT NULL
                );
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_reservations_dates_status
                ON Reservations(check_in_date, check_out_date, status);
                """
            )
            cursor.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_reservation_rooms_room
                ON ReservationRooms(room_id, reservation_id);
                """
            )
        logger.info("Database initialized at %s", self._db_path)

    def seed_demo_data(self) -> None:
        """Seed the demo inventory and charge catalog only when tables are empty."""
        with self._transaction() as cursor:
            cursor.execute("SELECT COUNT(*) AS count FROM Rooms;")
            if int(cursor.fetchone()["count"]) == 0:
                cursor.executemany(
                    """
                    INSERT INTO Rooms (id, room_number, room_type, capacity, tariff_minor)
                    VALUES (?, ?, ?, ?, ?);
                    """,
                    [
                        (str(uuid4()), number, room_type, capacity, to_minor_units(tariff))
                        for number, room_type, capacity, tariff in DEMO_ROOMS
                    ],
                )
                logger.info("Seeded %s demo rooms", len(DEMO_ROOMS))

            cursor.execute("SELECT COUNT(*) AS count FROM SpecialChargesMaster;")
            if int(cursor.fetchone()["count"]) == 0:
                cursor.executemany(
                    """
                    INSERT INTO SpecialChargesMaster (id, charge_name, default_rate_minor, rate_type)
                    VALUES (?, ?, ?, ?);
                    """,
                    [
                        (str(uuid4()), name, to_minor_units(rate), rate_type)
                        for name, rate, rate_type in DEMO_SPECIAL_CHARGES
                    ],
                )
                logger.info("Seeded %s special charges", len(DEMO_SPECIAL_CHARGES))

    def create_room(
        self,
        room_number: str,
        room_type: str,
        capacity: int,
        tariff: MoneyLike,
    ) -> Room:
        """Insert a room and return it with its generated id."""
        room_id = str(uuid4())
        with self._transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO Rooms (id, room_number, room_type, capacity, tariff_minor)
                VALUES (?, ?, ?, ?, ?);
                """,
                (room_id, room_number, room_type, capacity, to_minor_units(tariff)),
            )
        room = self.get_room(room_id)
        if room is None:
            raise RepositoryError(f"Room {room_id} was not readable after insert")
        return room

    def get_room(self, room_id: str) -> Optional[Room]:
        with self._transaction() as cursor:
            cursor.execute(
                """
                SELECT id, room_number, room_type, capacity, tariff_minor
                FROM Rooms WHERE id = ?;
                """,
                (room_id,),
            )
            row = cursor.fetchone()
        if row is None:
            return None
        return _row_to_room(row)

    def list_rooms(self) -> list[Room]:
        with self._transaction() as cursor:
            cursor.execute(
                "SELECT id, room_number, room_type, capacity, tariff_minor FROM Rooms;"
            )
            rooms = [_row_to_room(row) for row in cursor.fetchall()]
        return sorted(rooms, key=lambda room: room_number_key(room.room_number))

    def list_available_rooms(self, check_in_date: date, check_out_date: date) -> list[Room]:
        """Return rooms with no active reservation overlapping [check_in, check_out)."""
        placeholders = ",".join("?" for _ in _ACTIVE_STATUS_VALUES)
        with self._transaction() as cursor:
            cursor.execute(
                f"""
                SELECT r.id, r.room_number, r.room_type, r.capacity, r.tariff_minor
                FROM Rooms AS r
                WHERE r.capacity >= 1
                  AND NOT EXISTS (
                    SELECT 1
                    FROM ReservationRooms AS rr
                    INNER JOIN Reservations AS res ON res.id = rr.reservation_id
                    WHERE rr.room_id = r.id
                      AND res.status IN ({placeholders})
                      AND res.check_in_date < ?
                      AND res.check_out_date > ?
                  );
                """,
                (
                    *_ACTIVE_STATUS_VALUES,
                    check_out_date.isoformat(),
                    check_in_date.isoformat(),
                ),
            )
            rooms = [_row_to_room(row) for row in cursor.fetchall()]
        return sorted(rooms, key=lambda room: room_number_key(room.room_number))

    def list_special_charges(self) -> list[SpecialCharge]:
        with self._transaction() as cursor:
            cursor.execute(
                """
                SELECT id, charge_name, default_rate_minor, rate_type
                FROM SpecialChargesMaster
                ORDER BY charge_name ASC;
                """
            )
            return [
                SpecialCharge(
                    charge_id=str(row["id"]),
                    name=str(row["charge_name"]),
                    rate=from_minor_units(int(row["default_rate_minor"])),
                    rate_type=ChargeRateType(str(row["rate_type"])),
                )
                for row in cursor.fetchall()
            ]

    def insert_reservation_if_available(
        self,
        *,
        reference_number: str,
        guest_name: str,
        guest_phone: str,
        check_in_date: date,
        check_out_date: date,
        guest_count: int,
        status: ReservationStatus,
        total_quote_minor: int,
        rooms: Sequence[tuple[str, int]],
        special_charges: Iterable[SpecialCharge] = (),
    ) -> str:
        """Check-and-set insert: fail if any room overlaps an active reservation.

        The availability re-check and the insert share one IMMEDIATE
        transaction, so two writers cannot both claim the same room.
        """
        reservation_id = str(uuid4())
        room_ids = [room_id for room_id, _ in rooms]
        status_placeholders = ",".join("?" for _ in _ACTIVE_STATUS_VALUES)
        room_placeholders = ",".join("?" for _ in room_ids)
        with self._transaction(immediate=True) as cursor:
            cursor.execute(
                f"""
                SELECT DISTINCT rr.room_id
                FROM ReservationRooms AS rr
                INNER JOIN Reservations AS res ON res.id = rr.reservation_id
                WHERE rr.room_id IN ({room_placeholders})
                  AND res.status IN ({status_placeholders})
                  AND res.check_in_date < ?
                  AND res.check_out_date > ?
                ORDER BY rr.room_id ASC;
                """,
                (
                    *room_ids,
                    *_ACTIVE_STATUS_VALUES,
                    check_out_date.isoformat(),
                    check_in_date.isoformat(),
                ),
            )
            conflicts = [str(row["room_id"]) for row in cursor.fetchall()]
            if conflicts:
                raise RoomUnavailableError(conflicts)

            cursor.execute(
                """
                INSERT INTO Reservations (
                    id,
                    reference_number,
                    guest_name,
                    guest_phone,
                    check_in_date,
                    check_out_date,
                    guest_count,
                    status,
                    total_quote_minor
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    reservation_id,
                    reference_number,
                    guest_name,
                    guest_phone,
                    check_in_date.isoformat(),
                    check_out_date.isoformat(),
                    guest_count,
                    status.value,
                    total_quote_minor,
                ),
            )
            cursor.executemany(
                """
                INSERT INTO ReservationRooms (reservation_id, room_id, guest_count)
                VALUES (?, ?, ?);
                """,
                [(reservation_id, room_id, count) for room_id, count in rooms],
            )
            cursor.executemany(
                """
                INSERT INTO ReservationSpecialCharges (
                    reservation_id, charge_name, rate_minor, rate_type, quantity
                )
                VALUES (?, ?, ?, ?, ?);
                """,
                [
                    (
                        reservation_id,
                        charge.name,
                        to_minor_units(charge.rate),
                        charge.rate_type.value,
                        charge.quantity,
                    )
                    for charge in special_charges
                ],
            )
        return reservation_id

    def update_reservation_status(
        self,
        reservation_id: str,
        status: ReservationStatus,
        expected_status: Optional[str] = None,
    ) -> bool:
        """Persist a status change.

        With `expected_status` the write only applies while the stored status
        still equals it. Returns False when no row was updated.
        """
        query = "UPDATE Reservations SET status = ?, updated_at = ? WHERE id = ?"
        params: list[str] = [
            status.value,
            datetime.now(timezone.utc).isoformat(),
            reservation_id,
        ]
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)
        with self._transaction(immediate=True) as cursor:
            cursor.execute(query + ";", tuple(params))
            return cursor.rowcount > 0

    def change_reservation_room(
        self,
        reservation_id: str,
        old_room_id: str,
        new_room_id: str,
    ) -> bool:
        """Move a reservation from one room to another if the new room is free.

        The overlap re-check ignores the reservation itself and shares one
        IMMEDIATE transaction with the update. Returns False when the
        reservation does not hold `old_room_id`.
        """
        status_placeholders = ",".join("?" for _ in _ACTIVE_STATUS_VALUES)
        with self._transaction(immediate=True) as cursor:
            cursor.execute(
                "SELECT check_in_date, check_out_date FROM Reservations WHERE id = ?;",
                (reservation_id,),
            )
            stay = cursor.fetchone()
            if stay is None:
                return False

            cursor.execute(
                f"""
                SELECT 1
                FROM ReservationRooms AS rr
                INNER JOIN Reservations AS res ON res.id = rr.reservation_id
                WHERE rr.room_id = ?
                  AND res.id != ?
                  AND res.status IN ({status_placeholders})
                  AND res.check_in_date < ?
                  AND res.check_out_date > ?
                LIMIT 1;
                """,
                (
                    new_room_id,
                    reservation_id,
                    *_ACTIVE_STATUS_VALUES,
                    stay["check_out_date"],
                    stay["check_in_date"],
                ),
            )
            if cursor.fetchone() is not None:
                raise RoomUnavailableError([new_room_id])

            cursor.execute(
                """
                UPDATE ReservationRooms
                SET room_id = ?
                WHERE reservation_id = ? AND room_id = ?;
                """,
                (new_room_id, reservation_id, old_room_id),
            )
            if cursor.rowcount == 0:
                return False
            cursor.execute(
                "UPDATE Reservations SET updated_at = ? WHERE id = ?;",
                (datetime.now(timezone.utc).isoformat(), reservation_id),
            )
        return True

    def get_reservation(self, reservation_id: str) -> Optional[Reservation]:
        reservations = self._load_reservations(
            "WHERE res.id = ?",
            (reservation_id,),
        )
        return reservations[0] if reservations else None

    def list_reservations(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[Reservation]:
        """Return reservations intersecting [start_date, end_date) when bounds are given."""
        clauses: list[str] = []
        params: list[str] = []
        if end_date is not None:
            clauses.append("res.check_in_date < ?")
            params.append(end_date.isoformat())
        if start_date is not None:
            clauses.append("res.check_out_date > ?")
            params.append(start_date.isoformat())
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return self._load_reservations(where, tuple(params))

    def _load_reservations(self, where: str, params: tuple) -> list[Reservation]:
        with self._transaction() as cursor:
            cursor.execute(
                f"""
                SELECT
                    res.id,
                    res.reference_number,
                    res.guest_name,
                    res.guest_phone,
                    res.check_in_date,
                    res.check_out_date,
                    res.guest_count,
                    res.status,
                    res.total_quote_minor
                FROM Reservations AS res
                {where}
                ORDER BY res.check_in_date ASC, res.reference_number ASC;
                """,
                params,
            )
            reservation_rows = cursor.fetchall()
            if not reservation_rows:
                return []

            ids = [str(row["id"]) for row in reservation_rows]
            placeholders = ",".join("?" for _ in ids)
            cursor.execute(
                f"""
                SELECT rr.reservation_id, rr.room_id, rr.guest_count,
                       r.room_number, r.room_type
                FROM ReservationRooms AS rr
                INNER JOIN Rooms AS r ON r.id = rr.room_id
                WHERE rr.reservation_id IN ({placeholders})
                ORDER BY rr.id ASC;
                """,
                tuple(ids),
            )
            rooms_by_reservation: dict[str, list[ReservationRoom]] = {}
            for row in cursor.fetchall():
                rooms_by_reservation.setdefault(str(row["reservation_id"]), []).append(
                    ReservationRoom(
                        room_id=str(row["room_id"]),
                        room_number=str(row["room_number"]),
                        room_type=str(row["room_type"]),
                        guest_count=int(row["guest_count"]),
                    )
                )

        return [
            Reservation(
                reservation_id=str(row["id"]),
                reference_number=str(row["reference_number"]),
                guest_name=str(row["guest_name"]),
                guest_phone=str(row["guest_phone"]),
                check_in_date=date.fromisoformat(str(row["check_in_date"])),
                check_out_date=date.fromisoformat(str(row["check_out_date"])),
                guest_count=int(row["guest_count"]),
                status=str(row["status"]),
                total_quote=from_minor_units(int(row["total_quote_minor"])),
                rooms=tuple(rooms_by_reservation.get(str(row["id"]), [])),
            )
            for row in reservation_rows
        ]

    def count_reservations(self) -> int:
        with self._transaction() as cursor:
            cursor.execute("SELECT COUNT(*) AS count FROM Reservations;")
            return int(cursor.fetchone()["count"])
