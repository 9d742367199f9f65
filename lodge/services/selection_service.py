"""Active allocation state: option switching, manual edits and async refresh."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Callable, Optional, Sequence
from uuid import uuid4

from lodge.domain.models import (
    AllocationOption,
    ReservationChange,
    Room,
    RoomAllocation,
    total_guests,
    total_tariff,
)
from lodge.services.allocation_service import AllocationService, AllocationValidationError
from lodge.services.change_feed import ChangeFeed, Subscription
from lodge.services.inventory_service import intervals_overlap
from lodge.utils.logger import get_logger


logger = get_logger(__name__)

AllocationListener = Callable[[list[RoomAllocation]], None]


class OptionOutOfRangeError(IndexError):
    """Raised when selecting an option index that does not exist."""


class SessionClosedError(Exception):
    """Raised when a closed allocation session is used again."""


class AllocationSelector:
    """Holds strategy outputs and the allocation the operator is editing.

    Every operation that changes the active list notifies `on_change` exactly
    once with the final list. Operations that change nothing stay silent.
    """

    def __init__(
        self,
        options: Sequence[AllocationOption],
        rooms: Sequence[Room],
        on_change: Optional[AllocationListener] = None,
    ) -> None:
        self._options = list(options)
        self._rooms = list(rooms)
        self._on_change = on_change
        self._selected_index = 0
        self._allocations: list[RoomAllocation] = (
            list(self._options[0].allocations) if self._options else []
        )

    @property
    def options(self) -> list[AllocationOption]:
        return list(self._options)

    @property
    def selected_index(self) -> int:
        return self._selected_index

    @property
    def allocations(self) -> list[RoomAllocation]:
        return list(self._allocations)

    @property
    def rooms(self) -> list[Room]:
        return list(self._rooms)

    @property
    def total_tariff(self) -> Decimal:
        return total_tariff(self._allocations)

    @property
    def total_guests_allocated(self) -> int:
        return total_guests(self._allocations)

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(list(self._allocations))

    def select_option(self, index: int) -> None:
        if not 0 <= index < len(self._options):
            raise OptionOutOfRangeError(
                f"option index {index} is outside [0, {len(self._options)})"
            )
        self._selected_index = index
        self._allocations = list(self._options[index].allocations)
        self._notify()

    def add_room(self) -> Optional[RoomAllocation]:
        allocated_ids = {item.room_id for item in self._allocations}
        free_room = next(
            (room for room in self._rooms if room.room_id not in allocated_ids),
            None,
        )
        if free_room is None:
            return None
        allocation = RoomAllocation.for_room(free_room, str(uuid4()), guest_count=1)
        self._allocations.append(allocation)
        self._notify()
        return allocation

    def remove_room(self, allocation_id: str) -> bool:
        remaining = [item for item in self._allocations if item.allocation_id != allocation_id]
        if len(remaining) == len(self._allocations):
            return False
        self._allocations = remaining
        self._notify()
        return True

    def update_room(
        self,
        allocation_id: str,
        *,
        guest_count: Optional[int] = None,
        room_id: Optional[str] = None,
    ) -> Optional[RoomAllocation]:
        """Merge a guest count change and/or a room swap into one allocation."""
        position = next(
            (
                index
                for index, item in enumerate(self._allocations)
                if item.allocation_id == allocation_id
            ),
            None,
        )
        if position is None:
            return None

        current = self._allocations[position]
        updated = current
        if room_id is not None and room_id != current.room_id:
            room = next((item for item in self._rooms if item.room_id == room_id), None)
            if room is None:
                raise AllocationValidationError(f"room {room_id} is not available for this stay")
            if any(item.room_id == room_id for item in self._allocations):
                raise AllocationValidationError(f"room {room.room_number} is already allocated")
            updated = RoomAllocation.for_room(room, current.allocation_id, current.guest_count)

        if guest_count is not None:
            updated = replace(updated, guest_count=guest_count)

        if not 1 <= updated.guest_count <= updated.capacity:
            raise AllocationValidationError(
                f"room {updated.room_number} seats between 1 and {updated.capacity} guests"
            )
        if updated == current:
            return current

        self._allocations[position] = updated
        self._notify()
        return updated

    def coverage_gap(self, guest_count: int) -> int:
        """Guests still unseated (positive) or seated beyond the party (negative)."""
        return guest_count - self.total_guests_allocated

    def validate_coverage(self, guest_count: int) -> None:
        """Raise unless the active allocation seats exactly `guest_count` guests."""
        validate_allocations(self._allocations, guest_count)


def validate_allocations(allocations: Sequence[RoomAllocation], guest_count: int) -> None:
    if not allocations:
        raise AllocationValidationError("no rooms are allocated")
    room_ids = [item.room_id for item in allocations]
    if len(set(room_ids)) != len(room_ids):
        raise AllocationValidationError("a room is allocated more than once")
    for item in allocations:
        if not 1 <= item.guest_count <= item.capacity:
            raise AllocationValidationError(
                f"room {item.room_number} seats between 1 and {item.capacity} guests"
            )
    seated = total_guests(allocations)
    if seated != guest_count:
        raise AllocationValidationError(
            f"allocation seats {seated} guests but the party has {guest_count}"
        )


class AllocationSession:
    """Async owner of one operator's allocation view.

    Each refresh carries a sequence token; only the newest token may apply
    its result, so a slow query for stale inputs never overwrites a newer one.
    """

    def __init__(
        self,
        allocation_service: AllocationService,
        on_change: Optional[AllocationListener] = None,
        change_feed: Optional[ChangeFeed] = None,
    ) -> None:
        self._service = allocation_service
        self._on_change = on_change
        self._token = 0
        self._closed = False
        self._inflight: Optional[asyncio.Future] = None
        self._selector: Optional[AllocationSelector] = None
        self._stay: Optional[tuple[date, date]] = None
        self._pending_stay: Optional[tuple[date, date]] = None
        self._changed_while_pending = False
        self._stale = False
        self._subscription: Optional[Subscription] = (
            change_feed.subscribe(self._handle_change) if change_feed is not None else None
        )

    @property
    def selector(self) -> Optional[AllocationSelector]:
        return self._selector

    @property
    def stale(self) -> bool:
        return self._stale

    @property
    def closed(self) -> bool:
        return self._closed

    async def refresh(
        self,
        check_in_date: date,
        check_out_date: date,
        guest_count: int,
        guest_type: Optional[str] = None,
    ) -> Optional[AllocationSelector]:
        """Query availability and rebuild options; None means superseded."""
        if self._closed:
            raise SessionClosedError("allocation session is closed")

        self._token += 1
        token = self._token
        self._pending_stay = (check_in_date, check_out_date)
        self._changed_while_pending = False
        task = asyncio.ensure_future(
            asyncio.to_thread(
                self._service.options_for_stay,
                check_in_date=check_in_date,
                check_out_date=check_out_date,
                guest_count=guest_count,
                guest_type=guest_type,
            )
        )
        self._inflight = task
        try:
            rooms, options = await task
        except asyncio.CancelledError:
            if self._closed or token != self._token:
                return None
            raise
        except Exception:
            if token != self._token:
                logger.debug("Discarding failure from superseded refresh | token=%s", token)
                return None
            raise
        finally:
            if self._inflight is task:
                self._inflight = None

        if self._closed or token != self._token:
            logger.debug(
                "Discarding stale availability result | token=%s | latest=%s",
                token,
                self._token,
            )
            return None

        self._selector = AllocationSelector(options, rooms, self._on_change)
        self._stay = (check_in_date, check_out_date)
        # a change that landed while the query ran may be missing from its result
        self._stale = self._changed_while_pending
        self._pending_stay = None
        if self._on_change is not None:
            self._on_change(self._selector.allocations)
        return self._selector

    def _handle_change(self, change: ReservationChange) -> None:
        if self._pending_stay is not None and _change_overlaps(change, self._pending_stay):
            self._changed_while_pending = True
        if self._stay is not None and _change_overlaps(change, self._stay):
            self._stale = True

    def close(self) -> None:
        """Drop in-flight work and listeners; the session cannot be reused."""
        if self._closed:
            return
        self._closed = True
        self._token += 1
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        self._inflight = None
        if self._subscription is not None:
            self._subscription.unsubscribe()

    async def __aenter__(self) -> "AllocationSession":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


def _change_overlaps(change: ReservationChange, stay: tuple[date, date]) -> bool:
    check_in_date, check_out_date = stay
    return intervals_overlap(
        change.check_in_date,
        change.check_out_date,
        check_in_date,
        check_out_date,
    )
