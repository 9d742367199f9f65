"""In-process publish/subscribe feed for reservation writes."""

from __future__ import annotations

from threading import RLock
from typing import Callable
from uuid import uuid4

from lodge.domain.models import ReservationChange
from lodge.utils.logger import get_logger


logger = get_logger(__name__)

ChangeListener = Callable[[ReservationChange], None]


class Subscription:
    """Handle returned by `ChangeFeed.subscribe`; owner must unsubscribe."""

    def __init__(self, feed: "ChangeFeed", subscription_id: str) -> None:
        self._feed = feed
        self._subscription_id = subscription_id
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._feed._remove(self._subscription_id)
        self._active = False


class ChangeFeed:
    def __init__(self) -> None:
        self._lock = RLock()
        self._listeners: dict[str, ChangeListener] = {}

    def subscribe(self, listener: ChangeListener) -> Subscription:
        subscription_id = str(uuid4())
        with self._lock:
            self._listeners[subscription_id] = listener
        return Subscription(self, subscription_id)

    def _remove(self, subscription_id: str) -> None:
        with self._lock:
            self._listeners.pop(subscription_id, None)

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def publish(self, change: ReservationChange) -> None:
        with self._lock:
            listeners = list(self._listeners.values())
        for listener in listeners:
            try:
                listener(change)
            except Exception:
                logger.exception(
                    "Reservation listener failed | reservation_id=%s",
                    change.reservation_id,
                )
