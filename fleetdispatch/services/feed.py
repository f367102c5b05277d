"""
Trip change feed and refreshable views.

The lifecycle manager publishes a TripChange after each confirmed write.
Callers subscribe to the feed and call `refresh()` on a view to get their
current trip list plus any notices worth showing since the last refresh.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from fleetdispatch.schemas.schemas import Notice, Trip, TripStatus
from fleetdispatch.services.store import TripStore

logger = logging.getLogger(__name__)

HIDDEN_FROM_DRIVER = (TripStatus.COMPLETED, TripStatus.CANCELLED)


@dataclass(frozen=True)
class TripChange:
    kind: str  # created | status
    trip: Trip


class TripFeed:
    def __init__(self, max_queue: int = 100):
        self._subscribers: set[asyncio.Queue] = set()
        self._max_queue = max_queue

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, change: TripChange) -> None:
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(change)
            except asyncio.QueueFull:
                # A slow consumer only needs to know something changed.
                logger.warning("Dropping trip change for slow subscriber (trip=%s)", change.trip.id)

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[asyncio.Queue]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue)
        self._subscribers.add(queue)
        try:
            yield queue
        finally:
            self._subscribers.discard(queue)


def diff_admin_view(previous: list[Trip], current: list[Trip]) -> list[Notice]:
    def pending(trips):
        return sum(1 for t in trips if t.status == TripStatus.PENDING_APPROVAL)

    if pending(current) > pending(previous):
        return [Notice(message="New Trip Request Pending Approval!", kind="info")]
    return []


def diff_driver_view(previous: list[Trip], current: list[Trip]) -> list[Notice]:
    notices = []
    before = {t.id: t for t in previous}

    added = [t for t in current if t.id not in before]
    if added:
        notices.append(Notice(message=f"You have {len(added)} new trip(s)!", kind="info"))

    for trip in current:
        prev = before.get(trip.id)
        if prev and prev.status == TripStatus.PENDING_APPROVAL and trip.status == TripStatus.SCHEDULED:
            notices.append(Notice(message=f"Trip for {trip.customer_name} Approved!", kind="success"))
    return notices


class AdminTripView:
    """All trips, newest first."""

    def __init__(self, store: TripStore):
        self.store = store
        self._previous: Optional[list[Trip]] = None

    async def refresh(self) -> tuple[list[Trip], list[Notice]]:
        trips = sorted(await self.store.list_trips(), key=lambda t: t.created_at, reverse=True)
        notices = diff_admin_view(self._previous, trips) if self._previous is not None else []
        self._previous = trips
        return trips, notices


class DriverTripView:
    """A driver's open trips, earliest scheduled first."""

    def __init__(self, store: TripStore, driver_id: str):
        self.store = store
        self.driver_id = driver_id
        self._previous: Optional[list[Trip]] = None

    async def refresh(self) -> tuple[list[Trip], list[Notice]]:
        trips = [
            t for t in await self.store.get_trips_for_driver(self.driver_id)
            if t.status not in HIDDEN_FROM_DRIVER
        ]
        trips.sort(key=lambda t: t.scheduled_time)
        notices = diff_driver_view(self._previous, trips) if self._previous is not None else []
        self._previous = trips
        return trips, notices
