"""
Driving-distance estimates from an OSRM routing service.

Lookups are best-effort enrichment: any failure yields None and the trip is
created without an estimated distance.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

import httpx

from fleetdispatch.config import get_settings
from fleetdispatch.schemas.schemas import DistanceEstimate

logger = logging.getLogger(__name__)
settings = get_settings()

Coordinates = tuple[float, float]
Estimator = Callable[[float, float, float, float], Awaitable[Optional[DistanceEstimate]]]


async def estimate_distance(
    origin_lat: float,
    origin_lng: float,
    dest_lat: float,
    dest_lng: float,
    client: Optional[httpx.AsyncClient] = None,
) -> Optional[DistanceEstimate]:
    """Returns the OSRM driving distance in km, or None if it cannot be resolved."""
    # OSRM takes lng,lat pairs.
    url = (
        f"{settings.osrm_base_url}/route/v1/driving/"
        f"{origin_lng},{origin_lat};{dest_lng},{dest_lat}"
    )
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as own_client:
                resp = await own_client.get(url, params={"overview": "false"})
        else:
            resp = await client.get(url, params={"overview": "false"})
        resp.raise_for_status()
        data = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("Distance lookup failed: %s", exc)
        return None

    routes = data.get("routes") or []
    if data.get("code") != "Ok" or not routes:
        logger.info("No route between (%s,%s) and (%s,%s): %s",
                    origin_lat, origin_lng, dest_lat, dest_lng, data.get("code"))
        return None
    meters = routes[0].get("distance")
    if meters is None:
        return None
    return DistanceEstimate(km=round(float(meters) / 1000, 1))


class DistanceLookup:
    """
    Debounced, supersede-in-flight distance lookup for one trip form.

    Each `update()` cancels any lookup still waiting or in flight; a
    superseded call returns None so a stale answer never replaces a newer
    one. `close()` drops whatever is pending.
    """

    def __init__(self, estimator: Estimator = estimate_distance, debounce_seconds: Optional[float] = None):
        self._estimator = estimator
        self._debounce = settings.distance_debounce_seconds if debounce_seconds is None else debounce_seconds
        self._task: Optional[asyncio.Task] = None
        self._generation = 0

    async def update(
        self,
        pickup: Optional[Coordinates],
        drop: Optional[Coordinates],
    ) -> Optional[DistanceEstimate]:
        self._generation += 1
        generation = self._generation
        self._cancel()
        if pickup is None or drop is None:
            return None

        task = asyncio.create_task(self._lookup(pickup, drop))
        self._task = task
        await asyncio.wait({task})
        if task.cancelled() or generation != self._generation:
            return None
        if task.exception() is not None:
            logger.warning("Distance lookup raised: %s", task.exception())
            return None
        return task.result()

    async def _lookup(self, pickup: Coordinates, drop: Coordinates) -> Optional[DistanceEstimate]:
        await asyncio.sleep(self._debounce)
        return await self._estimator(pickup[0], pickup[1], drop[0], drop[1])

    def _cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def close(self) -> None:
        self._generation += 1
        self._cancel()
