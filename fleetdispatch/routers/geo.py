"""
Geo router — GET /v1/geo/search, GET /v1/geo/reverse, GET /v1/geo/distance,
             WS /v1/geo/distance/live

Backs the location picker. Every upstream failure degrades to an empty or
coordinate-only answer rather than an error.
"""
import asyncio
import functools
import json
import logging
from typing import Optional

import redis.asyncio as aioredis
from fastapi import (
    APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status,
)
from jose import JWTError
from pydantic import ValidationError
from redis.exceptions import RedisError

from fleetdispatch.config import get_settings
from fleetdispatch.middleware.auth import decode_actor, get_current_actor
from fleetdispatch.redis_client import cache_get, cache_set, distance_cache_key, get_redis
from fleetdispatch.schemas.schemas import (
    DistanceEstimate, DistanceQuery, DistanceResponse, GeoPoint, ReverseGeocodeResponse,
)
from fleetdispatch.services import geocoding
from fleetdispatch.services.distance import DistanceLookup, estimate_distance
from fleetdispatch.services.lifecycle import Actor

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(prefix="/v1/geo", tags=["Geo"])


@router.get("/search", response_model=GeoPoint)
async def search(
    q: str = Query(..., min_length=1),
    actor: Actor = Depends(get_current_actor),
):
    point = await geocoding.search(q)
    if point is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Location not found.")
    return point


@router.get("/reverse", response_model=ReverseGeocodeResponse)
async def reverse(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    actor: Actor = Depends(get_current_actor),
):
    return ReverseGeocodeResponse(address=await geocoding.reverse(lat, lng))


async def cached_estimate(
    redis: aioredis.Redis,
    origin_lat: float,
    origin_lng: float,
    dest_lat: float,
    dest_lng: float,
) -> Optional[DistanceEstimate]:
    """estimate_distance behind the Redis cache; a cache outage only costs a lookup."""
    key = distance_cache_key(origin_lat, origin_lng, dest_lat, dest_lng)
    try:
        cached = await cache_get(redis, key)
    except (RedisError, OSError) as exc:
        logger.warning("Distance cache read failed: %s", exc)
        cached = None
    if cached:
        return DistanceEstimate(km=json.loads(cached)["km"])

    estimate = await estimate_distance(origin_lat, origin_lng, dest_lat, dest_lng)
    if estimate is None:
        return None

    try:
        await cache_set(
            redis, key, _as_response(estimate).model_dump_json(), ttl=settings.distance_cache_ttl_seconds
        )
    except (RedisError, OSError) as exc:
        logger.warning("Distance cache write failed: %s", exc)
    return estimate


def _as_response(estimate: Optional[DistanceEstimate]) -> DistanceResponse:
    if estimate is None:
        return DistanceResponse()
    return DistanceResponse(km=estimate.km, label=estimate.label)


@router.get("/distance", response_model=DistanceResponse)
async def distance(
    origin_lat: float = Query(..., ge=-90, le=90),
    origin_lng: float = Query(..., ge=-180, le=180),
    dest_lat: float = Query(..., ge=-90, le=90),
    dest_lng: float = Query(..., ge=-180, le=180),
    actor: Actor = Depends(get_current_actor),
    redis: aioredis.Redis = Depends(get_redis),
):
    """Driving distance between two points; empty when it cannot be resolved."""
    return _as_response(await cached_estimate(redis, origin_lat, origin_lng, dest_lat, dest_lng))


@router.websocket("/distance/live")
async def live_distance(
    websocket: WebSocket,
    token: str,
    redis: aioredis.Redis = Depends(get_redis),
):
    """
    Distance for a trip form while its pickup and drop are being edited.

    Each message is a DistanceQuery. Lookups are debounced and a newer
    message supersedes an older one still pending, so only the estimate for
    the latest pair is sent. An incomplete pair clears the estimate at once.
    """
    try:
        actor = decode_actor(token)
    except (JWTError, ValueError):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    lookup = DistanceLookup(functools.partial(cached_estimate, redis))
    pending: set[asyncio.Task] = set()

    async def answer(query: DistanceQuery) -> None:
        estimate = await lookup.update(query.pickup, query.drop)
        if estimate is not None:
            await websocket.send_json(_as_response(estimate).model_dump())

    try:
        while True:
            try:
                query = DistanceQuery.model_validate(await websocket.receive_json())
            except (ValidationError, ValueError) as exc:
                await websocket.send_json({"error": str(exc)})
                continue
            if query.pickup is None or query.drop is None:
                lookup.close()
                await websocket.send_json(DistanceResponse().model_dump())
                continue
            task = asyncio.create_task(answer(query))
            pending.add(task)
            task.add_done_callback(pending.discard)
    except WebSocketDisconnect:
        logger.info("Distance picker closed for %s=%s", actor.role.value.lower(), actor.user_id)
    finally:
        lookup.close()
        for task in list(pending):
            task.cancel()
