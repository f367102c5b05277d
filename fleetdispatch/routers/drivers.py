"""
Drivers router — GET /v1/drivers, GET /v1/drivers/me/trips,
                 POST /v1/drivers/me/trip-requests
"""
import logging

from fastapi import APIRouter, Depends, Header, Request, status

from fleetdispatch.dependencies import get_manager
from fleetdispatch.middleware.auth import get_current_admin, get_current_driver
from fleetdispatch.middleware.idempotency import check_idempotency, store_idempotency_result
from fleetdispatch.schemas.schemas import Trip, TripDraft, TripRequestPayload, UserResponse, UserRole
from fleetdispatch.services.feed import DriverTripView
from fleetdispatch.services.lifecycle import Actor, TripLifecycleManager
from fleetdispatch.services.store import TripStore, get_store

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/drivers", tags=["Drivers"])


@router.get("", response_model=list[UserResponse])
async def list_drivers(
    actor: Actor = Depends(get_current_admin),
    store: TripStore = Depends(get_store),
):
    users = await store.list_users()
    return [UserResponse.model_validate(u) for u in users if u.role == UserRole.DRIVER]


@router.get("/me/trips", response_model=list[Trip])
async def my_trips(
    actor: Actor = Depends(get_current_driver),
    store: TripStore = Depends(get_store),
):
    """Open trips for the calling driver, earliest scheduled first."""
    trips, _ = await DriverTripView(store, actor.user_id).refresh()
    return trips


@router.post("/me/trip-requests", status_code=status.HTTP_201_CREATED, response_model=Trip)
async def request_trip(
    payload: TripRequestPayload,
    request: Request,
    actor: Actor = Depends(get_current_driver),
    manager: TripLifecycleManager = Depends(get_manager),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    """Submit an ad-hoc trip; it waits in PENDING_APPROVAL until an admin approves it."""
    if idempotency_key:
        cached = await check_idempotency(request, actor.user_id)
        if cached:
            return cached

    trip = await manager.request_trip(TripDraft(**payload.model_dump()), actor)

    if idempotency_key:
        await store_idempotency_result(
            idempotency_key, actor.user_id, status.HTTP_201_CREATED, trip.model_dump(mode="json")
        )
    return trip
