"""
Trips router — POST /v1/trips, GET /v1/trips, GET /v1/trips/{id},
               POST /v1/trips/{id}/approve|start|pickup|transit|complete,
               WS /v1/trips/feed
"""
import logging
import uuid
from typing import Optional

from fastapi import (
    APIRouter, Depends, Header, Query, Request, WebSocket, WebSocketDisconnect, status,
)
from jose import JWTError

from fleetdispatch.dependencies import get_feed, get_manager
from fleetdispatch.errors import PermissionDeniedError
from fleetdispatch.middleware.auth import decode_actor, get_current_actor, get_current_admin
from fleetdispatch.middleware.idempotency import check_idempotency, store_idempotency_result
from fleetdispatch.schemas.schemas import (
    Customer, Trip, TripCompleteRequest, TripCreateRequest, TripDraft, TripStatus, UserRole,
)
from fleetdispatch.services.feed import AdminTripView, DriverTripView, TripFeed
from fleetdispatch.services.lifecycle import Actor, TripLifecycleManager
from fleetdispatch.services.store import TripStore, get_store

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/trips", tags=["Trips"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=Trip)
async def create_trip(
    payload: TripCreateRequest,
    request: Request,
    actor: Actor = Depends(get_current_admin),
    manager: TripLifecycleManager = Depends(get_manager),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    """
    Publish a trip to a driver:
      1. Replay a stored response for a repeated Idempotency-Key
      2. Validate the driver, then save any inline customer
      3. Create the trip directly in SCHEDULED
    """
    if idempotency_key:
        cached = await check_idempotency(request, actor.user_id)
        if cached:
            return cached

    draft = TripDraft(**payload.model_dump(exclude={"new_customer"}))
    new_customer = None
    if payload.new_customer:
        new_customer = Customer(id=str(uuid.uuid4()), **payload.new_customer.model_dump())

    trip = await manager.create_trip(draft, actor, new_customer=new_customer)

    if idempotency_key:
        await store_idempotency_result(
            idempotency_key, actor.user_id, status.HTTP_201_CREATED, trip.model_dump(mode="json")
        )
    return trip


@router.get("", response_model=list[Trip])
async def list_trips(
    status_filter: Optional[TripStatus] = Query(default=None, alias="status"),
    actor: Actor = Depends(get_current_admin),
    store: TripStore = Depends(get_store),
):
    trips, _ = await AdminTripView(store).refresh()
    if status_filter is not None:
        trips = [t for t in trips if t.status == status_filter]
    return trips


@router.websocket("/feed")
async def trip_feed(
    websocket: WebSocket,
    token: str,
    store: TripStore = Depends(get_store),
    feed: TripFeed = Depends(get_feed),
):
    """
    Push the caller's trip list, plus notices, whenever a trip changes.
    Admins see every trip; drivers see their own open trips.
    """
    try:
        actor = decode_actor(token)
    except (JWTError, ValueError):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    if actor.role == UserRole.ADMIN:
        view = AdminTripView(store)
    else:
        view = DriverTripView(store, actor.user_id)

    async with feed.subscribe() as changes:
        try:
            while True:
                trips, notices = await view.refresh()
                await websocket.send_json({
                    "trips": [t.model_dump(mode="json") for t in trips],
                    "notices": [n.model_dump() for n in notices],
                })
                await changes.get()
        except WebSocketDisconnect:
            logger.info("Feed closed for %s=%s", actor.role.value.lower(), actor.user_id)


@router.get("/{trip_id}", response_model=Trip)
async def get_trip(
    trip_id: str,
    actor: Actor = Depends(get_current_actor),
    store: TripStore = Depends(get_store),
):
    trip = await store.get_trip(trip_id)
    if actor.role == UserRole.DRIVER and trip.driver_id != actor.user_id:
        raise PermissionDeniedError("Trip is assigned to another driver")
    return trip


@router.post("/{trip_id}/approve", response_model=Trip)
async def approve_trip(
    trip_id: str,
    actor: Actor = Depends(get_current_actor),
    manager: TripLifecycleManager = Depends(get_manager),
):
    """Admin approval of a driver's ad-hoc request (PENDING_APPROVAL -> SCHEDULED)."""
    return await manager.approve(trip_id, actor)


@router.post("/{trip_id}/start", response_model=Trip)
async def start_trip(
    trip_id: str,
    actor: Actor = Depends(get_current_actor),
    manager: TripLifecycleManager = Depends(get_manager),
):
    return await manager.start(trip_id, actor)


@router.post("/{trip_id}/pickup", response_model=Trip)
async def mark_pickup_completed(
    trip_id: str,
    actor: Actor = Depends(get_current_actor),
    manager: TripLifecycleManager = Depends(get_manager),
):
    return await manager.mark_pickup_completed(trip_id, actor)


@router.post("/{trip_id}/transit", response_model=Trip)
async def start_transit(
    trip_id: str,
    actor: Actor = Depends(get_current_actor),
    manager: TripLifecycleManager = Depends(get_manager),
):
    return await manager.start_transit(trip_id, actor)


@router.post("/{trip_id}/complete", response_model=Trip)
async def complete_trip(
    trip_id: str,
    payload: TripCompleteRequest,
    actor: Actor = Depends(get_current_actor),
    manager: TripLifecycleManager = Depends(get_manager),
):
    """
    Record payment and complete the trip (IN_TRANSIT -> COMPLETED).
    UPI payments must carry a proof blob no larger than the configured ceiling.
    """
    return await manager.complete(trip_id, actor, payload)
