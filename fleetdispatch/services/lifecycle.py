"""
Trip lifecycle state machine.

    PENDING_APPROVAL -> SCHEDULED -> STARTED -> PICKUP_COMPLETED -> IN_TRANSIT -> COMPLETED

Admins approve driver requests; every later step belongs to the driver who
owns the trip, and the last one is gated by a payment capture. CANCELLED is
a declared terminal state with no transition leading into it.

`apply_transition` is pure: it returns the next Trip record or raises.
`TripLifecycleManager` loads, applies, and persists through a TripStore with
a version check, then publishes the change on the feed.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from fleetdispatch.errors import (
    InvalidTransitionError,
    PermissionDeniedError,
    TripValidationError,
)
from fleetdispatch.schemas.schemas import (
    Customer,
    PaymentCapture,
    TimelineEvent,
    Trip,
    TripDraft,
    TripStatus,
    UserRole,
)
from fleetdispatch.services.feed import TripChange, TripFeed
from fleetdispatch.services.payment import validate_capture
from fleetdispatch.services.store import TripStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: UserRole


@dataclass(frozen=True)
class Transition:
    source: TripStatus
    target: TripStatus
    role: UserRole
    requires_payment: bool = False


# Keyed by target: every reachable state has exactly one predecessor.
TRANSITIONS: dict[TripStatus, Transition] = {
    TripStatus.SCHEDULED: Transition(TripStatus.PENDING_APPROVAL, TripStatus.SCHEDULED, UserRole.ADMIN),
    TripStatus.STARTED: Transition(TripStatus.SCHEDULED, TripStatus.STARTED, UserRole.DRIVER),
    TripStatus.PICKUP_COMPLETED: Transition(TripStatus.STARTED, TripStatus.PICKUP_COMPLETED, UserRole.DRIVER),
    TripStatus.IN_TRANSIT: Transition(TripStatus.PICKUP_COMPLETED, TripStatus.IN_TRANSIT, UserRole.DRIVER),
    TripStatus.COMPLETED: Transition(
        TripStatus.IN_TRANSIT, TripStatus.COMPLETED, UserRole.DRIVER, requires_payment=True
    ),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_valid_transition(current: TripStatus, target: TripStatus) -> bool:
    rule = TRANSITIONS.get(target)
    return rule is not None and rule.source == current


def next_status(current: TripStatus) -> Optional[TripStatus]:
    """The single forward step out of `current`, or None for terminal states."""
    for rule in TRANSITIONS.values():
        if rule.source == current:
            return rule.target
    return None


def apply_transition(
    trip: Trip,
    target: TripStatus,
    actor: Actor,
    payment: Optional[PaymentCapture] = None,
    at: Optional[datetime] = None,
    max_proof_bytes: Optional[int] = None,
) -> Trip:
    """
    Compute the record that results from moving `trip` to `target`.

    Raises InvalidTransitionError for a wrong source state, wrong role or a
    driver who does not own the trip, and TripValidationError when the
    payment capture gating completion is incomplete. The input is never
    modified.
    """
    rule = TRANSITIONS.get(target)
    if rule is None:
        raise InvalidTransitionError(f"No transition leads to {target.value}")
    if trip.status != rule.source:
        raise InvalidTransitionError(
            f"Cannot move trip {trip.id} from {trip.status.value} to {target.value}"
        )
    if actor.role != rule.role:
        raise InvalidTransitionError(
            f"{target.value} must be set by {rule.role.value.lower()}, not {actor.role.value.lower()}"
        )
    if rule.role == UserRole.DRIVER and trip.driver_id != actor.user_id:
        raise InvalidTransitionError(f"Trip {trip.id} is not assigned to driver {actor.user_id}")

    update: dict = {}
    if rule.requires_payment:
        capture = validate_capture(payment, max_proof_bytes=max_proof_bytes)
        update.update(
            payment_method=capture.method,
            payment_amount=capture.amount,
            payment_proof=capture.proof,
        )

    event = TimelineEvent(status=target, timestamp=at or _utcnow())
    update.update(
        status=target,
        timeline=[*trip.timeline, event],
        version=trip.version + 1,
    )
    return trip.model_copy(update=update, deep=True)


def new_scheduled_trip(draft: TripDraft, customer_name: str, at: Optional[datetime] = None) -> Trip:
    """Admin-created trip: pre-approved, enters SCHEDULED."""
    return _new_trip(draft, customer_name, draft.driver_id, TripStatus.SCHEDULED, False, at)


def new_requested_trip(draft: TripDraft, driver_id: str, at: Optional[datetime] = None) -> Trip:
    """Driver ad-hoc request: waits in PENDING_APPROVAL for an admin."""
    return _new_trip(draft, draft.customer_name, driver_id, TripStatus.PENDING_APPROVAL, True, at)


def _new_trip(draft, customer_name, driver_id, status, driver_requested, at) -> Trip:
    now = at or _utcnow()
    return Trip(
        id=str(uuid.uuid4()),
        customer_id=draft.customer_id,
        customer_name=customer_name,
        driver_id=driver_id,
        pickup_location=draft.pickup_location,
        pickup_lat=draft.pickup_lat,
        pickup_lng=draft.pickup_lng,
        drop_location=draft.drop_location,
        drop_lat=draft.drop_lat,
        drop_lng=draft.drop_lng,
        estimated_distance=draft.estimated_distance or None,
        scheduled_time=draft.scheduled_time or now,
        status=status,
        notes=draft.notes,
        timeline=[TimelineEvent(status=status, timestamp=now)],
        is_driver_requested=driver_requested,
        created_at=now,
    )


class TripLifecycleManager:
    """
    Stateless coordinator between the state machine and a TripStore.

    Nothing is cached between calls: each operation reads the trip, applies
    the transition, and writes back conditioned on the version it read.
    """

    def __init__(
        self,
        store: TripStore,
        feed: Optional[TripFeed] = None,
        max_proof_bytes: Optional[int] = None,
    ):
        self.store = store
        self.feed = feed
        self.max_proof_bytes = max_proof_bytes

    async def create_trip(
        self, draft: TripDraft, actor: Actor, new_customer: Optional[Customer] = None
    ) -> Trip:
        """
        Schedule a trip for a driver. An inline `new_customer` is saved only
        once the driver has been validated; an unknown `customer_id` is
        dropped and the supplied name kept.
        """
        if actor.role != UserRole.ADMIN:
            raise PermissionDeniedError("Only admins can create trips")
        if not draft.driver_id:
            raise TripValidationError("Please select a driver", field="driver_id")
        driver = await self.store.get_user(draft.driver_id)
        if driver is None or driver.role != UserRole.DRIVER:
            raise TripValidationError(f"Unknown driver {draft.driver_id}", field="driver_id")

        customer_name = draft.customer_name
        if new_customer is not None:
            await self.store.save_customer(new_customer)
            draft = draft.model_copy(update={"customer_id": new_customer.id})
            customer_name = new_customer.name
        elif draft.customer_id:
            customer = await self.store.get_customer(draft.customer_id)
            if customer is not None:
                customer_name = customer.name
            else:
                logger.info("Unknown customer %s on new trip, keeping name only", draft.customer_id)
                draft = draft.model_copy(update={"customer_id": None})
        if not customer_name:
            customer_name = "Unknown"

        trip = await self.store.create_trip(new_scheduled_trip(draft, customer_name))
        logger.info("Trip %s scheduled for driver=%s by admin=%s", trip.id, trip.driver_id, actor.user_id)
        await self._publish("created", trip)
        return trip

    async def request_trip(self, draft: TripDraft, actor: Actor) -> Trip:
        if actor.role != UserRole.DRIVER:
            raise PermissionDeniedError("Only drivers can request ad-hoc trips")
        if not draft.customer_name:
            raise TripValidationError("Customer name required", field="customer_name")

        trip = await self.store.create_trip(new_requested_trip(draft, actor.user_id))
        logger.info("Trip %s requested by driver=%s", trip.id, actor.user_id)
        await self._publish("created", trip)
        return trip

    async def approve(self, trip_id: str, actor: Actor) -> Trip:
        return await self.transition(trip_id, TripStatus.SCHEDULED, actor)

    async def start(self, trip_id: str, actor: Actor) -> Trip:
        return await self.transition(trip_id, TripStatus.STARTED, actor)

    async def mark_pickup_completed(self, trip_id: str, actor: Actor) -> Trip:
        return await self.transition(trip_id, TripStatus.PICKUP_COMPLETED, actor)

    async def start_transit(self, trip_id: str, actor: Actor) -> Trip:
        return await self.transition(trip_id, TripStatus.IN_TRANSIT, actor)

    async def complete(self, trip_id: str, actor: Actor, payment: Optional[PaymentCapture]) -> Trip:
        return await self.transition(trip_id, TripStatus.COMPLETED, actor, payment=payment)

    async def transition(
        self,
        trip_id: str,
        target: TripStatus,
        actor: Actor,
        payment: Optional[PaymentCapture] = None,
    ) -> Trip:
        current = await self.store.get_trip(trip_id)
        updated = apply_transition(
            current, target, actor, payment=payment, max_proof_bytes=self.max_proof_bytes
        )
        event = updated.timeline[-1]

        if TRANSITIONS[target].requires_payment:
            saved = await self.store.record_payment(
                trip_id,
                updated.payment_method,
                updated.payment_amount,
                updated.payment_proof,
                event=event,
                expected_version=current.version,
            )
        else:
            saved = await self.store.update_trip_status(
                trip_id, target, event, expected_version=current.version
            )

        logger.info(
            "Trip %s %s -> %s by %s=%s",
            trip_id, current.status.value, target.value, actor.role.value.lower(), actor.user_id,
        )
        await self._publish("status", saved)
        return saved

    async def _publish(self, kind: str, trip: Trip) -> None:
        if self.feed is not None:
            await self.feed.publish(TripChange(kind=kind, trip=trip))
