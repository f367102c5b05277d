"""
Record store contract and the in-memory backend.

The lifecycle manager only talks to `TripStore`; `InMemoryTripStore` keeps
everything in process (the local-storage flavour of the app) and
`fleetdispatch.services.sql_store.SqlTripStore` persists to a database.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

from fleetdispatch.config import get_settings
from fleetdispatch.errors import ConcurrentUpdateError, TripNotFoundError, TripValidationError
from fleetdispatch.schemas.schemas import (
    Customer,
    PaymentMethodEnum,
    TimelineEvent,
    Trip,
    TripStatus,
    User,
    UserRole,
)

logger = logging.getLogger(__name__)

DEFAULT_USERS: list[User] = [
    User(
        id="admin_01",
        name="Admin User",
        email="admin@fleet.local",
        phone="9998887777",
        role=UserRole.ADMIN,
        password="admin@123",
    ),
    User(
        id="driver_01",
        name="Arun Driver",
        email="arun@fleet.local",
        phone="9876543210",
        role=UserRole.DRIVER,
        password="arun@123",
    ),
]


class TripStore(ABC):
    """Persistence seen by the lifecycle manager. Writes are all-or-nothing."""

    # --- trips -------------------------------------------------------------

    @abstractmethod
    async def list_trips(self) -> list[Trip]: ...

    @abstractmethod
    async def get_trips_for_driver(self, driver_id: str) -> list[Trip]: ...

    @abstractmethod
    async def get_trip(self, trip_id: str) -> Trip:
        """Raises TripNotFoundError."""

    @abstractmethod
    async def create_trip(self, trip: Trip) -> Trip: ...

    @abstractmethod
    async def update_trip_status(
        self,
        trip_id: str,
        new_status: TripStatus,
        event: TimelineEvent,
        expected_version: int,
    ) -> Trip:
        """Set status and append `event` together, only if the version still matches."""

    @abstractmethod
    async def record_payment(
        self,
        trip_id: str,
        method: PaymentMethodEnum,
        amount: Decimal,
        proof: Optional[str],
        event: TimelineEvent,
        expected_version: int,
    ) -> Trip:
        """Store payment fields, mark COMPLETED and append `event` in one write."""

    # --- customers ---------------------------------------------------------

    @abstractmethod
    async def list_customers(self) -> list[Customer]: ...

    @abstractmethod
    async def get_customer(self, customer_id: str) -> Optional[Customer]: ...

    @abstractmethod
    async def save_customer(self, customer: Customer) -> Customer: ...

    @abstractmethod
    async def delete_customer(self, customer_id: str) -> bool: ...

    # --- users -------------------------------------------------------------

    @abstractmethod
    async def list_users(self) -> list[User]: ...

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    async def seed_users(self, users: list[User]) -> None: ...

    async def authenticate(self, identifier: str, password: str) -> Optional[User]:
        # Plaintext comparison, matching the seeded credential set.
        for user in await self.list_users():
            if identifier in (user.email, user.phone) and user.password == password:
                return user
        return None


class InMemoryTripStore(TripStore):
    def __init__(self, users: Optional[list[User]] = None):
        self._trips: dict[str, Trip] = {}
        self._customers: dict[str, Customer] = {}
        self._users: dict[str, User] = {}
        self._lock = asyncio.Lock()
        for user in users if users is not None else DEFAULT_USERS:
            self._users[user.id] = user

    async def list_trips(self) -> list[Trip]:
        return [t.model_copy(deep=True) for t in self._trips.values()]

    async def get_trips_for_driver(self, driver_id: str) -> list[Trip]:
        return [t.model_copy(deep=True) for t in self._trips.values() if t.driver_id == driver_id]

    async def get_trip(self, trip_id: str) -> Trip:
        trip = self._trips.get(trip_id)
        if trip is None:
            raise TripNotFoundError(f"Trip {trip_id} not found")
        return trip.model_copy(deep=True)

    async def create_trip(self, trip: Trip) -> Trip:
        async with self._lock:
            if trip.id in self._trips:
                raise TripValidationError(f"Trip {trip.id} already exists", field="id")
            self._trips[trip.id] = trip.model_copy(deep=True)
        return trip.model_copy(deep=True)

    async def update_trip_status(self, trip_id, new_status, event, expected_version) -> Trip:
        return await self._write(trip_id, expected_version, event, {"status": new_status})

    async def record_payment(self, trip_id, method, amount, proof, event, expected_version) -> Trip:
        return await self._write(
            trip_id,
            expected_version,
            event,
            {
                "status": TripStatus.COMPLETED,
                "payment_method": method,
                "payment_amount": amount,
                "payment_proof": proof,
            },
        )

    async def _write(self, trip_id: str, expected_version: int, event: TimelineEvent, changes: dict) -> Trip:
        async with self._lock:
            current = self._trips.get(trip_id)
            if current is None:
                raise TripNotFoundError(f"Trip {trip_id} not found")
            if current.version != expected_version:
                raise ConcurrentUpdateError(
                    f"Trip {trip_id} was modified concurrently (version {current.version}, expected {expected_version})"
                )
            updated = current.model_copy(
                update={
                    **changes,
                    "timeline": [*current.timeline, event],
                    "version": current.version + 1,
                },
                deep=True,
            )
            self._trips[trip_id] = updated
        return updated.model_copy(deep=True)

    async def list_customers(self) -> list[Customer]:
        return list(self._customers.values())

    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        return self._customers.get(customer_id)

    async def save_customer(self, customer: Customer) -> Customer:
        self._customers[customer.id] = customer
        return customer

    async def delete_customer(self, customer_id: str) -> bool:
        return self._customers.pop(customer_id, None) is not None

    async def list_users(self) -> list[User]:
        return list(self._users.values())

    async def get_user(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    async def seed_users(self, users: list[User]) -> None:
        for user in users:
            self._users.setdefault(user.id, user)


_store: Optional[TripStore] = None


def get_store() -> TripStore:
    """FastAPI dependency: the process-wide store for the configured backend."""
    global _store
    if _store is None:
        backend = get_settings().store_backend
        if backend == "memory":
            _store = InMemoryTripStore()
        elif backend == "sql":
            from fleetdispatch.database import AsyncSessionLocal
            from fleetdispatch.services.sql_store import SqlTripStore

            _store = SqlTripStore(AsyncSessionLocal)
        else:
            raise ValueError(f"Unknown store backend {backend!r}")
        logger.info("Using %s record store", backend)
    return _store
