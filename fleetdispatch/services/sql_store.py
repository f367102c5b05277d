"""
SQLAlchemy-backed record store.

Timelines live in `trip_events` with a unique (trip_id, seq) pair, so two
writers racing to append the same position cannot both succeed. Status
writes are additionally conditioned on `trips.version`.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from fleetdispatch.errors import (
    ConcurrentUpdateError,
    StoreUnavailableError,
    TripNotFoundError,
    TripValidationError,
)
from fleetdispatch.models import CustomerRow, TripEventRow, TripRow, UserRow
from fleetdispatch.schemas.schemas import (
    Customer,
    PaymentMethodEnum,
    TimelineEvent,
    Trip,
    TripStatus,
    User,
)
from fleetdispatch.services.store import TripStore

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _to_trip(row: TripRow) -> Trip:
    return Trip(
        id=row.id,
        customer_id=row.customer_id,
        customer_name=row.customer_name,
        driver_id=row.driver_id,
        pickup_location=row.pickup_location,
        pickup_lat=row.pickup_lat,
        pickup_lng=row.pickup_lng,
        drop_location=row.drop_location,
        drop_lat=row.drop_lat,
        drop_lng=row.drop_lng,
        estimated_distance=row.estimated_distance,
        scheduled_time=_as_utc(row.scheduled_time),
        status=TripStatus(row.status),
        notes=row.notes,
        timeline=[
            TimelineEvent(
                status=TripStatus(event.status),
                timestamp=_as_utc(event.timestamp),
                location=event.location,
            )
            for event in row.timeline
        ],
        payment_method=PaymentMethodEnum(row.payment_method) if row.payment_method else None,
        payment_amount=row.payment_amount,
        payment_proof=row.payment_proof,
        is_driver_requested=row.is_driver_requested,
        created_at=_as_utc(row.created_at),
        version=row.version,
    )


class SqlTripStore(TripStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self):
        try:
            async with self._session_factory() as db:
                yield db
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Record store error: %s", exc)
            raise StoreUnavailableError("Record store unavailable, please retry") from exc

    # --- trips -------------------------------------------------------------

    def _trip_query(self):
        return select(TripRow).options(selectinload(TripRow.timeline))

    async def list_trips(self) -> list[Trip]:
        async with self._session() as db:
            result = await db.execute(self._trip_query().order_by(TripRow.created_at.desc()))
            return [_to_trip(row) for row in result.scalars().all()]

    async def get_trips_for_driver(self, driver_id: str) -> list[Trip]:
        async with self._session() as db:
            result = await db.execute(
                self._trip_query().where(TripRow.driver_id == driver_id).order_by(TripRow.scheduled_time)
            )
            return [_to_trip(row) for row in result.scalars().all()]

    async def get_trip(self, trip_id: str) -> Trip:
        async with self._session() as db:
            result = await db.execute(self._trip_query().where(TripRow.id == trip_id))
            row = result.scalar_one_or_none()
            if row is None:
                raise TripNotFoundError(f"Trip {trip_id} not found")
            return _to_trip(row)

    async def create_trip(self, trip: Trip) -> Trip:
        async with self._session() as db:
            row = TripRow(
                id=trip.id,
                customer_id=trip.customer_id,
                customer_name=trip.customer_name,
                driver_id=trip.driver_id,
                pickup_location=trip.pickup_location,
                pickup_lat=trip.pickup_lat,
                pickup_lng=trip.pickup_lng,
                drop_location=trip.drop_location,
                drop_lat=trip.drop_lat,
                drop_lng=trip.drop_lng,
                estimated_distance=trip.estimated_distance,
                scheduled_time=trip.scheduled_time,
                status=trip.status.value,
                notes=trip.notes,
                payment_method=trip.payment_method.value if trip.payment_method else None,
                payment_amount=trip.payment_amount,
                payment_proof=trip.payment_proof,
                is_driver_requested=trip.is_driver_requested,
                version=trip.version,
                created_at=trip.created_at,
            )
            row.timeline = [
                TripEventRow(seq=seq, status=event.status.value, timestamp=event.timestamp, location=event.location)
                for seq, event in enumerate(trip.timeline)
            ]
            db.add(row)
            try:
                await db.commit()
            except IntegrityError as exc:
                await db.rollback()
                raise TripValidationError(f"Trip {trip.id} could not be created: {exc.orig}", field="id") from exc
        return await self.get_trip(trip.id)

    async def update_trip_status(self, trip_id, new_status, event, expected_version) -> Trip:
        return await self._write(trip_id, expected_version, event, {"status": new_status.value})

    async def record_payment(
        self,
        trip_id: str,
        method: PaymentMethodEnum,
        amount: Decimal,
        proof: Optional[str],
        event: TimelineEvent,
        expected_version: int,
    ) -> Trip:
        return await self._write(
            trip_id,
            expected_version,
            event,
            {
                "status": TripStatus.COMPLETED.value,
                "payment_method": method.value,
                "payment_amount": amount,
                "payment_proof": proof,
            },
        )

    async def _write(self, trip_id: str, expected_version: int, event: TimelineEvent, values: dict) -> Trip:
        async with self._session() as db:
            result = await db.execute(
                update(TripRow)
                .where(TripRow.id == trip_id, TripRow.version == expected_version)
                .values(**values, version=expected_version + 1)
            )
            if result.rowcount != 1:
                await db.rollback()
                exists = await db.scalar(select(TripRow.id).where(TripRow.id == trip_id))
                if exists is None:
                    raise TripNotFoundError(f"Trip {trip_id} not found")
                raise ConcurrentUpdateError(f"Trip {trip_id} was modified concurrently")

            seq = await db.scalar(
                select(func.count()).select_from(TripEventRow).where(TripEventRow.trip_id == trip_id)
            )
            db.add(
                TripEventRow(
                    trip_id=trip_id,
                    seq=seq,
                    status=event.status.value,
                    timestamp=event.timestamp,
                    location=event.location,
                )
            )
            try:
                await db.commit()
            except IntegrityError as exc:
                await db.rollback()
                raise ConcurrentUpdateError(f"Trip {trip_id} was modified concurrently") from exc
        return await self.get_trip(trip_id)

    # --- customers ---------------------------------------------------------

    async def list_customers(self) -> list[Customer]:
        async with self._session() as db:
            result = await db.execute(select(CustomerRow).order_by(CustomerRow.name))
            return [Customer.model_validate(row) for row in result.scalars().all()]

    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        async with self._session() as db:
            row = await db.get(CustomerRow, customer_id)
            return Customer.model_validate(row) if row else None

    async def save_customer(self, customer: Customer) -> Customer:
        async with self._session() as db:
            row = await db.get(CustomerRow, customer.id)
            if row is None:
                row = CustomerRow(id=customer.id)
                db.add(row)
            row.name = customer.name
            row.address = customer.address
            row.phone = customer.phone
            await db.commit()
        return customer

    async def delete_customer(self, customer_id: str) -> bool:
        async with self._session() as db:
            row = await db.get(CustomerRow, customer_id)
            if row is None:
                return False
            await db.delete(row)
            await db.commit()
            return True

    # --- users -------------------------------------------------------------

    async def list_users(self) -> list[User]:
        async with self._session() as db:
            result = await db.execute(select(UserRow).order_by(UserRow.name))
            return [User.model_validate(row) for row in result.scalars().all()]

    async def get_user(self, user_id: str) -> Optional[User]:
        async with self._session() as db:
            row = await db.get(UserRow, user_id)
            return User.model_validate(row) if row else None

    async def authenticate(self, identifier: str, password: str) -> Optional[User]:
        async with self._session() as db:
            result = await db.execute(
                select(UserRow).where(or_(UserRow.email == identifier, UserRow.phone == identifier))
            )
            row = result.scalars().first()
            if row is None or row.password != password:
                return None
            return User.model_validate(row)

    async def seed_users(self, users: list[User]) -> None:
        async with self._session() as db:
            for user in users:
                if await db.get(UserRow, user.id) is None:
                    db.add(UserRow(**user.model_dump(mode="json")))
            await db.commit()
