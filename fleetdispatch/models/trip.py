import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    Boolean, DateTime, Float, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from fleetdispatch.database import Base


class TripRow(Base):
    __tablename__ = "trips"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    customer_id: Mapped[str | None] = mapped_column(String, ForeignKey("customers.id", ondelete="SET NULL"), nullable=True)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    driver_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, index=True)

    pickup_location: Mapped[str] = mapped_column(Text, nullable=False)
    pickup_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    pickup_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    drop_location: Mapped[str] = mapped_column(Text, nullable=False)
    drop_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    drop_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    estimated_distance: Mapped[str | None] = mapped_column(String(32), nullable=True)

    scheduled_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # PENDING_APPROVAL | SCHEDULED | STARTED | PICKUP_COMPLETED | IN_TRANSIT | COMPLETED | CANCELLED
    status: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # UPI | CASH
    payment_method: Mapped[str | None] = mapped_column(String(10), nullable=True)
    payment_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    payment_proof: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_driver_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Bumped on every write; updates are conditioned on the value last read.
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )

    timeline: Mapped[list["TripEventRow"]] = relationship(
        back_populates="trip", order_by="TripEventRow.seq", cascade="all, delete-orphan"
    )


class TripEventRow(Base):
    __tablename__ = "trip_events"
    __table_args__ = (UniqueConstraint("trip_id", "seq", name="uq_trip_events_trip_seq"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trip_id: Mapped[str] = mapped_column(String, ForeignKey("trips.id"), nullable=False, index=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    location: Mapped[str | None] = mapped_column(Text, nullable=True)

    trip: Mapped[TripRow] = relationship(back_populates="timeline")
