from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, field_serializer


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class UserRole(str, Enum):
    ADMIN = "ADMIN"
    DRIVER = "DRIVER"


class TripStatus(str, Enum):
    PENDING_APPROVAL = "PENDING_APPROVAL"
    SCHEDULED = "SCHEDULED"
    STARTED = "STARTED"
    PICKUP_COMPLETED = "PICKUP_COMPLETED"
    IN_TRANSIT = "IN_TRANSIT"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentMethodEnum(str, Enum):
    UPI = "UPI"
    CASH = "CASH"


# ---------------------------------------------------------------------------
# Domain records
# ---------------------------------------------------------------------------

class User(BaseModel):
    id: str
    name: str
    email: str
    phone: str
    role: UserRole
    password: str

    model_config = {"from_attributes": True}


class Customer(BaseModel):
    id: str
    name: str
    address: str
    phone: Optional[str] = None

    model_config = {"from_attributes": True}


class TimelineEvent(BaseModel):
    status: TripStatus
    timestamp: datetime
    location: Optional[str] = None

    model_config = {"from_attributes": True}


class Trip(BaseModel):
    id: str
    customer_id: Optional[str] = None
    customer_name: str
    driver_id: str

    pickup_location: str
    pickup_lat: Optional[float] = None
    pickup_lng: Optional[float] = None
    drop_location: str
    drop_lat: Optional[float] = None
    drop_lng: Optional[float] = None
    estimated_distance: Optional[str] = None

    scheduled_time: datetime
    status: TripStatus
    notes: Optional[str] = None
    timeline: list[TimelineEvent] = Field(default_factory=list)

    payment_method: Optional[PaymentMethodEnum] = None
    payment_amount: Optional[Decimal] = None
    payment_proof: Optional[str] = None

    is_driver_requested: bool = False
    created_at: datetime
    version: int = 1

    model_config = {"from_attributes": True}

    @field_serializer("payment_amount", when_used="json")
    def serialize_payment_amount(self, value: Optional[Decimal]) -> Optional[float]:
        return float(value) if value is not None else None


class TripDraft(BaseModel):
    """Fields supplied when a trip is first created or requested."""

    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    driver_id: Optional[str] = None
    pickup_location: str = Field(..., min_length=1)
    pickup_lat: Optional[float] = Field(default=None, ge=-90, le=90)
    pickup_lng: Optional[float] = Field(default=None, ge=-180, le=180)
    drop_location: str = Field(..., min_length=1)
    drop_lat: Optional[float] = Field(default=None, ge=-90, le=90)
    drop_lng: Optional[float] = Field(default=None, ge=-180, le=180)
    estimated_distance: Optional[str] = None
    scheduled_time: Optional[datetime] = None
    notes: Optional[str] = None


class PaymentCapture(BaseModel):
    # Everything optional so the lifecycle can name the missing field itself.
    method: Optional[PaymentMethodEnum] = None
    amount: Optional[Decimal] = None
    proof: Optional[str] = None


# ---------------------------------------------------------------------------
# Auth schemas
# ---------------------------------------------------------------------------

class LoginRequest(BaseModel):
    identifier: str = Field(..., min_length=1, description="Email or phone")
    password: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: str
    name: str
    role: UserRole


class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    phone: str
    role: UserRole

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Customer schemas
# ---------------------------------------------------------------------------

class CustomerUpsertRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    address: str = Field(..., min_length=1)
    phone: Optional[str] = Field(default=None, max_length=20)


# ---------------------------------------------------------------------------
# Trip schemas
# ---------------------------------------------------------------------------

class TripCreateRequest(TripDraft):
    new_customer: Optional[CustomerUpsertRequest] = None


class TripRequestPayload(BaseModel):
    customer_name: str = Field(..., min_length=1)
    pickup_location: str = Field(..., min_length=1)
    pickup_lat: Optional[float] = Field(default=None, ge=-90, le=90)
    pickup_lng: Optional[float] = Field(default=None, ge=-180, le=180)
    drop_location: str = Field(..., min_length=1)
    drop_lat: Optional[float] = Field(default=None, ge=-90, le=90)
    drop_lng: Optional[float] = Field(default=None, ge=-180, le=180)
    scheduled_time: Optional[datetime] = None
    notes: Optional[str] = None


class TripCompleteRequest(PaymentCapture):
    pass


# ---------------------------------------------------------------------------
# Geo / report schemas
# ---------------------------------------------------------------------------

class GeoPoint(BaseModel):
    lat: float
    lng: float
    address: str


class DistanceEstimate(BaseModel):
    km: float

    @property
    def label(self) -> str:
        return f"{self.km:.1f} km"


class DistanceResponse(BaseModel):
    km: Optional[float] = None
    label: str = ""


class DistanceQuery(BaseModel):
    """One message on the live distance socket: [lat, lng] pairs, either may be unset."""

    pickup: Optional[tuple[float, float]] = None
    drop: Optional[tuple[float, float]] = None


class ReverseGeocodeResponse(BaseModel):
    address: str


class ReportQueryRequest(BaseModel):
    query: str = Field(..., min_length=1)


class ReportResponse(BaseModel):
    answer: str


class Notice(BaseModel):
    message: str
    kind: str = "info"  # info | success | error
