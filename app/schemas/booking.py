"""
Booking schemas
"""

from pydantic import Field, field_validator
from typing import Optional, List
from datetime import datetime, date, timezone
from decimal import Decimal
from uuid import UUID

from app.schemas.base import BaseSchema, TimestampSchema, IDSchema
from app.models.booking import BookingStatus, PaymentStatus


class AddressSchema(BaseSchema):
    city: str = Field(..., min_length=1, max_length=100)
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    line1: Optional[str] = Field(None, max_length=255)


class BookingCreate(BaseSchema):
    """Request to reserve a slot and start checkout"""
    service_id: UUID
    scheduled_at: datetime
    duration_hours: float = Field(..., ge=0.5, le=24)
    phone_number: str = Field(..., min_length=5, max_length=30)
    address: AddressSchema
    description: Optional[str] = Field(None, max_length=2000)

    @field_validator("scheduled_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        # Naive datetimes are taken to be UTC
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


class CheckoutResponse(BaseSchema):
    booking_id: UUID
    session_id: str
    payment_url: str
    amount: Decimal
    currency: str
    expires_at: datetime


class BookingResponse(IDSchema, TimestampSchema):
    customer_id: UUID
    provider_id: UUID
    service_id: UUID
    scheduled_at: datetime
    duration_hours: float
    buffer_minutes: int
    phone_number: str
    address: AddressSchema
    description: Optional[str] = None
    total_amount: Decimal
    currency: str
    status: BookingStatus
    payment_status: PaymentStatus
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    rating: Optional[int] = None
    review: Optional[str] = None


class BookingListResponse(BaseSchema):
    bookings: List[BookingResponse]
    total: int
    page: int
    per_page: int


class CancelBookingRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=500)


class CompletionCodeResponse(BaseSchema):
    booking_id: UUID
    completion_code: str
    qr_code: str
    issued_at: datetime


class CompleteBookingRequest(BaseSchema):
    completion_code: str = Field(..., min_length=1, max_length=64)


class RateBookingRequest(BaseSchema):
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = Field(None, max_length=2000)


class AvailabilitySlot(BaseSchema):
    start: datetime
    end: datetime
    available: bool


class AvailabilityResponse(BaseSchema):
    service_id: UUID
    date: date
    duration_hours: float
    working_hours: Optional[dict] = None
    slots: List[AvailabilitySlot]
