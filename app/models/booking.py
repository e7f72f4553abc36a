"""
Booking model
"""

from sqlalchemy import Column, String, Text, Float, Integer, Numeric, ForeignKey, Enum, Uuid, Index
import enum

from app.models.base import BaseModel
from app.models.types import JSONType, UTCDateTime


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    REFUNDED = "refunded"


class Booking(BaseModel):
    """
    A paid appointment. Created only by settlement, reusing the Hold id.
    """
    __tablename__ = "bookings"

    customer_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    provider_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    service_id = Column(Uuid, ForeignKey("services.id"), nullable=False, index=True)

    scheduled_at = Column(UTCDateTime, nullable=False)
    duration_hours = Column(Float, nullable=False)
    buffer_minutes = Column(Integer, default=0, nullable=False)
    padded_end_at = Column(UTCDateTime, nullable=False)

    phone_number = Column(String(30), nullable=False)
    address = Column(JSONType, nullable=False)
    description = Column(Text)
    total_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)

    status = Column(
        Enum(BookingStatus),
        default=BookingStatus.PENDING,
        nullable=False,
        index=True
    )

    # Payment
    payment_status = Column(Enum(PaymentStatus), default=PaymentStatus.UNPAID, nullable=False)
    payment_intent_id = Column(String(255), index=True)
    payment_session_id = Column(String(255))
    paid_at = Column(UTCDateTime)
    refund_id = Column(String(255))
    refunded_at = Column(UTCDateTime)

    # Completion handshake
    completion_code = Column(String(64))
    completion_qr = Column(Text)
    completion_code_issued_at = Column(UTCDateTime)
    completed_at = Column(UTCDateTime)

    cancelled_at = Column(UTCDateTime)
    cancelled_by = Column(Uuid)
    cancellation_reason = Column(Text)

    rating = Column(Integer)
    review = Column(Text)
    rated_at = Column(UTCDateTime)

    __table_args__ = (
        Index("ix_bookings_provider_window", "provider_id", "scheduled_at", "padded_end_at"),
    )

    def __repr__(self):
        return f"<Booking(id={self.id}, status={self.status}, payment={self.payment_status}, amount={self.total_amount})>"
