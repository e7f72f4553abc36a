"""
Hold model: a short-lived reservation awaiting payment
"""

from sqlalchemy import Column, String, Text, Float, Integer, Numeric, ForeignKey, Uuid, Index

from app.models.base import BaseModel
from app.models.types import JSONType, UTCDateTime


class Hold(BaseModel):
    """
    Blocks a provider's time slot while the customer pays.

    The id is the future Booking id. A row whose ``expires_at`` has passed
    is treated as absent by every query, whether or not the sweeper has
    removed it yet.
    """
    __tablename__ = "booking_holds"

    customer_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    provider_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    service_id = Column(Uuid, ForeignKey("services.id"), nullable=False)

    scheduled_at = Column(UTCDateTime, nullable=False)
    duration_hours = Column(Float, nullable=False)
    buffer_minutes = Column(Integer, default=0, nullable=False)
    padded_end_at = Column(UTCDateTime, nullable=False)

    phone_number = Column(String(30), nullable=False)
    address = Column(JSONType, nullable=False)
    description = Column(Text)

    total_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    payment_session_id = Column(String(255), index=True)

    expires_at = Column(UTCDateTime, nullable=False, index=True)

    __table_args__ = (
        Index("ix_booking_holds_provider_window", "provider_id", "scheduled_at", "padded_end_at"),
    )

    def __repr__(self):
        return f"<Hold(id={self.id}, provider_id={self.provider_id}, scheduled_at={self.scheduled_at}, expires_at={self.expires_at})>"
