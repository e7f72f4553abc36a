"""
Payment and refund schemas
"""

from pydantic import Field
from typing import Optional
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from app.schemas.base import BaseSchema


class RefundRequest(BaseSchema):
    booking_id: UUID
    reason: Optional[str] = Field(None, max_length=500)


class RefundResponse(BaseSchema):
    booking_id: UUID
    refund_id: str
    amount: Decimal
    currency: str
    refunded_at: datetime
    transaction_ref: Optional[str] = None


class RefundEligibility(BaseSchema):
    booking_id: UUID
    eligible: bool
    can_refund: bool
    refund_window_hours: int
    hours_since_creation: float
    hours_remaining: float
    reason: Optional[str] = None


class WebhookAck(BaseSchema):
    received: bool = True
    success: bool = True
    event_type: Optional[str] = None
    message: Optional[str] = None
