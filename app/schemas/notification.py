"""
Notification payload schemas
"""

from pydantic import Field
from typing import Optional, Union, Literal, Annotated
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from app.schemas.base import BaseSchema


class BookingNotificationData(BaseSchema):
    kind: Literal["booking"] = "booking"
    booking_id: UUID
    service_id: UUID
    scheduled_at: datetime
    status: str


class PaymentNotificationData(BaseSchema):
    kind: Literal["payment"] = "payment"
    booking_id: UUID
    amount: Decimal
    currency: str


class RefundNotificationData(BaseSchema):
    kind: Literal["refund"] = "refund"
    booking_id: UUID
    refund_id: str
    amount: Decimal
    currency: str
    reason: Optional[str] = None


class RatingNotificationData(BaseSchema):
    kind: Literal["rating"] = "rating"
    booking_id: UUID
    rating: int
    review: Optional[str] = None


NotificationData = Annotated[
    Union[
        BookingNotificationData,
        PaymentNotificationData,
        RefundNotificationData,
        RatingNotificationData,
    ],
    Field(discriminator="kind"),
]
