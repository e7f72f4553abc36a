"""
Ledger schemas

Transaction metadata is a tagged union keyed on ``kind`` so each ledger
entry type carries exactly the fields that apply to it.
"""

from pydantic import Field
from typing import Optional, Union, Literal, Annotated
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from app.schemas.base import BaseSchema, IDSchema, TimestampSchema
from app.models.transaction import TransactionType, TransactionStatus, PaymentMethod


class BookingPaymentMetadata(BaseSchema):
    kind: Literal["booking_payment"] = "booking_payment"
    service_id: UUID
    scheduled_at: datetime
    duration_hours: float
    settled_via: Optional[str] = None


class BookingRefundMetadata(BaseSchema):
    kind: Literal["booking_refund"] = "booking_refund"
    booking_status_at_refund: str
    initiated_by: str
    hours_since_booking: float


class SubscriptionMetadata(BaseSchema):
    kind: Literal["subscription"] = "subscription"
    plan: str
    billing_period: Optional[str] = None


class CreditRedemptionMetadata(BaseSchema):
    kind: Literal["credit_redemption"] = "credit_redemption"
    credits: int
    credit_cash_value: Decimal
    target: Literal["subscription", "cash"]


class CreditEarnedMetadata(BaseSchema):
    kind: Literal["credit_earned"] = "credit_earned"
    credits: int
    source: str


TransactionMetadata = Annotated[
    Union[
        BookingPaymentMetadata,
        BookingRefundMetadata,
        SubscriptionMetadata,
        CreditRedemptionMetadata,
        CreditEarnedMetadata,
    ],
    Field(discriminator="kind"),
]


class TransactionResponse(IDSchema, TimestampSchema):
    transaction_ref: str
    type: TransactionType
    status: TransactionStatus
    payment_method: PaymentMethod
    payer_id: Optional[UUID] = None
    payer_name: Optional[str] = None
    receiver_id: Optional[UUID] = None
    receiver_name: Optional[str] = None
    amount: Decimal
    currency: str
    credits_used: int
    net_amount: Decimal
    booking_id: Optional[UUID] = None
    stripe_payment_intent_id: Optional[str] = None
    refund_id: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    refunded_at: Optional[datetime] = None
    original_transaction_id: Optional[UUID] = None
    description: str
    details: Optional[TransactionMetadata] = None
    completed_at: Optional[datetime] = None
