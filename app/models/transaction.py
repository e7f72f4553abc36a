"""
Transaction model: the append-only financial ledger
"""

from sqlalchemy import Column, String, Text, Integer, Numeric, ForeignKey, Enum, Uuid, Index, text
import enum

from app.models.base import BaseModel
from app.models.types import JSONType, UTCDateTime
from app.models.user import UserRole


class TransactionType(str, enum.Enum):
    SUBSCRIPTION_PURCHASE = "subscription_purchase"
    SUBSCRIPTION_RENEWAL = "subscription_renewal"
    SUBSCRIPTION_REFUND = "subscription_refund"
    BOOKING_PAYMENT = "booking_payment"
    BOOKING_REFUND = "booking_refund"
    CREDIT_REDEMPTION_SUBSCRIPTION = "credit_redemption_subscription"
    CREDIT_REDEMPTION_CASH = "credit_redemption_cash"
    CREDIT_EARNED = "credit_earned"


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class PaymentMethod(str, enum.Enum):
    STRIPE_CARD = "stripe_card"
    STRIPE_BANK_TRANSFER = "stripe_bank_transfer"
    CREDITS = "credits"
    MIXED = "mixed"


class Transaction(BaseModel):
    """
    One money movement. Rows are never deleted; the only update an existing
    row receives is ``status``/refund back-references when it is refunded.
    """
    __tablename__ = "transactions"

    transaction_ref = Column(String(40), unique=True, nullable=False, index=True)
    type = Column(Enum(TransactionType), nullable=False, index=True)
    status = Column(
        Enum(TransactionStatus),
        default=TransactionStatus.PENDING,
        nullable=False,
        index=True
    )
    payment_method = Column(Enum(PaymentMethod), nullable=False)

    payer_id = Column(Uuid, ForeignKey("users.id"), index=True)
    payer_name = Column(String(100))
    payer_role = Column(Enum(UserRole))
    receiver_id = Column(Uuid, ForeignKey("users.id"), index=True)
    receiver_name = Column(String(100))
    receiver_role = Column(Enum(UserRole))

    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    credits_used = Column(Integer, default=0, nullable=False)
    credit_cash_value = Column(Numeric(10, 2), default=0, nullable=False)
    net_amount = Column(Numeric(10, 2), nullable=False)

    stripe_payment_intent_id = Column(String(255), index=True)
    stripe_customer_id = Column(String(255))
    stripe_subscription_id = Column(String(255))
    stripe_payout_id = Column(String(255))
    stripe_connect_account_id = Column(String(255))

    booking_id = Column(Uuid, ForeignKey("bookings.id"), index=True)
    subscription_id = Column(Uuid)
    redemption_id = Column(Uuid)
    referral_id = Column(Uuid)

    refund_id = Column(String(255))
    refund_amount = Column(Numeric(10, 2))
    refunded_at = Column(UTCDateTime)
    refund_reason = Column(Text)
    original_transaction_id = Column(Uuid, ForeignKey("transactions.id"), index=True)

    description = Column(Text, nullable=False)
    details = Column("metadata", JSONType)
    completed_at = Column(UTCDateTime)

    __table_args__ = (
        # At most one payment row per booking
        Index(
            "uq_transactions_booking_payment",
            "booking_id",
            unique=True,
            postgresql_where=text("type = 'BOOKING_PAYMENT'"),
            sqlite_where=text("type = 'BOOKING_PAYMENT'"),
        ),
        # At most one refund row per refunded payment
        Index(
            "uq_transactions_refund_of",
            "original_transaction_id",
            unique=True,
            postgresql_where=text("type = 'BOOKING_REFUND'"),
            sqlite_where=text("type = 'BOOKING_REFUND'"),
        ),
    )

    def __repr__(self):
        return f"<Transaction(ref={self.transaction_ref}, type={self.type}, amount={self.amount}, status={self.status})>"
