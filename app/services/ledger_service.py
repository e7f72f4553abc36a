"""
Transaction ledger

Append-only record of money movements. A booking has at most one payment
row (enforced by a partial unique index) and a payment has at most one
refund row. Writers check first and fall back to re-reading when a
concurrent writer wins the insert, so every write here is safe to repeat.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple
import logging
import secrets
import string
import time
import uuid

from pydantic import TypeAdapter
from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.core.database import db_manager
from app.core.exceptions import ConcurrencyError, NotFoundError
from app.core.retry import retry_on_conflict
from app.models.booking import Booking
from app.models.transaction import Transaction, TransactionType, TransactionStatus, PaymentMethod
from app.models.user import User, UserRole
from app.schemas.transaction import (
    TransactionMetadata,
    BookingPaymentMetadata,
    BookingRefundMetadata,
    SubscriptionMetadata,
    CreditRedemptionMetadata,
    CreditEarnedMetadata,
)

logger = logging.getLogger(__name__)

_metadata_adapter = TypeAdapter(TransactionMetadata)
_BASE36 = string.digits + string.ascii_uppercase


def _base36(number: int) -> str:
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits)) or "0"


def generate_transaction_ref() -> str:
    """Human-readable ledger reference, e.g. ``TXN-LZ3K9Q1A-7F2KQX``"""
    stamp = _base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"TXN-{stamp}-{suffix}"


def _dump(metadata) -> dict:
    return _metadata_adapter.dump_python(metadata, mode="json")


class LedgerService:

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self.session_factory = session_factory or db_manager.session_factory

    async def _append(self, session: AsyncSession, **fields) -> Transaction:
        fields.setdefault("transaction_ref", generate_transaction_ref())
        fields.setdefault("status", TransactionStatus.COMPLETED)
        fields.setdefault("completed_at", datetime.now(timezone.utc))
        fields.setdefault("currency", settings.PAYMENT_CURRENCY.upper())
        txn = Transaction(**fields)
        async with session.begin_nested():
            session.add(txn)
        return txn

    async def find_booking_payment(self, session: AsyncSession, booking_id: uuid.UUID) -> Optional[Transaction]:
        result = await session.execute(
            select(Transaction).where(
                Transaction.booking_id == booking_id,
                Transaction.type == TransactionType.BOOKING_PAYMENT,
            )
        )
        return result.scalar_one_or_none()

    async def find_refund_of(self, session: AsyncSession, original_id: uuid.UUID) -> Optional[Transaction]:
        result = await session.execute(
            select(Transaction).where(
                Transaction.original_transaction_id == original_id,
                Transaction.type == TransactionType.BOOKING_REFUND,
            )
        )
        return result.scalar_one_or_none()

    async def ensure_booking_payment(
        self,
        session: AsyncSession,
        booking: Booking,
        stripe_customer_id: Optional[str] = None,
        settled_via: Optional[str] = None,
    ) -> Transaction:
        """Return the booking's payment row, creating it if it is missing"""
        existing = await self.find_booking_payment(session, booking.id)
        if existing is not None:
            return existing

        customer = await session.get(User, booking.customer_id)
        provider = await session.get(User, booking.provider_id)
        metadata = BookingPaymentMetadata(
            service_id=booking.service_id,
            scheduled_at=booking.scheduled_at,
            duration_hours=booking.duration_hours,
            settled_via=settled_via,
        )
        try:
            txn = await self._append(
                session,
                type=TransactionType.BOOKING_PAYMENT,
                payment_method=PaymentMethod.STRIPE_CARD,
                payer_id=booking.customer_id,
                payer_name=customer.user_name if customer else None,
                payer_role=UserRole.OWNER,
                receiver_id=booking.provider_id,
                receiver_name=provider.user_name if provider else None,
                receiver_role=UserRole.PROVIDER,
                amount=booking.total_amount,
                currency=booking.currency,
                net_amount=booking.total_amount,
                stripe_payment_intent_id=booking.payment_intent_id,
                stripe_customer_id=stripe_customer_id,
                stripe_connect_account_id=provider.stripe_account_id if provider else None,
                booking_id=booking.id,
                description=f"Payment for booking {booking.id}",
                details=_dump(metadata),
                completed_at=booking.paid_at or datetime.now(timezone.utc),
            )
        except IntegrityError:
            # Another writer recorded it between our check and insert
            existing = await self.find_booking_payment(session, booking.id)
            if existing is None:
                raise ConcurrencyError(f"Payment row for booking {booking.id} written concurrently")
            return existing

        logger.info(
            "Booking payment recorded",
            extra={"booking_id": str(booking.id), "transaction_ref": txn.transaction_ref},
        )
        return txn

    @retry_on_conflict
    async def record_booking_payment(
        self,
        booking_id: uuid.UUID,
        stripe_customer_id: Optional[str] = None,
        settled_via: Optional[str] = None,
    ) -> Transaction:
        """Standalone unit for healing a paid booking whose payment row is missing"""
        async with db_manager.serializable(self.session_factory) as session:
            booking = await session.get(Booking, booking_id)
            if booking is None:
                raise NotFoundError("Booking", booking_id)
            return await self.ensure_booking_payment(session, booking, stripe_customer_id, settled_via)

    async def record_booking_refund(
        self,
        session: AsyncSession,
        booking: Booking,
        original: Transaction,
        refund_id: str,
        reason: Optional[str],
        initiated_by: str,
        status_at_refund: str,
        hours_since_booking: float,
    ) -> Transaction:
        """
        Append the refund row and back-reference it from the original.
        The original keeps its amounts; only status and refund fields change.
        """
        refund_txn = await self.find_refund_of(session, original.id)
        now = datetime.now(timezone.utc)
        if refund_txn is None:
            metadata = BookingRefundMetadata(
                booking_status_at_refund=status_at_refund,
                initiated_by=initiated_by,
                hours_since_booking=round(hours_since_booking, 2),
            )
            try:
                refund_txn = await self._append(
                    session,
                    type=TransactionType.BOOKING_REFUND,
                    payment_method=original.payment_method,
                    payer_id=original.receiver_id,
                    payer_name=original.receiver_name,
                    payer_role=original.receiver_role,
                    receiver_id=original.payer_id,
                    receiver_name=original.payer_name,
                    receiver_role=original.payer_role,
                    amount=original.amount,
                    currency=original.currency,
                    net_amount=original.amount,
                    stripe_payment_intent_id=original.stripe_payment_intent_id,
                    stripe_connect_account_id=original.stripe_connect_account_id,
                    booking_id=booking.id,
                    refund_id=refund_id,
                    refund_amount=original.amount,
                    refunded_at=now,
                    refund_reason=reason,
                    original_transaction_id=original.id,
                    description=f"Refund for booking {booking.id}",
                    details=_dump(metadata),
                )
            except IntegrityError:
                refund_txn = await self.find_refund_of(session, original.id)
                if refund_txn is None:
                    raise ConcurrencyError(f"Refund row for booking {booking.id} written concurrently")

        if original.status != TransactionStatus.REFUNDED:
            original.status = TransactionStatus.REFUNDED
            original.refund_id = refund_id
            original.refund_amount = original.amount
            original.refunded_at = now
            original.refund_reason = reason
            await session.flush()

        return refund_txn

    async def record_subscription_purchase(
        self,
        session: AsyncSession,
        user: User,
        amount: Decimal,
        plan: str,
        subscription_id: uuid.UUID,
        stripe_subscription_id: Optional[str] = None,
        stripe_payment_intent_id: Optional[str] = None,
        renewal: bool = False,
        billing_period: Optional[str] = None,
    ) -> Transaction:
        txn_type = TransactionType.SUBSCRIPTION_RENEWAL if renewal else TransactionType.SUBSCRIPTION_PURCHASE
        return await self._append(
            session,
            type=txn_type,
            payment_method=PaymentMethod.STRIPE_CARD,
            payer_id=user.id,
            payer_name=user.user_name,
            payer_role=user.role,
            amount=amount,
            net_amount=amount,
            stripe_subscription_id=stripe_subscription_id,
            stripe_payment_intent_id=stripe_payment_intent_id,
            stripe_customer_id=user.stripe_customer_id,
            subscription_id=subscription_id,
            description=f"{'Renewal' if renewal else 'Purchase'} of {plan} subscription",
            details=_dump(SubscriptionMetadata(plan=plan, billing_period=billing_period)),
        )

    async def record_credit_redemption(
        self,
        session: AsyncSession,
        user: User,
        credits: int,
        target: str,
        redemption_id: uuid.UUID,
    ) -> Transaction:
        """Credits exchanged for a subscription or paid out as cash"""
        cash_value = Decimal(str(settings.CREDIT_CASH_VALUE))
        amount = (cash_value * credits).quantize(Decimal("0.01"))
        txn_type = (
            TransactionType.CREDIT_REDEMPTION_SUBSCRIPTION
            if target == "subscription"
            else TransactionType.CREDIT_REDEMPTION_CASH
        )
        return await self._append(
            session,
            type=txn_type,
            payment_method=PaymentMethod.CREDITS,
            receiver_id=user.id,
            receiver_name=user.user_name,
            receiver_role=user.role,
            amount=amount,
            credits_used=credits,
            credit_cash_value=cash_value,
            net_amount=amount,
            redemption_id=redemption_id,
            description=f"Redeemed {credits} credits for {target}",
            details=_dump(CreditRedemptionMetadata(credits=credits, credit_cash_value=cash_value, target=target)),
        )

    async def record_credit_earned(
        self,
        session: AsyncSession,
        user: User,
        credits: int,
        source: str,
        referral_id: Optional[uuid.UUID] = None,
    ) -> Transaction:
        cash_value = Decimal(str(settings.CREDIT_CASH_VALUE))
        return await self._append(
            session,
            type=TransactionType.CREDIT_EARNED,
            payment_method=PaymentMethod.CREDITS,
            receiver_id=user.id,
            receiver_name=user.user_name,
            receiver_role=user.role,
            amount=Decimal("0.00"),
            credits_used=credits,
            credit_cash_value=cash_value,
            net_amount=Decimal("0.00"),
            referral_id=referral_id,
            description=f"Earned {credits} credits from {source}",
            details=_dump(CreditEarnedMetadata(credits=credits, source=source)),
        )

    async def list_for_user(
        self,
        session: AsyncSession,
        user_id: uuid.UUID,
        page: int = 1,
        limit: int = 20,
        type: Optional[TransactionType] = None,
    ) -> Tuple[List[Transaction], int]:
        conditions = [or_(Transaction.payer_id == user_id, Transaction.receiver_id == user_id)]
        if type is not None:
            conditions.append(Transaction.type == type)
        return await self._page(session, conditions, page, limit)

    async def list_booking_payments(
        self, session: AsyncSession, page: int = 1, limit: int = 20
    ) -> Tuple[List[Transaction], int]:
        return await self._page(
            session, [Transaction.type == TransactionType.BOOKING_PAYMENT], page, limit
        )

    async def _page(self, session: AsyncSession, conditions, page: int, limit: int):
        total = await session.scalar(select(func.count(Transaction.id)).where(*conditions))
        result = await session.execute(
            select(Transaction)
            .where(*conditions)
            .order_by(Transaction.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total or 0
