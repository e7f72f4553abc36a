"""
Refund engine

Two ways into a refund: the owner's self-service refund inside a fixed
window after booking, and the status-driven refund that backs cancelling
or rejecting a paid PENDING booking. Both reclaim the provider's transfer
(``reverse_transfer``) and leave the booking CANCELLED and REFUNDED with a
refund row in the ledger.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Iterable, Dict, Any
import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import settings
from app.core.database import db_manager
from app.core.exceptions import (
    AuthorizationError,
    ConcurrencyError,
    NotFoundError,
    PayoutDestinationError,
    RefundNotAllowedError,
    RefundWindowExpiredError,
)
from app.core.metrics import metrics_collector
from app.core.retry import retry_on_conflict
from app.models.booking import Booking, BookingStatus, PaymentStatus
from app.models.notification import NotificationType
from app.models.user import User
from app.schemas.notification import RefundNotificationData
from app.services.ledger_service import LedgerService
from app.services.notification_service import NotificationService
from app.services.payment_gateway import PaymentGateway, payment_gateway

logger = logging.getLogger(__name__)

REFUNDABLE_STATUSES = (BookingStatus.PENDING, BookingStatus.ONGOING)


@dataclass
class RefundOutcome:
    booking: Booking
    refund_id: str
    amount: Decimal
    currency: str
    refunded_at: datetime
    transaction_ref: Optional[str]


def hours_since(moment: datetime, now: Optional[datetime] = None) -> float:
    now = now or datetime.now(timezone.utc)
    return (now - moment).total_seconds() / 3600


class RefundService:

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        gateway: Optional[PaymentGateway] = None,
        ledger: Optional[LedgerService] = None,
        notifier: Optional[NotificationService] = None,
    ):
        self.session_factory = session_factory or db_manager.session_factory
        self.gateway = gateway or payment_gateway
        self.ledger = ledger or LedgerService(self.session_factory)
        self.notifier = notifier or NotificationService(self.session_factory)
        self.window_hours = settings.REFUND_WINDOW_HOURS

    async def _load_owned(self, booking_id: uuid.UUID, owner: User) -> Booking:
        async with self.session_factory() as session:
            booking = await session.get(Booking, booking_id)
        if booking is None:
            raise NotFoundError("Booking", booking_id)
        if booking.customer_id != owner.id:
            raise AuthorizationError("You can only refund your own bookings")
        return booking

    def _eligibility(self, booking: Booking, now: Optional[datetime] = None) -> Dict[str, Any]:
        elapsed = hours_since(booking.created_at, now)
        remaining = max(0.0, self.window_hours - elapsed)
        reason = None
        if booking.payment_status == PaymentStatus.REFUNDED:
            reason = "Booking has already been refunded"
        elif booking.payment_status != PaymentStatus.PAID:
            reason = "Booking has not been paid"
        elif booking.status == BookingStatus.COMPLETED:
            reason = "Completed bookings cannot be refunded"
        elif booking.status == BookingStatus.CANCELLED:
            reason = "Booking is cancelled"
        elif elapsed > self.window_hours:
            reason = f"Refund window of {self.window_hours} hours has expired"

        return {
            "booking_id": booking.id,
            "eligible": reason is None,
            "can_refund": reason is None,
            "refund_window_hours": self.window_hours,
            "hours_since_creation": round(elapsed, 2),
            "hours_remaining": round(remaining, 2),
            "reason": reason,
        }

    async def get_eligibility(self, booking_id: uuid.UUID, owner: User) -> Dict[str, Any]:
        booking = await self._load_owned(booking_id, owner)
        return self._eligibility(booking)

    async def refund_self_service(
        self, booking_id: uuid.UUID, owner: User, reason: Optional[str] = None
    ) -> RefundOutcome:
        """Owner refund, allowed for a limited time after the booking was created"""
        booking = await self._load_owned(booking_id, owner)
        self._ensure_refundable(booking)
        elapsed = hours_since(booking.created_at)
        if elapsed > self.window_hours:
            raise RefundWindowExpiredError(self.window_hours, elapsed)

        return await self._refund(booking, reason or "Requested by customer", "owner", owner.id)

    async def refund_by_status(
        self,
        booking_id: uuid.UUID,
        reason: Optional[str],
        initiated_by: str,
        actor_id: Optional[uuid.UUID] = None,
        allowed_statuses: Iterable[BookingStatus] = REFUNDABLE_STATUSES,
    ) -> RefundOutcome:
        """Refund driven by a cancellation or rejection; no time limit"""
        async with self.session_factory() as session:
            booking = await session.get(Booking, booking_id)
        if booking is None:
            raise NotFoundError("Booking", booking_id)
        self._ensure_refundable(booking)
        return await self._refund(booking, reason, initiated_by, actor_id, tuple(allowed_statuses))

    def _ensure_refundable(self, booking: Booking) -> None:
        if booking.payment_status == PaymentStatus.REFUNDED:
            raise RefundNotAllowedError("Booking has already been refunded", code="ALREADY_REFUNDED")
        if booking.payment_status != PaymentStatus.PAID:
            raise RefundNotAllowedError("Booking has not been paid")
        if booking.status not in REFUNDABLE_STATUSES:
            raise RefundNotAllowedError(
                f"Bookings in status {booking.status.value} cannot be refunded",
                details={"status": booking.status.value},
            )
        if not booking.payment_intent_id:
            raise RefundNotAllowedError("Booking has no payment reference to refund")

    async def _refund(
        self,
        booking: Booking,
        reason: Optional[str],
        initiated_by: str,
        actor_id: Optional[uuid.UUID],
        allowed_statuses: tuple = REFUNDABLE_STATUSES,
    ) -> RefundOutcome:
        async with metrics_collector.track_operation("refund"):
            async with self.session_factory() as session:
                provider = await session.get(User, booking.provider_id)
            if provider is None or not provider.stripe_account_id:
                raise PayoutDestinationError(booking.provider_id)

            # Same key on every attempt so Stripe refunds the charge once
            refund = await self.gateway.create_refund(
                payment_intent_id=booking.payment_intent_id,
                idempotency_key=f"refund_{booking.id}",
                metadata={"booking_id": str(booking.id), "initiated_by": initiated_by},
            )

            try:
                outcome, applied = await self._apply_refund(
                    booking.id, refund["id"], reason, initiated_by, actor_id, allowed_statuses
                )
            except RefundNotAllowedError:
                # Stripe already returned the money; charge.refunded will reconcile the booking
                logger.error(
                    "Refund issued but booking changed before it could be recorded",
                    extra={"booking_id": str(booking.id), "refund_id": refund["id"]},
                )
                raise

        if applied:
            logger.info(
                "Booking refunded",
                extra={"booking_id": str(booking.id), "refund_id": refund["id"], "initiated_by": initiated_by},
            )
            await self._notify_refunded(outcome, reason)
        return outcome

    @retry_on_conflict
    async def _apply_refund(
        self,
        booking_id: uuid.UUID,
        refund_id: str,
        reason: Optional[str],
        initiated_by: str,
        actor_id: Optional[uuid.UUID],
        allowed_statuses: Iterable[BookingStatus],
        cancel: bool = True,
    ):
        """Flip the booking and write the ledger in one transaction"""
        async with db_manager.serializable(self.session_factory) as session:
            now = datetime.now(timezone.utc)
            booking = await session.get(Booking, booking_id)
            if booking is None:
                raise NotFoundError("Booking", booking_id)

            if booking.payment_status == PaymentStatus.REFUNDED:
                return await self._outcome(session, booking), False
            if booking.payment_status != PaymentStatus.PAID or booking.status not in tuple(allowed_statuses):
                raise RefundNotAllowedError(
                    f"Booking in status {booking.status.value} cannot be refunded",
                    details={"status": booking.status.value, "payment_status": booking.payment_status.value},
                )

            status_at_refund = booking.status
            values = dict(
                payment_status=PaymentStatus.REFUNDED,
                refund_id=refund_id,
                refunded_at=now,
                updated_at=now,
            )
            if cancel:
                values.update(
                    status=BookingStatus.CANCELLED,
                    cancelled_at=now,
                    cancelled_by=actor_id,
                    cancellation_reason=reason,
                )
            result = await session.execute(
                update(Booking)
                .where(
                    Booking.id == booking_id,
                    Booking.payment_status == PaymentStatus.PAID,
                    Booking.status == status_at_refund,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConcurrencyError(f"Booking {booking_id} changed during refund")

            booking = await session.get(Booking, booking_id, populate_existing=True)
            original = await self.ledger.ensure_booking_payment(session, booking)
            refund_txn = await self.ledger.record_booking_refund(
                session,
                booking,
                original,
                refund_id=refund_id,
                reason=reason,
                initiated_by=initiated_by,
                status_at_refund=status_at_refund.value,
                hours_since_booking=hours_since(booking.created_at, now),
            )
            outcome = RefundOutcome(
                booking=booking,
                refund_id=refund_id,
                amount=refund_txn.amount,
                currency=refund_txn.currency,
                refunded_at=now,
                transaction_ref=refund_txn.transaction_ref,
            )
        return outcome, True

    async def _outcome(self, session, booking: Booking) -> RefundOutcome:
        """Describe a refund that already happened"""
        original = await self.ledger.find_booking_payment(session, booking.id)
        refund_txn = await self.ledger.find_refund_of(session, original.id) if original else None
        return RefundOutcome(
            booking=booking,
            refund_id=booking.refund_id,
            amount=booking.total_amount,
            currency=booking.currency,
            refunded_at=booking.refunded_at,
            transaction_ref=refund_txn.transaction_ref if refund_txn else None,
        )

    async def record_external_refund(self, payment_intent_id: str, refund_id: str) -> Optional[Booking]:
        """
        Mirror a refund issued outside this service (e.g. from the Stripe
        dashboard). Completed bookings keep their status; only the payment
        side is marked refunded.
        """
        async with self.session_factory() as session:
            booking = (await session.execute(
                select(Booking).where(Booking.payment_intent_id == payment_intent_id)
            )).scalar_one_or_none()
        if booking is None:
            logger.warning(f"Refund {refund_id} for unknown payment {payment_intent_id}")
            return None
        if booking.payment_status == PaymentStatus.REFUNDED:
            return booking

        cancel = booking.status in REFUNDABLE_STATUSES
        outcome, applied = await self._apply_refund(
            booking.id,
            refund_id,
            "Refunded via payment provider",
            "stripe",
            None,
            (*REFUNDABLE_STATUSES, BookingStatus.COMPLETED),
            cancel=cancel,
        )
        if applied:
            await self._notify_refunded(outcome, "Refunded via payment provider")
        return outcome.booking

    async def _notify_refunded(self, outcome: RefundOutcome, reason: Optional[str]) -> None:
        booking = outcome.booking
        data = RefundNotificationData(
            booking_id=booking.id,
            refund_id=outcome.refund_id,
            amount=outcome.amount,
            currency=outcome.currency,
            reason=reason,
        )
        await self.notifier.notify(
            booking.customer_id, NotificationType.BOOKING_REFUNDED, "Booking refunded",
            f"Your payment of {outcome.amount} {outcome.currency} has been refunded.", data=data,
        )
        if booking.status == BookingStatus.CANCELLED:
            await self.notifier.notify(
                booking.provider_id, NotificationType.BOOKING_CANCELLED, "Booking cancelled and refunded",
                "A booking was cancelled and its payment refunded to the customer.", data=data,
            )
        else:
            await self.notifier.notify(
                booking.provider_id, NotificationType.BOOKING_REFUNDED, "Booking payment refunded",
                "The payment for a booking was refunded to the customer. The booking itself is unchanged.",
                data=data,
            )
