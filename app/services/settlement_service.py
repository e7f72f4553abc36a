"""
Settlement reconciler

Turns a paid Hold into a Booking. Stripe reports a payment through the
checkout redirect and through webhooks, each possibly more than once, in
any order and concurrently; every path lands in ``settle`` which is safe
to repeat for the same booking id.
"""

from datetime import datetime, timezone
from typing import Optional, Tuple, Dict, Any, TYPE_CHECKING
import logging
import uuid

from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.database import db_manager
from app.core.exceptions import (
    ConcurrencyError,
    HoldNotFoundError,
    PaymentError,
    ServicelyException,
    ValidationError,
)
from app.core.logging import LoggerAdapter
from app.core.metrics import metrics_collector
from app.core.redis import redis_manager
from app.core.retry import retry_on_conflict
from app.models.booking import Booking, BookingStatus, PaymentStatus
from app.models.hold import Hold
from app.models.notification import NotificationType
from app.models.service import Service
from app.schemas.notification import BookingNotificationData, PaymentNotificationData
from app.services.ledger_service import LedgerService
from app.services.notification_service import NotificationService
from app.services.payment_gateway import PaymentGateway, payment_gateway, BOOKING_PAYMENT_TYPE

if TYPE_CHECKING:
    from app.services.refund_service import RefundService

logger = logging.getLogger(__name__)

REDIRECT = "redirect"
WEBHOOK = "webhook"


def _booking_id_from(metadata: Dict[str, Any]) -> uuid.UUID:
    try:
        return uuid.UUID(str(metadata["booking_id"]))
    except ValueError:
        raise ValidationError("Malformed booking id in payment metadata", field="booking_id")


class SettlementService:

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        gateway: Optional[PaymentGateway] = None,
        ledger: Optional[LedgerService] = None,
        notifier: Optional[NotificationService] = None,
        refunds: Optional["RefundService"] = None,
        event_store=None,
    ):
        self.session_factory = session_factory or db_manager.session_factory
        self.gateway = gateway or payment_gateway
        self.ledger = ledger or LedgerService(self.session_factory)
        self.notifier = notifier or NotificationService(self.session_factory)
        self.refunds = refunds
        self.event_store = event_store or redis_manager

    async def _find_booking(self, booking_id: uuid.UUID) -> Optional[Booking]:
        async with self.session_factory() as session:
            return await session.get(Booking, booking_id)

    @retry_on_conflict
    async def _promote(self, booking_id: uuid.UUID, payment_intent_id: Optional[str]) -> Tuple[Booking, bool]:
        """
        Remove the hold and insert the booking in one transaction.
        Returns the booking and whether this call created it.
        """
        async with db_manager.serializable(self.session_factory) as session:
            now = datetime.now(timezone.utc)

            existing = await session.get(Booking, booking_id)
            if existing is not None:
                return existing, False

            hold = (await session.execute(
                select(Hold).where(Hold.id == booking_id, Hold.expires_at > now)
            )).scalar_one_or_none()
            if hold is None:
                raise HoldNotFoundError(booking_id)

            removed = await session.execute(
                delete(Hold).where(Hold.id == booking_id, Hold.expires_at > now)
            )
            if removed.rowcount != 1:
                raise ConcurrencyError(f"Hold {booking_id} was claimed by a concurrent settlement")

            service = await session.get(Service, hold.service_id)
            instant = bool(service and service.instant_booking)

            booking = Booking(
                id=hold.id,
                customer_id=hold.customer_id,
                provider_id=hold.provider_id,
                service_id=hold.service_id,
                scheduled_at=hold.scheduled_at,
                duration_hours=hold.duration_hours,
                buffer_minutes=hold.buffer_minutes,
                padded_end_at=hold.padded_end_at,
                phone_number=hold.phone_number,
                address=hold.address,
                description=hold.description,
                total_amount=hold.total_amount,
                currency=hold.currency,
                status=BookingStatus.ONGOING if instant else BookingStatus.PENDING,
                payment_status=PaymentStatus.PAID,
                payment_intent_id=payment_intent_id,
                payment_session_id=hold.payment_session_id,
                paid_at=now,
                created_at=now,
            )
            session.add(booking)
            try:
                await session.flush()
            except IntegrityError as e:
                raise ConcurrencyError(f"Booking {booking_id} inserted concurrently") from e

        return booking, True

    async def settle(
        self,
        booking_id: uuid.UUID,
        payment_intent_id: Optional[str],
        *,
        stripe_customer_id: Optional[str] = None,
        channel: str = REDIRECT,
    ) -> Booking:
        """
        Produce exactly one paid Booking and one payment Transaction for
        ``booking_id`` however many times this is called.
        """
        log = LoggerAdapter(logger, {"booking_id": str(booking_id), "channel": channel})

        async with metrics_collector.track_operation("settle"):
            existing = await self._find_booking(booking_id)
            if existing is not None:
                metrics_collector.record_settlement(channel, "duplicate")
                await self._heal_ledger(existing, stripe_customer_id, channel)
                return existing

            try:
                booking, created = await self._promote(booking_id, payment_intent_id)
            except ConcurrencyError:
                # Losing every retry usually means another caller won
                booking = await self._find_booking(booking_id)
                if booking is None:
                    metrics_collector.record_settlement(channel, "failed")
                    log.error(
                        "Settlement retries exhausted; manual reconciliation required",
                        extra={"payment_intent_id": payment_intent_id},
                    )
                    raise
                created = False
            except HoldNotFoundError:
                metrics_collector.record_settlement(channel, "hold_missing")
                log.error(
                    "Payment confirmed for a hold that expired or never existed; manual reconciliation required",
                    extra={"payment_intent_id": payment_intent_id},
                )
                raise

            if created:
                metrics_collector.record_settlement(channel, "settled")
                log.info("Booking settled", extra={"status": booking.status.value})
                await self._notify_settled(booking)
            else:
                metrics_collector.record_settlement(channel, "duplicate")

            await self._heal_ledger(booking, stripe_customer_id, channel)
            return booking

    async def _heal_ledger(self, booking: Booking, stripe_customer_id: Optional[str], channel: str) -> None:
        """Make sure a paid booking has its payment row; failures are retried on the next observation"""
        if booking.payment_status == PaymentStatus.UNPAID:
            return
        try:
            await self.ledger.record_booking_payment(booking.id, stripe_customer_id, channel)
        except Exception as e:
            logger.error(
                f"Ledger write for booking {booking.id} failed, will heal on next settlement: {e}",
                extra={"booking_id": str(booking.id)},
            )

    async def _notify_settled(self, booking: Booking) -> None:
        booking_data = BookingNotificationData(
            booking_id=booking.id,
            service_id=booking.service_id,
            scheduled_at=booking.scheduled_at,
            status=booking.status.value,
        )
        if booking.status == BookingStatus.ONGOING:
            provider_title, provider_message = "New booking confirmed", "A customer booked and paid for your service."
            customer_message = "Your booking is confirmed."
        else:
            provider_title, provider_message = "New booking request", "A customer booked your service and is waiting for your approval."
            customer_message = "Your payment was received. The provider will confirm shortly."

        await self.notifier.notify(
            booking.provider_id, NotificationType.BOOKING_CREATED, provider_title, provider_message,
            data=booking_data, sender_id=booking.customer_id,
        )
        await self.notifier.notify(
            booking.customer_id, NotificationType.BOOKING_CREATED, "Payment successful", customer_message,
            data=PaymentNotificationData(
                booking_id=booking.id, amount=booking.total_amount, currency=booking.currency
            ),
        )

    async def settle_checkout_redirect(self, session_id: str) -> Booking:
        """Synchronous path: the customer returns from checkout with a session id"""
        checkout = await self.gateway.retrieve_checkout_session(session_id)
        metadata = checkout.get("metadata") or {}
        if metadata.get("type") != BOOKING_PAYMENT_TYPE or not metadata.get("booking_id"):
            raise ValidationError("Checkout session is not a booking payment", field="session_id")
        if checkout.get("payment_status") != "paid":
            raise PaymentError("Payment has not been completed", code="PAYMENT_INCOMPLETE")

        return await self.settle(
            _booking_id_from(metadata),
            checkout.get("payment_intent"),
            stripe_customer_id=checkout.get("customer"),
            channel=REDIRECT,
        )

    async def handle_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Asynchronous path. Signature errors raise. Business-rule failures
        are logged and acknowledged so Stripe stops redelivering; transient
        failures raise so it retries.
        """
        event = self.gateway.construct_event(payload, signature)
        event_id, event_type, obj = event["id"], event["type"], event["object"]

        if await self.event_store.is_event_processed(event_id):
            return {"received": True, "success": True, "event_type": event_type, "message": "duplicate event"}

        try:
            message = await self._dispatch(event_type, obj)
        except ConcurrencyError:
            raise
        except ServicelyException as e:
            if e.status_code >= 500:
                raise
            logger.error(
                f"Webhook {event_type} not applied: {e.message}",
                extra={"event_id": event_id, "error_code": e.code},
            )
            await self.event_store.mark_event_processed(event_id)
            return {"received": True, "success": False, "event_type": event_type, "message": e.message}

        await self.event_store.mark_event_processed(event_id)
        return {"received": True, "success": True, "event_type": event_type, "message": message}

    async def _dispatch(self, event_type: str, obj: Dict[str, Any]) -> str:
        metadata = obj.get("metadata") or {}

        if event_type == "checkout.session.completed":
            if metadata.get("type") != BOOKING_PAYMENT_TYPE or not metadata.get("booking_id"):
                return "ignored: not a booking payment"
            if obj.get("payment_status") != "paid":
                return "ignored: payment not completed"
            booking = await self.settle(
                _booking_id_from(metadata),
                obj.get("payment_intent"),
                stripe_customer_id=obj.get("customer"),
                channel=WEBHOOK,
            )
            return f"booking {booking.id} settled"

        if event_type == "payment_intent.succeeded":
            if metadata.get("type") != BOOKING_PAYMENT_TYPE or not metadata.get("booking_id"):
                return "ignored: not a booking payment"
            booking = await self.settle(
                _booking_id_from(metadata),
                obj.get("id"),
                stripe_customer_id=obj.get("customer"),
                channel=WEBHOOK,
            )
            return f"booking {booking.id} settled"

        if event_type == "charge.refunded":
            if self.refunds is None or not obj.get("payment_intent"):
                return "ignored: no refund handler"
            if not obj.get("refunded"):
                # Partial refunds leave the booking and ledger untouched
                logger.warning(
                    f"Partial refund of {obj.get('amount_refunded')} on {obj['payment_intent']} not applied"
                )
                return "ignored: partial refund"
            refunds = (obj.get("refunds") or {}).get("data") or []
            refund_id = refunds[0].get("id") if refunds else obj.get("id")
            booking = await self.refunds.record_external_refund(obj["payment_intent"], refund_id)
            return f"booking {booking.id} refunded" if booking else "ignored: unknown payment"

        return f"ignored: {event_type}"
