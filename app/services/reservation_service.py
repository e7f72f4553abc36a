"""
Reservation holder

A booking request first becomes a Hold: a ten-minute claim on the
provider's slot that exists only while the customer pays on the hosted
checkout page. Settlement turns it into a Booking; otherwise it lapses.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional
import logging
import uuid

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import settings
from app.core.database import db_manager
from app.core.exceptions import NotFoundError, PayoutDestinationError, ValidationError
from app.core.metrics import metrics_collector
from app.core.retry import retry_on_conflict
from app.models.hold import Hold
from app.models.service import Service
from app.models.user import User
from app.schemas.booking import BookingCreate
from app.services.availability_service import AvailabilityService, availability_service
from app.services.payment_gateway import PaymentGateway, payment_gateway, BOOKING_PAYMENT_TYPE

logger = logging.getLogger(__name__)


@dataclass
class CheckoutResult:
    booking_id: uuid.UUID
    session_id: str
    payment_url: str
    amount: Decimal
    currency: str
    expires_at: datetime


class ReservationService:

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        gateway: Optional[PaymentGateway] = None,
        availability: Optional[AvailabilityService] = None,
    ):
        self.session_factory = session_factory or db_manager.session_factory
        self.gateway = gateway or payment_gateway
        self.availability = availability or availability_service

    async def _load_service(self, service_id: uuid.UUID) -> Service:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Service).where(Service.id == service_id, Service.is_active.is_(True))
            )
            service = result.scalar_one_or_none()
        if service is None:
            raise NotFoundError("Service", service_id)
        return service

    @retry_on_conflict
    async def _insert_hold(
        self,
        hold_id: uuid.UUID,
        customer: User,
        service: Service,
        request: BookingCreate,
        amount: Decimal,
    ) -> Hold:
        # Availability is re-read inside the writing transaction
        async with db_manager.serializable(self.session_factory) as session:
            now = datetime.now(timezone.utc)
            window = await self.availability.ensure_available(
                session, service, request.scheduled_at, request.duration_hours, now
            )
            hold = Hold(
                id=hold_id,
                customer_id=customer.id,
                provider_id=service.provider_id,
                service_id=service.id,
                scheduled_at=request.scheduled_at,
                duration_hours=request.duration_hours,
                buffer_minutes=service.buffer_minutes or 0,
                padded_end_at=window.end,
                phone_number=request.phone_number,
                address=request.address.model_dump(),
                description=request.description,
                total_amount=amount,
                currency=settings.PAYMENT_CURRENCY.upper(),
                created_at=now,
                expires_at=now + timedelta(minutes=settings.HOLD_TTL_MINUTES),
            )
            session.add(hold)
        return hold

    async def create_hold(self, customer: User, request: BookingCreate) -> CheckoutResult:
        """
        Claim the slot and open a checkout session for it.

        The returned booking id is the id the Booking will carry once
        payment settles.
        """
        async with metrics_collector.track_operation("create_hold"):
            service = await self._load_service(request.service_id)
            provider = service.provider
            if service.provider_id == customer.id:
                raise ValidationError("Providers cannot book their own services", field="service_id")
            if provider is None or not provider.can_receive_payouts:
                raise PayoutDestinationError(service.provider_id)

            amount = (Decimal(service.rate_by_hour) * Decimal(str(request.duration_hours))).quantize(Decimal("0.01"))
            hold_id = uuid.uuid4()
            hold = await self._insert_hold(hold_id, customer, service, request, amount)

            metadata = {
                "booking_id": str(hold_id),
                "owner_id": str(customer.id),
                "provider_id": str(service.provider_id),
                "service_id": str(service.id),
                "provider_stripe_account_id": provider.stripe_account_id,
                "type": BOOKING_PAYMENT_TYPE,
            }
            try:
                checkout = await self.gateway.create_checkout_session(
                    booking_id=str(hold_id),
                    amount=amount,
                    product_name=service.name,
                    description=f"{request.duration_hours}h on {request.scheduled_at:%Y-%m-%d %H:%M} UTC",
                    destination_account=provider.stripe_account_id,
                    customer_email=customer.email,
                    metadata=metadata,
                    idempotency_key=f"hold_{hold_id}",
                )
            except Exception:
                await self.release_hold(hold_id)
                raise

            await self._attach_session(hold_id, checkout["id"])

            logger.info(
                "Hold created",
                extra={"booking_id": str(hold_id), "provider_id": str(service.provider_id)},
            )
            return CheckoutResult(
                booking_id=hold_id,
                session_id=checkout["id"],
                payment_url=checkout["url"],
                amount=amount,
                currency=hold.currency,
                expires_at=hold.expires_at,
            )

    async def _attach_session(self, hold_id: uuid.UUID, session_id: str) -> None:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    hold = await session.get(Hold, hold_id)
                    if hold is not None:
                        hold.payment_session_id = session_id
        except Exception as e:
            # Settlement is keyed on the booking id in metadata, not this column
            logger.warning(f"Could not store checkout session on hold {hold_id}: {e}")

    async def release_hold(self, hold_id: uuid.UUID) -> bool:
        """
        Best-effort early release after a failed checkout. If this fails
        the hold still lapses on its own.
        """
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(delete(Hold).where(Hold.id == hold_id))
            return result.rowcount > 0
        except Exception as e:
            logger.warning(f"Could not release hold {hold_id}, leaving it to expire: {e}")
            return False

    async def get_hold(self, hold_id: uuid.UUID, now: Optional[datetime] = None) -> Optional[Hold]:
        """Live hold by id; expired holds read as absent"""
        now = now or datetime.now(timezone.utc)
        async with self.session_factory() as session:
            result = await session.execute(
                select(Hold).where(Hold.id == hold_id, Hold.expires_at > now)
            )
            return result.scalar_one_or_none()

    async def purge_expired_holds(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(delete(Hold).where(Hold.expires_at <= now))
        purged = result.rowcount or 0
        metrics_collector.record_expired_holds(purged)
        if purged:
            logger.info(f"Purged {purged} expired holds")
        return purged


class HoldSweeper:
    """
    Background loop that deletes lapsed holds. Reads already ignore them;
    this only keeps the table small.
    """

    def __init__(self, reservations: ReservationService, interval: Optional[int] = None):
        self.reservations = reservations
        self.interval = interval or settings.HOLD_SWEEP_INTERVAL_SECONDS
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    async def run(self):
        while not self._stop_event.is_set():
            try:
                await self.reservations.purge_expired_holds()
            except Exception as e:
                logger.error(f"Hold sweep failed: {e}")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    def start(self):
        if self._task is None:
            self._stop_event.clear()
            self._task = asyncio.create_task(self.run())

    async def stop(self):
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
