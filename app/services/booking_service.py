"""
Booking state machine

    PENDING --accept--> ONGOING --complete--> COMPLETED
    PENDING --reject/cancel--> CANCELLED
    ONGOING --refund--> CANCELLED   (refund engine only)

Every transition is a conditional UPDATE on the expected current status,
so two racing actions on one booking cannot both succeed.
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Tuple
import logging
import uuid

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.database import db_manager
from app.core.exceptions import (
    AlreadyRatedError,
    AuthorizationError,
    InvalidCompletionCodeError,
    InvalidTransitionError,
    NotFoundError,
)
from app.core.metrics import metrics_collector
from app.core.retry import retry_on_conflict
from app.models.booking import Booking, BookingStatus, PaymentStatus
from app.models.notification import NotificationType
from app.models.service import Service
from app.models.user import User, UserRole
from app.schemas.notification import BookingNotificationData, RatingNotificationData
from app.services.completion_code import (
    codes_match,
    completion_payload,
    generate_completion_code,
    render_qr_data_url,
)
from app.services.notification_service import NotificationService
from app.services.referral_events import ReferralEvents
from app.services.refund_service import RefundService

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.ONGOING, BookingStatus.CANCELLED},
    BookingStatus.ONGOING: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}


def ensure_transition(current: BookingStatus, target: BookingStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(current.value, target.value)


class BookingService:

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        refunds: Optional[RefundService] = None,
        notifier: Optional[NotificationService] = None,
        referrals: Optional[ReferralEvents] = None,
    ):
        self.session_factory = session_factory or db_manager.session_factory
        self.notifier = notifier or NotificationService(self.session_factory)
        self.refunds = refunds or RefundService(self.session_factory, notifier=self.notifier)
        self.referrals = referrals or ReferralEvents()

    # Reads

    async def get_booking(self, booking_id: uuid.UUID, user: User) -> Booking:
        async with self.session_factory() as session:
            booking = await session.get(Booking, booking_id)
        if booking is None:
            raise NotFoundError("Booking", booking_id)
        if user.role != UserRole.ADMIN and user.id not in (booking.customer_id, booking.provider_id):
            raise AuthorizationError("You are not a party to this booking")
        return booking

    async def list_bookings(
        self,
        user: User,
        status: Optional[BookingStatus] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Booking], int]:
        conditions = []
        if user.role == UserRole.PROVIDER:
            conditions.append(Booking.provider_id == user.id)
        elif user.role == UserRole.OWNER:
            conditions.append(Booking.customer_id == user.id)
        if status is not None:
            conditions.append(Booking.status == status)

        async with self.session_factory() as session:
            total = await session.scalar(select(func.count(Booking.id)).where(*conditions))
            result = await session.execute(
                select(Booking)
                .where(*conditions)
                .order_by(Booking.scheduled_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            return list(result.scalars().all()), total or 0

    # Transitions

    @staticmethod
    def _diagnose(
        booking: Optional[Booking],
        booking_id: uuid.UUID,
        actor_field: str,
        actor_id: uuid.UUID,
        target: BookingStatus,
    ):
        """Explain why a conditional update matched no row"""
        if booking is None:
            return NotFoundError("Booking", booking_id)
        if getattr(booking, actor_field) != actor_id:
            return AuthorizationError("You are not allowed to act on this booking")
        return InvalidTransitionError(booking.status.value, target.value)

    @retry_on_conflict
    async def _transition(
        self,
        booking_id: uuid.UUID,
        expected: BookingStatus,
        target: BookingStatus,
        actor_field: str,
        actor_id: uuid.UUID,
        **values,
    ) -> Booking:
        ensure_transition(expected, target)
        async with db_manager.serializable(self.session_factory) as session:
            now = datetime.now(timezone.utc)
            result = await session.execute(
                update(Booking)
                .where(
                    Booking.id == booking_id,
                    Booking.status == expected,
                    getattr(Booking, actor_field) == actor_id,
                )
                .values(status=target, updated_at=now, **values)
                .execution_options(synchronize_session=False)
            )
            booking = await session.get(Booking, booking_id, populate_existing=True)
            if result.rowcount != 1:
                raise self._diagnose(booking, booking_id, actor_field, actor_id, target)
        return booking

    async def accept(self, booking_id: uuid.UUID, provider: User) -> Booking:
        booking = await self._transition(
            booking_id, BookingStatus.PENDING, BookingStatus.ONGOING, "provider_id", provider.id
        )
        logger.info("Booking accepted", extra={"booking_id": str(booking_id)})
        await self.notifier.notify(
            booking.customer_id, NotificationType.BOOKING_ACCEPTED, "Booking accepted",
            "Your provider accepted the booking.", data=self._booking_data(booking), sender_id=provider.id,
        )
        return booking

    async def reject(self, booking_id: uuid.UUID, provider: User, reason: Optional[str] = None) -> Booking:
        """Provider declines a PENDING booking; a paid booking is refunded"""
        return await self._cancel_pending(booking_id, provider, "provider_id", "provider", reason)

    async def cancel(self, booking_id: uuid.UUID, owner: User, reason: Optional[str] = None) -> Booking:
        """Owner withdraws a PENDING booking; a paid booking is refunded"""
        return await self._cancel_pending(booking_id, owner, "customer_id", "owner", reason)

    async def _cancel_pending(
        self,
        booking_id: uuid.UUID,
        actor: User,
        actor_field: str,
        initiated_by: str,
        reason: Optional[str],
    ) -> Booking:
        async with self.session_factory() as session:
            booking = await session.get(Booking, booking_id)
        if booking is None:
            raise NotFoundError("Booking", booking_id)
        if getattr(booking, actor_field) != actor.id:
            raise AuthorizationError("You are not allowed to act on this booking")
        if booking.status != BookingStatus.PENDING:
            raise InvalidTransitionError(booking.status.value, BookingStatus.CANCELLED.value)

        if booking.payment_status == PaymentStatus.PAID:
            # Refund engine cancels and notifies both parties
            outcome = await self.refunds.refund_by_status(
                booking_id,
                reason or f"Cancelled by {initiated_by}",
                initiated_by,
                actor.id,
                allowed_statuses=(BookingStatus.PENDING,),
            )
            return outcome.booking

        booking = await self._transition(
            booking_id,
            BookingStatus.PENDING,
            BookingStatus.CANCELLED,
            actor_field,
            actor.id,
            cancelled_at=datetime.now(timezone.utc),
            cancelled_by=actor.id,
            cancellation_reason=reason,
        )
        other_party = booking.customer_id if initiated_by == "provider" else booking.provider_id
        await self.notifier.notify(
            other_party, NotificationType.BOOKING_CANCELLED, "Booking cancelled",
            reason or f"The booking was cancelled by the {initiated_by}.",
            data=self._booking_data(booking), sender_id=actor.id,
        )
        return booking

    async def issue_completion_code(self, booking_id: uuid.UUID, provider: User) -> Dict[str, Any]:
        """Generate a fresh completion code for an ONGOING booking"""
        code = generate_completion_code()
        issued_at = datetime.now(timezone.utc)
        qr_code = render_qr_data_url(completion_payload(booking_id, code, provider.id, issued_at))

        await self._store_completion_code(booking_id, provider, code, qr_code, issued_at)
        return {
            "booking_id": booking_id,
            "completion_code": code,
            "qr_code": qr_code,
            "issued_at": issued_at,
        }

    @retry_on_conflict
    async def _store_completion_code(
        self, booking_id: uuid.UUID, provider: User, code: str, qr_code: str, issued_at: datetime
    ) -> None:
        async with db_manager.serializable(self.session_factory) as session:
            result = await session.execute(
                update(Booking)
                .where(
                    Booking.id == booking_id,
                    Booking.status == BookingStatus.ONGOING,
                    Booking.provider_id == provider.id,
                )
                .values(completion_code=code, completion_qr=qr_code, completion_code_issued_at=issued_at)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                booking = await session.get(Booking, booking_id)
                raise self._diagnose(booking, booking_id, "provider_id", provider.id, BookingStatus.COMPLETED)

    @retry_on_conflict
    async def _complete(self, booking_id: uuid.UUID, owner: User, code: str) -> Booking:
        async with db_manager.serializable(self.session_factory) as session:
            booking = await session.get(Booking, booking_id)
            if booking is None:
                raise NotFoundError("Booking", booking_id)
            if booking.customer_id != owner.id:
                raise AuthorizationError("Only the booking owner can confirm completion")
            ensure_transition(booking.status, BookingStatus.COMPLETED)
            if not codes_match(code, booking.completion_code):
                raise InvalidCompletionCodeError()

            now = datetime.now(timezone.utc)
            result = await session.execute(
                update(Booking)
                .where(
                    Booking.id == booking_id,
                    Booking.status == BookingStatus.ONGOING,
                    Booking.completion_code == booking.completion_code,
                )
                .values(status=BookingStatus.COMPLETED, completed_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                # Code was re-issued or the booking moved on since we read it
                current = await session.get(Booking, booking_id, populate_existing=True)
                if current.status != BookingStatus.ONGOING:
                    raise InvalidTransitionError(current.status.value, BookingStatus.COMPLETED.value)
                raise InvalidCompletionCodeError()

            await session.execute(
                update(Service)
                .where(Service.id == booking.service_id)
                .values(total_orders=Service.total_orders + 1)
                .execution_options(synchronize_session=False)
            )
            booking = await session.get(Booking, booking_id, populate_existing=True)
        return booking

    async def complete(self, booking_id: uuid.UUID, owner: User, completion_code: str) -> Booking:
        async with metrics_collector.track_operation("complete"):
            booking = await self._complete(booking_id, owner, completion_code)

        logger.info("Booking completed", extra={"booking_id": str(booking_id)})
        await self.referrals.booking_completed(booking.customer_id, booking.id, UserRole.OWNER.value)
        await self.notifier.notify(
            booking.provider_id, NotificationType.BOOKING_COMPLETED, "Booking completed",
            "The customer confirmed the service was completed.",
            data=self._booking_data(booking), sender_id=owner.id,
        )
        return booking

    @retry_on_conflict
    async def _rate(self, booking_id: uuid.UUID, owner: User, rating: int, review: Optional[str]) -> Booking:
        async with db_manager.serializable(self.session_factory) as session:
            booking = await session.get(Booking, booking_id)
            if booking is None:
                raise NotFoundError("Booking", booking_id)
            if booking.customer_id != owner.id:
                raise AuthorizationError("Only the booking owner can rate it")
            if booking.status != BookingStatus.COMPLETED:
                raise InvalidTransitionError(booking.status.value, "rated")
            if booking.rating is not None:
                raise AlreadyRatedError(booking_id)

            now = datetime.now(timezone.utc)
            result = await session.execute(
                update(Booking)
                .where(
                    Booking.id == booking_id,
                    Booking.status == BookingStatus.COMPLETED,
                    Booking.rating.is_(None),
                )
                .values(rating=rating, review=review, rated_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise AlreadyRatedError(booking_id)

            # Both assignments read the pre-update row
            await session.execute(
                update(Service)
                .where(Service.id == booking.service_id)
                .values(
                    ratings_average=(Service.ratings_average * Service.ratings_count + rating)
                    / (Service.ratings_count + 1),
                    ratings_count=Service.ratings_count + 1,
                )
                .execution_options(synchronize_session=False)
            )
            booking = await session.get(Booking, booking_id, populate_existing=True)
        return booking

    async def rate(
        self, booking_id: uuid.UUID, owner: User, rating: int, review: Optional[str] = None
    ) -> Booking:
        """Rate a COMPLETED booking exactly once"""
        booking = await self._rate(booking_id, owner, rating, review)

        await self.referrals.booking_completed(booking.customer_id, booking.id, UserRole.OWNER.value)
        await self.referrals.booking_completed(booking.provider_id, booking.id, UserRole.PROVIDER.value)
        await self.notifier.notify(
            booking.provider_id, NotificationType.BOOKING_RATED, "New rating",
            f"You received a {rating}-star rating.",
            data=RatingNotificationData(booking_id=booking.id, rating=rating, review=review),
            sender_id=owner.id,
        )
        return booking

    @staticmethod
    def _booking_data(booking: Booking) -> BookingNotificationData:
        return BookingNotificationData(
            booking_id=booking.id,
            service_id=booking.service_id,
            scheduled_at=booking.scheduled_at,
            status=booking.status.value,
        )
