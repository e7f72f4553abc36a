"""
Tests for holds: creation, release on checkout failure, expiry and sweeping
Concurrent attempts on the same slot must produce exactly one hold.
"""

import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import func, select

from app.core.exceptions import (
    ExternalServiceError,
    NotFoundError,
    PaymentError,
    PayoutDestinationError,
    SlotConflictError,
    ValidationError,
)
from app.models.hold import Hold
from app.models.user import UserRole
from app.services.payment_gateway import BOOKING_PAYMENT_TYPE
from app.services.reservation_service import HoldSweeper
from tests.conftest import (
    booking_request,
    create_service,
    create_user,
    expire_hold,
    future_slot,
)


async def _hold_count(session_factory) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count(Hold.id)))


class TestCreateHold:

    @pytest.mark.asyncio
    async def test_creates_hold_and_checkout(self, reservations, gateway, owner, provider, service):
        start = future_slot(hour=10)
        result = await reservations.create_hold(owner, booking_request(service, start, hours=2.5))

        assert result.amount == Decimal("100.00")
        assert result.currency == "EUR"
        assert result.payment_url.startswith("https://checkout.stripe.test/")
        assert timedelta(minutes=9) < result.expires_at - datetime.now(timezone.utc) <= timedelta(minutes=10)

        checkout = gateway.checkouts[0]
        assert checkout["idempotency_key"] == f"hold_{result.booking_id}"
        assert checkout["destination_account"] == provider.stripe_account_id
        assert checkout["metadata"]["type"] == BOOKING_PAYMENT_TYPE
        assert checkout["metadata"]["booking_id"] == str(result.booking_id)
        assert checkout["metadata"]["owner_id"] == str(owner.id)

        hold = await reservations.get_hold(result.booking_id)
        assert hold is not None
        assert hold.payment_session_id == result.session_id
        assert hold.padded_end_at == start + timedelta(hours=2, minutes=45)

    @pytest.mark.asyncio
    async def test_overlapping_request_is_rejected(self, reservations, gateway, owner, other_owner, service):
        await reservations.create_hold(owner, booking_request(service, future_slot(hour=10)))

        with pytest.raises(SlotConflictError):
            await reservations.create_hold(other_owner, booking_request(service, future_slot(hour=11)))
        assert len(gateway.checkouts) == 1

    @pytest.mark.asyncio
    async def test_expired_hold_frees_the_slot(
        self, session_factory, reservations, owner, other_owner, service
    ):
        first = await reservations.create_hold(owner, booking_request(service, future_slot(hour=10)))
        await expire_hold(session_factory, first.booking_id)

        second = await reservations.create_hold(other_owner, booking_request(service, future_slot(hour=10)))
        assert second.booking_id != first.booking_id
        assert await reservations.get_hold(first.booking_id) is None

    @pytest.mark.asyncio
    async def test_checkout_failure_releases_hold(self, session_factory, reservations, gateway, owner, service):
        gateway.fail_checkout = PaymentError("card declined")

        with pytest.raises(PaymentError):
            await reservations.create_hold(owner, booking_request(service, future_slot(hour=10)))
        assert await _hold_count(session_factory) == 0

        gateway.fail_checkout = None
        result = await reservations.create_hold(owner, booking_request(service, future_slot(hour=10)))
        assert result.session_id

    @pytest.mark.asyncio
    async def test_unexpected_checkout_error_releases_hold(
        self, session_factory, reservations, gateway, owner, service
    ):
        gateway.fail_checkout = ExternalServiceError("stripe", "timeout")

        with pytest.raises(ExternalServiceError):
            await reservations.create_hold(owner, booking_request(service, future_slot(hour=10)))
        assert await _hold_count(session_factory) == 0

    @pytest.mark.asyncio
    async def test_provider_without_payouts_is_rejected(self, session_factory, reservations, gateway, owner):
        unpaid_provider = await create_user(session_factory, UserRole.PROVIDER)
        service = await create_service(session_factory, unpaid_provider)

        with pytest.raises(PayoutDestinationError):
            await reservations.create_hold(owner, booking_request(service, future_slot()))
        assert gateway.checkouts == []
        assert await _hold_count(session_factory) == 0

    @pytest.mark.asyncio
    async def test_provider_cannot_book_own_service(self, reservations, provider, service):
        with pytest.raises(ValidationError):
            await reservations.create_hold(provider, booking_request(service, future_slot()))

    @pytest.mark.asyncio
    async def test_inactive_service_is_not_found(self, session_factory, reservations, owner, provider):
        inactive = await create_service(session_factory, provider, is_active=False)
        with pytest.raises(NotFoundError):
            await reservations.create_hold(owner, booking_request(inactive, future_slot()))


class TestConcurrentHolds:

    @pytest.mark.asyncio
    async def test_only_one_hold_wins_a_contested_slot(self, session_factory, reservations, service):
        owners = [await create_user(session_factory, UserRole.OWNER) for _ in range(4)]

        results = await asyncio.gather(
            *[
                reservations.create_hold(o, booking_request(service, future_slot(hour=10, minute=15 * i)))
                for i, o in enumerate(owners)
            ],
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert all(isinstance(f, SlotConflictError) for f in failures)
        assert await _hold_count(session_factory) == 1


class TestExpiry:

    @pytest.mark.asyncio
    async def test_purge_removes_only_expired_holds(
        self, session_factory, reservations, owner, other_owner, service
    ):
        stale = await reservations.create_hold(owner, booking_request(service, future_slot(hour=9)))
        live = await reservations.create_hold(other_owner, booking_request(service, future_slot(hour=14)))
        await expire_hold(session_factory, stale.booking_id)

        purged = await reservations.purge_expired_holds()

        assert purged == 1
        assert await _hold_count(session_factory) == 1
        assert await reservations.get_hold(live.booking_id) is not None

    @pytest.mark.asyncio
    async def test_get_hold_hides_expired_hold_before_purge(self, session_factory, reservations, owner, service):
        result = await reservations.create_hold(owner, booking_request(service, future_slot()))
        await expire_hold(session_factory, result.booking_id)

        assert await reservations.get_hold(result.booking_id) is None
        assert await _hold_count(session_factory) == 1

    @pytest.mark.asyncio
    async def test_sweeper_purges_and_stops(self, session_factory, reservations, owner, service):
        result = await reservations.create_hold(owner, booking_request(service, future_slot()))
        await expire_hold(session_factory, result.booking_id)

        sweeper = HoldSweeper(reservations, interval=3600)
        sweeper.start()
        for _ in range(50):
            if await _hold_count(session_factory) == 0:
                break
            await asyncio.sleep(0.05)
        await sweeper.stop()

        assert await _hold_count(session_factory) == 0
