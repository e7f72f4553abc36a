"""
Test configuration and fixtures
Each test gets its own SQLite file so units of work can run on separate
connections the way they do against PostgreSQL.
"""

import json
import pytest
import pytest_asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import uuid4
import os

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Set test environment
os.environ["APP_ENV"] = "testing"
os.environ["SECRET_KEY"] = "test-secret-key-that-is-long-enough-0123456789"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret-key-that-is-long-enough-0123"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./servicely_test.db"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_dummy"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["HOLD_SWEEP_ENABLED"] = "false"
os.environ["CONFLICT_RETRY_BASE_DELAY"] = "0.001"
os.environ["CONFLICT_RETRY_MAX_DELAY"] = "0.01"

# Import all models BEFORE creating fixtures (critical for create_all to work)
from app.core.database import Base, build_engine
from app.core.exceptions import WebhookSignatureError
from app.models.user import User, UserRole
from app.models.service import Service
from app.models.hold import Hold
from app.models.booking import Booking, BookingStatus, PaymentStatus
from app.models.transaction import Transaction
from app.models.notification import Notification
from app.schemas.booking import BookingCreate
from app.services.availability_service import AvailabilityService
from app.services.booking_service import BookingService
from app.services.ledger_service import LedgerService
from app.services.refund_service import RefundService
from app.services.reservation_service import ReservationService
from app.services.settlement_service import SettlementService

VALID_SIGNATURE = "t=1,v1=valid"

WEEK_SCHEDULE = {
    day: {"is_available": True, "start_time": "08:00", "end_time": "20:00"}
    for day in ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
}


def future_slot(days: int = 3, hour: int = 10, minute: int = 0) -> datetime:
    """A start time safely past the lead-time cutoff"""
    base = datetime.now(timezone.utc) + timedelta(days=days)
    return base.replace(hour=hour, minute=minute, second=0, microsecond=0)


class FakeGateway:
    """In-memory stand-in for Stripe with Stripe's idempotency-key semantics"""

    def __init__(self):
        self.checkouts: List[Dict[str, Any]] = []
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.refund_calls: List[Dict[str, Any]] = []
        self._refunds_by_key: Dict[str, Dict[str, Any]] = {}
        self.fail_checkout: Optional[Exception] = None
        self.fail_refund: Optional[Exception] = None

    async def create_checkout_session(self, **kwargs) -> Dict[str, Any]:
        if self.fail_checkout is not None:
            raise self.fail_checkout
        self.checkouts.append(kwargs)
        session_id = f"cs_test_{len(self.checkouts)}"
        self.sessions[session_id] = {
            "id": session_id,
            "payment_status": "paid",
            "payment_intent": f"pi_{kwargs['booking_id'].replace('-', '')[:16]}",
            "customer": "cus_test",
            "metadata": dict(kwargs["metadata"]),
        }
        return {"id": session_id, "url": f"https://checkout.stripe.test/{session_id}"}

    async def retrieve_checkout_session(self, session_id: str) -> Dict[str, Any]:
        return self.sessions[session_id]

    async def create_refund(self, payment_intent_id: str, idempotency_key: str, metadata=None) -> Dict[str, Any]:
        self.refund_calls.append({"payment_intent_id": payment_intent_id, "idempotency_key": idempotency_key})
        if self.fail_refund is not None:
            raise self.fail_refund
        if idempotency_key not in self._refunds_by_key:
            self._refunds_by_key[idempotency_key] = {
                "id": f"re_{len(self._refunds_by_key) + 1}",
                "status": "succeeded",
                "amount": 0,
            }
        return self._refunds_by_key[idempotency_key]

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        if signature != VALID_SIGNATURE:
            raise WebhookSignatureError()
        event = json.loads(payload)
        return {"id": event["id"], "type": event["type"], "object": event["data"]["object"]}


class RecordingNotifier:
    def __init__(self):
        self.sent: List[Dict[str, Any]] = []

    async def notify(self, recipient_id, type, title, message, data=None, sender_id=None):
        self.sent.append({"recipient_id": recipient_id, "type": type, "title": title, "data": data})
        return uuid4()

    def types_for(self, recipient_id) -> list:
        return [n["type"] for n in self.sent if n["recipient_id"] == recipient_id]


class RecordingReferrals:
    def __init__(self):
        self.events: List[tuple] = []

    async def booking_completed(self, user_id, booking_id, role):
        self.events.append((user_id, booking_id, role))
        return True


class MemoryEventStore:
    def __init__(self):
        self.processed = set()

    async def is_event_processed(self, event_id: str) -> bool:
        return event_id in self.processed

    async def mark_event_processed(self, event_id: str) -> None:
        self.processed.add(event_id)


def webhook_event(event_type: str, obj: Dict[str, Any], event_id: Optional[str] = None) -> bytes:
    return json.dumps({
        "id": event_id or f"evt_{uuid4().hex[:12]}",
        "type": event_type,
        "data": {"object": obj},
    }).encode()


@pytest_asyncio.fixture(scope="function")
async def test_db(tmp_path):
    """Fresh database file per test"""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'servicely.db'}", testing=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_db) -> async_sessionmaker:
    return async_sessionmaker(test_db, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


async def create_user(session_factory, role: UserRole, payouts: bool = False, **overrides) -> User:
    suffix = uuid4().hex[:8]
    fields = dict(
        email=f"{role.value}_{suffix}@example.com",
        user_name=f"{role.value}_{suffix}",
        role=role,
        is_active=True,
    )
    if payouts:
        fields.update(
            stripe_account_id=f"acct_{suffix}",
            stripe_onboarding_complete=True,
            stripe_account_status="active",
        )
    fields.update(overrides)
    async with session_factory() as session:
        async with session.begin():
            user = User(**fields)
            session.add(user)
    return user


async def create_service(session_factory, provider: User, **overrides) -> Service:
    fields = dict(
        provider_id=provider.id,
        name="Deep cleaning",
        description="Full apartment cleaning",
        rate_by_hour=Decimal("40.00"),
        buffer_minutes=15,
        instant_booking=False,
        work_schedule=WEEK_SCHEDULE,
        is_active=True,
        ratings_average=0.0,
        ratings_count=0,
        total_orders=0,
    )
    fields.update(overrides)
    async with session_factory() as session:
        async with session.begin():
            service = Service(**fields)
            session.add(service)
    async with session_factory() as session:
        return await session.get(Service, service.id)


async def expire_hold(session_factory, hold_id) -> None:
    async with session_factory() as session:
        async with session.begin():
            await session.execute(
                update(Hold)
                .where(Hold.id == hold_id)
                .values(expires_at=datetime.now(timezone.utc) - timedelta(seconds=1))
            )


async def set_booking_fields(session_factory, booking_id, **values) -> None:
    async with session_factory() as session:
        async with session.begin():
            await session.execute(update(Booking).where(Booking.id == booking_id).values(**values))


async def insert_booking(
    session_factory,
    service: Service,
    owner: User,
    start: datetime,
    hours: float = 2,
    status: BookingStatus = BookingStatus.PENDING,
    payment_status: PaymentStatus = PaymentStatus.PAID,
) -> Booking:
    """Write a booking row directly, bypassing reservation and settlement"""
    now = datetime.now(timezone.utc)
    async with session_factory() as session:
        async with session.begin():
            booking = Booking(
                customer_id=owner.id,
                provider_id=service.provider_id,
                service_id=service.id,
                scheduled_at=start,
                duration_hours=hours,
                buffer_minutes=service.buffer_minutes,
                padded_end_at=start + timedelta(hours=hours, minutes=service.buffer_minutes),
                phone_number="+33600000000",
                address={"city": "Paris", "lat": 48.85, "lng": 2.35, "line1": "1 Rue de Rivoli"},
                total_amount=Decimal(service.rate_by_hour) * Decimal(str(hours)),
                currency="EUR",
                status=status,
                payment_status=payment_status,
                payment_intent_id=f"pi_{uuid4().hex[:16]}" if payment_status != PaymentStatus.UNPAID else None,
                paid_at=now if payment_status != PaymentStatus.UNPAID else None,
                created_at=now,
            )
            session.add(booking)
    return booking


def booking_request(service: Service, start: datetime, hours: float = 2) -> BookingCreate:
    return BookingCreate(
        service_id=service.id,
        scheduled_at=start,
        duration_hours=hours,
        phone_number="+33600000000",
        address={"city": "Paris", "lat": 48.85, "lng": 2.35, "line1": "1 Rue de Rivoli"},
        description="Two bedroom flat",
    )


# Users and catalogue

@pytest_asyncio.fixture
async def owner(session_factory) -> User:
    return await create_user(session_factory, UserRole.OWNER)


@pytest_asyncio.fixture
async def other_owner(session_factory) -> User:
    return await create_user(session_factory, UserRole.OWNER)


@pytest_asyncio.fixture
async def provider(session_factory) -> User:
    return await create_user(session_factory, UserRole.PROVIDER, payouts=True)


@pytest_asyncio.fixture
async def admin(session_factory) -> User:
    return await create_user(session_factory, UserRole.ADMIN)


@pytest_asyncio.fixture
async def service(session_factory, provider) -> Service:
    return await create_service(session_factory, provider)


# Collaborators

@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def referrals() -> RecordingReferrals:
    return RecordingReferrals()


@pytest.fixture
def event_store() -> MemoryEventStore:
    return MemoryEventStore()


# Services

@pytest.fixture
def availability() -> AvailabilityService:
    return AvailabilityService()


@pytest.fixture
def ledger(session_factory) -> LedgerService:
    return LedgerService(session_factory)


@pytest.fixture
def reservations(session_factory, gateway, availability) -> ReservationService:
    return ReservationService(session_factory, gateway=gateway, availability=availability)


@pytest.fixture
def refunds(session_factory, gateway, ledger, notifier) -> RefundService:
    return RefundService(session_factory, gateway=gateway, ledger=ledger, notifier=notifier)


@pytest.fixture
def settlement(session_factory, gateway, ledger, notifier, refunds, event_store) -> SettlementService:
    return SettlementService(
        session_factory,
        gateway=gateway,
        ledger=ledger,
        notifier=notifier,
        refunds=refunds,
        event_store=event_store,
    )


@pytest.fixture
def bookings(session_factory, refunds, notifier, referrals) -> BookingService:
    return BookingService(session_factory, refunds=refunds, notifier=notifier, referrals=referrals)


@pytest.fixture
def make_paid_booking(reservations, settlement, gateway):
    """Reserve and settle through the real services"""

    async def _make(owner: User, service: Service, start: Optional[datetime] = None, hours: float = 2) -> Booking:
        result = await reservations.create_hold(owner, booking_request(service, start or future_slot(), hours))
        checkout = gateway.sessions[result.session_id]
        return await settlement.settle(
            result.booking_id, checkout["payment_intent"], stripe_customer_id="cus_test"
        )

    return _make
