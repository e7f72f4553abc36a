"""
Tests for the transaction ledger
"""

import re
import uuid
import pytest
from decimal import Decimal

from sqlalchemy import func, select

from app.models.transaction import PaymentMethod, Transaction, TransactionStatus, TransactionType
from app.services.ledger_service import generate_transaction_ref
from tests.conftest import future_slot


class TestTransactionRef:

    def test_format(self):
        assert re.match(r"^TXN-[0-9A-Z]+-[0-9A-Z]{6}$", generate_transaction_ref())

    def test_refs_are_distinct(self):
        assert len({generate_transaction_ref() for _ in range(50)}) == 50


class TestBookingPayment:

    @pytest.mark.asyncio
    async def test_record_is_idempotent(self, session_factory, ledger, make_paid_booking, owner, service):
        booking = await make_paid_booking(owner, service)

        first = await ledger.record_booking_payment(booking.id, "cus_test", "webhook")
        second = await ledger.record_booking_payment(booking.id, "cus_test", "webhook")

        assert first.id == second.id
        async with session_factory() as session:
            count = await session.scalar(
                select(func.count(Transaction.id)).where(
                    Transaction.booking_id == booking.id,
                    Transaction.type == TransactionType.BOOKING_PAYMENT,
                )
            )
        assert count == 1

    @pytest.mark.asyncio
    async def test_payment_row_mirrors_booking(self, session_factory, ledger, make_paid_booking, owner, provider, service):
        booking = await make_paid_booking(owner, service)

        async with session_factory() as session:
            payment = await ledger.find_booking_payment(session, booking.id)

        assert payment.status == TransactionStatus.COMPLETED
        assert payment.payment_method == PaymentMethod.STRIPE_CARD
        assert payment.amount == booking.total_amount
        assert payment.currency == "EUR"
        assert payment.stripe_payment_intent_id == booking.payment_intent_id
        assert payment.payer_id == owner.id
        assert payment.receiver_id == provider.id
        assert payment.details["kind"] == "booking_payment"
        assert payment.details["service_id"] == str(service.id)


class TestOtherWriters:

    @pytest.mark.asyncio
    async def test_subscription_purchase_and_renewal(self, session_factory, ledger, provider):
        async with session_factory() as session:
            async with session.begin():
                purchase = await ledger.record_subscription_purchase(
                    session, provider, Decimal("19.99"), "pro", uuid.uuid4(), billing_period="monthly"
                )
                renewal = await ledger.record_subscription_purchase(
                    session, provider, Decimal("19.99"), "pro", uuid.uuid4(), renewal=True
                )

        assert purchase.type == TransactionType.SUBSCRIPTION_PURCHASE
        assert renewal.type == TransactionType.SUBSCRIPTION_RENEWAL
        assert purchase.payer_id == provider.id
        assert purchase.details == {"kind": "subscription", "plan": "pro", "billing_period": "monthly"}

    @pytest.mark.asyncio
    async def test_credit_redemption_is_valued_in_cash(self, session_factory, ledger, owner):
        async with session_factory() as session:
            async with session.begin():
                cash = await ledger.record_credit_redemption(session, owner, 50, "cash", uuid.uuid4())
                plan = await ledger.record_credit_redemption(session, owner, 10, "subscription", uuid.uuid4())

        assert cash.type == TransactionType.CREDIT_REDEMPTION_CASH
        assert cash.amount == Decimal("10.00")
        assert cash.credits_used == 50
        assert cash.receiver_id == owner.id
        assert plan.type == TransactionType.CREDIT_REDEMPTION_SUBSCRIPTION
        assert plan.amount == Decimal("2.00")

    @pytest.mark.asyncio
    async def test_credit_earned_carries_no_cash(self, session_factory, ledger, owner):
        async with session_factory() as session:
            async with session.begin():
                earned = await ledger.record_credit_earned(session, owner, 5, "referral")

        assert earned.type == TransactionType.CREDIT_EARNED
        assert earned.amount == Decimal("0.00")
        assert earned.credits_used == 5
        assert earned.details["source"] == "referral"


class TestListing:

    @pytest.mark.asyncio
    async def test_list_for_user_covers_both_sides(
        self, session_factory, ledger, make_paid_booking, owner, provider, other_owner, service
    ):
        await make_paid_booking(owner, service)
        async with session_factory() as session:
            async with session.begin():
                await ledger.record_credit_earned(session, owner, 3, "referral")

        async with session_factory() as session:
            owner_items, owner_total = await ledger.list_for_user(session, owner.id)
            provider_items, provider_total = await ledger.list_for_user(session, provider.id)
            credits, credits_total = await ledger.list_for_user(
                session, owner.id, type=TransactionType.CREDIT_EARNED
            )
            _, stranger_total = await ledger.list_for_user(session, other_owner.id)

        assert owner_total == 2
        assert provider_total == 1
        assert provider_items[0].type == TransactionType.BOOKING_PAYMENT
        assert credits_total == 1
        assert credits[0].type == TransactionType.CREDIT_EARNED
        assert stranger_total == 0

    @pytest.mark.asyncio
    async def test_list_booking_payments_paginates(self, session_factory, ledger, make_paid_booking, owner, service):
        await make_paid_booking(owner, service)
        await make_paid_booking(owner, service, start=future_slot(days=4))
        await make_paid_booking(owner, service, start=future_slot(days=5))

        async with session_factory() as session:
            page_one, total = await ledger.list_booking_payments(session, page=1, limit=2)
            page_two, _ = await ledger.list_booking_payments(session, page=2, limit=2)

        assert total == 3
        assert len(page_one) == 2
        assert len(page_two) == 1
