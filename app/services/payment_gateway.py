"""
Stripe gateway adapter
Hosted checkout with destination charges, refunds and webhook verification
"""

import asyncio
import stripe
from typing import Dict, Optional, Any
from decimal import Decimal, ROUND_HALF_UP
import logging

from app.config import settings
from app.core.exceptions import ExternalServiceError, PaymentError, WebhookSignatureError

logger = logging.getLogger(__name__)

stripe.api_key = settings.STRIPE_SECRET_KEY

BOOKING_PAYMENT_TYPE = "booking_payment"


def to_minor_units(amount: Decimal) -> int:
    """Convert a currency amount to integer cents"""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _translate(e: "stripe.error.StripeError", action: str) -> Exception:
    if isinstance(e, (stripe.error.APIConnectionError, stripe.error.RateLimitError)):
        return ExternalServiceError("stripe", f"Payment provider unavailable during {action}")
    return PaymentError(f"Payment provider rejected {action}: {e.user_message or str(e)}")


class PaymentGateway:
    """
    Thin async wrapper over the Stripe SDK.

    The SDK is blocking, so every call runs in a worker thread. Results are
    returned as plain dicts holding only the fields the booking core reads.
    """

    def __init__(self, currency: Optional[str] = None):
        self.currency = (currency or settings.PAYMENT_CURRENCY).lower()

    async def create_checkout_session(
        self,
        *,
        booking_id: str,
        amount: Decimal,
        product_name: str,
        description: str,
        destination_account: str,
        customer_email: Optional[str],
        metadata: Dict[str, str],
        idempotency_key: str,
    ) -> Dict[str, Any]:
        """Create a hosted Checkout session that pays the provider via a destination charge"""
        params = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [{
                "price_data": {
                    "currency": self.currency,
                    "product_data": {"name": product_name, "description": description},
                    "unit_amount": to_minor_units(amount),
                },
                "quantity": 1,
            }],
            "payment_intent_data": {
                "transfer_data": {"destination": destination_account},
                "metadata": metadata,
            },
            "metadata": metadata,
            "client_reference_id": booking_id,
            "success_url": f"{settings.PAYMENT_SUCCESS_URL}?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{settings.PAYMENT_CANCEL_URL}?booking_id={booking_id}",
        }
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create, idempotency_key=idempotency_key, **params
            )
        except stripe.error.StripeError as e:
            logger.error(f"Stripe checkout creation failed for booking {booking_id}: {e}")
            raise _translate(e, "checkout creation")

        return {"id": session.id, "url": session.url}

    async def retrieve_checkout_session(self, session_id: str) -> Dict[str, Any]:
        try:
            session = await asyncio.to_thread(stripe.checkout.Session.retrieve, session_id)
        except stripe.error.InvalidRequestError:
            raise PaymentError("Unknown checkout session", code="INVALID_SESSION")
        except stripe.error.StripeError as e:
            logger.error(f"Stripe session lookup failed for {session_id}: {e}")
            raise _translate(e, "checkout lookup")

        return {
            "id": session.id,
            "payment_status": session.payment_status,
            "payment_intent": session.payment_intent,
            "customer": session.customer,
            "metadata": dict(session.metadata or {}),
        }

    async def create_refund(
        self,
        *,
        payment_intent_id: str,
        idempotency_key: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Refund the full charge and pull the transferred funds back from the provider"""
        try:
            refund = await asyncio.to_thread(
                stripe.Refund.create,
                payment_intent=payment_intent_id,
                reverse_transfer=True,
                reason="requested_by_customer",
                metadata=metadata or {},
                idempotency_key=idempotency_key,
            )
        except stripe.error.StripeError as e:
            logger.error(f"Stripe refund failed for {payment_intent_id}: {e}")
            raise _translate(e, "refund")

        return {"id": refund.id, "status": refund.status, "amount": refund.amount}

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Verify a webhook delivery and return the event"""
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header")
        try:
            event = stripe.Webhook.construct_event(
                payload, signature, settings.STRIPE_WEBHOOK_SECRET
            )
        except stripe.error.SignatureVerificationError:
            logger.warning("Invalid webhook signature")
            raise WebhookSignatureError()
        except ValueError:
            raise WebhookSignatureError("Malformed webhook payload")

        obj = event["data"]["object"]
        return {
            "id": event["id"],
            "type": event["type"],
            "object": obj,
        }


payment_gateway = PaymentGateway()
