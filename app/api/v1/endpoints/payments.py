"""
Payment API endpoints
Checkout return, Stripe webhooks and customer refunds
"""

from typing import Any, Optional
from uuid import UUID
import logging

from fastapi import APIRouter, Depends, Header, Query, Request

from app.api.v1.deps import get_refund_service, get_settlement_service
from app.core.security import require_owner
from app.models.user import User
from app.schemas.booking import BookingResponse
from app.schemas.payment import RefundEligibility, RefundRequest, RefundResponse, WebhookAck
from app.services.refund_service import RefundService
from app.services.settlement_service import SettlementService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/checkout/success", response_model=BookingResponse)
async def checkout_success(
    session_id: str = Query(..., min_length=1),
    settlement: SettlementService = Depends(get_settlement_service),
) -> Any:
    """
    Landing call after Stripe Checkout. Settles the booking if the webhook
    has not done so already; safe to call repeatedly.
    """
    return await settlement.settle_checkout_redirect(session_id)


@router.post("/webhook", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    settlement: SettlementService = Depends(get_settlement_service),
) -> Any:
    """Stripe event receiver. The raw body is needed for signature checks."""
    payload = await request.body()
    ack = await settlement.handle_webhook(payload, stripe_signature)
    return WebhookAck(**ack)


@router.post("/refund", response_model=RefundResponse)
async def request_refund(
    body: RefundRequest,
    current_user: User = Depends(require_owner),
    refunds: RefundService = Depends(get_refund_service),
) -> Any:
    """Self-service refund within the refund window"""
    outcome = await refunds.refund_self_service(body.booking_id, current_user, body.reason)
    return RefundResponse(
        booking_id=outcome.booking.id,
        refund_id=outcome.refund_id,
        amount=outcome.amount,
        currency=outcome.currency,
        refunded_at=outcome.refunded_at,
        transaction_ref=outcome.transaction_ref,
    )


@router.get("/refund-eligibility/{booking_id}", response_model=RefundEligibility)
async def refund_eligibility(
    booking_id: UUID,
    current_user: User = Depends(require_owner),
    refunds: RefundService = Depends(get_refund_service),
) -> Any:
    return await refunds.get_eligibility(booking_id, current_user)
