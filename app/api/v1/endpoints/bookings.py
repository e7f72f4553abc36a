"""
Booking API endpoints
"""

from typing import Any, Optional
from uuid import UUID
import logging

from fastapi import APIRouter, Depends, Query, status

from app.api.v1.deps import get_booking_service, get_reservation_service
from app.config import settings
from app.core.exceptions import RateLimitError
from app.core.redis import redis_manager
from app.core.security import get_current_user, require_owner, require_provider
from app.models.booking import BookingStatus
from app.models.user import User
from app.schemas.booking import (
    BookingCreate,
    BookingResponse,
    CancelBookingRequest,
    CheckoutResponse,
    CompleteBookingRequest,
    CompletionCodeResponse,
    RateBookingRequest,
)
from app.schemas.response import PaginatedResponse, PaginationMeta
from app.services.booking_service import BookingService
from app.services.reservation_service import ReservationService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    current_user: User = Depends(require_owner),
    reservations: ReservationService = Depends(get_reservation_service),
) -> Any:
    """
    Reserve a slot for ten minutes and return the checkout URL.
    The booking id in the response is the id the paid booking will have.
    """
    if settings.RATE_LIMIT_ENABLED:
        rate_limited, current_count = await redis_manager.is_rate_limited(
            f"user:{current_user.id}:bookings",
            limit=settings.RATE_LIMIT_BOOKING_PER_MINUTE,
            window=60
        )
        if rate_limited:
            raise RateLimitError(settings.RATE_LIMIT_BOOKING_PER_MINUTE, 60)

    result = await reservations.create_hold(current_user, booking_data)
    return CheckoutResponse(
        booking_id=result.booking_id,
        session_id=result.session_id,
        payment_url=result.payment_url,
        amount=result.amount,
        currency=result.currency,
        expires_at=result.expires_at,
    )


@router.get("/", response_model=PaginatedResponse[BookingResponse])
async def list_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    bookings: BookingService = Depends(get_booking_service),
) -> Any:
    """Bookings the caller is a party to"""
    items, total = await bookings.list_bookings(current_user, status_filter, page, limit)
    return PaginatedResponse[BookingResponse](
        data=[BookingResponse.model_validate(b) for b in items],
        pagination=PaginationMeta.build(page, limit, total),
    )


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    bookings: BookingService = Depends(get_booking_service),
) -> Any:
    return await bookings.get_booking(booking_id, current_user)


@router.patch("/{booking_id}/accept", response_model=BookingResponse)
async def accept_booking(
    booking_id: UUID,
    current_user: User = Depends(require_provider),
    bookings: BookingService = Depends(get_booking_service),
) -> Any:
    return await bookings.accept(booking_id, current_user)


@router.patch("/{booking_id}/reject", response_model=BookingResponse)
async def reject_booking(
    booking_id: UUID,
    body: Optional[CancelBookingRequest] = None,
    current_user: User = Depends(require_provider),
    bookings: BookingService = Depends(get_booking_service),
) -> Any:
    """Decline a pending booking; paid bookings are refunded in full"""
    return await bookings.reject(booking_id, current_user, body.reason if body else None)


@router.patch("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    body: Optional[CancelBookingRequest] = None,
    current_user: User = Depends(require_owner),
    bookings: BookingService = Depends(get_booking_service),
) -> Any:
    """Cancel a pending booking; paid bookings are refunded in full"""
    return await bookings.cancel(booking_id, current_user, body.reason if body else None)


@router.post("/{booking_id}/completion-code", response_model=CompletionCodeResponse)
async def issue_completion_code(
    booking_id: UUID,
    current_user: User = Depends(require_provider),
    bookings: BookingService = Depends(get_booking_service),
) -> Any:
    return await bookings.issue_completion_code(booking_id, current_user)


@router.patch("/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(
    booking_id: UUID,
    body: CompleteBookingRequest,
    current_user: User = Depends(require_owner),
    bookings: BookingService = Depends(get_booking_service),
) -> Any:
    return await bookings.complete(booking_id, current_user, body.completion_code)


@router.post("/{booking_id}/rating", response_model=BookingResponse)
async def rate_booking(
    booking_id: UUID,
    body: RateBookingRequest,
    current_user: User = Depends(require_owner),
    bookings: BookingService = Depends(get_booking_service),
) -> Any:
    return await bookings.rate(booking_id, current_user, body.rating, body.review)
