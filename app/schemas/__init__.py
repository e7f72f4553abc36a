"""
Pydantic schemas for request and response validation
"""

from app.schemas.booking import (
    BookingCreate,
    BookingResponse,
    BookingListResponse,
    CheckoutResponse,
)
from app.schemas.payment import (
    RefundRequest,
    RefundResponse,
    RefundEligibility,
)
from app.schemas.transaction import TransactionResponse
from app.schemas.response import (
    SuccessResponse,
    ErrorResponse,
    PaginatedResponse
)

__all__ = [
    "BookingCreate",
    "BookingResponse",
    "BookingListResponse",
    "CheckoutResponse",
    "RefundRequest",
    "RefundResponse",
    "RefundEligibility",
    "TransactionResponse",
    "SuccessResponse",
    "ErrorResponse",
    "PaginatedResponse"
]
