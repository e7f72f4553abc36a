"""
Transaction ledger endpoints
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.deps import get_ledger_service
from app.core.database import get_session
from app.core.security import get_current_user, require_admin
from app.models.transaction import TransactionType
from app.models.user import User
from app.schemas.response import PaginatedResponse, PaginationMeta
from app.schemas.transaction import TransactionResponse
from app.services.ledger_service import LedgerService

router = APIRouter()


@router.get("/me", response_model=PaginatedResponse[TransactionResponse])
async def my_transactions(
    type: Optional[TransactionType] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    ledger: LedgerService = Depends(get_ledger_service),
) -> Any:
    """Ledger rows where the caller paid or received money"""
    items, total = await ledger.list_for_user(db, current_user.id, page, limit, type)
    return PaginatedResponse[TransactionResponse](
        data=[TransactionResponse.model_validate(t) for t in items],
        pagination=PaginationMeta.build(page, limit, total),
    )


@router.get("/booking-payments", response_model=PaginatedResponse[TransactionResponse])
async def booking_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    ledger: LedgerService = Depends(get_ledger_service),
) -> Any:
    items, total = await ledger.list_booking_payments(db, page, limit)
    return PaginatedResponse[TransactionResponse](
        data=[TransactionResponse.model_validate(t) for t in items],
        pagination=PaginationMeta.build(page, limit, total),
    )
