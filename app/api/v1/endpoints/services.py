"""
Service catalogue endpoints
"""

from datetime import date as date_type
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.deps import get_availability_service
from app.config import settings
from app.core.database import get_session
from app.core.exceptions import NotFoundError
from app.models.service import Service
from app.schemas.booking import AvailabilityResponse
from app.services.availability_service import AvailabilityService

router = APIRouter()


@router.get("/{service_id}/availability", response_model=AvailabilityResponse)
async def get_service_availability(
    service_id: UUID,
    date: date_type = Query(..., description="Day to preview (UTC)"),
    duration: float = Query(
        1.0, ge=settings.MIN_SERVICE_HOURS, le=settings.MAX_SERVICE_HOURS, description="Hours"
    ),
    db: AsyncSession = Depends(get_session),
    availability: AvailabilityService = Depends(get_availability_service),
) -> Any:
    """
    Start times on a day and whether each is currently free.
    Nothing is reserved until a booking is created.
    """
    result = await db.execute(
        select(Service).where(Service.id == service_id, Service.is_active.is_(True))
    )
    service = result.scalar_one_or_none()
    if not service:
        raise NotFoundError("Service", service_id)

    preview = await availability.get_available_slots(db, service, date, duration)
    return AvailabilityResponse(
        service_id=service.id,
        date=date,
        duration_hours=duration,
        working_hours=preview["working_hours"],
        slots=preview["slots"],
    )
