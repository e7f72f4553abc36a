"""
Availability and conflict detection

A booking or hold occupies ``[start, start + duration + buffer)`` on its
provider's calendar. Two occupations conflict when their padded half-open
intervals overlap; touching endpoints do not conflict.
"""

from dataclasses import dataclass
from datetime import datetime, date, time, timedelta, timezone
from typing import Dict, List, Optional, Any
import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import OutOfHoursError, PastOrTooSoonError, SlotConflictError
from app.core.metrics import metrics_collector
from app.models.booking import Booking, BookingStatus
from app.models.hold import Hold
from app.models.service import Service

logger = logging.getLogger(__name__)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime

    def overlaps(self, other: "TimeWindow") -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, other: "TimeWindow") -> bool:
        return self.start <= other.start and other.end <= self.end


def padded_window(start: datetime, duration_hours: float, buffer_minutes: int) -> TimeWindow:
    return TimeWindow(start, start + timedelta(hours=duration_hours, minutes=buffer_minutes))


def _parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def working_window(work_schedule: Optional[Dict[str, Any]], day: date) -> Optional[TimeWindow]:
    """
    Working hours for ``day`` in UTC, or None when the provider is off.

    An ``end_time`` of 00:00 or earlier than ``start_time`` runs to midnight.
    """
    entry = (work_schedule or {}).get(WEEKDAYS[day.weekday()])
    if not entry or not entry.get("is_available"):
        return None
    if not entry.get("start_time") or not entry.get("end_time"):
        return None

    opens = datetime.combine(day, _parse_hhmm(entry["start_time"]), tzinfo=timezone.utc)
    closes = datetime.combine(day, _parse_hhmm(entry["end_time"]), tzinfo=timezone.utc)
    if closes <= opens:
        closes = datetime.combine(day + timedelta(days=1), time(0, 0), tzinfo=timezone.utc)
    return TimeWindow(opens, closes)


class AvailabilityService:
    """Decides whether a provider can take a requested interval"""

    def __init__(self, lead_minutes: Optional[int] = None):
        self.lead_minutes = lead_minutes if lead_minutes is not None else settings.MIN_LEAD_TIME_MINUTES

    def check_schedule(
        self,
        work_schedule: Optional[Dict[str, Any]],
        start: datetime,
        duration_hours: float,
        now: datetime,
    ) -> None:
        """Lead time and working-hours checks; no storage access"""
        if start <= now + timedelta(minutes=self.lead_minutes):
            raise PastOrTooSoonError(self.lead_minutes)

        requested = TimeWindow(start, start + timedelta(hours=duration_hours))
        hours = working_window(work_schedule, start.date())
        if hours is None:
            raise OutOfHoursError("Provider does not work on the requested day")
        if not hours.contains(requested):
            raise OutOfHoursError()

    async def find_conflicts(
        self,
        session: AsyncSession,
        provider_id: uuid.UUID,
        window: TimeWindow,
        now: datetime,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> List[uuid.UUID]:
        """Ids of live holds and non-cancelled bookings overlapping ``window``"""
        hold_stmt = select(Hold.id).where(
            Hold.provider_id == provider_id,
            Hold.expires_at > now,
            Hold.scheduled_at < window.end,
            Hold.padded_end_at > window.start,
        )
        booking_stmt = select(Booking.id).where(
            Booking.provider_id == provider_id,
            Booking.status != BookingStatus.CANCELLED,
            Booking.scheduled_at < window.end,
            Booking.padded_end_at > window.start,
        )
        if exclude_id is not None:
            hold_stmt = hold_stmt.where(Hold.id != exclude_id)
            booking_stmt = booking_stmt.where(Booking.id != exclude_id)

        holds = (await session.execute(hold_stmt)).scalars().all()
        bookings = (await session.execute(booking_stmt)).scalars().all()
        return [*holds, *bookings]

    async def ensure_available(
        self,
        session: AsyncSession,
        service: Service,
        start: datetime,
        duration_hours: float,
        now: Optional[datetime] = None,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> TimeWindow:
        """
        Run every check in order and return the padded window to store.

        Must be called inside the same transaction that writes the hold so
        the answer cannot go stale before the insert.
        """
        now = now or datetime.now(timezone.utc)
        self.check_schedule(service.work_schedule, start, duration_hours, now)

        window = padded_window(start, duration_hours, service.buffer_minutes or 0)
        conflicts = await self.find_conflicts(session, service.provider_id, window, now, exclude_id)
        if conflicts:
            metrics_collector.record_slot_conflict("reservation")
            logger.info(
                "Slot conflict",
                extra={"provider_id": str(service.provider_id), "conflicts": [str(c) for c in conflicts]},
            )
            raise SlotConflictError(conflicts)
        return window

    async def get_available_slots(
        self,
        session: AsyncSession,
        service: Service,
        day: date,
        duration_hours: float,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Preview of bookable start times on ``day`` in fixed steps.

        Advisory only: a slot shown as free can still be taken before the
        customer reserves it.
        """
        now = now or datetime.now(timezone.utc)
        hours = working_window(service.work_schedule, day)
        if hours is None:
            return {"working_hours": None, "slots": []}

        buffer_minutes = service.buffer_minutes or 0
        day_window = TimeWindow(hours.start, hours.end + timedelta(minutes=buffer_minutes))
        hold_rows = await session.execute(
            select(Hold.scheduled_at, Hold.padded_end_at).where(
                Hold.provider_id == service.provider_id,
                Hold.expires_at > now,
                Hold.scheduled_at < day_window.end,
                Hold.padded_end_at > day_window.start,
            )
        )
        booking_rows = await session.execute(
            select(Booking.scheduled_at, Booking.padded_end_at).where(
                Booking.provider_id == service.provider_id,
                Booking.status != BookingStatus.CANCELLED,
                Booking.scheduled_at < day_window.end,
                Booking.padded_end_at > day_window.start,
            )
        )
        busy = [TimeWindow(s, e) for s, e in [*hold_rows.all(), *booking_rows.all()]]

        step = timedelta(minutes=settings.SLOT_PREVIEW_STEP_MINUTES)
        length = timedelta(hours=duration_hours)
        earliest = now + timedelta(minutes=self.lead_minutes)

        slots = []
        cursor = hours.start
        while cursor + length <= hours.end:
            candidate = padded_window(cursor, duration_hours, buffer_minutes)
            available = cursor > earliest and not any(candidate.overlaps(b) for b in busy)
            slots.append({"start": cursor, "end": cursor + length, "available": available})
            cursor += step

        return {
            "working_hours": {"start": hours.start, "end": hours.end},
            "slots": slots,
        }


availability_service = AvailabilityService()
