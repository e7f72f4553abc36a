"""
Tests for interval overlap, working hours and conflict detection
"""

import pytest
from datetime import date, datetime, timedelta, timezone

from app.core.exceptions import OutOfHoursError, PastOrTooSoonError, SlotConflictError
from app.models.booking import BookingStatus
from app.models.user import UserRole
from app.services.availability_service import TimeWindow, padded_window, working_window
from tests.conftest import (
    WEEK_SCHEDULE,
    create_service,
    create_user,
    expire_hold,
    future_slot,
    insert_booking,
    booking_request,
)


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2030, 1, 7, hour, minute, tzinfo=timezone.utc)


class TestTimeWindow:

    def test_overlapping_windows_conflict(self):
        assert TimeWindow(_at(10), _at(12)).overlaps(TimeWindow(_at(11), _at(13)))
        assert TimeWindow(_at(11), _at(13)).overlaps(TimeWindow(_at(10), _at(12)))

    def test_touching_windows_do_not_conflict(self):
        assert not TimeWindow(_at(10), _at(12)).overlaps(TimeWindow(_at(12), _at(14)))
        assert not TimeWindow(_at(12), _at(14)).overlaps(TimeWindow(_at(10), _at(12)))

    def test_nested_window_conflicts(self):
        assert TimeWindow(_at(9), _at(17)).overlaps(TimeWindow(_at(10), _at(11)))

    def test_padded_window_adds_duration_and_buffer(self):
        window = padded_window(_at(10), 1.5, 15)
        assert window.start == _at(10)
        assert window.end == _at(11, 45)


class TestWorkingWindow:

    def test_returns_hours_for_working_day(self):
        hours = working_window(WEEK_SCHEDULE, date(2030, 1, 7))
        assert hours.start == _at(8)
        assert hours.end == _at(20)

    def test_day_off_returns_none(self):
        schedule = {"monday": {"is_available": False, "start_time": "08:00", "end_time": "20:00"}}
        assert working_window(schedule, date(2030, 1, 7)) is None
        assert working_window({}, date(2030, 1, 7)) is None

    def test_midnight_end_runs_to_next_day(self):
        schedule = {"monday": {"is_available": True, "start_time": "18:00", "end_time": "00:00"}}
        hours = working_window(schedule, date(2030, 1, 7))
        assert hours.end == datetime(2030, 1, 8, 0, 0, tzinfo=timezone.utc)


class TestScheduleChecks:

    def test_rejects_past_start(self, availability):
        now = datetime.now(timezone.utc)
        with pytest.raises(PastOrTooSoonError):
            availability.check_schedule(WEEK_SCHEDULE, now - timedelta(hours=1), 1, now)

    def test_rejects_start_inside_lead_time(self, availability):
        now = datetime.now(timezone.utc)
        with pytest.raises(PastOrTooSoonError):
            availability.check_schedule(WEEK_SCHEDULE, now + timedelta(minutes=20), 1, now)

    def test_rejects_outside_working_hours(self, availability):
        now = datetime.now(timezone.utc)
        with pytest.raises(OutOfHoursError):
            availability.check_schedule(WEEK_SCHEDULE, future_slot(hour=19), 2, now)
        with pytest.raises(OutOfHoursError):
            availability.check_schedule(WEEK_SCHEDULE, future_slot(hour=6), 1, now)

    def test_rejects_day_off(self, availability):
        now = datetime.now(timezone.utc)
        start = future_slot()
        schedule = dict(WEEK_SCHEDULE)
        schedule[start.strftime("%A").lower()] = {"is_available": False}
        with pytest.raises(OutOfHoursError):
            availability.check_schedule(schedule, start, 1, now)

    def test_accepts_slot_inside_hours(self, availability):
        now = datetime.now(timezone.utc)
        availability.check_schedule(WEEK_SCHEDULE, future_slot(hour=18), 2, now)


class TestConflictDetection:

    @pytest.mark.asyncio
    async def test_existing_booking_blocks_overlap(
        self, session_factory, availability, service, owner
    ):
        start = future_slot(hour=10)
        existing = await insert_booking(session_factory, service, owner, start, hours=2)

        async with session_factory() as session:
            with pytest.raises(SlotConflictError) as exc_info:
                await availability.ensure_available(session, service, start + timedelta(hours=1), 1)
        assert exc_info.value.details["conflicts"] == [str(existing.id)]

    @pytest.mark.asyncio
    async def test_buffer_blocks_back_to_back_start(
        self, session_factory, availability, service, owner
    ):
        start = future_slot(hour=10)
        await insert_booking(session_factory, service, owner, start, hours=2)

        async with session_factory() as session:
            # Existing booking occupies 10:00-12:15 with the 15 minute buffer
            with pytest.raises(SlotConflictError):
                await availability.ensure_available(session, service, future_slot(hour=12), 1)
            window = await availability.ensure_available(
                session, service, future_slot(hour=12, minute=15), 1
            )
        assert window.end == future_slot(hour=13, minute=30)

    @pytest.mark.asyncio
    async def test_new_booking_buffer_reaches_next_booking(
        self, session_factory, availability, service, owner
    ):
        await insert_booking(session_factory, service, owner, future_slot(hour=14), hours=1)

        async with session_factory() as session:
            # 12:00-14:00 plus 15 minute buffer runs into the 14:00 booking
            with pytest.raises(SlotConflictError):
                await availability.ensure_available(session, service, future_slot(hour=12), 2)
            await availability.ensure_available(session, service, future_slot(hour=11, minute=45), 2)

    @pytest.mark.asyncio
    async def test_cancelled_booking_does_not_block(
        self, session_factory, availability, service, owner
    ):
        start = future_slot(hour=10)
        await insert_booking(session_factory, service, owner, start, status=BookingStatus.CANCELLED)

        async with session_factory() as session:
            window = await availability.ensure_available(session, service, start, 2)
        assert window.start == start

    @pytest.mark.asyncio
    async def test_live_hold_blocks_and_expired_hold_does_not(
        self, session_factory, availability, reservations, service, owner
    ):
        start = future_slot(hour=10)
        result = await reservations.create_hold(owner, booking_request(service, start))

        async with session_factory() as session:
            with pytest.raises(SlotConflictError):
                await availability.ensure_available(session, service, start, 1)

        await expire_hold(session_factory, result.booking_id)
        async with session_factory() as session:
            await availability.ensure_available(session, service, start, 1)

    @pytest.mark.asyncio
    async def test_other_provider_is_independent(
        self, session_factory, availability, service, owner
    ):
        other_provider = await create_user(session_factory, UserRole.PROVIDER, payouts=True)
        other_service = await create_service(session_factory, other_provider)
        start = future_slot(hour=10)
        await insert_booking(session_factory, service, owner, start)

        async with session_factory() as session:
            await availability.ensure_available(session, other_service, start, 2)


class TestSlotPreview:

    @pytest.mark.asyncio
    async def test_marks_booked_slots_unavailable(
        self, session_factory, availability, service, owner
    ):
        start = future_slot(hour=10)
        await insert_booking(session_factory, service, owner, start, hours=1)

        async with session_factory() as session:
            preview = await availability.get_available_slots(session, service, start.date(), 1)

        slots = {slot["start"]: slot["available"] for slot in preview["slots"]}
        assert preview["working_hours"]["start"] == future_slot(hour=8)
        assert slots[future_slot(hour=8)] is True
        assert slots[future_slot(hour=10)] is False
        # 09:00-10:00 plus buffer overlaps the 10:00 booking
        assert slots[future_slot(hour=9)] is False
        assert slots[future_slot(hour=8, minute=45)] is True
        assert slots[future_slot(hour=11, minute=15)] is True
        # Last slot must finish by closing time
        assert max(slots) == future_slot(hour=19)

    @pytest.mark.asyncio
    async def test_day_off_has_no_slots(self, session_factory, availability, provider):
        start = future_slot()
        schedule = dict(WEEK_SCHEDULE)
        schedule[start.strftime("%A").lower()] = {"is_available": False}
        closed = await create_service(session_factory, provider, work_schedule=schedule)

        async with session_factory() as session:
            preview = await availability.get_available_slots(session, closed, start.date(), 1)
        assert preview == {"working_hours": None, "slots": []}
