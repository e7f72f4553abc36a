"""
Tests for conflict retry
"""

import sqlite3
import pytest

from sqlalchemy.exc import DBAPIError, OperationalError

from app.core.exceptions import ConcurrencyError, ValidationError
from app.core.retry import backoff_delay, is_serialization_conflict, retry_on_conflict


class _SerializationFailure(Exception):
    sqlstate = "40001"


def _serialization_error() -> DBAPIError:
    return DBAPIError("UPDATE bookings", {}, _SerializationFailure("could not serialize"))


class TestConflictDetection:

    def test_sqlstate_serialization_failure(self):
        assert is_serialization_conflict(_serialization_error())

    def test_sqlite_lock(self):
        error = OperationalError("INSERT", {}, sqlite3.OperationalError("database is locked"))
        assert is_serialization_conflict(error)

    def test_other_errors(self):
        assert not is_serialization_conflict(ValueError("database is locked"))
        assert not is_serialization_conflict(
            OperationalError("SELECT", {}, sqlite3.OperationalError("no such table: holds"))
        )


class TestBackoff:

    def test_delay_grows_and_is_capped(self):
        for attempt in range(6):
            ceiling = min(0.1 * (2 ** attempt), 1.0)
            delay = backoff_delay(attempt, 0.1, 1.0)
            assert ceiling / 2 <= delay <= ceiling


class TestRetryOnConflict:

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        calls = []

        @retry_on_conflict(attempts=3, base_delay=0.001, max_delay=0.002)
        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConcurrencyError()
            return "done"

        assert await flaky() == "done"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_serialization_failure_is_retried(self):
        calls = []

        @retry_on_conflict(attempts=2, base_delay=0.001, max_delay=0.002)
        async def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise _serialization_error()
            return len(calls)

        assert await flaky() == 2

    @pytest.mark.asyncio
    async def test_gives_up_with_concurrency_error(self):
        calls = []

        @retry_on_conflict(attempts=3, base_delay=0.001, max_delay=0.002)
        async def always_conflicts():
            calls.append(1)
            raise _serialization_error()

        with pytest.raises(ConcurrencyError):
            await always_conflicts()
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_other_errors_propagate_immediately(self):
        calls = []

        @retry_on_conflict
        async def invalid():
            calls.append(1)
            raise ValidationError("bad input")

        with pytest.raises(ValidationError):
            await invalid()
        assert len(calls) == 1
