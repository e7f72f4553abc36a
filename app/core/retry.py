"""
Bounded retry for storage serialization conflicts
"""

import asyncio
import functools
import logging
import random
from typing import Callable, Optional, Tuple, Type

from sqlalchemy.exc import DBAPIError

from app.config import settings
from app.core.exceptions import ConcurrencyError

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected
SERIALIZATION_SQLSTATES = {"40001", "40P01"}


def _sqlstate(exc: BaseException) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    for candidate in (orig, getattr(orig, "__cause__", None)):
        if candidate is None:
            continue
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code:
            return str(code)
    return None


def is_serialization_conflict(exc: BaseException) -> bool:
    """True when the database aborted the transaction because of a concurrent writer."""
    if not isinstance(exc, DBAPIError):
        return False
    if _sqlstate(exc) in SERIALIZATION_SQLSTATES:
        return True
    message = str(getattr(exc, "orig", exc)).lower()
    return "database is locked" in message or "could not serialize access" in message


def backoff_delay(attempt: int, base: float, maximum: float) -> float:
    """Exponential backoff with full jitter for the given zero-based attempt."""
    ceiling = min(base * (2 ** attempt), maximum)
    return random.uniform(ceiling / 2, ceiling)


def retry_on_conflict(
    _func: Optional[Callable] = None,
    *,
    attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
    retry_on: Tuple[Type[BaseException], ...] = (ConcurrencyError,),
):
    """
    Re-run an async unit of work when it loses a race.

    The wrapped coroutine must open and commit its own transaction so each
    attempt starts from a fresh snapshot. Serialization failures and the
    exception types in ``retry_on`` are retried; after the last attempt a
    ``ConcurrencyError`` is raised. Anything else propagates immediately.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            max_attempts = attempts or settings.CONFLICT_RETRY_ATTEMPTS
            base = base_delay if base_delay is not None else settings.CONFLICT_RETRY_BASE_DELAY
            ceiling = max_delay if max_delay is not None else settings.CONFLICT_RETRY_MAX_DELAY

            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if not (isinstance(e, retry_on) or is_serialization_conflict(e)):
                        raise
                    if attempt + 1 >= max_attempts:
                        logger.warning(
                            f"{func.__qualname__} gave up after {max_attempts} attempts: {e}"
                        )
                        if isinstance(e, ConcurrencyError):
                            raise
                        raise ConcurrencyError(
                            f"Conflicting concurrent update in {func.__name__}"
                        ) from e
                    delay = backoff_delay(attempt, base, ceiling)
                    logger.debug(
                        f"{func.__qualname__} conflict on attempt {attempt + 1}, retrying in {delay:.3f}s"
                    )
                    await asyncio.sleep(delay)

        return wrapper

    if _func is not None:
        return decorator(_func)
    return decorator
