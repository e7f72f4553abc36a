"""
Prometheus metrics for the reservation and settlement flows
"""

import time
import logging
from contextlib import asynccontextmanager

from prometheus_client import Counter, Histogram, REGISTRY

logger = logging.getLogger(__name__)


def _counter(name: str, documentation: str, labels: list) -> Counter:
    # Re-imports under test reuse the already registered collector
    try:
        return Counter(name, documentation, labels)
    except ValueError:
        return REGISTRY._names_to_collectors[name]


def _histogram(name: str, documentation: str, labels: list) -> Histogram:
    try:
        return Histogram(name, documentation, labels)
    except ValueError:
        return REGISTRY._names_to_collectors[name]


BOOKING_OPERATIONS = _counter(
    "booking_operations_total",
    "Booking core operations by outcome",
    ["operation", "outcome"],
)
BOOKING_OPERATION_DURATION = _histogram(
    "booking_operation_duration_seconds",
    "Booking core operation latency",
    ["operation"],
)
SLOT_CONFLICTS = _counter(
    "booking_slot_conflicts_total",
    "Hold attempts rejected because the slot was taken",
    ["source"],
)
SETTLEMENTS = _counter(
    "booking_settlements_total",
    "Settlement attempts by channel and result",
    ["channel", "result"],
)
EXPIRED_HOLDS = _counter(
    "booking_expired_holds_purged_total",
    "Holds removed by the expiry sweeper",
    [],
)


class MetricsCollector:
    """Records outcome and latency of booking core operations"""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def track_operation(self, operation: str, slow_threshold: float = 5.0):
        start_time = time.time()
        try:
            yield
        except Exception as e:
            BOOKING_OPERATIONS.labels(operation=operation, outcome=type(e).__name__).inc()
            raise
        else:
            BOOKING_OPERATIONS.labels(operation=operation, outcome="success").inc()
        finally:
            duration = time.time() - start_time
            BOOKING_OPERATION_DURATION.labels(operation=operation).observe(duration)
            if duration > slow_threshold:
                self.logger.warning(f"Slow {operation} operation: {duration:.2f}s")

    def record_slot_conflict(self, source: str):
        SLOT_CONFLICTS.labels(source=source).inc()

    def record_settlement(self, channel: str, result: str):
        SETTLEMENTS.labels(channel=channel, result=result).inc()

    def record_expired_holds(self, count: int):
        if count:
            EXPIRED_HOLDS.inc(count)


metrics_collector = MetricsCollector()
