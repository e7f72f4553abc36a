"""
API endpoints module
"""

from . import bookings, services, payments, transactions, health

__all__ = [
    "bookings",
    "services",
    "payments",
    "transactions",
    "health"
]
