"""
Database models
"""

from app.models.user import User, UserRole
from app.models.service import Service
from app.models.hold import Hold
from app.models.booking import Booking, BookingStatus, PaymentStatus
from app.models.transaction import Transaction, TransactionType, TransactionStatus, PaymentMethod
from app.models.notification import Notification, NotificationType

__all__ = [
    "User",
    "UserRole",
    "Service",
    "Hold",
    "Booking",
    "BookingStatus",
    "PaymentStatus",
    "Transaction",
    "TransactionType",
    "TransactionStatus",
    "PaymentMethod",
    "Notification",
    "NotificationType",
]
