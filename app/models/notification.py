"""
Notification model
"""

from sqlalchemy import Column, String, ForeignKey, Enum, Text, Boolean, Uuid
import enum

from app.models.base import BaseModel
from app.models.types import JSONType, UTCDateTime


class NotificationType(str, enum.Enum):
    BOOKING_CREATED = "booking_created"
    BOOKING_ACCEPTED = "booking_accepted"
    BOOKING_COMPLETED = "booking_completed"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_REFUNDED = "booking_refunded"
    BOOKING_RATED = "booking_rated"
    SYSTEM_ANNOUNCEMENT = "system_announcement"


class Notification(BaseModel):
    """
    In-app notification for a marketplace participant
    """
    __tablename__ = "notifications"

    recipient_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    sender_id = Column(Uuid, ForeignKey("users.id"))
    type = Column(
        Enum(NotificationType),
        nullable=False,
        index=True
    )
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSONType)
    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(UTCDateTime)

    def __repr__(self):
        return f"<Notification(id={self.id}, recipient_id={self.recipient_id}, type={self.type})>"
