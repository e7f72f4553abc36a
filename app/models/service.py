"""
Service catalog model
"""

from sqlalchemy import Column, String, Text, Integer, Float, Boolean, Numeric, ForeignKey, Uuid
from sqlalchemy.orm import relationship

from app.models.base import BaseModel
from app.models.types import JSONType


class Service(BaseModel):
    """
    A bookable offering of one provider.

    ``work_schedule`` maps lowercase weekday names to
    ``{"is_available": bool, "start_time": "HH:MM", "end_time": "HH:MM"}``
    in UTC.
    """
    __tablename__ = "services"

    provider_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text)
    rate_by_hour = Column(Numeric(10, 2), nullable=False)
    buffer_minutes = Column(Integer, default=0, nullable=False)
    instant_booking = Column(Boolean, default=False, nullable=False)
    work_schedule = Column(JSONType, default=dict, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    ratings_average = Column(Float, default=0.0, nullable=False)
    ratings_count = Column(Integer, default=0, nullable=False)
    total_orders = Column(Integer, default=0, nullable=False)

    provider = relationship("User", lazy="joined")

    def __repr__(self):
        return f"<Service(id={self.id}, name={self.name}, provider_id={self.provider_id})>"
