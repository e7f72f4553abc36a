"""
User model
"""

from sqlalchemy import Column, String, Boolean, Enum
import enum

from app.models.base import BaseModel


class UserRole(str, enum.Enum):
    OWNER = "owner"
    PROVIDER = "provider"
    ADMIN = "admin"


class User(BaseModel):
    """
    Marketplace participant. Owners book services, providers deliver them
    and receive payouts through a Stripe connected account.
    """
    __tablename__ = "users"

    email = Column(String(255), unique=True, nullable=False, index=True)
    user_name = Column(String(100), nullable=False)
    role = Column(Enum(UserRole), default=UserRole.OWNER, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    stripe_customer_id = Column(String(255))
    stripe_account_id = Column(String(255))
    stripe_onboarding_complete = Column(Boolean, default=False, nullable=False)
    stripe_account_status = Column(String(50), default="pending", nullable=False)

    @property
    def can_receive_payouts(self) -> bool:
        return bool(
            self.stripe_account_id
            and self.stripe_onboarding_complete
            and self.stripe_account_status == "active"
        )

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
