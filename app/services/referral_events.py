"""
Referral reward triggers

The referral ledger lives in another service. A completed or rated booking
only asks it to re-check the participant's reward milestones.
"""

from datetime import datetime, timezone
import logging
import uuid

from app.core.redis import redis_manager

logger = logging.getLogger(__name__)

REFERRAL_CHANNEL = "referrals"


class ReferralEvents:

    def __init__(self, publisher=None):
        self.publisher = publisher or redis_manager

    async def booking_completed(self, user_id: uuid.UUID, booking_id: uuid.UUID, role: str) -> bool:
        try:
            await self.publisher.publish(
                REFERRAL_CHANNEL,
                {
                    "event": "booking_completed",
                    "user_id": str(user_id),
                    "booking_id": str(booking_id),
                    "role": role,
                    "occurred_at": datetime.now(timezone.utc).isoformat(),
                },
            )
            return True
        except Exception as e:
            logger.warning(f"Referral check for user {user_id} not published: {e}")
            return False
