"""
Notification delivery

Notifications are side effects of booking transitions. They are sent after
the transition has committed and a failure here never undoes or fails it.
"""

from typing import Optional
import logging
import uuid

from pydantic import TypeAdapter
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.database import async_session
from app.core.redis import redis_manager
from app.models.notification import Notification, NotificationType
from app.schemas.notification import NotificationData

logger = logging.getLogger(__name__)

_payload_adapter = TypeAdapter(NotificationData)


class NotificationService:
    """Persists in-app notifications and fans them out over Redis pub/sub"""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None, publisher=None):
        self.session_factory = session_factory or async_session
        self.publisher = publisher or redis_manager

    async def notify(
        self,
        recipient_id: uuid.UUID,
        type: NotificationType,
        title: str,
        message: str,
        data: Optional[NotificationData] = None,
        sender_id: Optional[uuid.UUID] = None,
    ) -> Optional[uuid.UUID]:
        payload = _payload_adapter.dump_python(data, mode="json") if data is not None else None
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    notification = Notification(
                        recipient_id=recipient_id,
                        sender_id=sender_id,
                        type=type,
                        title=title,
                        message=message,
                        data=payload,
                    )
                    session.add(notification)
                notification_id = notification.id
        except Exception as e:
            logger.error(
                f"Failed to store {type.value} notification: {e}",
                extra={"recipient_id": str(recipient_id)},
            )
            return None

        try:
            await self.publisher.publish(
                f"notifications:{recipient_id}",
                {
                    "id": str(notification_id),
                    "type": type.value,
                    "title": title,
                    "message": message,
                    "data": payload,
                },
            )
        except Exception as e:
            logger.warning(f"Notification {notification_id} stored but not published: {e}")

        return notification_id
