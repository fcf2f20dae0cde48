"""
Notification dispatch interface.
Transport (push, SMS, email) lives outside this service.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from rentals.core.logging import get_logger

logger = get_logger(__name__)


class NotificationDispatcher(ABC):

    @abstractmethod
    async def notify(
        self,
        user_id: int,
        title: str,
        body: str,
        data: Optional[dict[str, Any]] = None,
    ):
        """Deliver one notification. Raise on failure so the outbox retries it."""
        pass


class LogNotificationDispatcher(NotificationDispatcher):
    """Writes notifications to the structured log instead of a device."""

    async def notify(self, user_id, title, body, data=None):
        logger.info(
            "notification_dispatched",
            user_id=user_id,
            title=title,
            body=body,
            data=data or {},
        )
