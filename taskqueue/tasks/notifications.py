from typing import Protocol

from taskqueue.config.logging import get_logger

logger = get_logger(__name__)


class NotificationSender(Protocol):
    """Delivers one notification about a task.

    Returns True on success. Returning False or raising both count as a
    failed delivery for that task.
    """

    async def notify(self, task_id: str) -> bool: ...


class LoggingNotificationSender:
    """Default sender: records the notification in the structured log."""

    async def notify(self, task_id: str) -> bool:
        logger.info("Sending notification for task", task_id=task_id)
        return True
