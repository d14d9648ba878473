"""
Transient user-facing notifications.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Notification(BaseModel):
    """A message shown to the user, with optional inline field messages."""
    level: NotificationLevel
    message: str
    field_errors: Dict[str, str] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Notifier:
    """Collects notifications and forwards them to subscribers."""

    def __init__(self):
        self.history: List[Notification] = []
        self._subscribers: List[Callable[[Notification], None]] = []

    def subscribe(self, callback: Callable[[Notification], None]) -> None:
        self._subscribers.append(callback)

    def notify(
        self,
        level: NotificationLevel,
        message: str,
        field_errors: Optional[Dict[str, str]] = None
    ) -> Notification:
        notification = Notification(level=level, message=message, field_errors=field_errors or {})
        self.history.append(notification)
        logger.debug("Notification", level=level.value, message=message)
        for callback in self._subscribers:
            callback(notification)
        return notification

    def success(self, message: str) -> Notification:
        return self.notify(NotificationLevel.SUCCESS, message)

    def info(self, message: str) -> Notification:
        return self.notify(NotificationLevel.INFO, message)

    def warning(self, message: str) -> Notification:
        return self.notify(NotificationLevel.WARNING, message)

    def error(self, message: str, field_errors: Optional[Dict[str, str]] = None) -> Notification:
        return self.notify(NotificationLevel.ERROR, message, field_errors)

    @property
    def latest(self) -> Optional[Notification]:
        return self.history[-1] if self.history else None

    def clear(self) -> None:
        self.history.clear()
