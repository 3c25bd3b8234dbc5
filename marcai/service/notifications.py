from __future__ import annotations

import threading
import uuid
from collections import deque
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Deque, List, Optional

from marcai.logging import get_logger

logger = get_logger(__name__)


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    LOADING = "loading"


@dataclass(frozen=True)
class Notification:
    """A message for the presentation layer.

    ``duration_ms`` of None means the notification stays until replaced.
    """

    id: str
    level: NotificationLevel
    message: str
    duration_ms: Optional[int]
    dismissible: bool = True
    tag: Optional[str] = None


Subscriber = Callable[[Notification], None]


class NotificationChannel:
    """Publishes notifications to subscribed presentation callbacks."""

    def __init__(
        self,
        *,
        default_duration_ms: int = 4000,
        error_duration_ms: int = 5000,
        history_size: int = 50,
    ) -> None:
        self.default_duration_ms = default_duration_ms
        self.error_duration_ms = error_duration_ms
        self._subscribers: List[Subscriber] = []
        self._history: Deque[Notification] = deque(maxlen=history_size)
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    @property
    def history(self) -> List[Notification]:
        with self._lock:
            return list(self._history)

    def publish(self, notification: Notification) -> Notification:
        with self._lock:
            self._history.append(notification)
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(notification)
            except Exception as exc:
                logger.warning(
                    "notification_subscriber_failed",
                    notification_id=notification.id,
                    error=str(exc),
                )
        return notification

    def notify(
        self,
        level: NotificationLevel,
        message: str,
        *,
        duration_ms: Optional[int] = None,
        dismissible: bool = True,
        tag: Optional[str] = None,
        notification_id: Optional[str] = None,
    ) -> Notification:
        if duration_ms is None and level != NotificationLevel.LOADING:
            duration_ms = (
                self.error_duration_ms if level == NotificationLevel.ERROR else self.default_duration_ms
            )
        return self.publish(
            Notification(
                id=notification_id or uuid.uuid4().hex,
                level=level,
                message=message,
                duration_ms=duration_ms,
                dismissible=dismissible,
                tag=tag,
            )
        )

    def success(self, message: str, **kwargs) -> Notification:
        return self.notify(NotificationLevel.SUCCESS, message, **kwargs)

    def error(self, message: str, **kwargs) -> Notification:
        return self.notify(NotificationLevel.ERROR, message, **kwargs)

    def warning(self, message: str, **kwargs) -> Notification:
        return self.notify(NotificationLevel.WARNING, message, **kwargs)

    def info(self, message: str, **kwargs) -> Notification:
        return self.notify(NotificationLevel.INFO, message, **kwargs)

    def loading(self, message: str = "Carregando...") -> str:
        """Publish a sticky loading notification and return its id."""
        return self.notify(NotificationLevel.LOADING, message, dismissible=False).id

    def update(self, notification_id: str, level: NotificationLevel, message: str) -> Notification:
        """Replace a loading notification with its final outcome."""
        with self._lock:
            previous = next((n for n in reversed(self._history) if n.id == notification_id), None)
        duration = self.error_duration_ms if level == NotificationLevel.ERROR else self.default_duration_ms
        if previous is None:
            return self.notify(level, message, duration_ms=duration, notification_id=notification_id)
        return self.publish(
            replace(previous, level=level, message=message, duration_ms=duration, dismissible=True)
        )
