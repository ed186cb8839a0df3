"""Change notifications published by the repository."""

from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Callable, List, Optional

import structlog

from ..storage.store import StoreError

logger = structlog.get_logger()


class RepositoryEvent(str, Enum):
    """Kinds of repository changes."""

    SESSION_CREATED = "session_created"
    SESSION_UPDATED = "session_updated"
    SESSION_DELETED = "session_deleted"
    MESSAGE_ADDED = "message_added"
    DATABASE_RESET = "database_reset"
    COMMIT_FAILED = "commit_failed"


@dataclass(frozen=True)
class Notification:
    """A single change published after a repository mutation."""

    event: RepositoryEvent
    session_id: Optional[str] = None
    error: Optional[StoreError] = None


Subscriber = Callable[[Notification], None]


class EventBus:
    """Synchronous observer list."""

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []
        self._lock = Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a subscriber and return a function that removes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, notification: Notification) -> None:
        """Deliver a notification to every subscriber in registration order."""
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(notification)
            except Exception as e:
                logger.exception(
                    "subscriber_failed",
                    event=notification.event.value,
                    error=str(e),
                )
