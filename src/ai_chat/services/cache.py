"""Observable, non-authoritative list of sessions for display."""

from threading import Lock
from typing import Callable, List, Optional

import structlog

from ..domain.models import ChatSession
from ..repositories.base import ChatRepository
from ..repositories.events import EventBus, Notification

logger = structlog.get_logger()

Observer = Callable[[List[ChatSession]], None]


class SessionCache:
    """Mirror of the session list, re-queried in full after every change.

    The cache subscribes to the repository's event bus, so every mutation
    triggers a refresh without the caller having to remember one.
    """

    def __init__(self, repository: ChatRepository, events: Optional[EventBus] = None) -> None:
        self._repository = repository
        self._sessions: List[ChatSession] = []
        self._observers: List[Observer] = []
        self._lock = Lock()
        self._unsubscribe: Optional[Callable[[], None]] = None
        if events is not None:
            self._unsubscribe = events.subscribe(self._on_notification)
        self.refresh()

    @property
    def sessions(self) -> List[ChatSession]:
        with self._lock:
            return list(self._sessions)

    def refresh(self) -> None:
        """Replace the held list with a fresh full query."""
        sessions = self._repository.fetch_all()
        with self._lock:
            self._sessions = sessions
            observers = list(self._observers)
        logger.debug("session_cache_refreshed", count=len(sessions))
        for observer in observers:
            observer(list(sessions))

    def observe(self, callback: Observer) -> Callable[[], None]:
        """Call ``callback`` with the new list after each refresh."""
        with self._lock:
            self._observers.append(callback)

        def remove() -> None:
            with self._lock:
                if callback in self._observers:
                    self._observers.remove(callback)

        return remove

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_notification(self, notification: Notification) -> None:
        self.refresh()
