"""Base repository interface."""

from abc import ABC, abstractmethod
from typing import Any, List, Optional

from ..domain.models import ChatSession, Message


class ChatRepository(ABC):
    """Abstract base class for chat repositories."""

    @abstractmethod
    def create_session(self, title: str) -> ChatSession:
        """Create and persist a new, empty session."""
        pass

    @abstractmethod
    def delete_session(self, session: ChatSession) -> None:
        """Delete a session together with its messages."""
        pass

    @abstractmethod
    def update_session(self, session: ChatSession) -> None:
        """Bump the modification time and persist the session's fields."""
        pass

    @abstractmethod
    def add_message(self, content: str, is_user_message: bool, session: ChatSession) -> Message:
        """Append a message to a session."""
        pass

    @abstractmethod
    def fetch_all(self, order_by: Any = None) -> List[ChatSession]:
        """List sessions, most recently modified first unless overridden."""
        pass

    @abstractmethod
    def find_by_id(self, session_id: str) -> Optional[ChatSession]:
        """Retrieve a session by ID."""
        pass

    @abstractmethod
    def find_empty_session(self) -> Optional[ChatSession]:
        """Return the most recent session without messages, if any."""
        pass

    @abstractmethod
    def reset_database(self) -> ChatSession:
        """Wipe storage and return the freshly created default session."""
        pass
