"""SQLAlchemy-backed repository implementation."""

from typing import Any, List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from ..domain.models import ChatSession, Message, utcnow
from ..storage.store import Store, StoreError
from .base import ChatRepository
from .events import EventBus, Notification, RepositoryEvent

logger = structlog.get_logger()

DEFAULT_SESSION_TITLE = "New Chat"


class SQLChatRepository(ChatRepository):
    """Sole mutation path for persisted sessions and messages.

    Every operation runs synchronously on the calling thread. A failed
    commit is not raised to the caller: it is logged, kept on
    ``last_error`` and published as ``COMMIT_FAILED`` so subscribers can
    surface it.
    """

    def __init__(self, store: Store, events: Optional[EventBus] = None) -> None:
        self.store = store
        self.events = events or EventBus()
        self.last_error: Optional[StoreError] = None

    def _commit(self, operation: str, session_id: Optional[str]) -> bool:
        try:
            self.store.commit()
        except StoreError as e:
            self.last_error = e
            logger.warning(
                "repository_commit_failed",
                operation=operation,
                session_id=session_id,
                error=str(e),
            )
            self.events.publish(
                Notification(RepositoryEvent.COMMIT_FAILED, session_id=session_id, error=e)
            )
            return False
        return True

    def _publish(self, event: RepositoryEvent, session_id: Optional[str] = None) -> None:
        self.events.publish(Notification(event, session_id=session_id))

    def create_session(self, title: str) -> ChatSession:
        now = utcnow()
        session = ChatSession(title=title, created_at=now, last_modified_at=now)
        self.store.insert(session)
        if self._commit("create_session", session.id):
            logger.info("session_created", session_id=session.id)
        self._publish(RepositoryEvent.SESSION_CREATED, session.id)
        return session

    def delete_session(self, session: ChatSession) -> None:
        session_id = session.id
        self.store.delete(session)
        if self._commit("delete_session", session_id):
            logger.info("session_deleted", session_id=session_id)
        self._publish(RepositoryEvent.SESSION_DELETED, session_id)

    def update_session(self, session: ChatSession) -> None:
        session.touch()
        self._commit("update_session", session.id)
        self._publish(RepositoryEvent.SESSION_UPDATED, session.id)

    def add_message(self, content: str, is_user_message: bool, session: ChatSession) -> Message:
        # Session recency is left to update_session
        message = Message(
            content=content,
            is_user_message=is_user_message,
            timestamp=max(utcnow(), session.created_at),
        )
        session.messages.append(message)
        if self._commit("add_message", session.id):
            logger.info(
                "message_added",
                session_id=session.id,
                message_role=message.role,
            )
        self._publish(RepositoryEvent.MESSAGE_ADDED, session.id)
        return message

    def fetch_all(self, order_by: Any = None) -> List[ChatSession]:
        if order_by is None:
            order_by = ChatSession.last_modified_at.desc()
        try:
            return self.store.query(
                ChatSession,
                order_by=order_by,
                options=[selectinload(ChatSession.messages)],
            )
        except SQLAlchemyError as e:
            logger.error("fetch_sessions_failed", error=str(e))
            return []

    def find_by_id(self, session_id: str) -> Optional[ChatSession]:
        try:
            results = self.store.query(ChatSession, ChatSession.id == session_id, limit=1)
        except SQLAlchemyError as e:
            logger.error("find_session_failed", session_id=session_id, error=str(e))
            return None
        if not results:
            logger.warning("session_not_found", session_id=session_id)
            return None
        return results[0]

    def find_empty_session(self) -> Optional[ChatSession]:
        try:
            results = self.store.query(
                ChatSession,
                ~ChatSession.messages.any(),
                order_by=ChatSession.last_modified_at.desc(),
                limit=1,
            )
        except SQLAlchemyError as e:
            logger.error("find_empty_session_failed", error=str(e))
            return None
        return results[0] if results else None

    def reset_database(self) -> ChatSession:
        self.store.reset()
        self.last_error = None
        logger.info("database_reset")
        self._publish(RepositoryEvent.DATABASE_RESET)
        return self.create_session(DEFAULT_SESSION_TITLE)
