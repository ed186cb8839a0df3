"""Persistent domain models for chat sessions and messages."""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form SQLite hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id() -> str:
    return str(uuid4())


class Base(DeclarativeBase):
    """Declarative base for the chat schema."""


class ChatSession(Base):
    """A titled conversation that owns its messages."""

    __tablename__ = "chat_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    last_modified_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)

    messages: Mapped[List["Message"]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by=lambda: [Message.timestamp, Message.id],
    )

    def __init__(
        self,
        title: str,
        created_at: Optional[datetime] = None,
        last_modified_at: Optional[datetime] = None,
        is_archived: bool = False,
        id: Optional[str] = None,
    ) -> None:
        now = utcnow()
        created = created_at or now
        super().__init__(
            id=id or _new_id(),
            title=title,
            created_at=created,
            last_modified_at=max(last_modified_at or created, created),
            is_archived=is_archived,
        )

    def touch(self) -> None:
        """Bump the modification time, never below the creation time."""
        self.last_modified_at = max(utcnow(), self.created_at)

    @property
    def is_empty(self) -> bool:
        """True while the session owns no messages."""
        return not self.messages

    @property
    def sorted_messages(self) -> List["Message"]:
        """Messages in timestamp order; ties keep the collection order."""
        return sorted(self.messages, key=lambda m: m.timestamp)

    def __repr__(self) -> str:
        return f"ChatSession(id={self.id!r}, title={self.title!r})"


class Message(Base):
    """A single user or assistant turn inside a session."""

    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    content: Mapped[str] = mapped_column(Text, default="")
    is_user_message: Mapped[bool] = mapped_column(Boolean)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    session_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("chat_sessions.id", ondelete="CASCADE"), index=True
    )

    session: Mapped[Optional[ChatSession]] = relationship(back_populates="messages")

    def __init__(
        self,
        content: str,
        is_user_message: bool,
        timestamp: Optional[datetime] = None,
        id: Optional[str] = None,
    ) -> None:
        super().__init__(
            id=id or _new_id(),
            content=content,
            is_user_message=is_user_message,
            timestamp=timestamp or utcnow(),
        )

    @property
    def role(self) -> str:
        return "user" if self.is_user_message else "assistant"

    def __repr__(self) -> str:
        return f"Message(id={self.id!r}, role={self.role!r})"
