"""API schemas exposed by the HTTP surface."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import ChatSession


class MessageRead(BaseModel):
    """Message as returned to clients."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    session_id: Optional[str] = None
    content: str
    role: str
    is_user_message: bool
    timestamp: datetime


class SessionSummary(BaseModel):
    """Session row for the session list."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    created_at: datetime
    last_modified_at: datetime
    is_archived: bool
    message_count: int = 0

    @classmethod
    def from_session(cls, session: ChatSession) -> "SessionSummary":
        summary = cls.model_validate(session)
        summary.message_count = len(session.messages)
        return summary


class SessionDetail(SessionSummary):
    """Session with its messages in timestamp order."""

    messages: List[MessageRead] = []

    @classmethod
    def from_session(cls, session: ChatSession) -> "SessionDetail":
        return cls(
            **SessionSummary.from_session(session).model_dump(),
            messages=[MessageRead.model_validate(m) for m in session.sorted_messages],
        )


class SessionUpdate(BaseModel):
    """Mutable session fields."""

    title: Optional[str] = None
    is_archived: Optional[bool] = None


class MessageCreate(BaseModel):
    """Defines the structure for message creation requests"""

    content: str = Field(min_length=1)

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("content must not be blank")
        return value


class PreferencesRead(BaseModel):
    has_api_key: bool


class PreferencesUpdate(BaseModel):
    api_key: str = ""
