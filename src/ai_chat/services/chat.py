"""Chat service: user actions on sessions and the send-message flow."""

from typing import Optional

import structlog

from ..config import Preferences, Settings
from ..domain.models import ChatSession, Message, utcnow
from ..repositories.base import ChatRepository
from ..repositories.sql import DEFAULT_SESSION_TITLE
from .completion import ChatCompletionClient, CompletionError

logger = structlog.get_logger()

MISSING_API_KEY_MESSAGE = "Please set your OpenAI API key in the settings."
EMPTY_RESPONSE_MESSAGE = "Received an empty response from the AI."
TITLE_LENGTH = 20


def title_from_message(content: str) -> str:
    """Derive a session title from the first user message."""
    truncated = content[:TITLE_LENGTH]
    if not truncated:
        return "Chat"
    return truncated + ("..." if len(truncated) >= TITLE_LENGTH else "")


class ChatService:
    """Coordinates the repository and the completion client.

    ``send_message`` is a coroutine: the completion call is awaited and
    everything after it resumes on the event-loop thread, which is the
    only thread that touches the repository.
    """

    def __init__(
        self,
        repository: ChatRepository,
        client: ChatCompletionClient,
        settings: Settings,
        preferences: Preferences,
    ) -> None:
        self.repository = repository
        self.client = client
        self.settings = settings
        self.preferences = preferences

    def ensure_session(self) -> ChatSession:
        """Most recent session, creating the first one on an empty store."""
        sessions = self.repository.fetch_all()
        if sessions:
            return sessions[0]
        return self.repository.create_session(DEFAULT_SESSION_TITLE)

    def new_chat(self) -> ChatSession:
        """Reuse an empty session instead of creating a duplicate."""
        empty = self.repository.find_empty_session()
        if empty is not None:
            logger.info("empty_session_reused", session_id=empty.id)
            return empty
        return self.repository.create_session(f"Chat {utcnow():%b %d, %H:%M}")

    def rename_session(self, session: ChatSession, title: str) -> None:
        title = title.strip()
        if not title:
            return
        session.title = title
        self.repository.update_session(session)

    def set_archived(self, session: ChatSession, archived: bool) -> None:
        session.is_archived = archived
        self.repository.update_session(session)

    def toggle_archive(self, session: ChatSession) -> None:
        self.set_archived(session, not session.is_archived)

    def delete_session(self, session: ChatSession) -> None:
        self.repository.delete_session(session)

    def _reply(self, session: ChatSession, content: str) -> Message:
        message = self.repository.add_message(content, False, session)
        self.repository.update_session(session)
        return message

    async def send_message(self, session: ChatSession, text: str) -> Optional[Message]:
        """Store the user's text and the assistant's answer.

        Returns the assistant message, or None when ``text`` is blank.
        Completion failures become an assistant message describing the error.
        """
        content = text.strip()
        if not content:
            return None

        self.repository.add_message(content, True, session)
        self.repository.update_session(session)

        user_messages = [m for m in session.messages if m.is_user_message]
        if len(user_messages) == 1:
            self.rename_session(session, title_from_message(content))

        api_key = self.preferences.api_key
        if not api_key:
            logger.info("api_key_missing", session_id=session.id)
            return self._reply(session, MISSING_API_KEY_MESSAGE)

        request = self.client.create_request(
            content,
            model=self.settings.model,
            system_prompt=self.settings.system_prompt,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
        )
        try:
            response = await self.client.send(api_key, request)
        except CompletionError as e:
            logger.error("completion_failed", session_id=session.id, error=str(e))
            return self._reply(session, f"Error: {e}")

        answer = response.content
        if answer is None:
            logger.warning("completion_without_choices", session_id=session.id)
            return self._reply(session, EMPTY_RESPONSE_MESSAGE)

        logger.info(
            "message_processed",
            session_id=session.id,
            user_message_length=len(content),
            ai_response_length=len(answer),
        )
        return self._reply(session, answer)
