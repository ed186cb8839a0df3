"""Wire models for the chat-completion endpoint."""

from typing import List, Optional

from pydantic import BaseModel


class ChatMessagePayload(BaseModel):
    """A single role/content entry in a completion request or choice."""

    role: str
    content: str


class ChatRequest(BaseModel):
    """Request body for a chat completion."""

    model: str
    messages: List[ChatMessagePayload]
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)


class ChatChoice(BaseModel):
    """One completion alternative returned by the provider."""

    message: ChatMessagePayload
    index: int
    finish_reason: Optional[str] = None


class ChatResponse(BaseModel):
    """Successful completion response."""

    id: str
    object: str
    created: int
    model: str
    choices: List[ChatChoice]

    @property
    def first_message(self) -> Optional[ChatMessagePayload]:
        return self.choices[0].message if self.choices else None

    @property
    def content(self) -> Optional[str]:
        """Text of the first choice, or None when the provider sent no choices."""
        message = self.first_message
        return message.content if message is not None else None
