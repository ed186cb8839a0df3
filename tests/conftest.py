"""Shared fixtures for the test suite."""

import json
from datetime import datetime, timedelta
from typing import Callable, List, Optional

import httpx
import pytest

from ai_chat.domain import models
from ai_chat.repositories import sql
from ai_chat.repositories.events import EventBus
from ai_chat.repositories.sql import SQLChatRepository
from ai_chat.storage.store import Store


class FakeClock:
    """Monotonic clock advancing one second per reading."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def clock(monkeypatch) -> FakeClock:
    fake = FakeClock(datetime(2025, 7, 1, 12, 0, 0))
    monkeypatch.setattr(models, "utcnow", fake)
    monkeypatch.setattr(sql, "utcnow", fake)
    return fake


@pytest.fixture
def store():
    store = Store.open(in_memory=True)
    yield store
    store.close()


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def repository(store, events) -> SQLChatRepository:
    return SQLChatRepository(store, events)


@pytest.fixture(autouse=True)
def no_env_api_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)


def completion_body(content: Optional[str] = "Hello there", model: str = "gpt-4o-mini") -> dict:
    choices = []
    if content is not None:
        choices.append(
            {
                "message": {"role": "assistant", "content": content},
                "index": 0,
                "finish_reason": "stop",
            }
        )
    return {
        "id": "chatcmpl-123",
        "object": "chat.completion",
        "created": 1720000000,
        "model": model,
        "choices": choices,
    }


class RecordingHandler:
    """MockTransport handler that records requests and replays a response."""

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response]) -> None:
        self.respond = respond
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)

    @property
    def bodies(self) -> List[dict]:
        return [json.loads(r.content) for r in self.requests]


@pytest.fixture
def reply_with():
    """Build a recording handler answering with a fixed status and JSON body."""

    def build(status_code: int = 200, body=None) -> RecordingHandler:
        if body is None:
            body = completion_body()
        return RecordingHandler(lambda request: httpx.Response(status_code, json=body))

    return build
