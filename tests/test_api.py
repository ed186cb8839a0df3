"""Test suite for the API endpoints."""

import threading

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from conftest import completion_body
from ai_chat.api.app import create_app
from ai_chat.config import Preferences, Settings
from ai_chat.services.completion import ChatCompletionClient
from ai_chat.storage.store import Store


@pytest.fixture
def handler(reply_with):
    return reply_with(body=completion_body("Hello from the assistant"))


@pytest_asyncio.fixture
async def app(handler):
    preferences = Preferences()
    preferences.set_api_key("sk-test")
    app = create_app(
        settings=Settings(in_memory=True),
        store=Store.open(in_memory=True),
        client=ChatCompletionClient(transport=httpx.MockTransport(handler)),
        preferences=preferences,
    )
    yield app
    await app.state.send_queue.cleanup()
    app.state.store.close()


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.mark.asyncio
async def test_create_session(client):
    """Test creating a new session."""
    response = await client.post("/sessions")
    assert response.status_code == 200
    data = response.json()
    assert "id" in data
    assert "created_at" in data
    assert "last_modified_at" in data
    assert data["is_archived"] is False
    assert data["message_count"] == 0


@pytest.mark.asyncio
async def test_new_session_reuses_empty(client):
    """Asking for a new chat twice returns the same empty session."""
    first = (await client.post("/sessions")).json()
    second = (await client.post("/sessions")).json()
    assert first["id"] == second["id"]

    sessions = (await client.get("/sessions")).json()
    assert len(sessions) == 1


@pytest.mark.asyncio
async def test_send_message_flow(client, handler):
    """Test a conversation turn and the resulting session state."""
    session_id = (await client.post("/sessions")).json()["id"]

    response = await client.post(
        f"/sessions/{session_id}/messages", json={"content": "Hi"}
    )
    assert response.status_code == 200
    data = response.json()
    assert data["role"] == "assistant"
    assert data["content"] == "Hello from the assistant"
    assert data["session_id"] == session_id

    messages = (await client.get(f"/sessions/{session_id}/messages")).json()
    assert [(m["role"], m["content"]) for m in messages] == [
        ("user", "Hi"),
        ("assistant", "Hello from the assistant"),
    ]

    detail = (await client.get(f"/sessions/{session_id}")).json()
    assert detail["title"] == "Hi"
    assert detail["message_count"] == 2
    assert len(detail["messages"]) == 2
    assert len(handler.requests) == 1


@pytest.mark.asyncio
async def test_session_list_follows_mutations(client):
    """The list is served from the cache and reflects every change."""
    first_id = (await client.post("/sessions")).json()["id"]
    await client.post(f"/sessions/{first_id}/messages", json={"content": "first"})
    second_id = (await client.post("/sessions")).json()["id"]
    assert second_id != first_id

    ids = [s["id"] for s in (await client.get("/sessions")).json()]
    assert ids == [second_id, first_id]

    await client.patch(f"/sessions/{first_id}", json={"title": "Renamed"})
    listed = (await client.get("/sessions")).json()
    assert [s["id"] for s in listed] == [first_id, second_id]
    assert listed[0]["title"] == "Renamed"

    response = await client.delete(f"/sessions/{second_id}")
    assert response.status_code == 204
    ids = [s["id"] for s in (await client.get("/sessions")).json()]
    assert ids == [first_id]


@pytest.mark.asyncio
async def test_archive_session(client):
    session_id = (await client.post("/sessions")).json()["id"]

    response = await client.patch(f"/sessions/{session_id}", json={"is_archived": True})
    assert response.status_code == 200
    assert response.json()["is_archived"] is True

    visible = (await client.get("/sessions?include_archived=false")).json()
    assert visible == []
    everything = (await client.get("/sessions")).json()
    assert [s["id"] for s in everything] == [session_id]


@pytest.mark.asyncio
async def test_error_handling(client):
    """Test error handling in various scenarios."""
    response = await client.get("/sessions/unknown")
    assert response.status_code == 404

    response = await client.post("/sessions/unknown/messages", json={"content": "Hi"})
    assert response.status_code == 404

    session_id = (await client.post("/sessions")).json()["id"]
    response = await client.post(
        f"/sessions/{session_id}/messages", json={"invalid_field": "test"}
    )
    assert response.status_code == 422

    response = await client.post(f"/sessions/{session_id}/messages", json={"content": "   "})
    assert response.status_code == 422

    response = await client.patch(f"/sessions/{session_id}", json={"title": "  "})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_missing_api_key(client, handler):
    """Without a key the canned reply is returned and nothing is sent."""
    response = await client.put("/settings", json={"api_key": ""})
    assert response.json() == {"has_api_key": False}

    session_id = (await client.post("/sessions")).json()["id"]
    response = await client.post(f"/sessions/{session_id}/messages", json={"content": "Hi"})

    assert response.json()["content"] == "Please set your OpenAI API key in the settings."
    assert handler.requests == []

    response = await client.put("/settings", json={"api_key": "sk-new"})
    assert response.json() == {"has_api_key": True}
    assert (await client.get("/settings")).json() == {"has_api_key": True}


@pytest.mark.asyncio
async def test_upstream_failure_is_reported_as_message(app, client, handler):
    handler.respond = lambda request: httpx.Response(503, json={})
    session_id = (await client.post("/sessions")).json()["id"]

    response = await client.post(f"/sessions/{session_id}/messages", json={"content": "Hi"})

    assert response.status_code == 200
    assert response.json()["content"] == "Error: Invalid status code: 503"


@pytest.mark.asyncio
async def test_reset_database(client):
    """Reset leaves exactly one empty default session."""
    for _ in range(3):
        session_id = (await client.post("/sessions")).json()["id"]
        await client.post(f"/sessions/{session_id}/messages", json={"content": "Hi"})

    response = await client.post("/database/reset")
    assert response.status_code == 200
    assert response.json()["title"] == "New Chat"

    sessions = (await client.get("/sessions")).json()
    assert len(sessions) == 1
    assert sessions[0]["message_count"] == 0


@pytest.mark.asyncio
async def test_health_and_metrics(client):
    response = await client.get("/health")
    assert response.json() == {"healthy": True, "in_memory": True}

    response = await client.get("/metrics")
    assert response.status_code == 200
    assert "requests_total" in response.text


@pytest.mark.asyncio
async def test_lifespan_creates_first_session(app):
    """Startup guarantees a session exists."""
    async with app.router.lifespan_context(app):
        sessions = app.state.session_cache.sessions
        assert [s.title for s in sessions] == ["New Chat"]


@pytest.mark.asyncio
async def test_store_is_used_from_one_thread(app, client, monkeypatch):
    """Dependencies and routes touch the store only on the event-loop thread."""
    store = app.state.store
    threads = set()

    def recorded(method):
        def wrapper(*args, **kwargs):
            threads.add(threading.current_thread().name)
            return method(*args, **kwargs)

        return wrapper

    monkeypatch.setattr(store, "query", recorded(store.query))
    monkeypatch.setattr(store, "commit", recorded(store.commit))

    session_id = (await client.post("/sessions")).json()["id"]
    await client.post(f"/sessions/{session_id}/messages", json={"content": "Hi"})
    await client.get(f"/sessions/{session_id}")
    await client.get(f"/sessions/{session_id}/messages")
    await client.patch(f"/sessions/{session_id}", json={"title": "Renamed"})
    await client.get("/sessions")

    assert threads == {threading.current_thread().name}
