"""
FastAPI Application Module

Local HTTP surface for the chat client. A UI drives sessions and messages
through these routes; all persistence goes through the repository and
the session list is served from the observable cache.

Every component is built once in ``create_app`` and handed to the routes
through FastAPI dependencies, so tests can assemble an app around an
in-memory store and a mocked completion transport.
"""

import time
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest
from structlog import get_logger

from ..config import Preferences, Settings
from ..domain.models import ChatSession
from ..domain.schemas import (
    MessageCreate,
    MessageRead,
    PreferencesRead,
    PreferencesUpdate,
    SessionDetail,
    SessionSummary,
    SessionUpdate,
)
from ..repositories.events import EventBus
from ..repositories.sql import SQLChatRepository
from ..services.cache import SessionCache
from ..services.chat import ChatService
from ..services.completion import ChatCompletionClient
from ..storage.store import Store
from .request_queue import SendQueue

logger = get_logger()


async def get_chat_service(request: Request) -> ChatService:
    """Returns the chat service"""
    return request.app.state.chat_service


async def get_repository(request: Request) -> SQLChatRepository:
    """Returns the session repository"""
    return request.app.state.repository


async def get_session_cache(request: Request) -> SessionCache:
    """Returns the observable session list"""
    return request.app.state.session_cache


async def get_send_queue(request: Request) -> SendQueue:
    """Returns the per-session send queue"""
    return request.app.state.send_queue


async def get_session(
    session_id: str,
    repository: SQLChatRepository = Depends(get_repository),
) -> ChatSession:
    """Resolves a path session id or fails with 404"""
    session = repository.find_by_id(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[Store] = None,
    client: Optional[ChatCompletionClient] = None,
    preferences: Optional[Preferences] = None,
) -> FastAPI:
    """Assemble the application and its single instance of each component."""
    settings = settings or Settings.from_env()
    if store is None:
        store = Store.open(settings.database_path, in_memory=settings.in_memory)
    if store.fell_back:
        logger.warning("using_in_memory_fallback_store")
    if preferences is None:
        preferences = Preferences(settings.preferences_path)
    if client is None:
        client = ChatCompletionClient(settings.endpoint, timeout=settings.request_timeout)

    events = EventBus()
    repository = SQLChatRepository(store, events)
    if not store.health_check():
        logger.error("store_unhealthy", hint="POST /database/reset to recreate storage")
    session_cache = SessionCache(repository, events)
    chat_service = ChatService(repository, client, settings, preferences)
    send_queue = SendQueue()

    registry = CollectorRegistry()
    requests_total = Counter(
        "requests_total", "Total requests by path", ["path"], registry=registry
    )
    errors_total = Counter(
        "errors_total", "Total failed requests by path", ["path"], registry=registry
    )
    processing_time = Histogram(
        "processing_time_seconds", "Request processing time", registry=registry
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handles app startup/shutdown and resource management"""
        chat_service.ensure_session()
        logger.info("application_startup_complete")

        yield

        await send_queue.cleanup()
        session_cache.close()
        await client.aclose()
        store.close()
        logger.info("application_shutdown_complete")

    app = FastAPI(
        title="AI Chat",
        description="Local chat sessions backed by an embedded store and a chat-completion API",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.repository = repository
    app.state.session_cache = session_cache
    app.state.chat_service = chat_service
    app.state.send_queue = send_queue
    app.state.preferences = preferences
    app.state.metrics_registry = registry

    FastAPIInstrumentor.instrument_app(app)

    @app.middleware("http")
    async def logging_middleware(request: Request, call_next):
        """Logs and counts every request"""
        path = request.url.path
        logger.info("request_started", path=path, method=request.method)
        requests_total.labels(path=path).inc()
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            errors_total.labels(path=path).inc()
            logger.error("request_failed", path=path, error=str(e))
            raise
        processing_time.observe(time.perf_counter() - started)
        if response.status_code >= 500:
            errors_total.labels(path=path).inc()
        return response

    @app.get("/sessions", response_model=List[SessionSummary])
    async def list_sessions(
        include_archived: bool = True,
        cache: SessionCache = Depends(get_session_cache),
    ) -> List[SessionSummary]:
        """Lists sessions, most recently modified first"""
        sessions = cache.sessions
        if not include_archived:
            sessions = [s for s in sessions if not s.is_archived]
        return [SessionSummary.from_session(s) for s in sessions]

    @app.post("/sessions", response_model=SessionSummary)
    async def create_session(
        service: ChatService = Depends(get_chat_service),
    ) -> SessionSummary:
        """Starts a new chat, reusing an existing empty one"""
        return SessionSummary.from_session(service.new_chat())

    @app.get("/sessions/{session_id}", response_model=SessionDetail)
    async def get_session_detail(
        session: ChatSession = Depends(get_session),
    ) -> SessionDetail:
        """Retrieves a session with its messages"""
        return SessionDetail.from_session(session)

    @app.patch("/sessions/{session_id}", response_model=SessionSummary)
    async def update_session(
        update: SessionUpdate,
        session: ChatSession = Depends(get_session),
        service: ChatService = Depends(get_chat_service),
    ) -> SessionSummary:
        """Renames and/or archives a session"""
        if update.title is not None:
            if not update.title.strip():
                raise HTTPException(status_code=422, detail="Title must not be blank")
            service.rename_session(session, update.title)
        if update.is_archived is not None:
            service.set_archived(session, update.is_archived)
        return SessionSummary.from_session(session)

    @app.delete("/sessions/{session_id}", status_code=204)
    async def delete_session(
        session: ChatSession = Depends(get_session),
        service: ChatService = Depends(get_chat_service),
    ) -> Response:
        """Deletes a session and its messages"""
        service.delete_session(session)
        return Response(status_code=204)

    @app.get("/sessions/{session_id}/messages", response_model=List[MessageRead])
    async def get_messages(
        session: ChatSession = Depends(get_session),
    ) -> List[MessageRead]:
        """Gets the session's messages in timestamp order"""
        return [MessageRead.model_validate(m) for m in session.sorted_messages]

    @app.post("/sessions/{session_id}/messages", response_model=MessageRead)
    async def send_message(
        message: MessageCreate,
        session: ChatSession = Depends(get_session),
        service: ChatService = Depends(get_chat_service),
        queue: SendQueue = Depends(get_send_queue),
    ) -> MessageRead:
        """
        Stores the user message and returns the assistant's reply.
        Sends on the same session are processed one at a time.
        """
        reply = await queue.enqueue_request(
            session.id, service.send_message, session, message.content
        )
        if reply is None:
            raise HTTPException(status_code=422, detail="Message must not be blank")
        return MessageRead.model_validate(reply)

    @app.post("/database/reset", response_model=SessionSummary)
    async def reset_database(
        repository: SQLChatRepository = Depends(get_repository),
    ) -> SessionSummary:
        """Wipes storage, leaving one empty default session"""
        return SessionSummary.from_session(repository.reset_database())

    @app.get("/health")
    async def health(request: Request) -> dict:
        """Reports whether the store can be queried"""
        store: Store = request.app.state.store
        healthy = store.health_check()
        return {"healthy": healthy, "in_memory": store.in_memory}

    @app.get("/settings", response_model=PreferencesRead)
    async def read_preferences(request: Request) -> PreferencesRead:
        """Reports whether an API key is configured"""
        return PreferencesRead(has_api_key=bool(request.app.state.preferences.api_key))

    @app.put("/settings", response_model=PreferencesRead)
    async def write_preferences(update: PreferencesUpdate, request: Request) -> PreferencesRead:
        """Stores or clears the API key"""
        prefs: Preferences = request.app.state.preferences
        prefs.set_api_key(update.api_key)
        return PreferencesRead(has_api_key=bool(prefs.api_key))

    @app.get("/metrics")
    async def metrics() -> Response:
        """Provides Prometheus metrics for system monitoring"""
        return Response(generate_latest(registry), media_type="text/plain")

    return app
