"""Chat-completion client for the OpenAI HTTP API.

One request, one response: no retries, no streaming, no cancellation once
a request has been sent. Failures are classified into a small set of
``CompletionError`` kinds that callers turn into user-facing text.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional

import httpx
import structlog
from pydantic import ValidationError

from ..domain.completion import ChatMessagePayload, ChatRequest, ChatResponse

logger = structlog.get_logger()

OPENAI_CHAT_COMPLETIONS_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_MODEL = "gpt-3.5-turbo"
DEFAULT_TIMEOUT = 60.0


class ConfigurationError(ValueError):
    """The client was configured with an unusable endpoint."""


class CompletionError(Exception):
    """Base class for classified request failures."""


class TransportError(CompletionError):
    """The request never produced an HTTP response."""

    def __init__(self, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"Request failed: {cause}")


class StatusCodeError(CompletionError):
    """The server answered outside the 2xx range."""

    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(f"Invalid status code: {status_code}")


class EmptyResponseError(CompletionError):
    """The server answered with an empty body."""

    def __init__(self) -> None:
        super().__init__("No data received from server")


class DecodeError(CompletionError):
    """The body did not match the expected completion shape."""

    def __init__(self, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"Failed to decode response: {cause}")


Callback = Callable[["Future[ChatResponse]"], Any]
Scheduler = Callable[..., Any]


def _validate_endpoint(endpoint: str) -> httpx.URL:
    try:
        url = httpx.URL(endpoint)
    except (httpx.InvalidURL, TypeError) as e:
        raise ConfigurationError(f"Invalid completion endpoint: {endpoint!r}") from e
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigurationError(f"Invalid completion endpoint: {endpoint!r}")
    return url


class ChatCompletionClient:
    """Builds completion requests and performs the HTTP call."""

    def __init__(
        self,
        endpoint: str = OPENAI_CHAT_COMPLETIONS_URL,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.endpoint = _validate_endpoint(endpoint)
        self._transport = transport
        self._timeout = timeout
        self._client: Optional[httpx.Client] = None
        self._async_client: Optional[httpx.AsyncClient] = None
        self._executor: Optional[ThreadPoolExecutor] = None

    def create_request(
        self,
        user_query: str,
        model: str = DEFAULT_MODEL,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> ChatRequest:
        """Build a request with an optional system entry before the user entry."""
        messages: List[ChatMessagePayload] = []
        if system_prompt:
            messages.append(ChatMessagePayload(role="system", content=system_prompt))
        messages.append(ChatMessagePayload(role="user", content=user_query))
        return ChatRequest(
            model=model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        )

    def _headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        }

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(transport=self._transport, timeout=self._timeout)
        return self._client

    def _get_async_client(self) -> httpx.AsyncClient:
        if self._async_client is None:
            self._async_client = httpx.AsyncClient(
                transport=self._transport, timeout=self._timeout
            )
        return self._async_client

    def _handle_response(self, response: httpx.Response) -> ChatResponse:
        if not 200 <= response.status_code < 300:
            logger.warning("completion_bad_status", status_code=response.status_code)
            raise StatusCodeError(response.status_code)
        if not response.content:
            logger.warning("completion_empty_body")
            raise EmptyResponseError()
        try:
            parsed = ChatResponse.model_validate_json(response.content)
        except ValidationError as e:
            logger.warning("completion_decode_failed", error=str(e))
            raise DecodeError(e) from e
        logger.info(
            "completion_succeeded",
            model=parsed.model,
            choices=len(parsed.choices),
        )
        return parsed

    async def send(self, api_key: str, request: ChatRequest) -> ChatResponse:
        """Send the request and await the decoded response."""
        logger.info("completion_sent", model=request.model)
        try:
            response = await self._get_async_client().post(
                self.endpoint,
                content=request.to_json(),
                headers=self._headers(api_key),
            )
        except httpx.TransportError as e:
            logger.error("completion_transport_failed", error=str(e))
            raise TransportError(e) from e
        return self._handle_response(response)

    def send_sync(self, api_key: str, request: ChatRequest) -> ChatResponse:
        """Blocking variant of ``send``."""
        logger.info("completion_sent", model=request.model)
        try:
            response = self._get_client().post(
                self.endpoint,
                content=request.to_json(),
                headers=self._headers(api_key),
            )
        except httpx.TransportError as e:
            logger.error("completion_transport_failed", error=str(e))
            raise TransportError(e) from e
        return self._handle_response(response)

    def submit(
        self,
        api_key: str,
        request: ChatRequest,
        callback: Callback,
        scheduler: Scheduler,
    ) -> "Future[ChatResponse]":
        """Run the request on a worker thread.

        ``callback`` receives the finished future and is always invoked
        through ``scheduler`` (for example ``loop.call_soon_threadsafe``),
        never directly on the worker thread.
        """
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=4, thread_name_prefix="completion"
            )
        future = self._executor.submit(self.send_sync, api_key, request)
        future.add_done_callback(lambda done: scheduler(callback, done))
        return future

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    async def aclose(self) -> None:
        if self._async_client is not None:
            await self._async_client.aclose()
            self._async_client = None
        self.close()
