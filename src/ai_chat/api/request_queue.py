"""Per-session request queue that serializes message sends."""

import asyncio
import contextlib
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict

import structlog

logger = structlog.get_logger()


@dataclass
class QueuedRequest:
    """Represents a queued request with its context."""

    session_id: str
    task: Callable[..., Awaitable[Any]]
    args: tuple
    kwargs: dict
    future: asyncio.Future


class SendQueue:
    """Runs queued requests one at a time per session, in arrival order.

    Sessions are independent of each other. Requests are not cancelled
    or timed out once they start running.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self.queues: Dict[str, asyncio.Queue] = {}
        self._workers: Dict[str, asyncio.Task] = {}
        logger.info("send_queue_initialized")

    async def _get_queue(self, session_id: str) -> asyncio.Queue:
        """Get or create the queue and worker for a session."""
        async with self._lock:
            if session_id not in self.queues:
                self.queues[session_id] = asyncio.Queue()
                self._workers[session_id] = asyncio.create_task(
                    self._process_queue(session_id)
                )
            return self.queues[session_id]

    async def _process_queue(self, session_id: str) -> None:
        """Process requests in the queue for a session."""
        queue = self.queues[session_id]
        try:
            while True:
                request = await queue.get()
                try:
                    result = await request.task(*request.args, **request.kwargs)
                    if not request.future.done():
                        request.future.set_result(result)
                except Exception as e:
                    if not request.future.done():
                        request.future.set_exception(e)
                    logger.error(
                        "request_processing_error",
                        session_id=session_id,
                        error=str(e),
                    )
                finally:
                    queue.task_done()
        except asyncio.CancelledError:
            logger.info("queue_processor_cancelled", session_id=session_id)
            raise

    async def pending(self, session_id: str) -> int:
        """Number of requests waiting behind the running one."""
        async with self._lock:
            queue = self.queues.get(session_id)
            return queue.qsize() if queue is not None else 0

    async def enqueue_request(
        self,
        session_id: str,
        task: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any
    ) -> Any:
        """Enqueue a request and wait for its execution."""
        queue = await self._get_queue(session_id)
        future = asyncio.get_running_loop().create_future()
        await queue.put(
            QueuedRequest(
                session_id=session_id,
                task=task,
                args=args,
                kwargs=kwargs,
                future=future,
            )
        )
        return await future

    async def cleanup(self) -> None:
        """Cancel the workers and drop all queues."""
        async with self._lock:
            workers = list(self._workers.values())
            for worker in workers:
                if not worker.done():
                    worker.cancel()
            if workers:
                with contextlib.suppress(asyncio.CancelledError):
                    await asyncio.gather(*workers, return_exceptions=True)
            self.queues.clear()
            self._workers.clear()
            logger.info("send_queue_cleaned_up")
