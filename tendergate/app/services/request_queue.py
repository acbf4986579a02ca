"""Bounded FIFO admission queue for upstream calls.

The queue caps how many upstream calls run at once, independent of how
many callers arrive together. Waiting items carry a deadline timer and
fail with ``QueueTimeout`` if they are not dispatched in time.
"""

import asyncio
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from tendergate.app.core.logging import get_logger
from tendergate.app.exceptions import QueueFull, QueueTimeout

logger = get_logger(__name__)

Task = Callable[[], Awaitable[Any]]


@dataclass
class QueueItem:
    """A deferred upstream call waiting for a concurrency slot."""
    id: str
    task: Task
    future: asyncio.Future
    enqueued_at: float
    timeout_handle: Optional[asyncio.TimerHandle] = None


class RequestQueue:
    """FIFO queue with a concurrency cap and per-item timeout.

    Dispatch is work-conserving: whenever a running task finishes, the next
    waiting item starts immediately.

    Usage:
        queue = RequestQueue(max_queue_size=50, max_concurrent=3)
        result = await queue.add(lambda: call_upstream(payload))
    """

    DEFAULT_MAX_QUEUE_SIZE = 50
    DEFAULT_MAX_CONCURRENT = 3
    DEFAULT_TIMEOUT = 30.0

    def __init__(
        self,
        max_queue_size: int = DEFAULT_MAX_QUEUE_SIZE,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        queue_timeout: float = DEFAULT_TIMEOUT,
    ):
        """Initialize the queue.

        Args:
            max_queue_size: Maximum number of waiting (not yet running) items
            max_concurrent: Maximum number of tasks running at once
            queue_timeout: Seconds an item may wait before it is dropped
        """
        self.max_queue_size = max_queue_size
        self.max_concurrent = max_concurrent
        self.queue_timeout = queue_timeout

        self._queue: deque[QueueItem] = deque()
        self._running: set[asyncio.Task] = set()
        self.active_requests = 0

        # Counters for monitoring
        self._total = 0
        self._rejected = 0
        self._timed_out = 0

    async def add(self, task: Task) -> Any:
        """Queue a task and wait for its result.

        Args:
            task: Zero-argument callable returning an awaitable

        Returns:
            Whatever the task returns

        Raises:
            QueueFull: If the queue already holds ``max_queue_size`` items
            QueueTimeout: If the item waited longer than ``queue_timeout``
        """
        if len(self._queue) >= self.max_queue_size:
            self._rejected += 1
            logger.warning(f"Request queue full ({len(self._queue)} waiting)")
            raise QueueFull()

        loop = asyncio.get_running_loop()
        item = QueueItem(
            id=uuid.uuid4().hex,
            task=task,
            future=loop.create_future(),
            enqueued_at=loop.time(),
        )
        item.timeout_handle = loop.call_later(self.queue_timeout, self._expire, item)
        self._queue.append(item)
        self._total += 1

        self._dispatch()
        return await item.future

    def _expire(self, item: QueueItem) -> None:
        """Deadline callback: drop the item if it is still waiting."""
        try:
            self._queue.remove(item)
        except ValueError:
            # Already dispatched
            return
        self._timed_out += 1
        logger.warning(f"Queued request {item.id} timed out after {self.queue_timeout}s")
        if not item.future.done():
            item.future.set_exception(QueueTimeout())

    def _dispatch(self) -> None:
        while self.active_requests < self.max_concurrent and self._queue:
            item = self._queue.popleft()
            if item.timeout_handle is not None:
                item.timeout_handle.cancel()
            if item.future.done():
                # Caller went away while waiting
                continue

            self.active_requests += 1
            running = asyncio.create_task(self._run(item))
            self._running.add(running)
            running.add_done_callback(self._running.discard)

    async def _run(self, item: QueueItem) -> None:
        try:
            result = await item.task()
        except asyncio.CancelledError:
            item.future.cancel()
            raise
        except Exception as exc:
            if not item.future.done():
                item.future.set_exception(exc)
        else:
            if not item.future.done():
                item.future.set_result(result)
        finally:
            self.active_requests -= 1
            self._dispatch()

    def __len__(self) -> int:
        return len(self._queue)

    def get_status(self) -> dict[str, int]:
        return {
            "queue_length": len(self._queue),
            "active_requests": self.active_requests,
            "max_concurrent": self.max_concurrent,
            "max_queue_size": self.max_queue_size,
            "total": self._total,
            "rejected": self._rejected,
            "timed_out": self._timed_out,
        }
