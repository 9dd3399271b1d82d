from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable
import asyncio
import enum
import logging
import threading

from pydantic import BaseModel, Field

from .timeutils import utcnow

logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 15.0


class Operation(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class Change(BaseModel):
    collection: str
    operation: Operation
    id: str
    at: datetime = Field(default_factory=utcnow)


def format_sse(change: Change) -> str:
    return f"event: {change.collection}\ndata: {change.model_dump_json()}\n\n"


class ChangeFeed:
    def __init__(self, max_queue_size: int = 1000) -> None:
        self.max_queue_size = max_queue_size
        self._subscribers: dict[asyncio.Queue, asyncio.AbstractEventLoop] = {}
        self._lock = threading.Lock()

    def subscribe(self) -> asyncio.Queue:
        """Register a subscriber; must be called from its running loop."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        with self._lock:
            self._subscribers[queue] = asyncio.get_running_loop()
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        with self._lock:
            self._subscribers.pop(queue, None)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, change: Change) -> None:
        """Thread-safe; may be called from sync handlers in the threadpool."""
        with self._lock:
            subscribers = list(self._subscribers.items())
        for queue, loop in subscribers:
            try:
                loop.call_soon_threadsafe(self._deliver, queue, change)
            except RuntimeError:
                logger.info("Dropping subscriber whose event loop is closed")
                self.unsubscribe(queue)

    def _deliver(self, queue: asyncio.Queue, change: Change) -> None:
        try:
            queue.put_nowait(change)
        except asyncio.QueueFull:
            logger.warning(
                "Subscriber queue full, dropped %s %s", change.collection, change.id
            )

    async def stream(
        self, is_disconnected: Callable[[], Awaitable[bool]]
    ) -> AsyncIterator[str]:
        queue = self.subscribe()
        try:
            while not await is_disconnected():
                try:
                    change = await asyncio.wait_for(queue.get(), KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield format_sse(change)
        finally:
            self.unsubscribe(queue)


change_feed = ChangeFeed()


def get_change_feed() -> ChangeFeed:
    return change_feed
