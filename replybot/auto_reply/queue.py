"""
Per-sender message lanes for replybot.

Provides:
- One FIFO lane and worker task per sender
- Ordering preserved within a sender, senders run concurrently
- Idle lanes retire on their own
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

from loguru import logger

T = TypeVar("T")


@dataclass
class QueueConfig:
    """Configuration for message lanes."""
    max_lane_size: int = 100  # Items waiting per sender
    idle_timeout_seconds: float = 60.0  # Retire a lane after this long without work


class MessageQueue(Generic[T]):
    """
    Serializes work per sender.

    Each sender gets its own asyncio.Queue drained by a dedicated
    worker, so a slow reply to one sender never holds up another and
    replies to the same sender go out in arrival order.
    """

    def __init__(
        self,
        handler: Callable[[T], Awaitable[None]],
        config: QueueConfig | None = None,
    ):
        self.handler = handler
        self.config = config or QueueConfig()

        # sender_id -> (queue, worker task)
        self._lanes: dict[str, tuple[asyncio.Queue[T], asyncio.Task]] = {}
        self._closed = False

        # Stats
        self._total_received = 0
        self._total_dropped = 0
        self._total_processed = 0
        self._total_errors = 0

    def add(self, sender_id: str, item: T) -> bool:
        """
        Queue an item on the sender's lane.

        Args:
            sender_id: Lane key.
            item: Work item passed to the handler.

        Returns:
            True if queued, False if dropped (lane full or queue closed).
        """
        if self._closed:
            return False

        self._total_received += 1
        queue = self._get_lane(sender_id)

        try:
            queue.put_nowait(item)
        except asyncio.QueueFull:
            logger.warning(f"Lane for {sender_id} is full, dropping message")
            self._total_dropped += 1
            return False

        return True

    def _get_lane(self, sender_id: str) -> asyncio.Queue[T]:
        lane = self._lanes.get(sender_id)
        if lane and not lane[1].done():
            return lane[0]

        queue: asyncio.Queue[T] = asyncio.Queue(maxsize=self.config.max_lane_size)
        task = asyncio.create_task(self._worker(sender_id, queue))
        self._lanes[sender_id] = (queue, task)
        return queue

    async def _worker(self, sender_id: str, queue: asyncio.Queue[T]) -> None:
        while True:
            try:
                item = await asyncio.wait_for(
                    queue.get(),
                    timeout=self.config.idle_timeout_seconds,
                )
            except asyncio.TimeoutError:
                # Retire only if nothing arrived meanwhile
                if queue.empty():
                    self._retire(sender_id, queue)
                    return
                continue

            try:
                await self.handler(item)
                self._total_processed += 1
            except asyncio.CancelledError:
                queue.task_done()
                raise
            except Exception as e:
                self._total_errors += 1
                logger.error(f"Error processing message from {sender_id}: {e}")
            queue.task_done()

    def _retire(self, sender_id: str, queue: asyncio.Queue[T]) -> None:
        lane = self._lanes.get(sender_id)
        if lane and lane[0] is queue:
            del self._lanes[sender_id]

    async def join(self) -> None:
        """Wait until every queued item has been handled."""
        for queue, _ in list(self._lanes.values()):
            await queue.join()

    async def close(self) -> None:
        """Stop accepting work and cancel the lane workers."""
        self._closed = True
        lanes = list(self._lanes.values())
        self._lanes.clear()

        for _, task in lanes:
            task.cancel()
        if lanes:
            await asyncio.gather(*(task for _, task in lanes), return_exceptions=True)

    @property
    def lane_count(self) -> int:
        return len(self._lanes)

    @property
    def size(self) -> int:
        """Items waiting across all lanes."""
        return sum(queue.qsize() for queue, _ in self._lanes.values())

    def get_stats(self) -> dict[str, Any]:
        """Get queue statistics."""
        return {
            "lanes": self.lane_count,
            "queue_size": self.size,
            "total_received": self._total_received,
            "total_dropped": self._total_dropped,
            "total_processed": self._total_processed,
            "total_errors": self._total_errors,
        }
