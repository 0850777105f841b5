"""In-memory delay queue with redelivery and dead-lettering (single-process).

Features:
- FIFO delivery of ready messages.
- Optional delay (scheduled visibility time) per message.
- Delivery count per message: ``abandon`` puts a failed message back with
  ``delivery_count + 1`` until ``max_delivery_count`` is reached, after which
  it moves to the dead-letter list.
- Capacity limits / backpressure via QUEUE_SETTINGS.
- Thread-safe with condition variable.

Two structures:
 1. ready deque: QueueItem in arrival order
 2. scheduled_heap: (ready_at_ts, seq, item)

On dequeue:
  - Promote any scheduled items whose ready_at <= now.
  - Pop the oldest ready item.
  - If nothing ready: wait until the next scheduled item's ready_at or until notified.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Optional
import threading
import time
import heapq
import uuid

from broadcaster.config import QUEUE_SETTINGS
from broadcaster.utils import get_logger
from broadcaster.utils.time import from_epoch

logger = get_logger(__name__)


@dataclass(slots=True)
class QueueItem:
    job: Any
    message_id: str
    delivery_count: int
    enqueued_at: float
    ready_at: float
    seq: int

    @property
    def enqueued_time_utc(self) -> datetime:
        return from_epoch(self.enqueued_at)


def new_message_id() -> str:
    return uuid.uuid4().hex


class DelayQueue:
    def __init__(self, *, max_delivery_count: int | None = None) -> None:
        self._warn_depth = int(QUEUE_SETTINGS.get("warn_depth", 10000))  # type: ignore[arg-type]
        self._max_in_memory = int(QUEUE_SETTINGS.get("max_in_memory", 100000))  # type: ignore[arg-type]
        self.max_delivery_count = int(max_delivery_count or QUEUE_SETTINGS.get("max_delivery_count", 10))  # type: ignore[arg-type]
        self._lock = threading.RLock()
        self._cv = threading.Condition(self._lock)
        self._ready: deque[QueueItem] = deque()
        self._scheduled_heap: list[tuple[float, int, QueueItem]] = []  # (ready_at_ts, seq, item)
        self._dead_letters: list[QueueItem] = []
        self._seq_counter = 0
        self._shutdown = False

    # ----------------------------- internal helpers ----------------------------- #
    def _next_seq(self) -> int:
        self._seq_counter += 1
        return self._seq_counter

    def _promote_scheduled(self) -> None:
        now_ts = time.time()
        while self._scheduled_heap and self._scheduled_heap[0][0] <= now_ts:
            _, _, item = heapq.heappop(self._scheduled_heap)
            self._ready.append(item)

    def _push(self, item: QueueItem) -> None:
        if item.ready_at <= time.time():
            self._ready.append(item)
        else:
            heapq.heappush(self._scheduled_heap, (item.ready_at, item.seq, item))
        self._cv.notify()

    def _await_next_ready(self, timeout: Optional[float]) -> None:
        if self._ready:
            return
        if not self._scheduled_heap:
            self._cv.wait(timeout=timeout)
            return
        wait_time = max(0.0, self._scheduled_heap[0][0] - time.time())
        if timeout is not None:
            wait_time = min(wait_time, timeout)
        if wait_time > 0:
            self._cv.wait(timeout=wait_time)

    # ----------------------------- public API ----------------------------- #
    def enqueue(self, job: Any, *, delay_seconds: float = 0.0) -> QueueItem:
        """Add a new message; ``delay_seconds`` sets its earliest visibility."""
        with self._lock:
            if self._shutdown:
                raise RuntimeError("Queue shutdown")
            if self.depth() >= self._max_in_memory:
                raise OverflowError("Queue capacity exceeded")
            now_ts = time.time()
            item = QueueItem(
                job=job,
                message_id=new_message_id(),
                delivery_count=1,
                enqueued_at=now_ts,
                ready_at=now_ts + max(0.0, delay_seconds),
                seq=self._next_seq(),
            )
            self._push(item)
            if self.depth() >= self._warn_depth:
                logger.warning("Queue depth warning", depth=self.depth())
            return item

    def dequeue(self, *, block: bool = True, timeout: Optional[float] = None) -> Optional[QueueItem]:
        """Pop next visible message. Returns None if non-blocking and empty or timeout occurs."""
        end_time = None if timeout is None else time.time() + timeout
        with self._lock:
            while True:
                if self._shutdown and not self._ready and not self._scheduled_heap:
                    return None
                self._promote_scheduled()
                if self._ready:
                    return self._ready.popleft()
                if not block:
                    return None
                remaining = None if end_time is None else max(0.0, end_time - time.time())
                if end_time is not None and remaining == 0:
                    return None
                self._await_next_ready(remaining)

    def abandon(self, item: QueueItem) -> bool:
        """Return a failed message to the queue.

        Returns True if it will be redelivered, False if it was dead-lettered.
        """
        with self._lock:
            if item.delivery_count >= self.max_delivery_count:
                self._dead_letters.append(item)
                logger.warning(
                    "Message moved to dead-letter list",
                    message_id=item.message_id,
                    delivery_count=item.delivery_count,
                )
                return False
            redelivery = replace(
                item,
                delivery_count=item.delivery_count + 1,
                ready_at=time.time(),
                seq=self._next_seq(),
            )
            self._push(redelivery)
            return True

    def dead_letters(self) -> list[QueueItem]:
        with self._lock:
            return list(self._dead_letters)

    def shutdown(self) -> None:
        with self._lock:
            self._shutdown = True
            self._cv.notify_all()

    # ----------------------------- test utilities ----------------------------- #
    def purge(self) -> None:
        """Remove all queued (ready + scheduled + dead-lettered) messages.

        Intended for test isolation only; any worker currently processing a
        message continues unaffected.
        """
        with self._lock:
            self._ready.clear()
            self._scheduled_heap.clear()
            self._dead_letters.clear()
            self._cv.notify_all()

    # ----------------------------- inspection ----------------------------- #
    def depth(self) -> int:
        return len(self._ready) + len(self._scheduled_heap)

    def __len__(self) -> int:  # pragma: no cover
        return self.depth()

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "depth": self.depth(),
                "ready": len(self._ready),
                "scheduled": len(self._scheduled_heap),
                "dead_letter": len(self._dead_letters),
                "shutdown": self._shutdown,
            }


__all__ = ["DelayQueue", "QueueItem", "new_message_id"]
