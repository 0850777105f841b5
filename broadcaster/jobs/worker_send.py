"""Background workers consuming the send queue."""
from __future__ import annotations

import asyncio
import threading
import time
from collections import deque
from typing import Optional, Protocol, Union

import redis

from broadcaster.config import QUEUE_SETTINGS, SEND_SETTINGS
from broadcaster.jobs.queue import DelayQueue, QueueItem
from broadcaster.jobs.redis_queue import RedisQueue
from broadcaster.jobs.send_job import SendQueueMessageContent
from broadcaster.services.send_pipeline import SendJobStatus, SendPipeline
from broadcaster.services.throttle_state import ThrottleState, remaining_seconds
from broadcaster.utils import get_logger

logger = get_logger(__name__)

# Debug instrumentation store (test visibility), newest failures only
LAST_EXCEPTIONS_MAXLEN = 100
LAST_EXCEPTIONS: deque[dict] = deque(maxlen=LAST_EXCEPTIONS_MAXLEN)


class QueueProtocol(Protocol):
    def enqueue(self, job: SendQueueMessageContent, *, delay_seconds: float = 0.0) -> QueueItem: ...
    def dequeue(self, *, block: bool = True, timeout: Optional[float] = None) -> Optional[QueueItem]: ...
    def abandon(self, item: QueueItem) -> bool: ...
    def shutdown(self) -> None: ...
    def snapshot(self) -> dict: ...


class SendWorker:
    """Pool of daemon threads, each running one send job at a time to completion."""

    def __init__(
        self,
        queue: QueueProtocol,
        pipeline: SendPipeline,
        *,
        throttle_state: Optional[ThrottleState] = None,
        worker_count: Optional[int] = None,
        poll_timeout: float = 5.0,
    ):
        self.queue = queue
        self.pipeline = pipeline
        self.throttle_state = throttle_state or pipeline.precheck.throttle_state
        self.worker_count = int(worker_count or SEND_SETTINGS["worker_count"])
        self.poll_timeout = poll_timeout
        self._threads: list[threading.Thread] = []
        self._stop_event = threading.Event()

    def start(self) -> None:
        if any(t.is_alive() for t in self._threads):  # pragma: no cover
            return
        self._stop_event.clear()
        self._threads = [
            threading.Thread(target=self._loop, name=f"send-worker-{i}", daemon=True)
            for i in range(self.worker_count)
        ]
        for thread in self._threads:
            thread.start()
        logger.info("Send workers started", worker_count=self.worker_count)

    def stop(self, *, join_timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        logger.info("Send worker stop requested")
        if join_timeout is not None:
            for thread in self._threads:
                thread.join(timeout=join_timeout)

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                item = self.queue.dequeue(timeout=self.poll_timeout)
                if item is None:
                    continue
                if not isinstance(item.job, SendQueueMessageContent):
                    logger.warning("Skipping unknown job type", job_type=type(item.job).__name__)
                    continue
                self.process(item)
            except Exception as e:  # pragma: no cover - loop must survive queue errors
                logger.error("Worker loop error", error=str(e), exc_info=True)
                time.sleep(1)

    def process(self, item: QueueItem) -> Optional[SendJobStatus]:
        """Run one queue message through the pipeline and settle it with the queue."""
        job: SendQueueMessageContent = item.job
        try:
            status = asyncio.run(
                self.pipeline.run(
                    job,
                    delivery_count=item.delivery_count,
                    enqueued_at=item.enqueued_at,
                    message_id=item.message_id,
                )
            )
        except Exception as e:
            LAST_EXCEPTIONS.append({
                "message_id": item.message_id,
                "notification_id": job.notification_id,
                "recipient_id": job.recipient.recipient_id,
                "error": str(e),
                "type": type(e).__name__,
            })
            redelivered = self.queue.abandon(item)
            logger.error(
                "Send job failed",
                message_id=item.message_id,
                delivery_count=item.delivery_count,
                redelivered=redelivered,
                error=str(e),
            )
            return None

        if status == SendJobStatus.DEFERRED:
            # Skipped jobs wait out the remaining throttle window, never less than a second
            delay = max(1.0, remaining_seconds(self.throttle_state))
            self.queue.enqueue(job, delay_seconds=delay)
            logger.debug("Deferred job requeued", message_id=item.message_id, delay_seconds=round(delay, 2))
        return status


def create_queue() -> Union[DelayQueue, RedisQueue]:
    """Create and return the appropriate queue based on configuration."""
    if QUEUE_SETTINGS.get("use_redis", False):
        try:
            redis_queue = RedisQueue()
            if redis_queue.health_check():
                logger.info("Using Redis-backed send queue")
                return redis_queue
            logger.warning("Redis not reachable, using in-memory send queue")
        except redis.RedisError as e:
            logger.warning("Error initializing Redis queue, falling back to in-memory queue", error=str(e))

    logger.info("Using in-memory send queue")
    return DelayQueue()


__all__ = ["SendWorker", "LAST_EXCEPTIONS", "LAST_EXCEPTIONS_MAXLEN", "create_queue"]
