"""Redis-backed delay queue shared by every send worker process.

Features:
- FIFO delivery, optional delay (scheduled visibility) per message.
- Delivery count carried in the message envelope; ``abandon`` redelivers with
  ``delivery_count + 1`` or moves the envelope to the dead-letter list.
- Persistence across application restarts.
- Fallback to the in-memory queue if Redis is unavailable.

Data structures in Redis:
 1. List: ready key - serialized envelopes visible now
 2. Sorted Set: scheduled key - scores=ready_at_ts, members=serialized envelopes
 3. List: dead-letter key - envelopes that exhausted their delivery count

On enqueue:
  - If ready_at <= now -> push to ready list else scheduled sorted set.
On dequeue:
  - Promote any scheduled envelopes whose ready_at <= now to the ready list.
    Only the worker whose ZREM succeeds pushes the envelope, so concurrent
    promoters never duplicate a message.
  - Pop from the ready list (blocking pop with timeout when ``block``).
"""
from __future__ import annotations

import json
import threading
import time
from typing import Any, Optional

import redis

from broadcaster.config import QUEUE_SETTINGS
from broadcaster.jobs.queue import DelayQueue, QueueItem, new_message_id
from broadcaster.jobs.send_job import SendQueueMessageContent
from broadcaster.utils import get_logger

logger = get_logger(__name__)


class RedisQueue:
    def __init__(self) -> None:
        self._redis_url: str = str(QUEUE_SETTINGS.get("redis_url", "redis://localhost:6379/0"))
        self._ready_key: str = str(QUEUE_SETTINGS.get("redis_ready_key", "broadcaster:send_queue:ready"))
        self._scheduled_key: str = str(QUEUE_SETTINGS.get("redis_scheduled_key", "broadcaster:send_queue:scheduled"))
        self._dead_letter_key: str = str(QUEUE_SETTINGS.get("redis_dead_letter_key", "broadcaster:send_queue:dead_letter"))
        self._health_check_timeout = float(QUEUE_SETTINGS.get("redis_health_check_timeout", 2.0))  # type: ignore[arg-type]
        self._warn_depth = int(QUEUE_SETTINGS.get("warn_depth", 10000))  # type: ignore[arg-type]
        self.max_delivery_count = int(QUEUE_SETTINGS.get("max_delivery_count", 10))  # type: ignore[arg-type]

        self._fallback_queue = DelayQueue(max_delivery_count=self.max_delivery_count)

        self._redis_client: Optional[redis.Redis] = None
        self._lock = threading.RLock()
        self._is_redis_active = False
        self._shutdown = False
        self._init_redis_client()

    def _init_redis_client(self) -> None:
        try:
            self._redis_client = redis.from_url(self._redis_url, socket_connect_timeout=self._health_check_timeout)
            self._redis_client.ping()
            self._is_redis_active = True
            logger.info("Connected to Redis successfully", url=self._redis_url)
        except (redis.RedisError, ConnectionError) as e:
            self._is_redis_active = False
            self._redis_client = None
            logger.warning("Failed to connect to Redis, using in-memory fallback queue", error=str(e))

    def health_check(self) -> bool:
        """Check if Redis is available and update status accordingly."""
        with self._lock:
            if self._redis_client is None:
                self._init_redis_client()
                return self._is_redis_active
        try:
            self._redis_client.ping()
            if not self._is_redis_active:
                logger.info("Redis connection restored")
            self._is_redis_active = True
            return True
        except (redis.RedisError, ConnectionError, AttributeError) as e:
            if self._is_redis_active:
                logger.warning("Redis connection lost, using in-memory fallback queue", error=str(e))
            self._is_redis_active = False
            return False

    # ----------------------------- serialization ----------------------------- #
    @staticmethod
    def _serialize(item: QueueItem) -> str:
        job = item.job
        if isinstance(job, SendQueueMessageContent):
            job_dict = job.model_dump(mode="json")
        else:
            raise TypeError(f"Unsupported job type {type(job).__name__}")
        return json.dumps({
            "job": job_dict,
            "message_id": item.message_id,
            "delivery_count": item.delivery_count,
            "enqueued_at": item.enqueued_at,
            "ready_at": item.ready_at,
            "seq": item.seq,
        })

    @staticmethod
    def _deserialize(raw: bytes | str) -> QueueItem:
        text = raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)
        data = json.loads(text)
        return QueueItem(
            job=SendQueueMessageContent.model_validate(data["job"]),
            message_id=data.get("message_id") or new_message_id(),
            delivery_count=int(data.get("delivery_count", 1)),
            enqueued_at=float(data.get("enqueued_at", time.time())),
            ready_at=float(data.get("ready_at", time.time())),
            seq=int(data.get("seq", 0)),
        )

    def _push(self, item: QueueItem) -> None:
        assert self._redis_client is not None
        serialized = self._serialize(item)
        if item.ready_at <= time.time():
            self._redis_client.rpush(self._ready_key, serialized)
        else:
            self._redis_client.zadd(self._scheduled_key, {serialized: item.ready_at})

    def _promote_scheduled(self) -> None:
        assert self._redis_client is not None
        due = self._redis_client.zrangebyscore(self._scheduled_key, 0, time.time())
        promoted = 0
        for raw in due or []:
            if self._redis_client.zrem(self._scheduled_key, raw):
                self._redis_client.rpush(self._ready_key, raw)
                promoted += 1
        if promoted:
            logger.debug("Promoted scheduled messages to ready list", count=promoted)

    # ----------------------------- public API ----------------------------- #
    def enqueue(self, job: Any, *, delay_seconds: float = 0.0) -> QueueItem:
        with self._lock:
            if self._shutdown:
                raise RuntimeError("Queue shutdown")
            if not self.health_check() or self._redis_client is None:
                logger.warning("Redis unavailable, falling back to in-memory queue")
                return self._fallback_queue.enqueue(job, delay_seconds=delay_seconds)

            now_ts = time.time()
            item = QueueItem(
                job=job,
                message_id=new_message_id(),
                delivery_count=1,
                enqueued_at=now_ts,
                ready_at=now_ts + max(0.0, delay_seconds),
                seq=int(now_ts * 1000),
            )
            try:
                self._push(item)
            except redis.RedisError as e:
                logger.error("Redis error during enqueue", error=str(e))
                self._is_redis_active = False
                return self._fallback_queue.enqueue(job, delay_seconds=delay_seconds)

            queue_depth = self.depth()
            if queue_depth >= self._warn_depth:
                logger.warning("Queue depth warning", depth=queue_depth)
            return item

    def dequeue(self, *, block: bool = True, timeout: Optional[float] = None) -> Optional[QueueItem]:
        if self._shutdown and self.depth() == 0:
            return None
        # No lock around the blocking pop: every worker thread shares this instance
        if not self.health_check() or self._redis_client is None:
            return self._fallback_queue.dequeue(block=block, timeout=timeout)
        try:
            self._promote_scheduled()
            if block:
                # BLPOP timeout 0 means forever; round sub-second waits up
                wait = 0 if timeout is None else max(1, int(timeout))
                result = self._redis_client.blpop([self._ready_key], timeout=wait)
                if not result:
                    return None
                _, raw = result
            else:
                raw = self._redis_client.lpop(self._ready_key)
                if raw is None:
                    return None
            return self._deserialize(raw)
        except redis.RedisError as e:
            logger.error("Redis error during dequeue", error=str(e))
            self._is_redis_active = False
            return self._fallback_queue.dequeue(block=block, timeout=timeout)

    def abandon(self, item: QueueItem) -> bool:
        """Redeliver a failed message or dead-letter it once its count is exhausted."""
        with self._lock:
            if not self.health_check() or self._redis_client is None:
                return self._fallback_queue.abandon(item)
            try:
                if item.delivery_count >= self.max_delivery_count:
                    self._redis_client.rpush(self._dead_letter_key, self._serialize(item))
                    logger.warning(
                        "Message moved to dead-letter list",
                        message_id=item.message_id,
                        delivery_count=item.delivery_count,
                    )
                    return False
                item.delivery_count += 1
                item.ready_at = time.time()
                self._push(item)
                return True
            except redis.RedisError as e:
                logger.error("Redis error during abandon", error=str(e))
                self._is_redis_active = False
                return self._fallback_queue.abandon(item)

    def dead_letters(self) -> list[QueueItem]:
        with self._lock:
            if not self.health_check() or self._redis_client is None:
                return self._fallback_queue.dead_letters()
            try:
                raw_items = self._redis_client.lrange(self._dead_letter_key, 0, -1)
                return [self._deserialize(raw) for raw in raw_items or []]
            except redis.RedisError as e:
                logger.error("Error reading dead-letter list", error=str(e))
                self._is_redis_active = False
                return self._fallback_queue.dead_letters()

    def shutdown(self) -> None:
        with self._lock:
            self._shutdown = True
            self._fallback_queue.shutdown()

    def purge(self) -> None:
        """Remove all queued messages (for testing)."""
        with self._lock:
            self._fallback_queue.purge()
            if not self.health_check() or self._redis_client is None:
                return
            try:
                self._redis_client.delete(self._ready_key, self._scheduled_key, self._dead_letter_key)
                logger.info("Redis queue purged")
            except redis.RedisError as e:
                logger.error("Error purging Redis queue", error=str(e))
                self._is_redis_active = False

    @staticmethod
    def _safe_int(value: Any) -> int:
        if value is None:
            return 0
        try:
            if isinstance(value, bytes):
                value = value.decode("utf-8")
            return int(value)
        except (ValueError, TypeError) as e:
            logger.warning("Failed to convert Redis reply to int", value_type=type(value).__name__, error=str(e))
            return 0

    def _counts(self) -> tuple[int, int, int]:
        assert self._redis_client is not None
        return (
            self._safe_int(self._redis_client.llen(self._ready_key)),
            self._safe_int(self._redis_client.zcard(self._scheduled_key)),
            self._safe_int(self._redis_client.llen(self._dead_letter_key)),
        )

    def depth(self) -> int:
        with self._lock:
            if not self.health_check() or self._redis_client is None:
                return self._fallback_queue.depth()
            try:
                ready, scheduled, _ = self._counts()
                return ready + scheduled
            except redis.RedisError as e:
                logger.error("Error getting queue depth", error=str(e))
                self._is_redis_active = False
                return self._fallback_queue.depth()

    def __len__(self) -> int:
        return self.depth()

    def snapshot(self) -> dict:
        with self._lock:
            if not self.health_check() or self._redis_client is None:
                snapshot = self._fallback_queue.snapshot()
                snapshot["redis_active"] = False
                return snapshot
            try:
                ready, scheduled, dead = self._counts()
                return {
                    "depth": ready + scheduled,
                    "ready": ready,
                    "scheduled": scheduled,
                    "dead_letter": dead,
                    "shutdown": self._shutdown,
                    "redis_active": True,
                    "redis_url": self._redis_url,
                }
            except redis.RedisError as e:
                logger.error("Error getting queue snapshot", error=str(e))
                self._is_redis_active = False
                snapshot = self._fallback_queue.snapshot()
                snapshot["redis_active"] = False
                return snapshot


__all__ = ["RedisQueue"]
