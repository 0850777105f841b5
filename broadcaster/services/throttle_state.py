"""Shared "do not send until" timestamp read by every send job.

The only mutation is ``push_forward(until)``: a monotonic max, so concurrent
throttled jobs can never shorten a delay another job already set. Reads are
lock-free and tolerate staleness; a job that reads a slightly old value just
gets throttled by the transport again.

Backends:
- ``InMemoryThrottleState``: one process, compare-and-set under a lock held
  only for the update itself.
- ``RedisThrottleState``: cluster-wide, the max is applied atomically by a Lua
  script on a single key. Falls back to an in-memory state if Redis errors.
"""
from __future__ import annotations

import threading
import time
from datetime import datetime
from typing import Optional, Protocol

import redis

from broadcaster.config import THROTTLE_SETTINGS
from broadcaster.utils import get_logger
from broadcaster.utils.time import from_epoch

logger = get_logger(__name__)

# KEYS[1] = state key, ARGV[1] = candidate epoch seconds. Returns the stored value.
_PUSH_FORWARD_LUA = """
local current = redis.call('GET', KEYS[1])
if (not current) or (tonumber(current) < tonumber(ARGV[1])) then
    redis.call('SET', KEYS[1], ARGV[1])
    return ARGV[1]
end
return current
"""


class ThrottleState(Protocol):
    def retry_after(self) -> float: ...
    def push_forward(self, until_ts: float) -> float: ...


def is_throttled(state: ThrottleState, now_ts: Optional[float] = None) -> bool:
    now_ts = time.time() if now_ts is None else now_ts
    return now_ts < state.retry_after()


def remaining_seconds(state: ThrottleState, now_ts: Optional[float] = None) -> float:
    now_ts = time.time() if now_ts is None else now_ts
    return max(0.0, state.retry_after() - now_ts)


def retry_after_utc(state: ThrottleState) -> Optional[datetime]:
    value = state.retry_after()
    return from_epoch(value) if value > 0 else None


class InMemoryThrottleState:
    """Process-wide throttle timestamp (epoch seconds, 0.0 = never throttled)."""

    def __init__(self) -> None:
        self._retry_after = 0.0
        self._lock = threading.Lock()

    def retry_after(self) -> float:
        return self._retry_after

    def push_forward(self, until_ts: float) -> float:
        with self._lock:
            if until_ts > self._retry_after:
                self._retry_after = until_ts
            return self._retry_after


class RedisThrottleState:
    def __init__(self, client: Optional[redis.Redis] = None, *, key: Optional[str] = None) -> None:
        self._key = key or str(THROTTLE_SETTINGS.get("redis_key", "broadcaster:send_retry_after"))
        self._client = client or redis.from_url(str(THROTTLE_SETTINGS.get("redis_url", "redis://localhost:6379/0")))
        self._push_script = self._client.register_script(_PUSH_FORWARD_LUA)
        self._fallback = InMemoryThrottleState()

    def retry_after(self) -> float:
        try:
            raw = self._client.get(self._key)
        except redis.RedisError as e:
            logger.warning("Throttle state read failed, using local fallback", error=str(e))
            return self._fallback.retry_after()
        if raw is None:
            return self._fallback.retry_after()
        value = float(raw.decode("utf-8") if isinstance(raw, bytes) else raw)
        return max(value, self._fallback.retry_after())

    def push_forward(self, until_ts: float) -> float:
        # Local copy keeps this process backing off even if Redis goes away
        self._fallback.push_forward(until_ts)
        try:
            stored = self._push_script(keys=[self._key], args=[repr(float(until_ts))])
        except redis.RedisError as e:
            logger.error("Throttle state update failed, using local fallback", error=str(e))
            return self._fallback.retry_after()
        value = float(stored.decode("utf-8") if isinstance(stored, bytes) else stored)
        return max(value, until_ts)


def create_throttle_state() -> ThrottleState:
    """Create the throttle state backend selected by THROTTLE_SETTINGS."""
    if THROTTLE_SETTINGS.get("use_redis", False):
        try:
            client = redis.from_url(str(THROTTLE_SETTINGS.get("redis_url", "redis://localhost:6379/0")))
            client.ping()
            logger.info("Using Redis-backed throttle state", key=THROTTLE_SETTINGS.get("redis_key"))
            return RedisThrottleState(client)
        except redis.RedisError as e:
            logger.warning("Redis throttle state unavailable, using in-memory state", error=str(e))
    return InMemoryThrottleState()


__all__ = [
    "ThrottleState",
    "InMemoryThrottleState",
    "RedisThrottleState",
    "create_throttle_state",
    "is_throttled",
    "remaining_seconds",
    "retry_after_utc",
]
