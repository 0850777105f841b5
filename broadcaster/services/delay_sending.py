"""Delay/requeue stage: global backoff after the bot platform throttles us."""
from __future__ import annotations

import time
from typing import Any, Optional, Protocol

from broadcaster.jobs.send_job import SendQueueMessageContent
from broadcaster.services.throttle_state import ThrottleState
from broadcaster.utils import get_logger

logger = get_logger(__name__)


class SendQueueProtocol(Protocol):
    def enqueue(self, job: Any, *, delay_seconds: float = 0.0) -> Any: ...


class DelaySendingNotificationService:
    def __init__(self, throttle_state: ThrottleState, queue: SendQueueProtocol):
        self.throttle_state = throttle_state
        self.queue = queue

    def delay(self, job: SendQueueMessageContent, retry_delay_seconds: float, *, reason: Optional[str] = None) -> float:
        """Push the shared throttle window forward and requeue ``job`` behind it.

        Returns the effective retry-after timestamp (which may be later than
        ours if another job already pushed it further).
        """
        until_ts = time.time() + retry_delay_seconds
        effective = self.throttle_state.push_forward(until_ts)
        self.queue.enqueue(job, delay_seconds=retry_delay_seconds)
        logger.warning(
            "Send throttled, job requeued",
            notification_id=job.notification_id,
            recipient_id=job.recipient.recipient_id,
            retry_delay_seconds=retry_delay_seconds,
            retry_after=effective,
            reason=reason or "send_throttled",
        )
        return effective


__all__ = ["DelaySendingNotificationService", "SendQueueProtocol"]
