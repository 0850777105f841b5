"""Decide whether a send job should be processed now.

Read-only: it looks at the shared throttle state and nothing else, so
concurrent prechecks never interfere with each other and a skipped job leaves
no trace in the transport or the result store.
"""
from __future__ import annotations

import time

from broadcaster.jobs.send_job import SendQueueMessageContent
from broadcaster.services.throttle_state import ThrottleState
from broadcaster.utils import get_logger

logger = get_logger(__name__)


class PrecheckService:
    def __init__(self, throttle_state: ThrottleState):
        self.throttle_state = throttle_state

    def should_process(self, job: SendQueueMessageContent, retry_delay_seconds: float) -> bool:
        now_ts = time.time()
        retry_after = self.throttle_state.retry_after()
        if now_ts < retry_after:
            logger.info(
                "Send deferred, system throttle window active",
                notification_id=job.notification_id,
                recipient_id=job.recipient.recipient_id,
                remaining_seconds=round(retry_after - now_ts, 2),
                retry_delay_seconds=retry_delay_seconds,
            )
            return False
        return True


__all__ = ["PrecheckService"]
