"""Per-recipient send pipeline (one queue message in, one SendJobStatus out).

Stages run in a fixed order:
precheck -> parameter resolution -> delivery attempt -> record or delay.

Domain outcomes (throttled, recipient gone, failed send) come back as a
``SendJobStatus``. Only unexpected failures raise: the pipeline first records a
faulted result for the recipient (-2 while the queue will redeliver, -1 on the
last delivery) and then re-raises so the queue can redeliver or dead-letter.
"""
from __future__ import annotations

import enum
import time
from typing import Optional, Union

from broadcaster.config import SEND_SETTINGS
from broadcaster.database import SessionLocal
from broadcaster.integrations import BotTransport, create_transport
from broadcaster.jobs.send_job import SendQueueMessageContent
from broadcaster.models.db.sent_notification_data import (
    FAULTED_AND_RETRYING_STATUS_CODE,
    FINAL_FAULTED_STATUS_CODE,
)
from broadcaster.services.data_services import NotificationDataService, SessionFactory, UserDataService
from broadcaster.services.delay_sending import DelaySendingNotificationService, SendQueueProtocol
from broadcaster.services.precheck import PrecheckService
from broadcaster.services.result_data import ManageResultDataService, ResultFields
from broadcaster.services.send_notification import SendNotificationService, SendResultType
from broadcaster.services.send_params import SendNotificationParamsService
from broadcaster.services.throttle_state import ThrottleState, create_throttle_state
from broadcaster.utils import get_logger, log_performance

logger = get_logger(__name__)


class SendJobStatus(str, enum.Enum):
    DEFERRED = "DEFERRED"
    ABORTED = "ABORTED"
    SUCCEEDED = "SUCCEEDED"
    THROTTLED = "THROTTLED"
    RECIPIENT_NOT_FOUND = "RECIPIENT_NOT_FOUND"
    FAILED = "FAILED"


_STATUS_BY_RESULT = {
    SendResultType.SUCCEEDED: SendJobStatus.SUCCEEDED,
    SendResultType.RECIPIENT_NOT_FOUND: SendJobStatus.RECIPIENT_NOT_FOUND,
    SendResultType.FAILED: SendJobStatus.FAILED,
}


class SendPipeline:
    def __init__(
        self,
        *,
        precheck: PrecheckService,
        params: SendNotificationParamsService,
        sender: SendNotificationService,
        delay: DelaySendingNotificationService,
        results: ManageResultDataService,
        max_attempts: Optional[int] = None,
        retry_delay_seconds: Optional[float] = None,
        max_delivery_count: Optional[int] = None,
    ):
        self.precheck = precheck
        self.params = params
        self.sender = sender
        self.delay = delay
        self.results = results
        self._max_attempts = max_attempts
        self._retry_delay_seconds = retry_delay_seconds
        self._max_delivery_count = max_delivery_count

    # Read per call so runtime changes to SEND_SETTINGS take effect
    @property
    def max_attempts(self) -> int:
        return int(self._max_attempts or SEND_SETTINGS["max_number_of_attempts"])

    @property
    def retry_delay_seconds(self) -> float:
        value = self._retry_delay_seconds
        return float(SEND_SETTINGS["send_retry_delay_seconds"] if value is None else value)

    @property
    def max_delivery_count(self) -> int:
        return int(self._max_delivery_count or SEND_SETTINGS["max_delivery_count_for_dead_letter"])

    async def run(
        self,
        message: Union[str, bytes, SendQueueMessageContent],
        *,
        delivery_count: int = 1,
        enqueued_at: Optional[float] = None,
        message_id: Optional[str] = None,
    ) -> SendJobStatus:
        job = message if isinstance(message, SendQueueMessageContent) else SendQueueMessageContent.from_json(message)
        started = time.perf_counter()
        status: Optional[SendJobStatus] = None
        try:
            status = await self._process(job)
            return status
        except Exception as e:
            self._record_fault(job, delivery_count, e, message_id)
            raise
        finally:
            log_performance(
                "send_job",
                (time.perf_counter() - started) * 1000,
                {
                    "notification_id": job.notification_id,
                    "recipient_id": job.recipient.recipient_id,
                    "status": status.value if status else "FAULTED",
                    "delivery_count": delivery_count,
                    "queue_wait_s": round(time.time() - enqueued_at, 3) if enqueued_at else None,
                },
            )

    async def _process(self, job: SendQueueMessageContent) -> SendJobStatus:
        retry_delay = self.retry_delay_seconds
        if not self.precheck.should_process(job, retry_delay):
            return SendJobStatus.DEFERRED

        params = await self.params.resolve(job, max_attempts=self.max_attempts)
        if params.force_abort:
            return self._handle_abort(job, params.creation_outcome, params.abort_reason, retry_delay)

        outcome = await self.sender.send(params, self.max_attempts)
        if outcome.result_type == SendResultType.THROTTLED:
            self.delay.delay(job, retry_delay, reason="send_throttled")
            return SendJobStatus.THROTTLED

        self.results.record(job.notification_id, job.recipient.recipient_id, outcome)
        return _STATUS_BY_RESULT[outcome.result_type]

    def _handle_abort(self, job, creation_outcome, reason, retry_delay: float) -> SendJobStatus:
        logger.warning(
            "Send aborted",
            notification_id=job.notification_id,
            recipient_id=job.recipient.recipient_id,
            reason=reason,
        )
        if creation_outcome is None:
            return SendJobStatus.ABORTED
        if creation_outcome.result_type == SendResultType.THROTTLED:
            self.delay.delay(job, retry_delay, reason=reason)
        else:
            self.results.record(
                job.notification_id,
                job.recipient.recipient_id,
                creation_outcome,
                is_from_conversation_creation=True,
            )
        return SendJobStatus.ABORTED

    def _record_fault(
        self, job: SendQueueMessageContent, delivery_count: int, error: Exception, message_id: Optional[str]
    ) -> None:
        if delivery_count < self.max_delivery_count:
            code = FAULTED_AND_RETRYING_STATUS_CODE
        else:
            code = FINAL_FAULTED_STATUS_CODE
        logger.error(
            "Send job faulted",
            notification_id=job.notification_id,
            recipient_id=job.recipient.recipient_id,
            message_id=message_id,
            delivery_count=delivery_count,
            status_code=code,
            error=str(error),
            exc_info=True,
        )
        try:
            self.results.record(
                job.notification_id,
                job.recipient.recipient_id,
                ResultFields(
                    status_code=code,
                    all_status_codes=f"{code},",
                    total_throttle_count=0,
                    error_message=f"{type(error).__name__}: {error}",
                ),
            )
        except Exception as record_error:
            # The send failure itself is re-raised by the caller
            logger.error(
                "Failed to record faulted send result",
                notification_id=job.notification_id,
                recipient_id=job.recipient.recipient_id,
                error=str(record_error),
            )


def build_send_pipeline(
    queue: SendQueueProtocol,
    *,
    session_factory: SessionFactory = SessionLocal,
    transport: Optional[BotTransport] = None,
    throttle_state: Optional[ThrottleState] = None,
) -> SendPipeline:
    """Wire the pipeline stages from configuration."""
    throttle_state = throttle_state or create_throttle_state()
    sender = SendNotificationService(transport or create_transport())
    return SendPipeline(
        precheck=PrecheckService(throttle_state),
        params=SendNotificationParamsService(
            NotificationDataService(session_factory),
            UserDataService(session_factory),
            sender,
        ),
        sender=sender,
        delay=DelaySendingNotificationService(throttle_state, queue),
        results=ManageResultDataService(session_factory),
    )


__all__ = ["SendPipeline", "SendJobStatus", "build_send_pipeline"]
