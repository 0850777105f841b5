"""Fan a sent notification out into one send job per recipient."""
from __future__ import annotations

from typing import Any, Iterable, Mapping, Union

from broadcaster.jobs.send_job import RecipientData, SendQueueMessageContent
from broadcaster.services.delay_sending import SendQueueProtocol
from broadcaster.utils import get_logger, log_business_event

logger = get_logger(__name__)

RecipientInput = Union[RecipientData, Mapping[str, Any]]


def send_triggers(queue: SendQueueProtocol, notification_id: str, recipients: Iterable[RecipientInput]) -> int:
    """Enqueue one send job per recipient; returns the number enqueued.

    Duplicate recipient ids are enqueued once. Result rows are only created by
    the send pipeline itself.
    """
    seen: set[str] = set()
    for recipient in recipients:
        data = recipient if isinstance(recipient, RecipientData) else RecipientData.model_validate(recipient)
        if data.recipient_id in seen:
            continue
        seen.add(data.recipient_id)
        queue.enqueue(SendQueueMessageContent(notification_id=notification_id, recipient=data))

    log_business_event(
        "send_triggers_enqueued",
        {"recipients_enqueued": len(seen)},
        notification_id=notification_id,
    )
    return len(seen)


__all__ = ["send_triggers"]
