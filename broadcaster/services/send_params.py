"""Resolve a send job into ready-to-send delivery parameters.

Resolution order for the conversation:
1. the conversation id carried by the job itself;
2. the cached conversation for the recipient;
3. a channel recipient's own id;
4. a new conversation opened through the transport (then cached).

When opening the conversation fails, the parameters come back with
``force_abort`` set and the classified ``creation_outcome``; nothing else is
written. The orchestrator decides what an abort means (global backoff for a
throttle, a result record for a dead recipient).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from broadcaster.config import BOT_API_BASE_URL, SEND_SETTINGS
from broadcaster.jobs.send_job import SendQueueMessageContent
from broadcaster.models.db.enums import RecipientType
from broadcaster.services.data_services import NotificationDataService, UserDataService
from broadcaster.services.send_notification import DeliveryOutcome, SendNotificationService, SendResultType
from broadcaster.utils import get_logger

logger = get_logger(__name__)


@dataclass
class DeliveryParameters:
    recipient_id: str
    content: Optional[Dict[str, Any]] = None
    service_url: str = ""
    conversation_id: Optional[str] = None
    force_abort: bool = False
    abort_reason: Optional[str] = None
    creation_outcome: Optional[DeliveryOutcome] = None


class SendNotificationParamsService:
    def __init__(
        self,
        notification_data: NotificationDataService,
        user_data: UserDataService,
        send_service: SendNotificationService,
        *,
        default_service_url: str = BOT_API_BASE_URL,
    ):
        self.notification_data = notification_data
        self.user_data = user_data
        self.send_service = send_service
        self.default_service_url = default_service_url

    async def resolve(self, job: SendQueueMessageContent, *, max_attempts: Optional[int] = None) -> DeliveryParameters:
        recipient = job.recipient
        content = self.notification_data.get_content(job.notification_id)

        cached = None
        if not recipient.conversation_id:
            cached = self.user_data.get_conversation(recipient.recipient_id)

        service_url = (
            recipient.service_url
            or (cached.service_url if cached is not None else None)
            or self.default_service_url
        )
        params = DeliveryParameters(recipient_id=recipient.recipient_id, content=content, service_url=service_url)

        if recipient.conversation_id:
            params.conversation_id = recipient.conversation_id
            return params
        if cached is not None:
            params.conversation_id = cached.conversation_id
            return params
        if recipient.recipient_type == RecipientType.CHANNEL:
            params.conversation_id = recipient.recipient_id
            return params

        attempts = int(max_attempts or SEND_SETTINGS["max_number_of_attempts"])
        outcome, conversation_id = await self.send_service.create_conversation(recipient, service_url, attempts)
        if outcome.result_type != SendResultType.SUCCEEDED or not conversation_id:
            logger.warning(
                "Conversation creation failed, aborting send",
                notification_id=job.notification_id,
                recipient_id=recipient.recipient_id,
                result_type=outcome.result_type.value,
                status_codes=outcome.all_status_codes_csv,
            )
            params.force_abort = True
            params.abort_reason = f"create_conversation_{outcome.result_type.value.lower()}"
            params.creation_outcome = outcome
            return params

        self.user_data.save_conversation(recipient.recipient_id, conversation_id, service_url)
        params.conversation_id = conversation_id
        return params


__all__ = ["DeliveryParameters", "SendNotificationParamsService"]
