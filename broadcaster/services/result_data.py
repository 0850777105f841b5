"""Result recording stage: one row per (notification, recipient), fully replaced on every write."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from broadcaster.models.db import SentNotificationData
from broadcaster.models.db.enums import DeliveryStatus
from broadcaster.models.db.sent_notification_data import (
    FAULTED_AND_RETRYING_STATUS_CODE,
    FINAL_FAULTED_STATUS_CODE,
)
from broadcaster.services.data_services import SessionFactory
from broadcaster.services.send_notification import (
    NOT_FOUND_STATUS_CODE,
    THROTTLED_STATUS_CODE,
    DeliveryOutcome,
    SendResultType,
    is_success,
)
from broadcaster.utils import get_logger, log_business_event
from broadcaster.utils.time import utc_now

logger = get_logger(__name__)


@dataclass(frozen=True)
class ResultFields:
    status_code: int
    all_status_codes: str
    total_throttle_count: int
    error_message: Optional[str] = None

    @classmethod
    def from_outcome(cls, outcome: DeliveryOutcome) -> "ResultFields":
        return cls(
            status_code=outcome.status_code,
            all_status_codes=outcome.all_status_codes_csv,
            total_throttle_count=outcome.total_throttle_count,
            error_message=outcome.error_message,
        )


def delivery_status_for(status_code: int) -> DeliveryStatus:
    if is_success(status_code):
        return DeliveryStatus.SUCCEEDED
    if status_code == NOT_FOUND_STATUS_CODE:
        return DeliveryStatus.RECIPIENT_NOT_FOUND
    if status_code == THROTTLED_STATUS_CODE:
        return DeliveryStatus.THROTTLED
    if status_code == FAULTED_AND_RETRYING_STATUS_CODE:
        return DeliveryStatus.RETRYING
    if status_code == FINAL_FAULTED_STATUS_CODE:
        return DeliveryStatus.FAULTED
    return DeliveryStatus.FAILED


class ManageResultDataService:
    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    def record(
        self,
        notification_id: str,
        recipient_id: str,
        result: DeliveryOutcome | ResultFields,
        *,
        is_from_conversation_creation: bool = False,
    ) -> DeliveryStatus:
        fields = ResultFields.from_outcome(result) if isinstance(result, DeliveryOutcome) else result
        status = delivery_status_for(fields.status_code)
        if (
            status == DeliveryStatus.SUCCEEDED
            and isinstance(result, DeliveryOutcome)
            and result.result_type != SendResultType.SUCCEEDED
        ):
            # A 2xx that yielded no usable conversation is still a failed send
            status = DeliveryStatus.FAILED
        values = {
            "status_code": fields.status_code,
            "all_status_codes": fields.all_status_codes,
            "total_throttle_count": fields.total_throttle_count,
            "is_status_code_from_create_conversation": is_from_conversation_creation,
            "delivery_status": status,
            "error_message": fields.error_message,
            "sent_at": utc_now(),
        }

        session = self.session_factory()
        try:
            try:
                self._upsert(session, notification_id, recipient_id, values)
                session.commit()
            except IntegrityError:
                # Lost the first-insert race on the unique key; the row exists now
                session.rollback()
                self._upsert(session, notification_id, recipient_id, values)
                session.commit()
        finally:
            session.close()

        log_business_event(
            f"send_{status.value.lower()}",
            {
                "status_code": fields.status_code,
                "all_status_codes": fields.all_status_codes,
                "total_throttle_count": fields.total_throttle_count,
                "from_create_conversation": is_from_conversation_creation,
            },
            notification_id=notification_id,
            recipient_id=recipient_id,
        )
        return status

    @staticmethod
    def _upsert(session, notification_id: str, recipient_id: str, values: dict) -> None:
        row = session.execute(
            select(SentNotificationData).where(
                SentNotificationData.notification_id == notification_id,
                SentNotificationData.recipient_id == recipient_id,
            )
        ).scalar_one_or_none()
        if row is None:
            session.add(SentNotificationData(notification_id=notification_id, recipient_id=recipient_id, **values))
            session.flush()
            return
        for key, value in values.items():
            setattr(row, key, value)


__all__ = ["ManageResultDataService", "ResultFields", "delivery_status_for"]
