"""
Sending drafts and reporting on sent notifications.
"""
import time
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from broadcaster.api.deps import get_db, get_send_queue
from broadcaster.models.db import DeliveryStatus, Notification, SentNotificationData
from broadcaster.models.schemas.base import ResponseBase
from broadcaster.models.schemas.notifications import (
    DeliveryCounts,
    SendNotificationRequest,
    SentNotificationDetail,
    SentNotificationSummary,
)
from broadcaster.services.fanout import send_triggers
from broadcaster.utils import get_logger, log_performance
from broadcaster.utils.time import utc_now

router = APIRouter()
logger = get_logger(__name__)

_COUNT_FIELDS = {
    DeliveryStatus.SUCCEEDED: "succeeded",
    DeliveryStatus.FAILED: "failed",
    DeliveryStatus.THROTTLED: "throttled",
    DeliveryStatus.RECIPIENT_NOT_FOUND: "recipient_not_found",
    DeliveryStatus.RETRYING: "retrying",
    DeliveryStatus.FAULTED: "faulted",
}


@router.post(
    "/",
    response_model=ResponseBase,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Send a notification draft"
)
async def send_notification(
    payload: SendNotificationRequest,
    db: Session = Depends(get_db),
    queue=Depends(get_send_queue),
) -> ResponseBase:
    """Enqueue one send job per recipient, then mark the draft as sent.

    The draft flag only flips once every recipient is queued, so a failed
    fan-out can be retried.
    """
    start_time = time.time()
    notification = db.get(Notification, payload.notification_id)
    if notification is None:
        raise HTTPException(status_code=404, detail=f"Notification {payload.notification_id} not found")
    if not notification.is_draft:
        raise HTTPException(status_code=409, detail="Notification has already been sent")

    try:
        enqueued = send_triggers(queue, notification.id, payload.recipients)
    except (OverflowError, RuntimeError) as e:
        logger.error("Send fan-out failed, draft kept", notification_id=notification.id, error=str(e))
        raise HTTPException(status_code=503, detail=f"Send queue unavailable: {e}")

    notification.is_draft = False
    notification.sent_at = utc_now()
    notification.total_recipients = enqueued
    db.commit()
    logger.info("Notification sent", notification_id=notification.id, recipients_enqueued=enqueued)
    log_performance(
        operation="send_notification",
        duration_ms=(time.time() - start_time) * 1000,
        additional_data={"recipients_enqueued": enqueued},
    )
    return ResponseBase(
        success=True,
        message=f"Enqueued {enqueued} send job(s)",
        data={
            "notification_id": notification.id,
            "recipients_enqueued": enqueued,
            "queue_depth": queue.depth(),
        },
    )


@router.get(
    "/",
    response_model=List[SentNotificationSummary],
    summary="List sent notifications"
)
async def list_sent_notifications(db: Session = Depends(get_db)) -> List[SentNotificationSummary]:
    sent = (
        db.query(Notification)
        .filter(Notification.is_draft == False)  # noqa: E712
        .order_by(Notification.sent_at.desc())
        .all()
    )
    return [SentNotificationSummary.model_validate(n) for n in sent]


@router.get(
    "/{notification_id}",
    response_model=SentNotificationDetail,
    summary="Sent notification details with delivery counts"
)
async def get_sent_notification(notification_id: str, db: Session = Depends(get_db)) -> SentNotificationDetail:
    notification = db.get(Notification, notification_id)
    if notification is None or notification.is_draft:
        raise HTTPException(status_code=404, detail=f"Sent notification {notification_id} not found")

    rows = (
        db.query(SentNotificationData.delivery_status, func.count(SentNotificationData.id))
        .filter(SentNotificationData.notification_id == notification_id)
        .group_by(SentNotificationData.delivery_status)
        .all()
    )
    counts = DeliveryCounts()
    recorded = 0
    for delivery_status, count in rows:
        setattr(counts, _COUNT_FIELDS[DeliveryStatus(delivery_status)], count)
        recorded += count
    counts.pending = max(0, (notification.total_recipients or 0) - recorded)

    return SentNotificationDetail(
        id=notification.id,
        title=notification.title,
        author=notification.author,
        sent_at=notification.sent_at,
        total_recipients=notification.total_recipients,
        content=notification.content,
        counts=counts,
    )
