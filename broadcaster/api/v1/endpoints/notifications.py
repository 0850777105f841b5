"""
Notification draft endpoints.
"""
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from broadcaster.api.deps import get_db
from broadcaster.models.db import Notification
from broadcaster.models.schemas.notifications import NotificationCreate, NotificationRead
from broadcaster.utils import get_logger, log_business_event

router = APIRouter()
logger = get_logger(__name__)


@router.post(
    "/",
    response_model=NotificationRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create a notification draft"
)
async def create_notification(payload: NotificationCreate, db: Session = Depends(get_db)) -> NotificationRead:
    notification = Notification(
        title=payload.title,
        author=payload.author,
        content=payload.content,
        notes=payload.notes,
        is_draft=True,
    )
    db.add(notification)
    db.commit()
    db.refresh(notification)

    log_business_event(
        event_type="notification_draft_created",
        details={"title": notification.title, "author": notification.author},
        notification_id=notification.id,
    )
    return NotificationRead.model_validate(notification)


@router.get(
    "/drafts",
    response_model=List[NotificationRead],
    summary="List notification drafts"
)
async def list_drafts(db: Session = Depends(get_db)) -> List[NotificationRead]:
    drafts = (
        db.query(Notification)
        .filter(Notification.is_draft == True)  # noqa: E712
        .order_by(Notification.created_at.desc())
        .all()
    )
    return [NotificationRead.model_validate(d) for d in drafts]
