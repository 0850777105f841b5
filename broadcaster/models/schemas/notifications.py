"""
Pydantic schemas for notification drafts and sent-notification reporting.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from broadcaster.jobs.send_job import RecipientData


class NotificationCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    author: Optional[str] = None
    content: Dict[str, Any] = Field(description="Ready-to-send message payload for the bot platform")
    notes: Optional[str] = None


class NotificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    author: Optional[str] = None
    content: Dict[str, Any]
    is_draft: bool
    total_recipients: Optional[int] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None


class SendNotificationRequest(BaseModel):
    """Send a draft to the given recipients."""
    notification_id: str = Field(min_length=1)
    recipients: List[RecipientData] = Field(min_length=1)


class SentNotificationSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    author: Optional[str] = None
    sent_at: Optional[datetime] = None
    total_recipients: Optional[int] = None


class DeliveryCounts(BaseModel):
    succeeded: int = 0
    failed: int = 0
    throttled: int = Field(0, description="Sends that ran out of attempts with 429 as the last status code")
    recipient_not_found: int = 0
    retrying: int = 0
    faulted: int = 0
    pending: int = Field(
        0, description="Recipients with no recorded result yet, including jobs waiting out a throttle window"
    )


class SentNotificationDetail(SentNotificationSummary):
    content: Dict[str, Any]
    counts: DeliveryCounts
