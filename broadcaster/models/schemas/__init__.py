from .base import ResponseBase
from .notifications import (
    NotificationCreate,
    NotificationRead,
    SendNotificationRequest,
    SentNotificationSummary,
    SentNotificationDetail,
    DeliveryCounts,
)

__all__ = [
    "ResponseBase",
    "NotificationCreate",
    "NotificationRead",
    "SendNotificationRequest",
    "SentNotificationSummary",
    "SentNotificationDetail",
    "DeliveryCounts",
]
