from .notifications import Notification
from .sent_notification_data import (
    SentNotificationData,
    FINAL_FAULTED_STATUS_CODE,
    FAULTED_AND_RETRYING_STATUS_CODE,
)
from .user_conversations import UserConversation
from .enums import DeliveryStatus, RecipientType

__all__ = [
    "Notification",
    "SentNotificationData",
    "FINAL_FAULTED_STATUS_CODE",
    "FAULTED_AND_RETRYING_STATUS_CODE",
    "UserConversation",
    "DeliveryStatus",
    "RecipientType",
]
