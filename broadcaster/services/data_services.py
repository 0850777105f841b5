"""Read/write helpers for notification metadata and cached recipient conversations."""
from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from broadcaster.models.db import Notification, UserConversation
from broadcaster.utils import get_logger

logger = get_logger(__name__)

SessionFactory = Callable[[], Session]


class NotificationNotFoundError(LookupError):
    pass


class NotificationDataService:
    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    def get_content(self, notification_id: str) -> Dict[str, Any]:
        session = self.session_factory()
        try:
            notification = session.get(Notification, notification_id)
            if notification is None:
                raise NotificationNotFoundError(f"Notification {notification_id} not found")
            return dict(notification.content or {})
        finally:
            session.close()


class UserDataService:
    """Conversation cache so a recipient's conversation is only created once."""

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    def get_conversation(self, recipient_id: str) -> Optional[UserConversation]:
        session = self.session_factory()
        try:
            row = session.get(UserConversation, recipient_id)
            if row is not None:
                session.expunge(row)
            return row
        finally:
            session.close()

    def save_conversation(self, recipient_id: str, conversation_id: str, service_url: Optional[str]) -> None:
        session = self.session_factory()
        try:
            row = session.get(UserConversation, recipient_id)
            if row is None:
                session.add(UserConversation(
                    recipient_id=recipient_id,
                    conversation_id=conversation_id,
                    service_url=service_url,
                ))
            else:
                row.conversation_id = conversation_id
                row.service_url = service_url
            try:
                session.commit()
            except IntegrityError:
                # Another worker cached the same recipient first; last write wins
                session.rollback()
                session.merge(UserConversation(
                    recipient_id=recipient_id,
                    conversation_id=conversation_id,
                    service_url=service_url,
                ))
                session.commit()
            logger.debug("Conversation cached", recipient_id=recipient_id, conversation_id=conversation_id)
        finally:
            session.close()


__all__ = ["NotificationDataService", "UserDataService", "NotificationNotFoundError", "SessionFactory"]
