from __future__ import annotations
"""SQLAlchemy model for notification metadata (drafts and sent notifications)."""
import uuid
from sqlalchemy import String, Text, DateTime, Boolean, JSON
from sqlalchemy.orm import relationship, Mapped, mapped_column
from sqlalchemy.sql import func
from typing import TYPE_CHECKING

from broadcaster.database import Base

if TYPE_CHECKING:  # pragma: no cover
    from .sent_notification_data import SentNotificationData


def _new_id() -> str:
    return uuid.uuid4().hex


class Notification(Base):
    __tablename__ = "notifications"
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String, nullable=False)
    author: Mapped[str | None] = mapped_column(String, nullable=True)
    # Ready-to-send transport payload; stored verbatim, never rendered here.
    content: Mapped[dict] = mapped_column(JSON, nullable=False)
    is_draft: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    total_recipients: Mapped[int | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    sent_at: Mapped[DateTime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    results: Mapped[list["SentNotificationData"]] = relationship(
        "SentNotificationData", back_populates="notification", cascade="all, delete-orphan"
    )
