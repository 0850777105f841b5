from __future__ import annotations
"""SQLAlchemy model for per-recipient send results."""
from typing import TYPE_CHECKING
from sqlalchemy import Integer, String, Text, DateTime, ForeignKey, Enum, Boolean, UniqueConstraint
from sqlalchemy.orm import relationship, Mapped, mapped_column

from broadcaster.database import Base
from .enums import DeliveryStatus

if TYPE_CHECKING:  # pragma: no cover
    from .notifications import Notification

# Pipeline-owned codes stored alongside transport HTTP codes.
FINAL_FAULTED_STATUS_CODE = -1
FAULTED_AND_RETRYING_STATUS_CODE = -2


class SentNotificationData(Base):
    """Latest outcome for one recipient of one notification (single row, replaced on every write)."""
    __tablename__ = "sent_notification_data"
    __table_args__ = (
        UniqueConstraint("notification_id", "recipient_id", name="uq_sent_notification_recipient"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    notification_id: Mapped[str] = mapped_column(String(64), ForeignKey("notifications.id"), nullable=False, index=True)
    recipient_id: Mapped[str] = mapped_column(String(128), nullable=False)

    status_code: Mapped[int] = mapped_column(Integer, nullable=False)
    # Comma-joined trail with a trailing comma, e.g. "429,201,"
    all_status_codes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    total_throttle_count: Mapped[int] = mapped_column(Integer, default=0)
    is_status_code_from_create_conversation: Mapped[bool] = mapped_column(Boolean, default=False)
    delivery_status: Mapped[DeliveryStatus] = mapped_column(Enum(DeliveryStatus), nullable=False, index=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), nullable=False)

    notification: Mapped["Notification"] = relationship("Notification", back_populates="results")


__all__ = [
    "SentNotificationData",
    "FINAL_FAULTED_STATUS_CODE",
    "FAULTED_AND_RETRYING_STATUS_CODE",
]
