from __future__ import annotations
"""SQLAlchemy model caching the bot conversation established with a recipient."""
from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from broadcaster.database import Base


class UserConversation(Base):
    __tablename__ = "user_conversations"
    recipient_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    conversation_id: Mapped[str] = mapped_column(String(128), nullable=False)
    service_url: Mapped[str | None] = mapped_column(String, nullable=True)
    updated_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
