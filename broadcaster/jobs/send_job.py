"""Send job payload structure (one notification, one recipient)."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from broadcaster.models.db.enums import RecipientType


class RecipientData(BaseModel):
    """Destination of a single send, plus any conversation already established."""
    model_config = ConfigDict(frozen=True)

    recipient_id: str = Field(min_length=1, description="User id or channel id on the bot platform")
    recipient_type: RecipientType = RecipientType.USER
    conversation_id: Optional[str] = Field(None, description="Previously established conversation, if known")
    service_url: Optional[str] = Field(None, description="Transport endpoint override for this recipient")


class SendQueueMessageContent(BaseModel):
    """Work-queue message; re-delivered verbatim by the queue on failure."""
    model_config = ConfigDict(frozen=True)

    notification_id: str = Field(min_length=1)
    recipient: RecipientData

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw: str | bytes) -> "SendQueueMessageContent":
        return cls.model_validate_json(raw)


__all__ = ["RecipientData", "SendQueueMessageContent"]
