"""Bot transport contract used by the send pipeline."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from broadcaster.jobs.send_job import RecipientData


@dataclass(frozen=True)
class SendResponse:
    status_code: int
    error_message: Optional[str] = None


@dataclass(frozen=True)
class ConversationResponse:
    status_code: int
    conversation_id: Optional[str] = None
    error_message: Optional[str] = None


class BotTransport(ABC):
    """Opens conversations with recipients and delivers content into them.

    Implementations report the platform's HTTP status instead of raising for
    4xx/5xx replies; a "recipient no longer reachable" reply must come back as
    404 and a rate-limit reply as 429. Network-level failures may raise.
    """

    @abstractmethod
    async def create_conversation(self, recipient: RecipientData, service_url: str) -> ConversationResponse:
        ...

    @abstractmethod
    async def send_message(self, service_url: str, conversation_id: str, content: Dict[str, Any]) -> SendResponse:
        ...
