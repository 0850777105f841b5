"""
Mock bot transport for local runs without platform credentials.
"""
import asyncio
import random
import uuid
from typing import Dict, Any

from broadcaster.config import MOCK_FAILURE_RATE
from broadcaster.jobs.send_job import RecipientData
from broadcaster.utils import get_logger

from .base import BotTransport, ConversationResponse, SendResponse

logger = get_logger(__name__)


class MockTransport(BotTransport):
    """Simulates latency, throttling and unreachable recipients (MOCK IMPLEMENTATION)."""

    def __init__(self, failure_rate: float | None = None):
        self.failure_rate = MOCK_FAILURE_RATE if failure_rate is None else failure_rate
        self.logger = get_logger("integration.mock")

    async def create_conversation(self, recipient: RecipientData, service_url: str) -> ConversationResponse:
        await asyncio.sleep(random.uniform(0.01, 0.05))
        if random.random() < self.failure_rate:
            self.logger.warning("Simulated conversation throttle", recipient_id=recipient.recipient_id)
            return ConversationResponse(status_code=429, error_message="Simulated rate limit")
        return ConversationResponse(status_code=201, conversation_id=f"mock-{uuid.uuid4().hex[:12]}")

    async def send_message(self, service_url: str, conversation_id: str, content: Dict[str, Any]) -> SendResponse:
        await asyncio.sleep(random.uniform(0.01, 0.1))
        roll = random.random()
        if roll < self.failure_rate:
            self.logger.warning("Simulated send throttle", conversation_id=conversation_id)
            return SendResponse(status_code=429, error_message="Simulated rate limit")
        if roll < self.failure_rate * 1.2:
            return SendResponse(status_code=404, error_message="Simulated unknown recipient")
        return SendResponse(status_code=201)
