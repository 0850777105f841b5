"""
Discord bot transport over the REST API.

A "conversation" is a DM channel opened with ``POST /users/@me/channels``;
channel recipients are addressed directly by their channel id. Messages go to
``POST /channels/{id}/messages`` with the stored notification payload as body.

Discord answers "unknown user", "unknown channel" and "cannot send messages to
this user" with 403/404 plus a JSON error code; all of them mean the recipient
is gone and are normalised to 404. Rate limits surface as 429 and are never
retried here: retry and backoff decisions belong to the send pipeline.
"""
from __future__ import annotations

import json
from typing import Any, Dict, Optional, Tuple

import aiohttp

from broadcaster.config import BOT_API_BASE_URL, DISCORD_BOT_TOKEN, SEND_SETTINGS
from broadcaster.jobs.send_job import RecipientData
from broadcaster.models.db.enums import RecipientType
from broadcaster.utils import get_logger

from .base import BotTransport, ConversationResponse, SendResponse

logger = get_logger(__name__)

# Discord JSON error codes meaning the recipient cannot be reached any more
UNREACHABLE_ERROR_CODES = {
    10003,  # Unknown Channel
    10013,  # Unknown User
    50007,  # Cannot send messages to this user
}


def normalize_status(status: int, body: Dict[str, Any]) -> int:
    """Map Discord's reply onto the pipeline's status vocabulary."""
    if status in (403, 404) and body.get("code") in UNREACHABLE_ERROR_CODES:
        return 404
    return status


def _error_message(status: int, body: Dict[str, Any]) -> Optional[str]:
    if 200 <= status < 300:
        return None
    message = body.get("message") or body.get("raw") or "Discord API error"
    code = body.get("code")
    return f"{status}: {message}" + (f" (code {code})" if code is not None else "")


class DiscordTransport(BotTransport):
    """Discord REST transport (one aiohttp session per call)."""

    def __init__(self, token: Optional[str] = None, *, timeout_seconds: Optional[float] = None):
        self.token = token or DISCORD_BOT_TOKEN
        if not self.token:
            raise ValueError("DISCORD_BOT_TOKEN not configured")
        self.timeout_seconds = float(timeout_seconds or SEND_SETTINGS["send_timeout_seconds"])

    async def _request(self, method: str, url: str, payload: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        headers = {
            "Authorization": f"Bot {self.token}",
            "Content-Type": "application/json",
            "User-Agent": "DiscordBot (broadcaster, 1.0)",
        }
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.request(method, url, headers=headers, json=payload) as resp:
                text = await resp.text()
                try:
                    data = json.loads(text) if text else {}
                except json.JSONDecodeError:
                    data = {"raw": text}
                if not isinstance(data, dict):
                    data = {"raw": data}
                return resp.status, data

    async def create_conversation(self, recipient: RecipientData, service_url: str) -> ConversationResponse:
        if recipient.recipient_type == RecipientType.CHANNEL:
            return ConversationResponse(status_code=200, conversation_id=recipient.recipient_id)
        url = f"{(service_url or BOT_API_BASE_URL).rstrip('/')}/users/@me/channels"
        status, body = await self._request("POST", url, {"recipient_id": recipient.recipient_id})
        status = normalize_status(status, body)
        if 200 <= status < 300:
            conversation_id = str(body["id"]) if body.get("id") else None
            return ConversationResponse(status_code=status, conversation_id=conversation_id)
        logger.warning(
            "Discord conversation creation failed",
            recipient_id=recipient.recipient_id,
            status_code=status,
            error_code=body.get("code"),
        )
        return ConversationResponse(status_code=status, error_message=_error_message(status, body))

    async def send_message(self, service_url: str, conversation_id: str, content: Dict[str, Any]) -> SendResponse:
        url = f"{(service_url or BOT_API_BASE_URL).rstrip('/')}/channels/{conversation_id}/messages"
        status, body = await self._request("POST", url, content)
        status = normalize_status(status, body)
        return SendResponse(status_code=status, error_message=_error_message(status, body))


__all__ = ["DiscordTransport", "normalize_status", "UNREACHABLE_ERROR_CODES"]
