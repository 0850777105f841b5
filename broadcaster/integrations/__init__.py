"""
Integrations package initialization.
Exports the bot transports and the factory selecting one from config.
"""
from broadcaster.config import BOT_TRANSPORT

from .base import BotTransport, ConversationResponse, SendResponse
from .discord_rest import DiscordTransport
from .mock import MockTransport


def create_transport(name: str | None = None) -> BotTransport:
    name = (name or BOT_TRANSPORT).lower()
    if name == "discord":
        return DiscordTransport()
    if name == "mock":
        return MockTransport()
    raise ValueError(f"Unsupported bot transport '{name}'")


__all__ = [
    "BotTransport",
    "ConversationResponse",
    "SendResponse",
    "DiscordTransport",
    "MockTransport",
    "create_transport",
]
