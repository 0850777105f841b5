"""Central Enum definitions for core domain states.

These replace scattered string literals to ensure consistency across
DB models, schemas, and the send pipeline.
"""
from __future__ import annotations
import enum


class RecipientType(str, enum.Enum):
    USER = "user"
    CHANNEL = "channel"


class DeliveryStatus(str, enum.Enum):
    """Latest per-recipient state as read by reporting."""
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    THROTTLED = "THROTTLED"
    RECIPIENT_NOT_FOUND = "RECIPIENT_NOT_FOUND"
    RETRYING = "RETRYING"
    FAULTED = "FAULTED"


__all__ = [
    "RecipientType",
    "DeliveryStatus",
]
