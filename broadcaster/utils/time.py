"""Time utilities (UTC now, epoch conversion)."""
from __future__ import annotations
from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def from_epoch(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


__all__ = ["utc_now", "from_epoch"]
