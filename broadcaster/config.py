"""Core application configuration & tunable send rules.

Every knob the send pipeline depends on (attempt budgets, throttle backoff,
dead-letter threshold, queue/Redis wiring, bot transport selection) lives here
so it can be adjusted without diving into service logic. Values come from
environment variables with module-constant defaults; the rule groups are plain
dicts so tests can monkeypatch individual entries.
"""
from __future__ import annotations

import os


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+pysqlite:///./broadcaster.db")

# Probability of a simulated failure in the mock bot transport
MOCK_FAILURE_RATE: float = float(os.getenv("MOCK_FAILURE_RATE", "0.05"))

# ------------------------------ Send Pipeline ----------------------------- #
SEND_SETTINGS: dict[str, int | float] = {
    # Delivery attempts inside a single pipeline run (not queue redeliveries).
    "max_number_of_attempts": int(os.getenv("MAX_NUMBER_OF_ATTEMPTS", "1")),
    # System-wide backoff window once a send comes back fully throttled.
    "send_retry_delay_seconds": float(os.getenv("SEND_RETRY_DELAY_NUMBER_OF_SECONDS", "660")),
    # Must equal the queue's max delivery count or faulted jobs get misclassified.
    "max_delivery_count_for_dead_letter": int(os.getenv("MAX_DELIVERY_COUNT_FOR_DEAD_LETTER", "10")),
    # Upper bound for one transport call; a timeout consumes one attempt.
    "send_timeout_seconds": float(os.getenv("SEND_TIMEOUT_SECONDS", "30")),
    "worker_count": int(os.getenv("SEND_WORKER_COUNT", "4")),
}

# --------------------------------- Backoff -------------------------------- #
# Pause between attempts inside a single delivery call.
BACKOFF_POLICY: dict[str, int | float] = {
    "base_seconds": 1,
    "factor": 2,          # Exponential factor
    "max_seconds": 30,
    "jitter_pct": 0.10,   # +/-10% jitter
}

# --------------------------------- Queue ---------------------------------- #
QUEUE_SETTINGS: dict[str, int | float | str | bool] = {
    "use_redis": _env_bool("USE_REDIS_QUEUE"),
    "redis_url": os.getenv("REDIS_URL", "redis://localhost:6379/0"),
    "redis_ready_key": "broadcaster:send_queue:ready",
    "redis_scheduled_key": "broadcaster:send_queue:scheduled",
    "redis_dead_letter_key": "broadcaster:send_queue:dead_letter",
    "redis_health_check_timeout": 2.0,
    # Redeliveries before a message lands on the dead-letter list.
    "max_delivery_count": int(os.getenv("MAX_DELIVERY_COUNT_FOR_DEAD_LETTER", "10")),
    "warn_depth": 10000,
    "max_in_memory": 100000,
}

# ----------------------------- Throttle State ----------------------------- #
THROTTLE_SETTINGS: dict[str, str | bool] = {
    # Share the "do not send until" timestamp across processes via Redis.
    "use_redis": _env_bool("USE_REDIS_THROTTLE_STATE"),
    "redis_url": os.getenv("REDIS_URL", "redis://localhost:6379/0"),
    "redis_key": "broadcaster:send_retry_after",
}

# ------------------------------ Bot Transport ----------------------------- #
# "mock" for local runs, "discord" for the real REST API.
BOT_TRANSPORT: str = os.getenv("BOT_TRANSPORT", "mock").strip().lower()
DISCORD_BOT_TOKEN: str | None = os.getenv("DISCORD_BOT_TOKEN") or None
BOT_API_BASE_URL: str = os.getenv("BOT_API_BASE_URL", "https://discord.com/api/v10")

__all__ = [
    "DATABASE_URL",
    "MOCK_FAILURE_RATE",
    # Rule groups
    "SEND_SETTINGS",
    "BACKOFF_POLICY",
    "QUEUE_SETTINGS",
    "THROTTLE_SETTINGS",
    # Bot transport
    "BOT_TRANSPORT",
    "DISCORD_BOT_TOKEN",
    "BOT_API_BASE_URL",
]
