"""Delivery attempt stage: send with a bounded attempt budget and classify.

One ``send`` call makes up to ``max_attempts`` transport calls (this budget is
separate from the queue's redelivery count). Every attempt's status code is
appended to the trail. Classification, in priority order:

1. any 404 -> RECIPIENT_NOT_FOUND, stop at once;
2. every attempt 429 -> THROTTLED;
3. any 2xx -> SUCCEEDED, stop at once;
4. anything else -> FAILED.

429, 408 (attempt timed out) and 5xx are retryable and consume the next
attempt after a short backoff; any other code fails immediately. A 429
followed by a success is SUCCEEDED, with the 429 kept in the trail and the
throttle count. Nothing here touches persisted state.
"""
from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Tuple, TypeVar

from broadcaster.config import SEND_SETTINGS
from broadcaster.integrations.base import BotTransport, ConversationResponse, SendResponse
from broadcaster.jobs.send_job import RecipientData
from broadcaster.utils import get_logger
from broadcaster.utils.backoff import compute_backoff_seconds

if TYPE_CHECKING:  # pragma: no cover
    from broadcaster.services.send_params import DeliveryParameters

logger = get_logger(__name__)

NOT_FOUND_STATUS_CODE = 404
TIMEOUT_STATUS_CODE = 408
THROTTLED_STATUS_CODE = 429

R = TypeVar("R", SendResponse, ConversationResponse)


class SendResultType(str, enum.Enum):
    SUCCEEDED = "SUCCEEDED"
    THROTTLED = "THROTTLED"
    RECIPIENT_NOT_FOUND = "RECIPIENT_NOT_FOUND"
    FAILED = "FAILED"


@dataclass
class DeliveryOutcome:
    result_type: SendResultType
    status_code: int
    all_status_codes: list[int] = field(default_factory=list)
    total_throttle_count: int = 0
    error_message: Optional[str] = None

    @property
    def all_status_codes_csv(self) -> str:
        """Stored form of the trail: every code followed by a comma."""
        return "".join(f"{code}," for code in self.all_status_codes)


def is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


def is_retryable(status_code: int) -> bool:
    return status_code in (THROTTLED_STATUS_CODE, TIMEOUT_STATUS_CODE) or status_code >= 500


async def run_attempts(
    operation: Callable[[], Awaitable[R]],
    max_attempts: int,
    *,
    timeout_seconds: float,
    backoff: Callable[[int], float] = compute_backoff_seconds,
) -> Tuple[DeliveryOutcome, Optional[R]]:
    """Drive ``operation`` through the attempt budget and classify the trail.

    Returns the outcome and the last transport response (None when the last
    attempt timed out).
    """
    max_attempts = max(1, int(max_attempts))
    codes: list[int] = []
    throttles = 0
    last_error: Optional[str] = None
    response: Optional[R] = None

    for attempt in range(1, max_attempts + 1):
        try:
            response = await asyncio.wait_for(operation(), timeout=timeout_seconds)
            code = response.status_code
            error = response.error_message
        except asyncio.TimeoutError:
            response = None
            code = TIMEOUT_STATUS_CODE
            error = f"Attempt timed out after {timeout_seconds}s"
        codes.append(code)

        if code == NOT_FOUND_STATUS_CODE:
            return DeliveryOutcome(
                result_type=SendResultType.RECIPIENT_NOT_FOUND,
                status_code=code,
                all_status_codes=codes,
                total_throttle_count=throttles,
                error_message=error or "Recipient not found",
            ), response
        if is_success(code):
            return DeliveryOutcome(
                result_type=SendResultType.SUCCEEDED,
                status_code=code,
                all_status_codes=codes,
                total_throttle_count=throttles,
            ), response

        last_error = error or f"Status code {code}"
        if code == THROTTLED_STATUS_CODE:
            throttles += 1
        if not is_retryable(code):
            break
        if attempt < max_attempts:
            await asyncio.sleep(backoff(attempt))

    # 429 is retryable, so an all-429 trail always used the full budget
    result_type = SendResultType.THROTTLED if throttles == len(codes) else SendResultType.FAILED
    return DeliveryOutcome(
        result_type=result_type,
        status_code=codes[-1],
        all_status_codes=codes,
        total_throttle_count=throttles,
        error_message=last_error,
    ), response


class SendNotificationService:
    """Sends notification content (and opens conversations) through a bot transport."""

    def __init__(
        self,
        transport: BotTransport,
        *,
        timeout_seconds: Optional[float] = None,
        backoff: Callable[[int], float] = compute_backoff_seconds,
    ):
        self.transport = transport
        self.timeout_seconds = float(timeout_seconds or SEND_SETTINGS["send_timeout_seconds"])
        self.backoff = backoff

    async def send(self, params: "DeliveryParameters", max_attempts: int) -> DeliveryOutcome:
        outcome, _ = await run_attempts(
            lambda: self.transport.send_message(params.service_url, params.conversation_id, params.content),
            max_attempts,
            timeout_seconds=self.timeout_seconds,
            backoff=self.backoff,
        )
        logger.debug(
            "Send attempts finished",
            recipient_id=params.recipient_id,
            result_type=outcome.result_type.value,
            status_codes=outcome.all_status_codes_csv,
        )
        return outcome

    async def create_conversation(
        self, recipient: RecipientData, service_url: str, max_attempts: int
    ) -> Tuple[DeliveryOutcome, Optional[str]]:
        outcome, response = await run_attempts(
            lambda: self.transport.create_conversation(recipient, service_url),
            max_attempts,
            timeout_seconds=self.timeout_seconds,
            backoff=self.backoff,
        )
        conversation_id = response.conversation_id if response is not None else None
        if outcome.result_type == SendResultType.SUCCEEDED and not conversation_id:
            outcome = DeliveryOutcome(
                result_type=SendResultType.FAILED,
                status_code=outcome.status_code,
                all_status_codes=outcome.all_status_codes,
                total_throttle_count=outcome.total_throttle_count,
                error_message="Transport returned no conversation id",
            )
        return outcome, conversation_id


__all__ = [
    "SendResultType",
    "DeliveryOutcome",
    "SendNotificationService",
    "run_attempts",
    "is_success",
    "is_retryable",
    "NOT_FOUND_STATUS_CODE",
    "TIMEOUT_STATUS_CODE",
    "THROTTLED_STATUS_CODE",
]
