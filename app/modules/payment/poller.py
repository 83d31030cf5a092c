import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from app.core.exceptions import GatewayError
from app.models import PaymentAttempt, PaymentStatus
from app.modules.payment.reconciliation import ReconciliationResult

logger = logging.getLogger(__name__)


class PollOutcome(str, enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


POLL_MESSAGES = {
    PollOutcome.COMPLETED: "Payment confirmed. Your subscription is active.",
    PollOutcome.FAILED: "Payment failed.",
    PollOutcome.TIMEOUT: "We could not confirm your payment yet. Please check again shortly.",
    PollOutcome.CANCELLED: "Status check cancelled.",
}


@dataclass
class PollResult:
    outcome: PollOutcome
    attempts: int
    payment: Optional[PaymentAttempt] = None

    @property
    def message(self) -> str:
        if self.outcome == PollOutcome.FAILED and self.payment is not None and self.payment.result_desc:
            return self.payment.result_desc
        return POLL_MESSAGES[self.outcome]


class StatusPollingCoordinator:
    """
    Bounded polling for a payment whose callback has not arrived yet.

    Waits `interval` seconds before each of at most `max_attempts` checks.
    A timeout is not a failure: the callback may still resolve the payment
    later. `cancel()` stops further polls but never interrupts a check
    already in flight.
    """

    def __init__(
        self,
        check: Callable[[str], Awaitable[ReconciliationResult]],
        interval: float = 5.0,
        max_attempts: int = 12,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._check = check
        self.interval = interval
        self.max_attempts = max_attempts
        self._cancelled = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self):
        self._cancelled.set()

    async def _wait(self) -> bool:
        """Sleeps one interval. Returns True if cancelled meanwhile."""
        if self._cancelled.is_set():
            return True
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=self.interval)
        except asyncio.TimeoutError:
            return self._cancelled.is_set()
        return True

    async def run(self, checkout_request_id: str) -> PollResult:
        payment = None
        attempts = 0
        while attempts < self.max_attempts:
            if await self._wait():
                return PollResult(PollOutcome.CANCELLED, attempts, payment)

            attempts += 1
            try:
                result = await self._check(checkout_request_id)
            except GatewayError as e:
                logger.warning(
                    "Poll %d/%d for %s failed: %s", attempts, self.max_attempts, checkout_request_id, e.detail
                )
                continue

            payment = result.payment
            if payment.status == PaymentStatus.COMPLETED:
                return PollResult(PollOutcome.COMPLETED, attempts, payment)
            if payment.status == PaymentStatus.FAILED:
                return PollResult(PollOutcome.FAILED, attempts, payment)

        logger.info("Polling for %s timed out after %d attempts", checkout_request_id, attempts)
        return PollResult(PollOutcome.TIMEOUT, attempts, payment)
