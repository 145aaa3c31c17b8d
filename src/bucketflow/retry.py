# src/bucketflow/retry.py
"""
Bounded, fixed-delay retry for remote calls.

Every request the engine sends (list page, head, get, put, ACL) goes through
`RetryPolicy.run`. Failures are classified as cancellation (never retried),
transient (retried after a constant delay while budget remains) or exhausted
(surfaced as `RetryExhaustedError`).
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from bucketflow.exceptions import RetryExhaustedError, TransferCancelled
from bucketflow.signals import interruptible_sleep, raise_if_cancelled

logger: logging.Logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryBudget:
    """
    Counts the retries left for one call, or for a sequence of calls.

    Pagination shares a single budget across every page of an enumeration.
    """

    def __init__(self, retries: int) -> None:
        if retries < 0:
            raise ValueError(f"Retry count must not be negative, got {retries}")
        self._remaining: int = retries
        self.failures: int = 0

    @property
    def remaining(self) -> int:
        return self._remaining

    def spend(self) -> None:
        """Consume one retry."""
        if self._remaining == 0:
            raise RuntimeError("Retry budget already exhausted.")
        self._remaining -= 1
        self.failures += 1


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retries an operation up to `retry_count` times with a constant delay.

    Attributes:
        retry_count (int): Retries allowed after the first attempt.
        retry_interval_s (float): Delay between attempts, in seconds.
        cancel_event (asyncio.Event, optional): Cancellation signal checked
            before every attempt and during every delay.
    """

    retry_count: int = 3
    retry_interval_s: float = 3.0
    cancel_event: Optional[asyncio.Event] = None

    def new_budget(self) -> RetryBudget:
        return RetryBudget(self.retry_count)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str,
        budget: Optional[RetryBudget] = None,
    ) -> T:
        """
        Execute `operation`, retrying transient failures.

        Args:
            operation (Callable[[], Awaitable[T]]): Factory producing a fresh
                awaitable for each attempt.
            description (str): Human readable name used in logs and errors.
            budget (RetryBudget, optional): Budget to draw retries from. A new
                one is created when omitted.

        Returns:
            T: The result of the first successful attempt.

        Raises:
            TransferCancelled: If the cancellation signal fired.
            RetryExhaustedError: If every allowed attempt failed.
        """
        budget = budget if budget is not None else self.new_budget()
        last_error: Optional[Exception] = None
        allowed_retries: int = budget.remaining

        for attempt in range(allowed_retries + 1):
            raise_if_cancelled(self.cancel_event, description)
            try:
                return await operation()
            except TransferCancelled:
                raise
            except Exception as e:
                if self.cancel_event is not None and self.cancel_event.is_set():
                    raise TransferCancelled(f"{description} cancelled") from e
                last_error = e
                if attempt == allowed_retries:
                    break
                budget.spend()
                logger.warning(
                    f"{description} failed (attempt {attempt + 1}/"
                    f"{allowed_retries + 1}): {type(e).__name__} - {e}. "
                    f"Retrying in {self.retry_interval_s}s."
                )
                await interruptible_sleep(self.retry_interval_s, self.cancel_event)

        logger.error(f"{description} failed after {allowed_retries + 1} attempt(s).")
        raise RetryExhaustedError(
            description, allowed_retries + 1, last_error
        ) from last_error
