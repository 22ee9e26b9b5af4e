"""Shared timeout and retry primitives.

Every network and DOM call goes through `with_timeout`, so a hang surfaces as
an `OperationTimeoutError` instead of blocking the loop. Retry behaviour is
described by `RetryPolicy` objects, one per failure class.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OperationTimeoutError(TimeoutError):
    """An awaited operation exceeded its wall-clock budget."""

    def __init__(self, label: str, seconds: float):
        self.label = label
        self.seconds = seconds
        super().__init__(f"{label} timed out after {seconds:.1f}s")


async def with_timeout(awaitable: Awaitable[T], seconds: float, label: str = "operation") -> T:
    """
    Race an awaitable against a timer.

    The awaitable is cancelled when the timer wins.

    Raises:
        OperationTimeoutError: If the timer expires first
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError as e:
        raise OperationTimeoutError(label, seconds) from e


def fixed_backoff(seconds: float) -> Callable[[int], float]:
    """Backoff that always waits the same amount."""
    return lambda attempt: seconds


@dataclass(frozen=True)
class RetryPolicy:
    """How one class of failure is retried."""

    name: str
    max_attempts: int
    backoff: Callable[[int], float]
    is_retryable: Callable[[BaseException], bool]

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        return max(0.0, float(self.backoff(attempt)))

    def allows_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts


def select_policy(
    error: BaseException,
    policies: Sequence[RetryPolicy],
) -> Optional[RetryPolicy]:
    """Return the first policy that treats `error` as retryable, or None (terminal)."""
    for policy in policies:
        if policy.is_retryable(error):
            return policy
    return None


def errors_of(*types: type[BaseException]) -> Callable[[BaseException], bool]:
    """Predicate matching exceptions of the given types."""
    return lambda error: isinstance(error, types)
