"""Retry policy and a generic async retry combinator."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

T = TypeVar("T")

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: attempt ``n`` failing waits ``base * multiplier**n``."""

    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds cannot be negative")

    @classmethod
    def from_retries(
        cls,
        max_retries: int,
        base_delay_seconds: float = 1.0,
        multiplier: float = 2.0,
    ) -> RetryPolicy:
        """Build a policy allowing ``max_retries`` retries after the first try."""
        return cls(
            max_attempts=max_retries + 1,
            base_delay_seconds=base_delay_seconds,
            multiplier=multiplier,
        )

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the zero-based ``attempt`` fails."""
        return self.base_delay_seconds * (self.multiplier**attempt)


async def retry_async(
    operation: Callable[[int], Awaitable[T]],
    policy: RetryPolicy,
    *,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: SleepFunc = asyncio.sleep,
    description: str = "operation",
) -> T:
    """Run ``operation(attempt)`` until it succeeds or attempts run out.

    Attempts are strictly sequential. Exceptions not listed in ``retry_on``
    propagate immediately.

    Args:
        operation: Coroutine factory receiving the zero-based attempt number.
        policy: Attempt count and backoff parameters.
        retry_on: Exception types that trigger another attempt.
        sleep: Awaitable sleep, injectable for tests.
        description: Label used in log messages.

    Returns:
        The first successful result.

    Raises:
        The last retryable exception once attempts are exhausted.
    """

    def log_retry(retry_state: RetryCallState) -> None:
        logger.warning(
            "%s attempt %d/%d failed (%s), retrying in %.1fs",
            description,
            retry_state.attempt_number,
            policy.max_attempts,
            retry_state.outcome.exception(),
            retry_state.next_action.sleep,
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.base_delay_seconds,
            exp_base=policy.multiplier,
        ),
        retry=retry_if_exception_type(retry_on),
        sleep=sleep,
        before_sleep=log_retry,
        reraise=True,
    )

    try:
        async for attempt in retrying:
            with attempt:
                return await operation(attempt.retry_state.attempt_number - 1)
    except retry_on as e:
        # Earlier retryable failures are absorbed, so this is the last one
        logger.warning(
            "%s failed after %d attempt(s): %s",
            description,
            policy.max_attempts,
            e,
        )
        raise

    raise AssertionError("unreachable")  # pragma: no cover
