"""Bounded-concurrency admission control and ordered batch execution."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable, Sequence
from typing import Generic, TypeVar

from aiscrape.exceptions import BatchError

T = TypeVar("T")
R = TypeVar("R")

logger = logging.getLogger(__name__)


class ConcurrencyLimiter:
    """Counting semaphore with FIFO hand-off to waiting tasks.

    ``release()`` passes the permit directly to the longest-waiting task, so
    a task arriving later can never overtake one that is already queued.
    Free permits are clamped at capacity, making an extra release harmless.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("Concurrency must be at least 1")
        self._capacity = capacity
        self._free = capacity
        self._waiters: deque[asyncio.Future[None]] = deque()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def available_permits(self) -> int:
        return self._free

    @property
    def queue_length(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    @property
    def in_use(self) -> int:
        """Number of permits currently held."""
        return self._capacity - self._free

    async def acquire(self) -> None:
        """Take a permit, suspending until one is handed over if none is free."""
        if self._free > 0 and not self.queue_length:
            self._free -= 1
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Permit was handed over just before cancellation: pass it on
                self.release()
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            raise

    def release(self) -> None:
        """Return a permit, waking the longest-waiting task if any."""
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                # Permit ownership transfers; the free count is unchanged
                waiter.set_result(None)
                return
        self._free = min(self._free + 1, self._capacity)

    async def __aenter__(self) -> ConcurrencyLimiter:
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


class _Outcome(Generic[R]):
    """Per-item result or failure, kept until every task has finished."""

    __slots__ = ("value", "error")

    def __init__(self, value: R | None = None, error: BaseException | None = None) -> None:
        self.value = value
        self.error = error


async def run_batch(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    *,
    concurrency: int,
    continue_on_error: bool = True,
    on_error: Callable[[int, T, Exception], R] | None = None,
    is_failure: Callable[[R], bool] | None = None,
) -> list[R]:
    """Run ``worker`` over ``items`` with at most ``concurrency`` in flight.

    The returned list matches the order of ``items`` regardless of the order
    in which work completes.

    Args:
        items: Inputs to process.
        worker: Coroutine function called once per item under a permit.
        concurrency: Maximum number of simultaneously running workers.
        continue_on_error: If True, a failing item is converted with
            ``on_error`` and the others are unaffected. If False, the first
            failure cancels all outstanding work and raises BatchError.
        on_error: Converts ``(index, item, exception)`` into a result.
            Required when ``continue_on_error`` is True.
        is_failure: Optional predicate marking a returned result as a
            failure for fail-fast mode.

    Returns:
        One result per input item, in input order.

    Raises:
        ValueError: If concurrency is below 1, or on_error is missing in
            continue mode.
        BatchError: In fail-fast mode, on the first failed item.
    """
    if concurrency < 1:
        raise ValueError("Concurrency must be at least 1")
    if continue_on_error and on_error is None:
        raise ValueError("on_error is required when continue_on_error is True")
    if not items:
        return []

    limiter = ConcurrencyLimiter(concurrency)
    outcomes: list[_Outcome[R] | None] = [None] * len(items)

    async def run_one(index: int, item: T) -> None:
        await limiter.acquire()
        try:
            value = await worker(item)
        except Exception as e:
            if not continue_on_error:
                raise _ItemFailed(index, e) from e
            logger.warning("Batch item %d failed: %s", index, e)
            outcomes[index] = _Outcome(error=e)
            return
        finally:
            limiter.release()

        if not continue_on_error and is_failure is not None and is_failure(value):
            raise _ItemFailed(index, None, value)
        outcomes[index] = _Outcome(value=value)

    tasks = [asyncio.create_task(run_one(i, item)) for i, item in enumerate(items)]

    if continue_on_error:
        await asyncio.gather(*tasks)
    else:
        try:
            await asyncio.gather(*tasks)
        except _ItemFailed as failure:
            for task in tasks:
                if not task.done():
                    task.cancel()
            # Let cancelled tasks unwind before reporting
            await asyncio.gather(*tasks, return_exceptions=True)
            completed = sum(1 for outcome in outcomes if outcome is not None)
            reason = (
                failure.error
                if failure.error is not None
                else getattr(failure.value, "error", failure.value)
            )
            raise BatchError(
                f"Batch processing failed at item {failure.index}: {reason}",
                success_count=completed,
                total_count=len(items),
                index=failure.index,
            ) from failure.error

    results: list[R] = []
    for index, outcome in enumerate(outcomes):
        assert outcome is not None
        if outcome.error is not None:
            assert on_error is not None
            results.append(on_error(index, items[index], outcome.error))  # type: ignore[arg-type]
        else:
            results.append(outcome.value)  # type: ignore[arg-type]
    return results


class _ItemFailed(Exception):
    """Internal signal carrying the first failure of a fail-fast batch."""

    def __init__(
        self,
        index: int,
        error: Exception | None,
        value: object = None,
    ) -> None:
        self.index = index
        self.error = error
        self.value = value
        super().__init__(f"item {index} failed")
