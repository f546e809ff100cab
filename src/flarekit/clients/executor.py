# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Bounded-concurrency gate for one logical client.

This module provides the ConcurrencyLimiter stage: a fixed number of permits,
a bounded FIFO queue of waiting callers served oldest first, and an explicit
ConcurrencyLimitExceededError when the queue is full.
"""

import asyncio
import logging
import math
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from .errors import ConcurrencyLimitExceededError

T = TypeVar("T")
logger = logging.getLogger(__name__)

__all__ = ("ConcurrencyLimiter",)

# Weight of the newest sample in the moving average of permit hold times.
_HOLD_TIME_ALPHA = 0.2


class ConcurrencyLimiter:
    """
    Limits in-flight calls and queues the excess in arrival order.

    A permit released while callers are queued is handed straight to the
    oldest waiter, so a newcomer can never overtake the queue. Cancelling a
    queued caller removes it from the queue; if it was cancelled just as a
    permit was handed to it, the permit moves on to the next waiter.

    Example:
        ```python
        limiter = ConcurrencyLimiter(permit_limit=1, queue_limit=10)
        response = await limiter.execute(transport.send, request)
        ```
    """

    def __init__(
        self,
        permit_limit: int = 10,
        queue_limit: int = 100,
        name: str = "RateLimiter",
    ):
        """
        Initialize the limiter.

        Args:
            permit_limit: Maximum concurrent calls. Values below 1 become 1.
            queue_limit: Maximum queued callers. Values below 0 become 0.
            name: Strategy name used in log messages.
        """
        self.permit_limit = max(1, permit_limit)
        self.queue_limit = max(0, queue_limit)
        self.name = name
        self.available = self.permit_limit
        self._waiters: deque[asyncio.Future] = deque()
        self._avg_hold_time: float | None = None

        logger.debug(
            f"Initialized {name} with permit_limit={self.permit_limit}, "
            f"queue_limit={self.queue_limit}"
        )

    @property
    def queued(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    @property
    def in_flight(self) -> int:
        return self.permit_limit - self.available

    def estimate_wait(self) -> float | None:
        """Estimated seconds until a new caller would get a permit, if known."""
        if self._avg_hold_time is None:
            return None
        rounds = math.ceil((self.queued + 1) / self.permit_limit)
        return self._avg_hold_time * rounds

    async def acquire(self) -> None:
        """
        Take a permit, waiting in the FIFO queue if necessary.

        Raises:
            ConcurrencyLimitExceededError: If no permit is free and the queue is full.
        """
        if self.available > 0 and not self._waiters:
            self.available -= 1
            return

        if self.queued >= self.queue_limit:
            retry_after = self.estimate_wait()
            logger.warning(
                f"Request rejected by {self.name}. Concurrency limit reached. "
                f"RetryAfter={'n/a' if retry_after is None else f'{retry_after:.0f}s'}."
            )
            raise ConcurrencyLimitExceededError(
                f"{self.name}: concurrency limit of {self.permit_limit} reached "
                f"and {self.queue_limit} requests already queued",
                retry_after=retry_after,
            )

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        logger.debug(f"{self.name}: queued, position {self.queued}")
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Permit was granted as we were cancelled; pass it on.
                self.release()
            raise
        finally:
            try:
                self._waiters.remove(waiter)
            except ValueError:
                pass

    def release(self) -> None:
        """Return a permit, handing it to the oldest live waiter if any."""
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self.available = min(self.available + 1, self.permit_limit)

    def _record_hold_time(self, elapsed: float) -> None:
        if self._avg_hold_time is None:
            self._avg_hold_time = elapsed
        else:
            self._avg_hold_time += _HOLD_TIME_ALPHA * (elapsed - self._avg_hold_time)

    async def execute(
        self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        """
        Execute a coroutine while holding a permit.

        Args:
            func: The coroutine function to execute.
            *args: Positional arguments for the function.
            **kwargs: Keyword arguments for the function.

        Returns:
            The result of the function execution.
        """
        await self.acquire()
        start = time.monotonic()
        try:
            return await func(*args, **kwargs)
        finally:
            self._record_hold_time(time.monotonic() - start)
            self.release()
