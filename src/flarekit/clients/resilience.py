# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Failure isolation and deadlines for the request pipeline.

This module provides the CircuitBreaker stage and the timeout stage used
twice by the pipeline: once as the total budget around all retries and once
as the per-attempt limit around the transport call.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, TypeVar

from .errors import APITimeoutError, CircuitBreakerOpenError
from .outcome import is_failure_status
from .transport import ApiResponse

T = TypeVar("T")
logger = logging.getLogger(__name__)

__all__ = ("CircuitBreaker", "CircuitState", "TimeoutStrategy")


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # calls flow, failures are counted
    OPEN = "open"  # every call rejected until recovery_time passes
    HALF_OPEN = "half_open"  # one probe decides


def _response_failed(result: Any) -> bool:
    return isinstance(result, ApiResponse) and is_failure_status(result.status)


class CircuitBreaker:
    """
    Per-client breaker that fails fast while the upstream keeps failing.

    Failures are counted per consecutive run: any success in the CLOSED state
    resets the count. Once ``failure_threshold`` consecutive failures are seen
    the circuit opens and every call fails fast with CircuitBreakerOpenError.
    After ``recovery_time`` seconds the next caller becomes the single
    HALF_OPEN probe; calls arriving while the probe is in flight are
    rejected. The probe's outcome closes or reopens the circuit.

    A failure is an exception raised by the wrapped call, or a result for
    which ``failure_predicate`` returns True (by default an ApiResponse with
    status 408, 429 or 5xx). Failing responses are still returned to the
    caller unchanged.

    Example:
        ```python
        breaker = CircuitBreaker(failure_threshold=5, recovery_time=30.0)

        try:
            response = await breaker.execute(transport.send, request)
        except CircuitBreakerOpenError as e:
            await asyncio.sleep(e.retry_after)
        ```
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_time: float = 30.0,
        name: str = "CircuitBreaker",
        failure_predicate: Callable[[Any], bool] = _response_failed,
        on_state_change: Callable[[CircuitState, CircuitState], None] | None = None,
    ):
        """
        Initialize the circuit breaker.

        Args:
            failure_threshold: Number of consecutive failures before opening the circuit.
            recovery_time: Time in seconds to wait before transitioning to half-open.
            name: Strategy name used in log messages.
            failure_predicate: Decides whether a returned result counts as a failure.
            on_state_change: Called with (old_state, new_state) on every transition.
        """
        self.failure_threshold = max(1, failure_threshold)
        self.recovery_time = recovery_time
        self.name = name
        self.failure_predicate = failure_predicate
        self.on_state_change = on_state_change
        self.failure_count = 0
        self.state = CircuitState.CLOSED
        self.last_failure_time = 0.0
        self.opened_at = 0.0
        self._probe_in_flight = False
        self._lock = asyncio.Lock()

        logger.debug(
            f"Initialized {name} with failure_threshold={failure_threshold}, "
            f"recovery_time={recovery_time}"
        )

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self.state
        if old_state is new_state:
            return
        self.state = new_state
        log = logger.info if new_state is not CircuitState.OPEN else logger.warning
        log(
            f"{self.name} transitioning from {old_state.value} to {new_state.value} "
            f"after {self.failure_count} consecutive failures"
        )
        if self.on_state_change is not None:
            self.on_state_change(old_state, new_state)

    async def _admit(self) -> bool:
        """Let a call through or raise. Returns True if the call is the probe."""
        async with self._lock:
            if self.state is CircuitState.CLOSED:
                return False

            if self.state is CircuitState.OPEN:
                elapsed = time.monotonic() - self.opened_at
                if elapsed < self.recovery_time:
                    remaining = self.recovery_time - elapsed
                    logger.warning(
                        f"{self.name} is OPEN, rejecting request. "
                        f"Try again in {remaining:.2f}s"
                    )
                    raise CircuitBreakerOpenError(
                        f"Circuit breaker is open. Retry after {remaining:.2f} seconds",
                        retry_after=remaining,
                    )
                self._transition(CircuitState.HALF_OPEN)

            if self._probe_in_flight:
                raise CircuitBreakerOpenError(
                    "Circuit breaker is half-open and a probe request is in flight",
                    retry_after=None,
                )
            self._probe_in_flight = True
            return True

    async def _record(self, failed: bool, probing: bool) -> None:
        async with self._lock:
            if probing:
                self._probe_in_flight = False

            if not failed:
                if self.state is CircuitState.HALF_OPEN:
                    self.failure_count = 0
                    self._transition(CircuitState.CLOSED)
                elif self.state is CircuitState.CLOSED:
                    self.failure_count = 0
                return

            self.failure_count += 1
            self.last_failure_time = time.monotonic()
            if self.state is CircuitState.HALF_OPEN or (
                self.state is CircuitState.CLOSED
                and self.failure_count >= self.failure_threshold
            ):
                self.opened_at = self.last_failure_time
                self._transition(CircuitState.OPEN)

    async def execute(
        self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        """
        Run one call if the breaker admits it and record how it went.

        Args:
            func: The coroutine function to execute.
            *args: Positional arguments for the function.
            **kwargs: Keyword arguments for the function.

        Returns:
            The result of the function execution.

        Raises:
            CircuitBreakerOpenError: If the circuit is open.
            Exception: Any exception raised by the function.
        """
        probing = await self._admit()

        try:
            result = await func(*args, **kwargs)
        except asyncio.CancelledError:
            if probing:
                async with self._lock:
                    self._probe_in_flight = False
            raise
        except Exception:
            await self._record(failed=True, probing=probing)
            raise

        await self._record(failed=self.failure_predicate(result), probing=probing)
        return result


class TimeoutStrategy:
    """
    Pipeline stage that bounds the time spent in everything it wraps.

    Only expiry of this stage's own deadline is translated into
    ``error_cls``; timeouts raised further down pass through untouched.
    """

    def __init__(
        self,
        timeout: float,
        name: str = "Timeout",
        error_cls: type[APITimeoutError] = APITimeoutError,
    ):
        self.timeout = timeout
        self.name = name
        self.error_cls = error_cls

    async def execute(
        self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        deadline = asyncio.timeout(self.timeout)
        try:
            async with deadline:
                return await func(*args, **kwargs)
        except TimeoutError as e:
            if not deadline.expired():
                raise
            logger.warning(f"{self.name} exceeded {self.timeout}s")
            raise self.error_cls(
                f"{self.name} exceeded {self.timeout}s", timeout=self.timeout
            ) from e
