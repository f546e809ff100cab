# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Retry policy for outbound requests.

This module holds the idempotency classifier, the retry predicate, the
backoff computation and the retry pipeline stage that ties them together.
Only idempotent methods are ever retried; POST and PATCH requests surface
their first failure unchanged no matter how the client is configured.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

from flarekit.common.logging import get_logger
from flarekit.config import RateLimitingSettings

from .outcome import Outcome, OutcomeKind, RetryAttemptContext
from .transport import ApiRequest, ApiResponse

__all__ = (
    "IDEMPOTENT_METHODS",
    "RetryStrategy",
    "backoff_delay",
    "classify_outcome",
    "is_idempotent",
    "parse_retry_after",
    "should_retry",
)

logger = get_logger(__name__)

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "TRACE", "PUT", "DELETE"})

JITTER_RANGE = (0.8, 1.2)


def is_idempotent(method: str) -> bool:
    """Whether repeating a request with this method is safe."""
    return method.upper() in IDEMPOTENT_METHODS


def classify_outcome(
    outcome: Outcome, method: str, settings: RateLimitingSettings
) -> OutcomeKind:
    """
    Classify an attempt's outcome for the retry stage.

    Rules, first match wins:

    1. A successful (non-failure) response is SUCCESS.
    2. A non-idempotent method is FATAL, whatever happened.
    3. Connection errors and timeouts are RETRYABLE.
    4. 408 and 5xx responses are RETRYABLE.
    5. 429 is RETRYABLE only when ``settings.is_enabled``.
    6. Anything else is FATAL.
    """
    if outcome.response is not None and outcome.response.status < 400:
        return OutcomeKind.SUCCESS
    if not is_idempotent(method):
        return OutcomeKind.FATAL
    if outcome.exception is not None:
        if outcome.is_transient_exception:
            return OutcomeKind.RETRYABLE
        return OutcomeKind.FATAL

    status = outcome.response.status
    if status == 408 or status >= 500:
        return OutcomeKind.RETRYABLE
    if status == 429:
        return OutcomeKind.RETRYABLE if settings.is_enabled else OutcomeKind.FATAL
    return OutcomeKind.FATAL


def should_retry(outcome: Outcome, method: str, settings: RateLimitingSettings) -> bool:
    return classify_outcome(outcome, method, settings) is OutcomeKind.RETRYABLE


def backoff_delay(
    attempt: int,
    base_delay: float = 1.0,
    backoff_factor: float = 2.0,
    max_delay: float = 30.0,
    jitter: float = 1.0,
) -> float:
    """
    Exponential backoff for the given retry attempt (1-based).

    ``jitter`` is a multiplier drawn by the caller, which keeps this function
    pure: the same attempt and jitter always give the same delay.
    """
    if attempt < 1:
        raise ValueError("attempt must be >= 1")
    delay = base_delay * (backoff_factor ** (attempt - 1)) * jitter
    return min(delay, max_delay)


def parse_retry_after(response: ApiResponse | None, now: float | None = None) -> float | None:
    """
    Read a ``Retry-After`` hint as seconds from now.

    Accepts both delta-seconds and HTTP-date forms. Returns None when the
    header is absent or unparseable.
    """
    if response is None:
        return None
    value = response.header("retry-after")
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now if now is not None else datetime.now(timezone.utc).timestamp()
    return max(0.0, when.timestamp() - now)


class RetryStrategy:
    """
    Pipeline stage retrying transient failures of idempotent requests.

    Each attempt's outcome is classified with ``classify_outcome``. Retryable
    outcomes sleep for ``backoff_delay`` (or the server's Retry-After hint)
    and try again, up to ``max_retries`` times. When the budget runs out the
    last outcome is surfaced verbatim: the final response is returned and
    the final exception is re-raised.

    Example:
        ```python
        retry = RetryStrategy(RateLimitingSettings(max_retries=3))
        response = await retry.execute(transport.send, ApiRequest("GET", "zones"))
        ```
    """

    def __init__(
        self,
        settings: RateLimitingSettings,
        name: str = "Retry",
        backoff_factor: float = 2.0,
        on_retry: Callable[[RetryAttemptContext], None] | None = None,
    ):
        if settings.max_retries < 1:
            raise ValueError("RetryStrategy requires max_retries >= 1")
        self.settings = settings
        self.name = name
        self.max_retries = settings.max_retries
        self.base_delay = settings.base_delay
        self.max_delay = settings.max_delay
        self.backoff_factor = backoff_factor
        self.on_retry = on_retry

    def next_delay(self, attempt: int, outcome: Outcome) -> float:
        hint = parse_retry_after(outcome.response)
        if hint is not None:
            return hint
        # Not used for cryptographic purposes, just for jitter
        jitter = random.uniform(*JITTER_RANGE)  # noqa: S311
        return backoff_delay(
            attempt,
            base_delay=self.base_delay,
            backoff_factor=self.backoff_factor,
            max_delay=self.max_delay,
            jitter=jitter,
        )

    async def execute(
        self,
        func: Callable[[ApiRequest], Awaitable[ApiResponse]],
        request: ApiRequest,
    ) -> ApiResponse:
        start = time.monotonic()
        retries = 0

        while True:
            try:
                outcome = Outcome.of(await func(request))
            except Exception as e:
                outcome = Outcome.failed(e)

            kind = classify_outcome(outcome, request.method, self.settings)
            if kind is not OutcomeKind.RETRYABLE:
                return outcome.unwrap()

            retries += 1
            if retries > self.max_retries:
                logger.warning(
                    "retry_exhausted",
                    strategy=self.name,
                    method=request.method,
                    path=request.path,
                    max_retries=self.max_retries,
                    reason=outcome.describe(),
                )
                return outcome.unwrap()

            delay = self.next_delay(retries, outcome)
            context = RetryAttemptContext(
                attempt=retries,
                max_retries=self.max_retries,
                delay=delay,
                elapsed=time.monotonic() - start,
                outcome=outcome,
                method=request.method,
                path=request.path,
            )
            logger.warning(
                "transient_failure",
                strategy=self.name,
                method=request.method,
                path=request.path,
                attempt=retries,
                max_retries=self.max_retries,
                delay=round(delay, 3),
                reason=outcome.describe(),
            )
            if self.on_retry is not None:
                self.on_retry(context)

            await asyncio.sleep(delay)
