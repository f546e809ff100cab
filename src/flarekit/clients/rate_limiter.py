# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Proactive throttling driven by server rate-limit headers.

This module provides the RateLimitHeaderThrottle stage. After every response
it reads the quota the server reports as remaining; when that drops below a
configured fraction of the limit it schedules a delay before the next request
on the same client, spreading the remaining quota over the rest of the window.
The delay is advisory smoothing only. Responses with status 429 are still
handled by the retry stage.
"""

import asyncio
import logging
import re
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass

from .transport import ApiRequest, ApiResponse

logger = logging.getLogger(__name__)

__all__ = ("RateLimitHeaderThrottle", "RateLimitInfo", "parse_rate_limit_headers")

# Reset values above this are absolute epoch timestamps, not delta seconds.
_EPOCH_CUTOFF = 1_000_000_000

_LEADING_NUMBER = re.compile(r"^\s*(\d+(?:\.\d+)?)")
_PARAM = re.compile(r";\s*([a-z]+)\s*=\s*(\d+(?:\.\d+)?)")


@dataclass(frozen=True, slots=True)
class RateLimitInfo:
    """Quota state reported by one response."""

    limit: float | None = None
    remaining: float | None = None
    reset: float | None = None


def _first_number(value: str | None) -> float | None:
    if not value:
        return None
    match = _LEADING_NUMBER.match(value)
    return float(match.group(1)) if match else None


def _structured_params(value: str | None) -> dict[str, float]:
    if not value:
        return {}
    # A header may list several policies; the first one is the active one.
    first = value.split(",")[0]
    return {k: float(v) for k, v in _PARAM.findall(first.lower())}


def parse_rate_limit_headers(
    headers: Mapping[str, str], now: float | None = None
) -> RateLimitInfo | None:
    """
    Extract limit, remaining and reset from response headers.

    Understands ``RateLimit-Limit``/``-Remaining``/``-Reset``, their
    ``X-RateLimit-*`` spellings, and the structured ``RateLimit``
    (``r=``, ``t=``) and ``RateLimit-Policy`` (``q=``, ``w=``) forms.
    Header names must already be lower-cased.
    """

    def pick(*names: str) -> str | None:
        for name in names:
            if name in headers:
                return headers[name]
        return None

    limit = _first_number(pick("ratelimit-limit", "x-ratelimit-limit"))
    remaining = _first_number(pick("ratelimit-remaining", "x-ratelimit-remaining"))
    reset = _first_number(pick("ratelimit-reset", "x-ratelimit-reset"))

    structured = _structured_params(headers.get("ratelimit"))
    policy = _structured_params(headers.get("ratelimit-policy"))
    remaining = structured.get("r", remaining) if remaining is None else remaining
    reset = structured.get("t", reset) if reset is None else reset
    limit = policy.get("q", limit) if limit is None else limit
    if reset is None:
        reset = policy.get("w")

    if limit is None and remaining is None:
        return None

    if reset is not None and reset > _EPOCH_CUTOFF:
        now = time.time() if now is None else now
        reset = max(0.0, reset - now)

    return RateLimitInfo(limit=limit, remaining=remaining, reset=reset)


class RateLimitHeaderThrottle:
    """
    Pipeline stage applying proactive delays from rate-limit headers.

    State is per instance, so one pipeline (one logical client) has one
    throttle and an unrelated client is never slowed down.

    Example:
        ```python
        throttle = RateLimitHeaderThrottle(enabled=True, quota_low_threshold=0.1)
        response = await throttle.execute(transport.send, request)
        ```
    """

    def __init__(
        self,
        enabled: bool = True,
        quota_low_threshold: float = 0.1,
        name: str = "RateLimitHeaders",
    ):
        """
        Initialize the throttle.

        Args:
            enabled: Whether proactive delays are applied at all.
            quota_low_threshold: Fraction of the limit below which throttling starts.
            name: Strategy name used in log messages.
        """
        self.enabled = enabled
        self.quota_low_threshold = quota_low_threshold
        self.name = name
        self.resume_at = 0.0

        logger.debug(
            f"Initialized {name} with enabled={enabled}, "
            f"quota_low_threshold={quota_low_threshold}"
        )

    def compute_delay(self, info: RateLimitInfo) -> float:
        """Seconds to hold back the next request, given the latest quota."""
        if not info.limit or info.remaining is None or info.reset is None:
            return 0.0
        if info.remaining / info.limit >= self.quota_low_threshold:
            return 0.0
        if info.remaining <= 0:
            return info.reset
        return info.reset / (info.remaining + 1)

    def observe(self, response: ApiResponse) -> float:
        """
        Update the throttle from a response. Returns the delay scheduled.
        """
        if not self.enabled:
            return 0.0
        info = parse_rate_limit_headers(response.headers)
        if info is None:
            return 0.0

        delay = self.compute_delay(info)
        if delay > 0:
            self.resume_at = max(self.resume_at, time.monotonic() + delay)
            logger.info(
                f"{self.name}: quota low (remaining={info.remaining}, "
                f"limit={info.limit}, reset={info.reset}s), "
                f"delaying next request by {delay:.2f}s"
            )
        return delay

    async def execute(
        self,
        func: Callable[[ApiRequest], Awaitable[ApiResponse]],
        request: ApiRequest,
    ) -> ApiResponse:
        """
        Wait out any scheduled delay, send the request, then record its quota.
        """
        wait_time = self.resume_at - time.monotonic()
        if self.enabled and wait_time > 0:
            logger.debug(f"{self.name}: waiting {wait_time:.2f}s before execution")
            await asyncio.sleep(wait_time)

        response = await func(request)
        self.observe(response)
        return response
