# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Composition of the resilience stages around a transport.

The stage order, outermost to innermost, is fixed:

    ConcurrencyLimiter -> RateLimitHeaders -> TotalTimeout -> Retry
        -> CircuitBreaker -> AttemptTimeout -> transport

Concurrency gates before anything else takes a slot. The total timeout wraps
the retries so they cannot run unbounded. The breaker sits inside the retry
loop so each attempt respects its state, and outside the per-attempt timeout
so its bookkeeping is never cut short. The per-attempt timeout is innermost
so one slow attempt leaves budget for the next.
"""

from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from flarekit.common.logging import get_logger
from flarekit.config import RateLimitingSettings

from .errors import TotalTimeoutError
from .executor import ConcurrencyLimiter
from .outcome import RetryAttemptContext
from .rate_limiter import RateLimitHeaderThrottle
from .resilience import CircuitBreaker, CircuitState, TimeoutStrategy
from .retry import RetryStrategy
from .transport import ApiRequest, ApiResponse, Transport

__all__ = ("PipelineBuilder", "ResiliencePipeline", "Stage")

logger = get_logger(__name__)

Call = Callable[[ApiRequest], Awaitable[ApiResponse]]


class Stage(Protocol):
    name: str

    async def execute(self, func: Call, request: ApiRequest) -> ApiResponse: ...


class ResiliencePipeline:
    """
    An ordered chain of stages bound to one transport.

    The stages keep per-client state (permits, breaker counters, throttle
    deadline), so one pipeline instance serves one logical client and is
    shared by all of that client's concurrent calls.
    """

    def __init__(self, stages: list[Stage], transport: Transport, name: str):
        self.stages = stages
        self.transport = transport
        self.name = name
        self._chain = self._compose()

    def _compose(self) -> Call:
        call: Call = self.transport.send
        for stage in reversed(self.stages):
            call = functools.partial(stage.execute, call)
        return call

    @property
    def stage_names(self) -> list[str]:
        return [stage.name for stage in self.stages]

    def get_stage(self, stage_type: type) -> Any | None:
        for stage in self.stages:
            if isinstance(stage, stage_type):
                return stage
        return None

    @property
    def circuit_breaker(self) -> CircuitBreaker | None:
        return self.get_stage(CircuitBreaker)

    @property
    def limiter(self) -> ConcurrencyLimiter | None:
        return self.get_stage(ConcurrencyLimiter)

    async def execute(self, request: ApiRequest) -> ApiResponse:
        """Run one request through every stage."""
        return await self._chain(request)

    async def aclose(self) -> None:
        await self.transport.aclose()


class PipelineBuilder:
    """
    Builds a ResiliencePipeline from a RateLimitingSettings value.

    Example:
        ```python
        builder = PipelineBuilder(settings.rate_limiting, attempt_timeout=30.0,
                                  client_name="accountA")
        pipeline = builder.build(HttpTransport(settings.api_base_url, token))
        response = await pipeline.execute(ApiRequest("GET", "zones"))
        ```
    """

    def __init__(
        self,
        settings: RateLimitingSettings,
        attempt_timeout: float = 30.0,
        client_name: str | None = None,
        on_retry: Callable[[RetryAttemptContext], None] | None = None,
        on_state_change: Callable[[CircuitState, CircuitState], None] | None = None,
    ):
        self.settings = settings
        self.attempt_timeout = attempt_timeout
        self.client_name = client_name
        self.on_retry = on_retry
        self.on_state_change = on_state_change

    @property
    def name_prefix(self) -> str:
        return "Cloudflare" if self.client_name is None else f"Cloudflare:{self.client_name}"

    def build_stages(self) -> list[Stage]:
        s = self.settings
        prefix = self.name_prefix

        stages: list[Stage] = [
            ConcurrencyLimiter(
                permit_limit=s.permit_limit,
                queue_limit=s.queue_limit,
                name=f"{prefix}:RateLimiter",
            ),
            RateLimitHeaderThrottle(
                enabled=s.enable_proactive_throttling,
                quota_low_threshold=s.quota_low_threshold,
                name=f"{prefix}:RateLimitHeaders",
            ),
            TimeoutStrategy(
                s.total_timeout,
                name=f"{prefix}:TotalTimeout",
                error_cls=TotalTimeoutError,
            ),
        ]
        # A zero-attempt retry is not a retry: leave the stage out entirely.
        if s.max_retries > 0:
            stages.append(
                RetryStrategy(s, name=f"{prefix}:Retry", on_retry=self.on_retry)
            )
        stages.append(
            CircuitBreaker(
                failure_threshold=s.failure_threshold,
                recovery_time=s.break_duration,
                name=f"{prefix}:CircuitBreaker",
                on_state_change=self.on_state_change,
            )
        )
        stages.append(
            TimeoutStrategy(self.attempt_timeout, name=f"{prefix}:AttemptTimeout")
        )
        return stages

    def build(self, transport: Transport) -> ResiliencePipeline:
        stages = self.build_stages()
        logger.debug(
            "pipeline_built",
            client=self.client_name,
            stages=[stage.name for stage in stages],
        )
        return ResiliencePipeline(stages, transport, name=self.name_prefix)
