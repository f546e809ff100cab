# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
flarekit API client module.

This module provides the resilient request pipeline shared by every resource
client: concurrency limiting, proactive throttling, timeouts, retries with
backoff, circuit breaking and lazy pagination.
"""

from .api_client import AsyncAPIClient
from .errors import (
    APIClientError,
    APIConnectionError,
    APITimeoutError,
    ApiResponseError,
    CircuitBreakerOpenError,
    ConcurrencyLimitExceededError,
    ConfigurationError,
    PaginationError,
    TotalTimeoutError,
)
from .executor import ConcurrencyLimiter
from .factory import ClientFactory
from .outcome import Outcome, OutcomeKind, RetryAttemptContext
from .pagination import (
    CursorResultInfo,
    Page,
    Paginator,
    ResultInfo,
    paginate,
    paginate_cursor,
    paginate_pages,
)
from .pipeline import PipelineBuilder, ResiliencePipeline
from .rate_limiter import RateLimitHeaderThrottle
from .resilience import CircuitBreaker, CircuitState, TimeoutStrategy
from .retry import RetryStrategy, backoff_delay, is_idempotent, should_retry
from .transport import ApiRequest, ApiResponse, HttpTransport, Transport

__all__ = [
    "APIClientError",
    "APIConnectionError",
    "APITimeoutError",
    "ApiRequest",
    "ApiResponse",
    "ApiResponseError",
    "AsyncAPIClient",
    "CircuitBreaker",
    "CircuitBreakerOpenError",
    "CircuitState",
    "ClientFactory",
    "ConcurrencyLimitExceededError",
    "ConcurrencyLimiter",
    "ConfigurationError",
    "CursorResultInfo",
    "HttpTransport",
    "Outcome",
    "OutcomeKind",
    "Page",
    "PaginationError",
    "Paginator",
    "PipelineBuilder",
    "RateLimitHeaderThrottle",
    "ResiliencePipeline",
    "ResultInfo",
    "RetryAttemptContext",
    "RetryStrategy",
    "TimeoutStrategy",
    "TotalTimeoutError",
    "Transport",
    "backoff_delay",
    "is_idempotent",
    "paginate",
    "paginate_cursor",
    "paginate_pages",
    "should_retry",
]
