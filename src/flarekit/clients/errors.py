# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Exceptions raised by flarekit clients.

This module defines the error taxonomy shared by every resource client:
configuration errors, transient transport errors (connection and timeout),
API response errors, overload rejections from the concurrency limiter,
circuit breaker rejections and pagination protocol errors.
"""

from typing import Any


class APIClientError(Exception):
    """Root of every error a flarekit client raises."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        headers: dict[str, str] | None = None,
        response_data: dict[str, Any] | None = None,
    ):
        """
        Build the error from whatever the failed exchange produced.

        Args:
            message: Human-readable description.
            status_code: HTTP status of the final response, when there was one.
            headers: Lower-cased response headers.
            response_data: Decoded response envelope, when the body was JSON.
        """
        self.message = message
        self.status_code = status_code
        self.headers = headers or {}
        self.response_data = response_data or {}
        super().__init__(message)


class ConfigurationError(APIClientError):
    """Raised when a logical client is missing required configuration."""

    def __init__(self, message: str, client_name: str, fields: list[str]):
        """
        Initialize the configuration error.

        Args:
            message: Human-readable description.
            client_name: Name of the logical client that failed validation.
            fields: The configuration fields that are missing or invalid.
        """
        super().__init__(message)
        self.client_name = client_name
        self.fields = fields


class APIConnectionError(APIClientError):
    """The transport could not complete the HTTP exchange."""


class APITimeoutError(APIClientError):
    """An attempt or socket read ran past its deadline."""

    def __init__(self, message: str, timeout: float | None = None):
        super().__init__(message)
        self.timeout = timeout


class TotalTimeoutError(APITimeoutError):
    """Raised when an operation, retries included, exceeds its total budget."""


class ApiResponseError(APIClientError):
    """
    Raised when the API answers with a failure.

    Covers both non-2xx responses that survived the retry stage and 2xx
    responses whose envelope reports ``success: false``.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        headers: dict[str, str] | None = None,
        response_data: dict[str, Any] | None = None,
        errors: list[dict[str, Any]] | None = None,
    ):
        super().__init__(message, status_code, headers, response_data)
        self.errors = errors or []


class ConcurrencyLimitExceededError(APIClientError):
    """
    Raised when the concurrency limiter's wait queue is full.

    This is an overload signal, not a transport failure, and is never retried.
    """

    def __init__(self, message: str, retry_after: float | None = None):
        """
        Initialize the overload rejection.

        Args:
            message: Human-readable description.
            retry_after: Estimated seconds until a permit frees up, if known.
        """
        super().__init__(message)
        self.retry_after = retry_after


class CircuitBreakerOpenError(APIClientError):
    """The client's circuit is open, or half-open with its probe in flight."""

    def __init__(self, message: str, retry_after: float | None = None):
        """
        Initialize the breaker rejection.

        Args:
            message: Human-readable description.
            retry_after: Seconds until the breaker admits a probe, if known.
        """
        super().__init__(message)
        self.retry_after = retry_after


class PaginationError(APIClientError):
    """Raised when a paginated endpoint violates the continuation protocol."""
