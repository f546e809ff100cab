# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Per-attempt outcomes.

Every attempt made by the pipeline produces exactly one ``Outcome``: either
the response the transport returned or the exception it raised. The retry
stage classifies outcomes rather than catching specific exception types, and
the circuit breaker shares ``is_failure_status`` with it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .errors import APIConnectionError, APITimeoutError
from .transport import ApiResponse

__all__ = (
    "TRANSIENT_EXCEPTIONS",
    "Outcome",
    "OutcomeKind",
    "RetryAttemptContext",
    "is_failure_status",
)

TRANSIENT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    APIConnectionError,
    APITimeoutError,
)


class OutcomeKind(Enum):
    """How the pipeline should treat an attempt's outcome."""

    SUCCESS = "success"
    RETRYABLE = "retryable"
    FATAL = "fatal"


def is_failure_status(status: int) -> bool:
    """Statuses that count as upstream failures: 408, 429 and 5xx."""
    return status in (408, 429) or status >= 500


@dataclass(frozen=True, slots=True)
class Outcome:
    """The result of one attempt: a response or an exception, never both."""

    response: ApiResponse | None = None
    exception: BaseException | None = None

    def __post_init__(self) -> None:
        if (self.response is None) == (self.exception is None):
            raise ValueError("Outcome needs exactly one of response or exception")

    @classmethod
    def of(cls, response: ApiResponse) -> Outcome:
        return cls(response=response)

    @classmethod
    def failed(cls, exception: BaseException) -> Outcome:
        return cls(exception=exception)

    @property
    def is_transient_exception(self) -> bool:
        return isinstance(self.exception, TRANSIENT_EXCEPTIONS)

    @property
    def status(self) -> int | None:
        return self.response.status if self.response is not None else None

    def describe(self) -> str:
        if self.exception is not None:
            return f"{type(self.exception).__name__}: {self.exception!s}"
        return f"HTTP {self.response.status}"

    def unwrap(self) -> ApiResponse:
        """Return the response, or raise the exception unchanged."""
        if self.exception is not None:
            raise self.exception
        return self.response


@dataclass(frozen=True, slots=True)
class RetryAttemptContext:
    """Describes one scheduled retry. Handed to ``on_retry`` hooks."""

    attempt: int
    max_retries: int
    delay: float
    elapsed: float
    outcome: Outcome
    method: str
    path: str
