# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Tests for the RateLimitHeaderThrottle class.
"""

import time
from unittest.mock import AsyncMock, patch

import pytest

from fakes import make_response
from flarekit.clients.rate_limiter import (
    RateLimitHeaderThrottle,
    RateLimitInfo,
    parse_rate_limit_headers,
)
from flarekit.clients.transport import ApiRequest


def test_parse_separate_headers():
    """Test parsing of the RateLimit-Limit/Remaining/Reset triple."""
    # Arrange
    headers = {"ratelimit-limit": "100", "ratelimit-remaining": "5", "ratelimit-reset": "30"}

    # Act
    info = parse_rate_limit_headers(headers)

    # Assert
    assert info == RateLimitInfo(limit=100, remaining=5, reset=30)


def test_parse_x_prefixed_headers_with_epoch_reset():
    """Test that an absolute epoch reset is converted to seconds from now."""
    # Arrange
    headers = {
        "x-ratelimit-limit": "1200",
        "x-ratelimit-remaining": "10",
        "x-ratelimit-reset": "1700000060",
    }

    # Act
    info = parse_rate_limit_headers(headers, now=1_700_000_000)

    # Assert
    assert info.limit == 1200
    assert info.remaining == 10
    assert info.reset == 60


def test_parse_structured_headers():
    """Test parsing of the structured RateLimit and RateLimit-Policy headers."""
    # Arrange
    headers = {
        "ratelimit": '"default";r=3;t=12',
        "ratelimit-policy": '"default";q=1200;w=300',
    }

    # Act
    info = parse_rate_limit_headers(headers)

    # Assert
    assert info == RateLimitInfo(limit=1200, remaining=3, reset=12)


def test_parse_without_rate_limit_headers():
    """Test that unrelated headers yield no quota information."""
    assert parse_rate_limit_headers({"content-type": "application/json"}) is None


def test_compute_delay_above_threshold():
    """Test that plenty of remaining quota produces no delay."""
    throttle = RateLimitHeaderThrottle(quota_low_threshold=0.1)
    assert throttle.compute_delay(RateLimitInfo(limit=100, remaining=50, reset=30)) == 0.0


def test_compute_delay_below_threshold():
    """Test that the remaining window is spread over the remaining quota."""
    throttle = RateLimitHeaderThrottle(quota_low_threshold=0.1)
    delay = throttle.compute_delay(RateLimitInfo(limit=100, remaining=4, reset=30))
    assert delay == pytest.approx(6.0)


def test_compute_delay_exhausted_quota_waits_for_reset():
    """Test that zero remaining quota waits for the whole window."""
    throttle = RateLimitHeaderThrottle(quota_low_threshold=0.1)
    assert throttle.compute_delay(RateLimitInfo(limit=100, remaining=0, reset=30)) == 30


def test_compute_delay_without_reset():
    """Test that a missing reset cannot be scaled and yields no delay."""
    throttle = RateLimitHeaderThrottle(quota_low_threshold=0.5)
    assert throttle.compute_delay(RateLimitInfo(limit=100, remaining=1)) == 0.0


def test_observe_disabled_does_nothing():
    """Test that a disabled throttle never schedules delays."""
    # Arrange
    throttle = RateLimitHeaderThrottle(enabled=False)
    response = make_response(
        headers={"ratelimit-limit": "100", "ratelimit-remaining": "0", "ratelimit-reset": "30"}
    )

    # Act
    delay = throttle.observe(response)

    # Assert
    assert delay == 0.0
    assert throttle.resume_at == 0.0


@pytest.mark.asyncio
async def test_execute_delays_the_next_request():
    """Test that a low-quota response delays the following request only."""
    # Arrange
    throttle = RateLimitHeaderThrottle(enabled=True, quota_low_threshold=0.1)
    low = make_response(
        headers={"ratelimit-limit": "100", "ratelimit-remaining": "1", "ratelimit-reset": "10"}
    )
    mock_func = AsyncMock(return_value=low)
    request = ApiRequest("GET", "zones")
    mock_sleep = AsyncMock()

    # Act
    with patch("asyncio.sleep", mock_sleep):
        await throttle.execute(mock_func, request)
        first_sleeps = mock_sleep.call_count
        await throttle.execute(mock_func, request)

    # Assert
    assert first_sleeps == 0
    mock_sleep.assert_called_once()
    assert 0 < mock_sleep.call_args.args[0] <= 5.0
    assert mock_func.call_count == 2


@pytest.mark.asyncio
async def test_execute_passes_through_when_quota_is_healthy():
    """Test that healthy quota never sleeps."""
    # Arrange
    throttle = RateLimitHeaderThrottle(enabled=True, quota_low_threshold=0.1)
    healthy = make_response(
        headers={"ratelimit-limit": "100", "ratelimit-remaining": "90", "ratelimit-reset": "10"}
    )
    mock_func = AsyncMock(return_value=healthy)

    # Act
    with patch("asyncio.sleep", AsyncMock()) as mock_sleep:
        for _ in range(3):
            result = await throttle.execute(mock_func, ApiRequest("GET", "zones"))

    # Assert
    assert result is healthy
    mock_sleep.assert_not_called()
    assert throttle.resume_at <= time.monotonic()
