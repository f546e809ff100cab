# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Tests for configuration models and logging setup.
"""

import logging
from unittest.mock import patch

import pytest
import structlog
from pydantic import ValidationError

from flarekit.common.logging import Logging
from flarekit.config import (
    DEFAULT_API_BASE_URL,
    ApiClientSettings,
    RateLimitingSettings,
    Settings,
)


def test_rate_limiting_defaults():
    settings = RateLimitingSettings()

    assert settings.is_enabled is True
    assert settings.max_retries == 2
    assert settings.permit_limit == 10
    assert settings.queue_limit == 100
    assert settings.quota_low_threshold == 0.1
    assert settings.failure_threshold == 5
    assert settings.break_duration == 30.0


@pytest.mark.parametrize(
    "field,value,expected",
    [
        ("max_retries", -3, 0),
        ("queue_limit", -1, 0),
        ("permit_limit", 0, 1),
        ("failure_threshold", -2, 1),
        ("quota_low_threshold", 1.5, 1.0),
        ("quota_low_threshold", -0.5, 0.0),
        ("base_delay", -1.0, 0.0),
        ("total_timeout", 0, 60.0),
    ],
)
def test_rate_limiting_clamps_out_of_range_values(field, value, expected):
    """Test that bad numbers degrade to safe values instead of failing."""
    settings = RateLimitingSettings(**{field: value})
    assert getattr(settings, field) == expected


def test_settings_are_frozen():
    settings = RateLimitingSettings()

    with pytest.raises(ValidationError):
        settings.max_retries = 4


def test_api_client_settings_defaults():
    settings = ApiClientSettings()

    assert settings.api_base_url == DEFAULT_API_BASE_URL
    assert settings.api_token == ""
    assert settings.default_timeout == 30.0
    assert settings.rate_limiting == RateLimitingSettings()
    assert ApiClientSettings(default_timeout=-1).default_timeout == 30.0


def test_settings_load_from_environment(monkeypatch):
    """Test that FLAREKIT_* variables, including nested ones, are read."""
    # Arrange
    monkeypatch.setenv("FLAREKIT_API_TOKEN", "env-token")
    monkeypatch.setenv("FLAREKIT_ACCOUNT_ID", "acct-1")
    monkeypatch.setenv("FLAREKIT_RATE_LIMITING__MAX_RETRIES", "4")
    monkeypatch.setenv("FLAREKIT_RATE_LIMITING__IS_ENABLED", "false")

    # Act
    settings = Settings(_env_file=None)
    client_settings = settings.to_client_settings()

    # Assert
    assert settings.api_token == "env-token"
    assert settings.rate_limiting.max_retries == 4
    assert settings.rate_limiting.is_enabled is False
    assert type(client_settings) is ApiClientSettings
    assert client_settings.account_id == "acct-1"
    assert client_settings.rate_limiting.max_retries == 4


def test_operation_context_binds_and_restores():
    """Test that an operation ID is bound for the block only."""
    # Act
    with Logging.operation_context("accountA"):
        inside = structlog.contextvars.get_contextvars()
    outside = structlog.contextvars.get_contextvars()

    # Assert
    assert inside["client"] == "accountA"
    assert len(inside["operation_id"]) == 36
    assert "operation_id" not in outside


def test_configure_logging_requires_service():
    with pytest.raises(ValueError):
        Logging.configure_logging("")


def test_configure_logging_installs_root_handler():
    """Test that stdlib records are routed through the structlog formatter."""
    # Arrange
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level

    # Act
    try:
        with patch("structlog.configure") as mock_configure:
            Logging.configure_logging("dns-sync", level="debug", json_format=False)
        handlers = root.handlers[:]
        level = root.level
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
        Logging.clear_context()

    # Assert
    mock_configure.assert_called_once()
    assert level == logging.DEBUG
    assert len(handlers) == 1
    assert handlers[0].formatter.__class__.__name__ == "ProcessorFormatter"
