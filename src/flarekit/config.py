# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Configuration models for flarekit clients.

``RateLimitingSettings`` is the resilience configuration consumed by the
pipeline, ``ApiClientSettings`` describes one logical client, and
``Settings`` loads the default client from the environment.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = (
    "DEFAULT_API_BASE_URL",
    "ApiClientSettings",
    "RateLimitingSettings",
    "Settings",
)

DEFAULT_API_BASE_URL = "https://api.cloudflare.com/client/v4/"


class RateLimitingSettings(BaseModel):
    """Resilience configuration for one logical client.

    Out-of-range numbers are clamped instead of rejected so that a bad value
    in a config file degrades the pipeline rather than crashing it.
    """

    model_config = ConfigDict(frozen=True)

    is_enabled: bool = True
    """Retry responses with status 429."""

    max_retries: int = 2
    """Retries after the first attempt. Zero removes the retry stage."""

    permit_limit: int = 10
    queue_limit: int = 100
    enable_proactive_throttling: bool = True
    quota_low_threshold: float = 0.1

    base_delay: float = 1.0
    max_delay: float = 30.0
    total_timeout: float = 60.0

    failure_threshold: int = 5
    break_duration: float = 30.0

    @field_validator("max_retries", "queue_limit")
    @classmethod
    def _clamp_non_negative(cls, v: int) -> int:
        return max(0, v)

    @field_validator("permit_limit", "failure_threshold")
    @classmethod
    def _clamp_positive(cls, v: int) -> int:
        return max(1, v)

    @field_validator("quota_low_threshold")
    @classmethod
    def _clamp_fraction(cls, v: float) -> float:
        return min(max(v, 0.0), 1.0)

    @field_validator("base_delay", "max_delay", "break_duration")
    @classmethod
    def _clamp_delay(cls, v: float) -> float:
        return max(0.0, v)

    @field_validator("total_timeout")
    @classmethod
    def _clamp_timeout(cls, v: float) -> float:
        return v if v > 0 else 60.0


class ApiClientSettings(BaseModel):
    """Configuration for one logical API client."""

    model_config = ConfigDict(frozen=True)

    api_base_url: str = DEFAULT_API_BASE_URL
    api_token: str = ""
    account_id: str = ""
    default_timeout: float = Field(
        default=30.0, description="Per-attempt timeout in seconds"
    )
    rate_limiting: RateLimitingSettings = Field(default_factory=RateLimitingSettings)

    @field_validator("default_timeout")
    @classmethod
    def _clamp_attempt_timeout(cls, v: float) -> float:
        return v if v > 0 else 30.0


class Settings(BaseSettings, ApiClientSettings):
    """Default client settings read from ``FLAREKIT_*`` variables and ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="FLAREKIT_",
        env_nested_delimiter="__",
        env_file=(".env", ".secrets.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    def to_client_settings(self) -> ApiClientSettings:
        return ApiClientSettings.model_validate(self.model_dump())
