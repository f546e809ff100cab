# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Factory and cache of named API clients.

A ClientFactory owns every client it creates. The first ``get_client(name)``
validates that client's configuration and builds one pipeline and one
transport for it; later calls return the same instance. ``aclose`` disposes
each cached client exactly once.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable, Mapping

from flarekit.common.logging import get_logger
from flarekit.config import ApiClientSettings

from .api_client import AsyncAPIClient
from .errors import ConfigurationError
from .outcome import RetryAttemptContext
from .pipeline import PipelineBuilder
from .resilience import CircuitState
from .transport import HttpTransport, Transport

logger = get_logger(__name__)

__all__ = ("ClientFactory", "validate_client_settings")

DYNAMIC_CLIENT_NAME = "dynamic"

TransportFactory = Callable[[ApiClientSettings], Transport]


def _http_transport(settings: ApiClientSettings) -> Transport:
    return HttpTransport(settings.api_base_url, api_token=settings.api_token)


def validate_client_settings(name: str, settings: ApiClientSettings | None) -> ApiClientSettings:
    """
    Check the fields a client cannot work without.

    Raises:
        ConfigurationError: Naming the client and every missing field.
    """
    config_path = f"Cloudflare:{name}"
    if settings is None:
        raise ConfigurationError(
            f"API configuration error: no configuration found for named client "
            f"'{name}'. Add a '{config_path}' section or register settings for it.",
            client_name=name,
            fields=["api_token"],
        )

    failures: list[tuple[str, str]] = []
    if not settings.api_token.strip():
        failures.append(
            ("api_token", f"ApiToken is required. Set '{config_path}:api_token'.")
        )
    if not settings.api_base_url.strip():
        failures.append(
            (
                "api_base_url",
                f"ApiBaseUrl is required. Set '{config_path}:api_base_url'.",
            )
        )

    if failures:
        if len(failures) == 1:
            message = f"API configuration error for client '{name}': {failures[0][1]}"
        else:
            message = f"API configuration errors for named client '{name}':\n- " + (
                "\n- ".join(text for _, text in failures)
            )
        raise ConfigurationError(
            message, client_name=name, fields=[field for field, _ in failures]
        )
    return settings


class ClientFactory:
    """
    Thread-safe get-or-create cache of AsyncAPIClient instances by name.

    Example:
        ```python
        factory = ClientFactory({"accountA": ApiClientSettings(api_token="...")})
        async with factory:
            client = factory.get_client("accountA")
            assert client is factory.get_client("accountA")
        ```
    """

    def __init__(
        self,
        settings: Mapping[str, ApiClientSettings] | None = None,
        transport_factory: TransportFactory = _http_transport,
        on_retry: Callable[[RetryAttemptContext], None] | None = None,
        on_state_change: Callable[[CircuitState, CircuitState], None] | None = None,
    ):
        self._settings: dict[str, ApiClientSettings] = dict(settings or {})
        self._transport_factory = transport_factory
        self._on_retry = on_retry
        self._on_state_change = on_state_change
        self._clients: dict[str, AsyncAPIClient] = {}
        self._lock = threading.Lock()
        self._closed = False
        self._close_task: asyncio.Future | None = None

    def configure(self, name: str, settings: ApiClientSettings) -> None:
        """Register or replace settings for a client that has not been created yet."""
        with self._lock:
            if name in self._clients:
                raise ValueError(f"Client '{name}' is already created")
            self._settings[name] = settings

    def _build(self, name: str, settings: ApiClientSettings) -> AsyncAPIClient:
        builder = PipelineBuilder(
            settings.rate_limiting,
            attempt_timeout=settings.default_timeout,
            client_name=name,
            on_retry=self._on_retry,
            on_state_change=self._on_state_change,
        )
        pipeline = builder.build(self._transport_factory(settings))
        return AsyncAPIClient(pipeline, name=name, account_id=settings.account_id)

    def get_client(self, name: str) -> AsyncAPIClient:
        """
        Return the cached client for ``name``, creating it on first use.

        Raises:
            ValueError: If ``name`` is blank.
            ConfigurationError: If the client is unknown or misconfigured.
            RuntimeError: If the factory has been closed.
        """
        if not name or not name.strip():
            raise ValueError("Client name must be a non-empty string")

        with self._lock:
            if self._closed:
                raise RuntimeError("ClientFactory has been closed")
            client = self._clients.get(name)
            if client is not None:
                return client

            settings = validate_client_settings(name, self._settings.get(name))
            client = self._build(name, settings)
            self._clients[name] = client

        logger.info("client_created", client=name, stages=client.pipeline.stage_names)
        return client

    def create_client(self, settings: ApiClientSettings) -> AsyncAPIClient:
        """
        Build an uncached client from explicit settings.

        The caller owns the returned client and must close it.
        """
        validate_client_settings(DYNAMIC_CLIENT_NAME, settings)
        return self._build(DYNAMIC_CLIENT_NAME, settings)

    @property
    def client_names(self) -> list[str]:
        with self._lock:
            return list(self._clients)

    async def _dispose(self, clients: list[AsyncAPIClient]) -> None:
        errors: list[Exception] = []
        for client in clients:
            try:
                await client.aclose()
            except Exception as e:
                logger.exception("client_dispose_failed", client=client.name)
                errors.append(e)
        logger.info("factory_closed", clients=len(clients), failed=len(errors))
        if errors:
            raise errors[0]

    async def aclose(self) -> None:
        """
        Dispose every cached client exactly once.

        Concurrent callers all wait for the same disposal to finish.
        """
        with self._lock:
            if self._close_task is None:
                self._closed = True
                clients = list(self._clients.values())
                self._clients.clear()
                self._close_task = asyncio.ensure_future(self._dispose(clients))
            task = self._close_task
        await asyncio.shield(task)

    async def __aenter__(self) -> ClientFactory:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
