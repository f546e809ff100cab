# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Tests for ClientFactory and client settings validation.
"""

import asyncio
import threading
import time

import pytest

from fakes import FakeTransport
from flarekit.clients.api_client import AsyncAPIClient
from flarekit.clients.errors import ConfigurationError
from flarekit.clients.factory import ClientFactory, validate_client_settings
from flarekit.config import ApiClientSettings, RateLimitingSettings


@pytest.fixture
def transports():
    """Collects every transport the factory creates."""
    return []


@pytest.fixture
def factory(transports):
    def transport_factory(settings):
        transport = FakeTransport()
        transports.append(transport)
        return transport

    return ClientFactory(
        {
            "accountA": ApiClientSettings(api_token="token-a", account_id="a"),
            "accountB": ApiClientSettings(
                api_token="token-b",
                rate_limiting=RateLimitingSettings(max_retries=0),
            ),
            "broken": ApiClientSettings(api_token="  "),
        },
        transport_factory=transport_factory,
    )


def test_validate_missing_settings_names_the_client():
    """Test that an unknown client name produces a descriptive error."""
    # Act & Assert
    with pytest.raises(ConfigurationError) as excinfo:
        validate_client_settings("missing", None)

    assert "'missing'" in str(excinfo.value)
    assert "Cloudflare:missing" in str(excinfo.value)
    assert excinfo.value.client_name == "missing"


def test_validate_reports_every_missing_field():
    """Test that all missing required fields are listed together."""
    # Act & Assert
    with pytest.raises(ConfigurationError) as excinfo:
        validate_client_settings("acct", ApiClientSettings(api_token="", api_base_url=" "))

    assert excinfo.value.fields == ["api_token", "api_base_url"]
    assert "named client 'acct'" in str(excinfo.value)


def test_validate_accepts_complete_settings():
    settings = ApiClientSettings(api_token="t")
    assert validate_client_settings("acct", settings) is settings


def test_get_client_returns_same_instance(factory, transports):
    """Test that repeated lookups of a name share one client and one transport."""
    # Act
    first = factory.get_client("accountA")
    second = factory.get_client("accountA")

    # Assert
    assert isinstance(first, AsyncAPIClient)
    assert first is second
    assert len(transports) == 1
    assert first.account_id == "a"


def test_get_client_from_many_threads_builds_one_client():
    """Test that concurrent first lookups from threads share a single client."""
    # Arrange
    workers = 16
    built: list[FakeTransport] = []

    def slow_transport_factory(settings):
        # Widen the window between the cache check and the insert.
        time.sleep(0.01)
        transport = FakeTransport()
        built.append(transport)
        return transport

    factory = ClientFactory(
        {"x": ApiClientSettings(api_token="t")},
        transport_factory=slow_transport_factory,
    )
    barrier = threading.Barrier(workers)
    results: list[AsyncAPIClient] = []
    errors: list[BaseException] = []

    def worker():
        barrier.wait()
        try:
            results.append(factory.get_client("x"))
        except BaseException as e:
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(workers)]

    # Act
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    # Assert
    assert errors == []
    assert len(results) == workers
    assert len({id(client) for client in results}) == 1
    assert len(built) == 1
    assert factory.client_names == ["x"]


def test_different_names_get_independent_clients(factory):
    """Test that each named client has its own pipeline."""
    # Act
    a = factory.get_client("accountA")
    b = factory.get_client("accountB")

    # Assert
    assert a is not b
    assert a.pipeline is not b.pipeline
    assert a.pipeline.circuit_breaker is not b.pipeline.circuit_breaker
    assert "Cloudflare:accountB:Retry" not in b.pipeline.stage_names
    assert "Cloudflare:accountA:Retry" in a.pipeline.stage_names
    assert sorted(factory.client_names) == ["accountA", "accountB"]


def test_get_client_unknown_name_raises(factory):
    with pytest.raises(ConfigurationError) as excinfo:
        factory.get_client("missing")

    assert "'missing'" in str(excinfo.value)


def test_get_client_missing_token_raises(factory, transports):
    """Test that a blank token is rejected before any transport is built."""
    # Act & Assert
    with pytest.raises(ConfigurationError) as excinfo:
        factory.get_client("broken")

    assert excinfo.value.fields == ["api_token"]
    assert transports == []


@pytest.mark.parametrize("name", ["", "   "])
def test_get_client_blank_name_raises(factory, name):
    with pytest.raises(ValueError):
        factory.get_client(name)


def test_configure_registers_new_client(factory):
    # Arrange
    factory.configure("late", ApiClientSettings(api_token="t"))

    # Act
    client = factory.get_client("late")

    # Assert
    assert client.name == "late"


def test_configure_rejects_created_client(factory):
    factory.get_client("accountA")

    with pytest.raises(ValueError):
        factory.configure("accountA", ApiClientSettings(api_token="other"))


def test_create_client_is_not_cached(factory, transports):
    """Test that dynamic clients are built fresh and owned by the caller."""
    # Act
    one = factory.create_client(ApiClientSettings(api_token="t"))
    two = factory.create_client(ApiClientSettings(api_token="t"))

    # Assert
    assert one is not two
    assert one.name == "dynamic"
    assert factory.client_names == []
    assert len(transports) == 2


def test_create_client_validates_settings(factory):
    with pytest.raises(ConfigurationError):
        factory.create_client(ApiClientSettings())


@pytest.mark.asyncio
async def test_aclose_disposes_each_client_once(factory, transports):
    """Test that concurrent aclose calls dispose every transport exactly once."""
    # Arrange
    factory.get_client("accountA")
    factory.get_client("accountB")

    # Act
    await asyncio.gather(*(factory.aclose() for _ in range(5)))
    await factory.aclose()

    # Assert
    assert [t.closed for t in transports] == [1, 1]
    assert factory.client_names == []


@pytest.mark.asyncio
async def test_get_client_after_close_raises(factory):
    # Arrange
    await factory.aclose()

    # Act & Assert
    with pytest.raises(RuntimeError):
        factory.get_client("accountA")


@pytest.mark.asyncio
async def test_factory_context_manager_closes_clients(factory, transports):
    # Act
    async with factory:
        client = factory.get_client("accountA")

    # Assert
    assert client.closed
    assert transports[0].closed == 1


@pytest.mark.asyncio
async def test_aclose_reraises_dispose_failure(transports):
    """Test that a failing disposal is reported after all clients are closed."""

    # Arrange
    class ExplodingTransport(FakeTransport):
        async def aclose(self):
            await super().aclose()
            raise OSError("close failed")

    def transport_factory(settings):
        transport = ExplodingTransport() if not transports else FakeTransport()
        transports.append(transport)
        return transport

    factory = ClientFactory(
        {
            "one": ApiClientSettings(api_token="t"),
            "two": ApiClientSettings(api_token="t"),
        },
        transport_factory=transport_factory,
    )
    factory.get_client("one")
    factory.get_client("two")

    # Act & Assert
    with pytest.raises(OSError, match="close failed"):
        await factory.aclose()

    assert [t.closed for t in transports] == [1, 1]
