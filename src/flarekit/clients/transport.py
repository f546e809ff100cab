# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
HTTP transport for the resilience pipeline.

This module defines the request and response records that flow through the
pipeline, and an aiohttp-backed transport that performs exactly one HTTP
exchange per call. The transport never retries and never raises on HTTP
status codes: status handling belongs to the pipeline stages above it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import aiohttp
import orjson

from .errors import APIConnectionError, APITimeoutError

logger = logging.getLogger(__name__)

__all__ = ("ApiRequest", "ApiResponse", "HttpTransport", "Transport")

# Long enough that the pipeline's own timeouts are always the effective ones.
SESSION_TIMEOUT = 300.0


@dataclass(frozen=True, slots=True)
class ApiRequest:
    """An outbound request descriptor."""

    method: str
    path: str
    params: Mapping[str, Any] | None = None
    json: Any = None
    headers: Mapping[str, str] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())


@dataclass(frozen=True, slots=True)
class ApiResponse:
    """A fully read HTTP response."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    request: ApiRequest | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "headers", {k.lower(): v for k, v in self.headers.items()}
        )

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str, default: str | None = None) -> str | None:
        return self.headers.get(name.lower(), default)

    def json(self) -> Any:
        """Decode the body as JSON, returning None for an empty body."""
        if not self.body:
            return None
        return orjson.loads(self.body)

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


@runtime_checkable
class Transport(Protocol):
    """Anything that can send one request and be closed."""

    async def send(self, request: ApiRequest) -> ApiResponse: ...

    async def aclose(self) -> None: ...


class HttpTransport:
    """
    aiohttp transport bound to one API base URL.

    The ClientSession is created lazily on first use so that the transport
    can be constructed outside a running event loop, and it is reused for
    every request until ``aclose`` is called.

    Example:
        ```python
        transport = HttpTransport("https://api.cloudflare.com/client/v4/", token)
        async with transport:
            response = await transport.send(ApiRequest("GET", "zones"))
        ```
    """

    def __init__(
        self,
        base_url: str,
        api_token: str | None = None,
        default_headers: dict[str, str] | None = None,
    ):
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.default_headers = {
            "content-type": "application/json",
            **(default_headers or {}),
        }
        if api_token:
            self.default_headers["authorization"] = f"Bearer {api_token}"
        self.client: aiohttp.ClientSession | None = None
        self._closed = False

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return self.base_url + path.lstrip("/")

    def _get_session(self) -> aiohttp.ClientSession:
        if self._closed:
            raise RuntimeError("Transport has been closed")
        if self.client is None or self.client.closed:
            self.client = aiohttp.ClientSession(
                headers=self.default_headers,
                timeout=aiohttp.ClientTimeout(total=SESSION_TIMEOUT),
            )
        return self.client

    async def send(self, request: ApiRequest) -> ApiResponse:
        """
        Send a single request and read the whole response body.

        Raises:
            APIConnectionError: If the connection fails.
            APITimeoutError: If the socket read times out.
        """
        session = self._get_session()
        body = None
        if request.json is not None:
            body = orjson.dumps(request.json)

        try:
            async with session.request(
                request.method,
                self.url_for(request.path),
                params=dict(request.params) if request.params else None,
                data=body,
                headers=dict(request.headers) if request.headers else None,
            ) as resp:
                payload = await resp.read()
                return ApiResponse(
                    status=resp.status,
                    headers=dict(resp.headers),
                    body=payload,
                    request=request,
                )
        except asyncio.TimeoutError as e:
            raise APITimeoutError(
                f"{request.method} {request.path} timed out: {e!s}"
            ) from e
        except aiohttp.ClientError as e:
            logger.debug(f"Transport error for {request.method} {request.path}: {e}")
            raise APIConnectionError(
                f"{request.method} {request.path} failed: {e!s}"
            ) from e

    async def aclose(self) -> None:
        """Close the underlying session. Safe to call more than once."""
        self._closed = True
        if self.client is not None:
            await self.client.close()
            self.client = None

    async def __aenter__(self) -> HttpTransport:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
