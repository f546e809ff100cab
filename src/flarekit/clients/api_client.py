# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Async API client bound to one resilience pipeline.

AsyncAPIClient is the narrow interface resource clients call into. ``execute``
sends one raw request through the pipeline; the verb helpers additionally
unwrap the ``{success, errors, messages, result}`` envelope; ``list_all`` and
``list_all_cursor`` drain paginated collections lazily.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import orjson

from flarekit.common.logging import Logging, get_logger

from .errors import ApiResponseError
from .pagination import (
    CursorResultInfo,
    Paginator,
    ResultInfo,
    paginate_cursor,
    paginate_pages,
    result_info_from,
)
from .pipeline import ResiliencePipeline
from .transport import ApiRequest, ApiResponse

logger = get_logger(__name__)

__all__ = ("AsyncAPIClient",)


class AsyncAPIClient:
    """
    Resilient client for one logical client name.

    Instances are normally obtained from ``ClientFactory.get_client`` and are
    safe to share between tasks. Closing the client closes its transport.

    Example:
        ```python
        client = factory.get_client("accountA")
        zone = await client.get("zones/023e105f4ecef8ad9ca31a8372d0c353")
        async for record in client.list_all(f"zones/{zone['id']}/dns_records"):
            ...
        ```
    """

    def __init__(
        self,
        pipeline: ResiliencePipeline,
        name: str | None = None,
        account_id: str | None = None,
    ):
        self.pipeline = pipeline
        self.name = name
        self.account_id = account_id
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def execute(self, request: ApiRequest) -> ApiResponse:
        """Send one request through the resilience pipeline and return the raw response."""
        if self._closed:
            raise RuntimeError(f"Client '{self.name}' has been closed")
        with Logging.operation_context(self.name):
            return await self.pipeline.execute(request)

    async def request_envelope(
        self,
        method: str,
        path: str,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> dict[str, Any]:
        """Send a request and return the whole validated response envelope."""
        request = ApiRequest(method, path, params=params, json=json, headers=headers)
        response = await self.execute(request)
        return self._process_response(request, response)

    async def request(
        self,
        method: str,
        path: str,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        """Send a request and return the envelope's ``result``."""
        envelope = await self.request_envelope(method, path, params, json, headers)
        return envelope.get("result")

    async def get(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json: Any = None) -> Any:
        return await self.request("POST", path, json=json)

    async def put(self, path: str, json: Any = None) -> Any:
        return await self.request("PUT", path, json=json)

    async def patch(self, path: str, json: Any = None) -> Any:
        return await self.request("PATCH", path, json=json)

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)

    def list_all(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        per_page: int | None = None,
        strict: bool = False,
    ) -> Paginator[Any]:
        """Lazily iterate every item of a page-number paginated endpoint."""

        async def fetch_page(number: int) -> tuple[list[Any], ResultInfo | None]:
            query = {**(params or {}), "page": number}
            if per_page is not None:
                query["per_page"] = per_page
            envelope = await self.request_envelope("GET", path, params=query)
            return envelope.get("result") or [], result_info_from(envelope)

        return paginate_pages(fetch_page, per_page=per_page, strict=strict, name=path)

    def list_all_cursor(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        per_page: int | None = None,
        strict: bool = False,
    ) -> Paginator[Any]:
        """Lazily iterate every item of a cursor paginated endpoint."""

        async def fetch_cursor(
            cursor: str | None,
        ) -> tuple[list[Any], ResultInfo | CursorResultInfo | None]:
            query = dict(params or {})
            if per_page is not None:
                query["per_page"] = per_page
            if cursor:
                query["cursor"] = cursor
            envelope = await self.request_envelope("GET", path, params=query)
            info = result_info_from(envelope, "cursor_result_info") or result_info_from(
                envelope
            )
            return envelope.get("result") or [], info

        return paginate_cursor(fetch_cursor, strict=strict, name=path)

    def _process_response(
        self, request: ApiRequest, response: ApiResponse
    ) -> dict[str, Any]:
        if not response.ok:
            raise ApiResponseError(
                f"API request {request.method} {request.path} failed with status "
                f"code {response.status}. Response Body: {response.text}",
                status_code=response.status,
                headers=response.headers,
                errors=self._errors_from(response),
            )

        try:
            envelope = response.json()
        except orjson.JSONDecodeError as e:
            raise ApiResponseError(
                f"Failed to deserialize API response. Raw response: {response.text}",
                status_code=response.status,
                headers=response.headers,
            ) from e

        if not isinstance(envelope, dict) or not envelope.get("success", False):
            errors = envelope.get("errors", []) if isinstance(envelope, dict) else []
            messages = ", ".join(
                f"[{e.get('code')}] {e.get('message')}" for e in errors if isinstance(e, dict)
            )
            logger.error(
                "api_failure_envelope",
                method=request.method,
                path=request.path,
                errors=messages,
            )
            raise ApiResponseError(
                f"API returned a failure response: {messages}. "
                f"Raw response: {response.text}",
                status_code=response.status,
                headers=response.headers,
                response_data=envelope if isinstance(envelope, dict) else None,
                errors=errors,
            )
        return envelope

    @staticmethod
    def _errors_from(response: ApiResponse) -> list[dict[str, Any]]:
        try:
            body = response.json()
        except orjson.JSONDecodeError:
            return []
        if isinstance(body, dict) and isinstance(body.get("errors"), list):
            return body["errors"]
        return []

    async def aclose(self) -> None:
        """Close the client's transport. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        await self.pipeline.aclose()

    async def __aenter__(self) -> AsyncAPIClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
