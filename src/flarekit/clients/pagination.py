# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Lazy draining of paginated collection endpoints.

A ``Paginator`` turns a page fetch function into one forward-only async
stream of items. It performs exactly one fetch per page boundary, only when
the consumer asks for an item beyond the current page, and never prefetches.
Page-number endpoints (``result_info.page``/``total_pages``) and cursor
endpoints (``result_info.cursor`` or ``cursor_result_info.cursor``) share the
same machinery through ``Page``.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict

from flarekit.common.logging import get_logger

from .errors import PaginationError

T = TypeVar("T")

logger = get_logger(__name__)

__all__ = (
    "CursorResultInfo",
    "Page",
    "Paginator",
    "ResultInfo",
    "paginate",
    "paginate_cursor",
    "paginate_pages",
    "result_info_from",
)


class ResultInfo(BaseModel):
    """Page-number metadata from a list response's ``result_info``."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    page: int = 1
    per_page: int = 0
    count: int = 0
    total_count: int = 0
    total_pages: int = 0
    cursor: str | None = None


class CursorResultInfo(BaseModel):
    """Cursor metadata from a list response's ``cursor_result_info``."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    count: int = 0
    per_page: int = 0
    cursor: str | None = None


@dataclass(frozen=True, slots=True)
class Page(Generic[T]):
    """
    One page of a collection.

    ``has_more`` defaults to whether ``next_token`` is non-empty. An explicit
    ``has_more=True`` with no token is a protocol violation by the server.
    """

    items: Sequence[T] = field(default_factory=tuple)
    next_token: str | None = None
    has_more: bool | None = None

    def __post_init__(self) -> None:
        if self.has_more is None:
            object.__setattr__(self, "has_more", bool(self.next_token))

    @classmethod
    def from_result_info(
        cls,
        items: Sequence[T],
        info: ResultInfo | None,
        per_page: int | None = None,
        page: int | None = None,
    ) -> Page[T]:
        """
        Page-number variant: more pages exist while page < total_pages.

        Some endpoints always report ``total_pages == 0``. For those, a
        ``per_page`` hint makes a full page mean another page may follow.
        ``page`` overrides the page number reported in ``info``.
        """
        current = page if page is not None else (info.page if info is not None else 1)
        if info is not None and info.total_pages > 0:
            more = current < info.total_pages
        elif per_page:
            more = len(items) >= per_page
        else:
            more = False

        if not more:
            return cls(items=items, next_token=None, has_more=False)
        return cls(items=items, next_token=str(current + 1), has_more=True)

    @classmethod
    def from_cursor_info(
        cls, items: Sequence[T], info: ResultInfo | CursorResultInfo | None
    ) -> Page[T]:
        """Cursor variant: more pages exist while the cursor is non-empty."""
        cursor = info.cursor if info is not None else None
        return cls(items=items, next_token=cursor or None)


FetchPage = Callable[[str | None], Awaitable[Page[T]]]


class Paginator(Generic[T]):
    """
    Forward-only, non-restartable async stream over a paginated endpoint.

    ``fetch`` receives ``None`` for the first page and afterwards the token
    returned with the previous page. A fresh Paginator must be created to
    enumerate again; concurrent paginators share no state.

    If a page claims more data but carries no continuation token (or repeats
    a token already seen), the inconsistency is logged at critical level and
    the stream ends after that page's own items. With ``strict=True`` a
    PaginationError is raised at that point instead of ending quietly.

    Example:
        ```python
        async for zone in paginate(fetch_zones_page):
            print(zone["name"])
        ```
    """

    def __init__(
        self,
        fetch: FetchPage[T],
        strict: bool = False,
        name: str | None = None,
    ):
        self._fetch = fetch
        self.strict = strict
        self.name = name or getattr(fetch, "__name__", "paginator")
        self.pages_fetched = 0
        self._buffer: deque[T] = deque()
        self._token: str | None = None
        self._seen_tokens: set[str] = set()
        self._exhausted = False
        self._started = False
        self._pending_error: PaginationError | None = None

    def __aiter__(self) -> Paginator[T]:
        if self._started:
            raise PaginationError(
                f"Paginator '{self.name}' is forward-only and cannot be restarted"
            )
        self._started = True
        return self

    async def __anext__(self) -> T:
        while not self._buffer:
            if self._exhausted:
                if self._pending_error is not None:
                    error, self._pending_error = self._pending_error, None
                    raise error
                raise StopAsyncIteration
            await self._fetch_next()
        return self._buffer.popleft()

    async def _fetch_next(self) -> None:
        page = await self._fetch(self._token)
        self.pages_fetched += 1
        self._buffer.extend(page.items)

        if not page.has_more:
            self._exhausted = True
            return

        token = page.next_token
        if not token or token in self._seen_tokens:
            self._halt(token)
            return

        self._seen_tokens.add(token)
        self._token = token

    def _halt(self, token: str | None) -> None:
        reason = "repeated continuation token" if token else "no continuation token"
        logger.critical(
            "pagination_inconsistency",
            paginator=self.name,
            page=self.pages_fetched,
            reason=reason,
            token=token,
        )
        self._exhausted = True
        if self.strict:
            self._pending_error = PaginationError(
                f"Paginator '{self.name}' page {self.pages_fetched} reported more "
                f"results with {reason}"
            )

    async def aclose(self) -> None:
        """Stop the enumeration; no further pages are fetched."""
        self._exhausted = True
        self._buffer.clear()
        self._pending_error = None

    async def to_list(self) -> list[T]:
        return [item async for item in self]


def paginate(
    fetch: FetchPage[T], strict: bool = False, name: str | None = None
) -> Paginator[T]:
    """Drain pages returned by ``fetch(token) -> Page`` into one stream."""
    return Paginator(fetch, strict=strict, name=name)


def paginate_pages(
    fetch_page: Callable[[int], Awaitable[tuple[Sequence[T], ResultInfo | None]]],
    per_page: int | None = None,
    strict: bool = False,
    name: str | None = None,
) -> Paginator[T]:
    """
    Page-number variant: ``fetch_page(n) -> (items, result_info)``, n from 1.

    Pass the requested ``per_page`` to keep going past pages whose metadata
    carries no usable ``total_pages``; enumeration then stops at the first
    short page.
    """

    async def fetch(token: str | None) -> Page[T]:
        number = int(token) if token else 1
        items, info = await fetch_page(number)
        return Page.from_result_info(items, info, per_page=per_page, page=number)

    return Paginator(fetch, strict=strict, name=name or getattr(fetch_page, "__name__", None))


def paginate_cursor(
    fetch_cursor: Callable[
        [str | None], Awaitable[tuple[Sequence[T], ResultInfo | CursorResultInfo | None]]
    ],
    strict: bool = False,
    name: str | None = None,
) -> Paginator[T]:
    """Cursor variant: ``fetch_cursor(cursor) -> (items, cursor_info)``."""

    async def fetch(token: str | None) -> Page[T]:
        items, info = await fetch_cursor(token)
        return Page.from_cursor_info(items, info)

    return Paginator(
        fetch, strict=strict, name=name or getattr(fetch_cursor, "__name__", None)
    )


def result_info_from(payload: dict[str, Any], key: str = "result_info") -> Any:
    """Build ResultInfo/CursorResultInfo from a response envelope, if present."""
    raw = payload.get(key)
    if not raw:
        return None
    if key == "cursor_result_info":
        return CursorResultInfo.model_validate(raw)
    return ResultInfo.model_validate(raw)
