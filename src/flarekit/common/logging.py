# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Structured logging configuration for flarekit.

Component internals log through stdlib ``logging``; pipeline, factory and
paginator events are emitted through structlog with key/value context. This
module wires both to a single renderer so every retry, breaker transition and
pagination failure lands in the same stream.
"""

from __future__ import annotations

import logging
import sys
import uuid
from typing import Any

import orjson
import structlog

__all__ = ("Logging", "get_logger")


def _to_level(level: int | str) -> int:
    """
    Convert log level string to integer (e.g., "INFO" -> 20).

    Raises:
        KeyError: If string level is invalid
    """
    if isinstance(level, int):
        return level
    return logging.getLevelNamesMapping()[level.upper()]


def _orjson_dumps(event_dict: dict, *, default: Any) -> str:
    return orjson.dumps(event_dict, default=default).decode()


class Logging:
    """
    Logging setup and context helpers.

    Example:
        ```python
        Logging.configure_logging("dns-sync", level="DEBUG", json_format=False)
        log = get_logger(__name__)
        log.info("zone_synced", zone="example.com")
        ```
    """

    @staticmethod
    def configure_logging(
        service: str,
        level: int | str = "INFO",
        json_format: bool = True,
        utc: bool = True,
    ) -> None:
        """
        Route stdlib and structlog records through one renderer.

        Args:
            service: Non-empty service identifier bound into each log record
            level: Numeric or symbolic log level (e.g., "INFO" or 20)
            json_format: If False, use colored console text instead of JSON
            utc: Use UTC for ISO timestamps

        Raises:
            ValueError: If service parameter is empty
        """
        if not service:
            raise ValueError("`service` must be a non-empty string.")

        lvl = _to_level(level)

        shared_processors: list[structlog.types.Processor] = [
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=utc),
        ]

        renderer = (
            structlog.processors.JSONRenderer(serializer=_orjson_dumps)
            if json_format
            else structlog.dev.ConsoleRenderer(colors=True)
        )

        formatter = structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
            foreign_pre_chain=shared_processors,
        )
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)

        root = logging.getLogger()
        root.handlers.clear()
        root.addHandler(handler)
        root.setLevel(lvl)

        # structlog events are handed to stdlib so both share the handler above
        structlog.configure(
            processors=[
                *shared_processors,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.make_filtering_bound_logger(lvl),
            cache_logger_on_first_use=True,
        )

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(service=service)

    @staticmethod
    def get_logger(name: str) -> structlog.stdlib.BoundLogger:  # type: ignore[override]
        """Return a structlog logger named after the calling module."""
        return structlog.get_logger(name)

    @staticmethod
    def operation_context(client: str | None = None):
        """
        Bind a fresh operation ID and the client name for one logical call.

        Every log line emitted inside the block carries the ID, which ties the
        retries of one call together. Previous bindings are restored on exit.

        Example:
            ```python
            with Logging.operation_context("accountA"):
                await pipeline.execute(request)
            ```
        """
        return structlog.contextvars.bound_contextvars(
            operation_id=str(uuid.uuid4()), client=client
        )

    @staticmethod
    def clear_context() -> None:
        """Reset all context variables."""
        structlog.contextvars.clear_contextvars()


get_logger = Logging.get_logger
