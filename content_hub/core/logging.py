from __future__ import annotations

import logging
from typing import Any

import structlog


def configure_logging(level: int = logging.INFO, fmt: str = "json") -> None:
    logging.basicConfig(format="%(message)s", level=level)
    renderer: Any = structlog.dev.ConsoleRenderer() if fmt == "console" else structlog.processors.JSONRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )


def level_from_name(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


def get_logger(**initial_values: Any) -> structlog.BoundLogger:
    return structlog.get_logger().bind(**initial_values)


__all__ = ["configure_logging", "get_logger", "level_from_name"]
