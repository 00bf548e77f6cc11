"""structlog setup shared by the CLI and long-running stream processes."""

from __future__ import annotations

import logging

import structlog

from bfx.config import LoggingConfig


def configure_logging(config: LoggingConfig | None = None) -> None:
    """Install the processor chain. ``log_format`` picks JSON or console output."""
    config = config or LoggingConfig()
    level = logging.getLevelName(config.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    renderer = (
        structlog.dev.ConsoleRenderer()
        if config.log_format.lower() == "console"
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
    )
