"""Centralized logging configuration using structlog."""

import logging
import os
import sys
from typing import IO

import structlog
from structlog.typing import Processor

LOG_LEVEL_ENV = "SLIPSTREAM_LOG_LEVEL"


def setup_logging(
    level: str | None = None,
    json_format: bool = False,
    log_file: str | None = None,
    stream: IO[str] | None = None,
) -> None:
    """Configure structured logging for the supervisor and its CLI.

    Args:
        level: Logging level name; falls back to ``SLIPSTREAM_LOG_LEVEL``
            and then INFO
        json_format: If True, render log lines as JSON
        log_file: Optional file path that also receives every record
        stream: Console stream (stderr by default so stdout stays free for
            CLI output)
    """
    level_name = (level or os.environ.get(LOG_LEVEL_ENV) or "INFO").upper()
    log_level = getattr(logging, level_name)

    root_logger = logging.getLogger()
    root_logger.handlers = []
    root_logger.setLevel(log_level)

    console_handler = logging.StreamHandler(stream or sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(console_handler)

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        root_logger.addHandler(file_handler)


def get_logger(name: str, **initial_context: object) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Logger name (usually __name__)
        **initial_context: Key/value pairs bound to every record, e.g.
            ``stage="stage1"``

    Returns:
        Configured structlog logger
    """
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger  # type: ignore[no-any-return]
