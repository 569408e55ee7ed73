import logging
import sys
from pathlib import Path
from typing import Any

import structlog

# Chatty third-party loggers kept at WARNING unless the app runs at DEBUG
NOISY_LOGGERS = ("aiosqlite", "sqlalchemy.engine", "sqlalchemy.pool")


def configure_logging(
    level: str = "INFO",
    json_logs: bool = False,
    log_file: Path | None = None,
) -> None:
    """Configure structlog and the stdlib bridge.

    Args:
        level: Root log level name
        json_logs: Render JSON lines instead of the console format
        log_file: Also append to this file; its directory is created
    """

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors + [renderer],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # stdout only; the CLI's rich output goes to the same terminal
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    root_level = level.upper()
    logging.basicConfig(
        format="%(message)s",
        handlers=handlers,
        level=root_level,
        force=True,
    )

    if root_level != "DEBUG":
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
