"""Logging for every Doorstep context.

stdlib logging owns the handlers, structlog renders. Level and renderer come
from ``Settings``: JSON lines in production and staging, the coloured
console renderer with rich tracebacks elsewhere.

Events that need a person (a paid order the provider later reports as
failed, a refund the provider refused, a paid checkout that could not
become an order, a stock release that would exceed capacity) are logged at
error level and also land in ``doorstep_alerts.log``.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any

import structlog

from shared.config import Settings, get_settings

ROTATE_BYTES = 10 * 1024 * 1024
ROTATE_BACKUPS = 5

# Chatty libraries only reach the handlers with warnings
QUIET_LOGGERS = ("httpx", "stripe", "sqlalchemy.engine", "protean")


def _rotating(path: Path, level: int | str) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        filename=path,
        maxBytes=ROTATE_BYTES,
        backupCount=ROTATE_BACKUPS,
        encoding="utf-8",
    )
    handler.setLevel(level)
    return handler


def setup_stdlib_logging(settings: Settings, log_dir: Path | str = "logs") -> None:
    """Console plus rotating files on the root logger.

    Tests log to the console only.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level)
    root_logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(settings.log_level)
    root_logger.addHandler(console_handler)

    if settings.env != "test":
        log_dir = Path(log_dir)
        log_dir.mkdir(exist_ok=True)
        root_logger.addHandler(_rotating(log_dir / "doorstep.log", settings.log_level))
        root_logger.addHandler(_rotating(log_dir / "doorstep_alerts.log", logging.ERROR))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def setup_structlog(settings: Settings) -> None:
    processors = _shared_processors()

    if settings.renders_json:
        processors += [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    else:
        processors += [
            structlog.processors.CallsiteParameterAdder(
                parameters=[
                    structlog.processors.CallsiteParameter.FILENAME,
                    structlog.processors.CallsiteParameter.LINENO,
                ]
            ),
            structlog.dev.ConsoleRenderer(
                colors=sys.stdout.isatty(),
                exception_formatter=structlog.dev.RichTracebackFormatter(show_locals=False, max_frames=4),
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_logging(settings: Settings | None = None, log_dir: Path | str = "logs") -> None:
    settings = settings or get_settings()
    setup_stdlib_logging(settings, log_dir)
    setup_structlog(settings)


def add_context(**kwargs: Any) -> None:
    """Bind values to every log line emitted later in this context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
