"""
Structured logging for the portal.

Each process calls :func:`setup_logging` once at start-up; modules then use
``get_logger(__name__)`` and log snake_case events with key/value context.
"""

import logging
import logging.handlers
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from portal_common.config import LoggingSettings

# Chatty at INFO; portal events are what operators read.
NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "aiosqlite", "asyncmy")

SECRET_KEYS = frozenset({"api_key", "access_token", "authorization", "password", "session_secret"})


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("app", "portal")
    return event_dict


def mask_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Replace the value of any credential-looking key with ``***``."""
    for key in SECRET_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = "***"
    return event_dict


def _handler(settings: LoggingSettings) -> logging.Handler:
    if settings.output == "file" and settings.file_path:
        settings.file_path.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.handlers.RotatingFileHandler(
            settings.file_path,
            maxBytes=settings.rotate_mb * 1024 * 1024,
            backupCount=5,
        )
    else:
        handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


def _renderer(settings: LoggingSettings) -> Processor:
    if settings.format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=sys.stdout.isatty(),
        exception_formatter=structlog.dev.plain_traceback,
    )


def setup_logging(settings: LoggingSettings | None = None) -> None:
    """
    Route structlog through the stdlib root logger.

    Args:
        settings: Logging settings. Defaults to ``LoggingSettings()`` (env driven).
    """
    settings = settings or LoggingSettings()

    root = logging.getLogger()
    root.handlers[:] = [_handler(settings)]
    root.setLevel(settings.level)
    quiet_level = max(logging.WARNING, root.level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            add_app_context,
            mask_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _renderer(settings),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_actor(user_id: str | None, **context: Any) -> None:
    """Tag every event logged by the current task with the acting user."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(user_id=user_id, **context)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
