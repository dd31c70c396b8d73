"""Process-wide logging setup for the CLI and the web app."""

from __future__ import annotations

import logging.config
from typing import Any

from .config import LoggingSettings

# httpx logs every request line at INFO, including query strings.
_QUIET_LOGGERS: tuple[str, ...] = ("httpx", "httpcore")

_KEY_VALUE_FORMAT = {
    "format": "ts={asctime} level={levelname} logger={name} msg={message!r}",
    "style": "{",
}
_HUMAN_FORMAT = {"format": "%(asctime)s %(levelname)s %(name)s %(message)s"}


def build_logging_config(settings: LoggingSettings) -> dict[str, Any]:
    """Return the ``dictConfig`` mapping for ``settings``.

    Ingestion logs go to stderr through a single console handler. The
    key=value format keeps one run's account and message ids greppable.
    """
    formatter = _KEY_VALUE_FORMAT if settings.structured else _HUMAN_FORMAT
    quiet = {name: {"level": "WARNING"} for name in _QUIET_LOGGERS}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"job_inbox": dict(formatter)},
        "handlers": {
            "stderr": {
                "class": "logging.StreamHandler",
                "formatter": "job_inbox",
                "level": settings.level,
            },
        },
        "loggers": quiet,
        "root": {"handlers": ["stderr"], "level": settings.level},
    }


def configure_logging(settings: LoggingSettings) -> None:
    """Install the logging configuration for this process."""
    logging.config.dictConfig(build_logging_config(settings))


__all__ = ["build_logging_config", "configure_logging"]
