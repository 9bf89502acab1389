"""Logging configuration shared by the API server, the Celery worker and the CLI."""

import logging.config
from typing import Any

from zulip_pusher.configs import configs

LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"

LOGGING_CONFIG: dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {"format": LOG_FORMAT},
        "access": {
            "()": "uvicorn.logging.AccessFormatter",
            "fmt": '%(asctime)s %(levelname)-8s [access] %(client_addr)s "%(request_line)s" %(status_code)s',
        },
    },
    "handlers": {
        "default": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "stream": "ext://sys.stderr",
        },
        "access": {
            "class": "logging.StreamHandler",
            "formatter": "access",
            "stream": "ext://sys.stdout",
        },
    },
    "loggers": {
        "zulip_pusher": {"handlers": ["default"], "level": configs.LogLevel.upper(), "propagate": False},
        "uvicorn": {"handlers": ["default"], "level": "INFO", "propagate": False},
        "uvicorn.error": {"level": "INFO"},
        "uvicorn.access": {"handlers": ["access"], "level": "INFO", "propagate": False},
        # httpx logs every request at INFO
        "httpx": {"handlers": ["default"], "level": "WARNING", "propagate": False},
    },
    "root": {"handlers": ["default"], "level": "WARNING"},
}


def setup_logging(level: str | None = None) -> None:
    """Apply ``LOGGING_CONFIG`` outside of uvicorn (worker, CLI)."""
    config = dict(LOGGING_CONFIG)
    if level:
        config["loggers"] = {**config["loggers"], "zulip_pusher": {**config["loggers"]["zulip_pusher"], "level": level}}
    logging.config.dictConfig(config)
