"""Logging configuration.

Text output for development, JSON lines (python-json-logger) for production.
"""

from __future__ import annotations

import logging
import logging.config

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def build_logging_config(*, level: str = "INFO", fmt: str = "text") -> dict:
    formatter = "json" if fmt == "json" else "standard"
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {"format": TEXT_FORMAT},
            "json": {
                "()": "pythonjsonlogger.json.JsonFormatter",
                "format": JSON_FORMAT,
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": formatter,
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            # mysql-connector is chatty at DEBUG.
            "mysql.connector": {"level": "WARNING"},
        },
        "root": {"level": level.upper(), "handlers": ["console"]},
    }


def setup_logging(*, level: str = "INFO", fmt: str = "text") -> None:
    logging.config.dictConfig(build_logging_config(level=level, fmt=fmt))
