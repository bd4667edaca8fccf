"""Logging setup applied once at application start-up."""

from __future__ import annotations

import logging.config

from credit_ledger.core.config import Settings, get_settings


def configure_logging(settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": settings.logging.format},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "loggers": {
                "credit_ledger": {
                    "handlers": ["console"],
                    "level": settings.logging.level.upper(),
                    "propagate": False,
                },
            },
        }
    )


__all__ = ["configure_logging"]
