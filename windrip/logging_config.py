from __future__ import annotations

import logging
import os
from logging.config import dictConfig
from typing import Optional


_CONFIGURED = False


class _WindripDebugFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno == logging.DEBUG:
            return record.name.startswith("windrip.")
        return True


def configure_logging(level: Optional[str] = None, *, force: bool = False) -> None:
    """Configure console logging for build and watch runs.

    ``level`` wins over WINDRIP_LOG_LEVEL, which wins over the INFO default.
    DEBUG records from third-party loggers (playwright, httpx, watchdog) are
    filtered out so ``--verbose`` only surfaces windrip's own detail. The
    uvicorn loggers keep their own compact format because the built-in content
    server runs on uvicorn.
    """
    global _CONFIGURED
    if _CONFIGURED and not force:
        logging.getLogger(__name__).debug("Logging already configured; skipping reconfiguration")
        return

    log_level = (level or os.getenv("WINDRIP_LOG_LEVEL", "INFO")).upper()

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "verbose": {
                    "format": "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
                "uvicorn": {
                    "format": "%(asctime)s [%(levelname)s] %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
            },
            "filters": {
                "windrip_debug": {"()": _WindripDebugFilter},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "verbose",
                    "filters": ["windrip_debug"],
                },
                "uvicorn": {
                    "class": "logging.StreamHandler",
                    "formatter": "uvicorn",
                },
            },
            "loggers": {
                "": {  # root logger
                    "handlers": ["console"],
                    "level": log_level,
                },
                "uvicorn.error": {
                    "handlers": ["uvicorn"],
                    "level": "WARNING",
                    "propagate": False,
                },
                "uvicorn.access": {
                    "handlers": ["uvicorn"],
                    "level": "WARNING",
                    "propagate": False,
                },
            },
        }
    )

    logging.getLogger(__name__).debug("Logging configured (level=%s)", log_level)
    _CONFIGURED = True
