"""
ScrapRate — Logger factory for the price refresh service.

The scheduler logs one line per cycle phase (fetch, normalise, fallback,
cache swap) and the normalizer logs each rejected record, so these lines
are the operator's only view into a refresh.  Set LOG_FORMAT=json when they
are shipped to a log collector; the default text layout is for a terminal.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from typing import Optional


LOG_LEVEL:  str = os.getenv("LOG_LEVEL",  "INFO").upper()
LOG_FORMAT: str = os.getenv("LOG_FORMAT", "text").lower()  # "text" | "json"


class _JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            "ts":      self.formatTime(record, self.datefmt),
            "level":   record.levelname,
            "logger":  record.name,
            "msg":     record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Return a configured logger.

    Usage::

        from common.logging_util import get_logger
        log = get_logger(__name__)
        log.info("Refreshed %d prices", len(batch))
    """
    logger = logging.getLogger(name or "scraprate")

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)

        if LOG_FORMAT == "json":
            handler.setFormatter(_JsonFormatter())
        else:
            handler.setFormatter(
                logging.Formatter(
                    fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                    datefmt="%Y-%m-%dT%H:%M:%S",
                )
            )

        logger.addHandler(handler)
        logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
        logger.propagate = False

    return logger
