"""Logging configuration helpers for the chat server."""

from __future__ import annotations

import logging
from logging import Logger
import os


def configure_logging(level: str | None = None) -> Logger:
    """Configure basic logging for the application and return the package logger."""
    logging.basicConfig(
        level=(level or os.environ.get("LOG_LEVEL", "INFO")).upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    return logging.getLogger("chat_app")
