"""Logging utilities for Repo Index."""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import orjson

_DEFAULT_LEVEL = os.environ.get("RIDX_LOG_LEVEL", "INFO")
_DEFAULT_FORMAT = os.environ.get("RIDX_LOG_FORMAT", "json")
_CONTEXT_PREFIX = "ctx_"


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``ctx_*`` record attributes land under ``context``."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        context = {
            key[len(_CONTEXT_PREFIX) :]: value
            for key, value in record.__dict__.items()
            if key.startswith(_CONTEXT_PREFIX)
        }
        if context:
            payload["context"] = context
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return orjson.dumps(payload, default=str).decode("utf-8")


def log_context(**fields: Any) -> dict[str, Any]:
    """Build the ``extra`` mapping for a log call, dropping ``None`` values."""
    return {f"{_CONTEXT_PREFIX}{key}": value for key, value in fields.items() if value is not None}


def configure_logging(level: str | int = _DEFAULT_LEVEL, use_json: bool | None = None) -> None:
    """Send records to stderr so command output on stdout stays machine-readable."""
    if use_json is None:
        use_json = _DEFAULT_FORMAT.lower() != "text"
    logging.captureWarnings(True)
    root = logging.getLogger()
    root.setLevel(level)
    handler = logging.StreamHandler(sys.stderr)
    if use_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.handlers = [handler]


def get_logger(name: str = "repo_index") -> logging.Logger:
    if not logging.getLogger().handlers:
        configure_logging()
    return logging.getLogger(name)


__all__ = ["JsonFormatter", "configure_logging", "get_logger", "log_context"]
