"""Structured logging helpers shared across adapter components."""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO

__all__ = ["JSONFormatter", "mask_sensitive_data", "setup_logging"]

_SENSITIVE_KEYS = {
    "authorization",
    "personal_access_token",
    "token",
    "pat",
    "password",
    "secret",
    "api_key",
}
_BEARER_RE = re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+", re.IGNORECASE)
_MASK = "***masked***"


def mask_sensitive_data(payload: Any, key_hint: Optional[str] = None) -> Any:
    """Return a copy of ``payload`` with secret fields and bearer tokens masked."""

    if key_hint is not None and key_hint.lower() in _SENSITIVE_KEYS:
        return _MASK
    if isinstance(payload, dict):
        return {key: mask_sensitive_data(value, str(key)) for key, value in payload.items()}
    if isinstance(payload, (list, tuple)):
        return [mask_sensitive_data(item) for item in payload]
    if isinstance(payload, str):
        return _BEARER_RE.sub(r"\1" + _MASK, payload)
    return payload


class JSONFormatter(logging.Formatter):
    """Formatter emitting masked JSON log entries for adapter events."""

    def format(self, record: logging.LogRecord) -> str:
        """Render ``record`` as a JSON string with adapter-specific fields."""

        now = datetime.now(timezone.utc)
        payload: Dict[str, Any] = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            payload.update(extra_fields)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(mask_sensitive_data(payload), default=str)


def setup_logging(
    *,
    level: str = "INFO",
    json_format: bool = False,
    stream: Optional[TextIO] = None,
    propagate: bool = False,
) -> logging.Logger:
    """Configure the ``JiraDC`` logger with a single managed stream handler."""

    logger = logging.getLogger("JiraDC")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        if getattr(handler, "_jiradc_managed", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    handler._jiradc_managed = True  # type: ignore[attr-defined]
    logger.addHandler(handler)

    logger.propagate = propagate
    return logger
