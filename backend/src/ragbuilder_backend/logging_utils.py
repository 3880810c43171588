"""Logging helpers that keep provider credentials out of log output."""

from __future__ import annotations

import json
import logging
import os
import re
from threading import Lock

_CONFIG_LOCK = Lock()
_CONFIGURED = False

_OPENAI_KEY_PATTERN = re.compile(r"\bsk-[A-Za-z0-9_-]{8,}")
_GOOGLE_KEY_PATTERN = re.compile(r"\bAIza[0-9A-Za-z_-]{20,}")
_BEARER_PATTERN = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")
_PATTERNS = [_OPENAI_KEY_PATTERN, _GOOGLE_KEY_PATTERN, _BEARER_PATTERN]


def scrub_secrets(value: str) -> str:
    """Mask API keys and bearer tokens."""

    scrubbed = value
    for pattern in _PATTERNS:
        scrubbed = pattern.sub("[REDACTED]", scrubbed)
    return scrubbed


def _scrub_arg(value: object) -> object:
    # numeric args must survive for %d and %f placeholders
    if isinstance(value, str):
        return scrub_secrets(value)
    if isinstance(value, BaseException):
        return scrub_secrets(str(value))
    return value


class SecretScrubberFilter(logging.Filter):
    """Scrubs credentials from log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = scrub_secrets(record.msg)

        if record.args:
            if isinstance(record.args, tuple):
                record.args = tuple(_scrub_arg(arg) for arg in record.args)
            elif isinstance(record.args, dict):
                record.args = {key: _scrub_arg(value) for key, value in record.args.items()}

        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if hasattr(record, "event"):
            payload["event"] = record.event
        if hasattr(record, "payload"):
            payload["payload"] = record.payload
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(level: int = logging.INFO) -> None:
    """Configure root logger with secret scrubbing and consistent format."""

    global _CONFIGURED
    with _CONFIG_LOCK:
        if _CONFIGURED:
            return

        log_format = os.getenv("RAGBUILDER_LOG_FORMAT", "plain").lower()
        if log_format == "json":
            handler = logging.StreamHandler()
            handler.setFormatter(JSONFormatter())
            logging.basicConfig(level=level, handlers=[handler])
        else:
            logging.basicConfig(level=level, format="[%(levelname)s] %(name)s - %(message)s")

        scrubber = SecretScrubberFilter()
        for handler in logging.getLogger().handlers:
            handler.addFilter(scrubber)
        _CONFIGURED = True


def log_event(event: str, payload: dict | None = None, level: int = logging.INFO) -> None:
    logger = logging.getLogger("ragbuilder.observability")
    logger.log(
        level,
        scrub_secrets(json.dumps(payload or {}, ensure_ascii=False, default=str)),
        extra={"event": event, "payload": payload or {}},
    )


__all__ = ["JSONFormatter", "SecretScrubberFilter", "configure_logging", "log_event", "scrub_secrets"]
