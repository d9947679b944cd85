"""Structured logging setup for the BTC margin dashboard.

Every log line includes: timestamp, level, module tag, message, and structured data.
Secrets are automatically redacted from log output, including the auth token
carried in the price stream URL query string.

Usage:
    from btcdash.common.logging import get_logger
    logger = get_logger("PRICE")
    logger.info("Price received", extra={"data": {"price": 65000.12}})
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import UTC, datetime

# Module tags for structured logging
MODULE_TAGS = {
    "PRICE",
    "AUTH",
    "API",
    "WEB",
    "SYSTEM",
    "TEST",
}

# Regex to find secret-looking values in JSON strings
_SECRET_KEY_PATTERN = re.compile(
    r'"([^"]*(?:key|secret|password|token|passphrase|private|credential)[^"]*)":\s*"([^"]*)"',
    re.IGNORECASE,
)

# Token query parameters (e.g. ws://host/api/ws/btc-price?token=abc)
_TOKEN_QUERY_PATTERN = re.compile(r"([?&](?:token|access_token)=)[^&\s\"]+", re.IGNORECASE)


def _redact_secrets(text: str) -> str:
    """Replace values of secret-looking keys and token query params with [REDACTED]."""
    text = _SECRET_KEY_PATTERN.sub(r'"\1": "[REDACTED]"', text)
    return _TOKEN_QUERY_PATTERN.sub(r"\1[REDACTED]", text)


class StructuredFormatter(logging.Formatter):
    """Formats log records as structured, human-readable lines.

    Output format:
        2025-02-15T10:30:00Z | INFO | PRICE | Price received | {"price": 65000.12}
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
        level = record.levelname
        module_tag = getattr(record, "module_tag", "SYSTEM")

        # Extract structured data from extra
        data = getattr(record, "data", None)
        if data is not None:
            try:
                data_str = json.dumps(data, default=str)
                data_str = _redact_secrets(data_str)
            except (TypeError, ValueError):
                data_str = str(data)
        else:
            data_str = ""

        message = _redact_secrets(record.getMessage())

        parts = [timestamp, level, module_tag, message]
        if data_str:
            parts.append(data_str)

        line = " | ".join(parts)
        if record.exc_info:
            line = f"{line}\n{_redact_secrets(self.formatException(record.exc_info))}"
        return line


class ModuleTagLogger(logging.LoggerAdapter):
    """Logger adapter that injects module_tag and supports structured data.

    Usage:
        logger = get_logger("PRICE")
        logger.info("Connected", extra={"data": {"retry_count": 0}})
    """

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        # Inject module_tag into the record
        extra = kwargs.get("extra", {})
        extra["module_tag"] = self.extra.get("module_tag", "SYSTEM")
        kwargs["extra"] = extra
        return msg, kwargs


# Cache loggers to avoid duplicate handlers
_loggers: dict[str, ModuleTagLogger] = {}


def get_logger(module_tag: str) -> ModuleTagLogger:
    """Get a structured logger with the given module tag.

    Args:
        module_tag: One of the MODULE_TAGS (PRICE, AUTH, API, etc.)

    Returns:
        A logger adapter that injects the module tag into every log line.
    """
    if module_tag in _loggers:
        return _loggers[module_tag]

    logger = logging.getLogger(f"btcdash.{module_tag.lower()}")

    # Only add handler if this logger doesn't have one yet
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)
        logger.setLevel(logging.DEBUG)
        logger.propagate = False

    adapter = ModuleTagLogger(logger, {"module_tag": module_tag})
    _loggers[module_tag] = adapter
    return adapter
