"""Custom exceptions for the BTC margin dashboard.

All packages raise subclasses of DashboardError instead of generic ones.
The FastAPI exception handlers in main.py catch DashboardError and return
structured JSON error responses.
"""

from __future__ import annotations


class DashboardError(Exception):
    """Base exception for all dashboard errors.

    Args:
        message: Human-readable error description.
        context: Optional dict of structured data for logging/debugging.
    """

    def __init__(self, message: str, context: dict | None = None) -> None:
        super().__init__(message)
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            # Filter out anything that looks like a secret
            safe_context = {
                k: "[REDACTED]" if _is_secret_key(k) else v for k, v in self.context.items()
            }
            return f"{super().__str__()} | context={safe_context}"
        return super().__str__()


class ConfigurationError(DashboardError):
    """Required configuration (token, encryption key, URL) is missing or invalid."""


def _is_secret_key(key: str) -> bool:
    """Check if a dict key name suggests it contains secret data."""
    secret_words = {"key", "secret", "password", "token", "passphrase", "private", "credential"}
    key_lower = key.lower()
    return any(word in key_lower for word in secret_words)
