"""Trading bot API exceptions with structured context.

All REST errors are subclasses of ApiError. Each exception carries an
optional context dict; secret-looking keys are filtered from its string form.

Usage:
    from btcdash.api.exceptions import ApiAuthError

    raise ApiAuthError(
        "Session expired",
        context={"path": "/api/trading/positions"},
    )
"""

from __future__ import annotations

from btcdash.common.exceptions import DashboardError


class ApiError(DashboardError):
    """Generic API error. Check context for path and status."""


class ApiAuthError(ApiError):
    """401 from the backend. Stored credentials have been cleared."""


class ApiConnectionError(ApiError):
    """Network failure or timeout after all retries."""
