"""Price stream exceptions.

All price feed errors are subclasses of PriceFeedError, which in turn
derives from DashboardError so they carry structured context with
secret-looking keys filtered out of the string form.

Usage:
    from btcdash.pricefeed.exceptions import PriceTimeoutError

    raise PriceTimeoutError(
        "No price received within timeout",
        context={"timeout_seconds": 10.0},
    )
"""

from __future__ import annotations

from btcdash.common.exceptions import ConfigurationError, DashboardError


class PriceFeedError(DashboardError):
    """Base exception for all price stream errors."""


class PriceFeedConfigError(PriceFeedError, ConfigurationError):
    """No auth token available to open the stream. Never retried automatically."""


class PriceFeedConnectionError(PriceFeedError):
    """Transport failed to open, dropped, or the reconnect budget ran out."""


class ConnectInProgressError(PriceFeedError):
    """connect() called while another connection attempt is still opening."""


class PriceMessageError(PriceFeedError):
    """An inbound message could not be parsed as a price snapshot."""


class PriceTimeoutError(PriceFeedError):
    """No price arrived before a one-shot request timed out."""
