"""Pydantic models for the live BTC price stream.

Usage:
    from btcdash.pricefeed.models import ConnectionStatus, PriceSnapshot

    snapshot = PriceSnapshot.model_validate_json(raw_message)
    snapshot.price          # 65000.12
    snapshot.sources        # {"coinbase": 65001.0, "kraken": 64999.5}
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class ConnectionStatus(StrEnum):
    """Lifecycle state reported by PriceStreamClient.get_connection_status().

    ERROR is the terminal state reached once the reconnect budget is spent.
    """

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class PriceSnapshot(BaseModel):
    """One immutable BTC price update with its per-source breakdown.

    Attributes:
        price: Aggregated BTC/USD price.
        timestamp: Server timestamp in epoch milliseconds.
        sources: Price reported by each upstream source, keyed by source name.
    """

    model_config = ConfigDict(frozen=True)

    price: float
    timestamp: int
    sources: dict[str, float] = Field(default_factory=dict)

    @property
    def received_at(self) -> datetime:
        """The snapshot timestamp as an aware UTC datetime."""
        return datetime.fromtimestamp(self.timestamp / 1000, tz=UTC)
