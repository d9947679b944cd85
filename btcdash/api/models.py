"""Pydantic models for trading bot API requests and responses.

Request models carry exactly the fields the backend accepts. Response
models make every field optional because the backend omits fields that
have not been configured yet.

Usage:
    from btcdash.api.models import MarginProtectionRequest

    request = MarginProtectionRequest(
        is_enabled=True,
        activation_distance=5.0,
        new_liquidation_distance=10.0,
    )
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

# ─── Auth ───


class UserRegister(BaseModel):
    username: str
    email: str
    password: str


class UserLogin(BaseModel):
    username: str
    password: str


class User(BaseModel):
    """The authenticated account as returned by the backend."""

    id: int
    username: str
    email: str
    created_at: str | None = None
    updated_at: str | None = None


class LoginResponse(BaseModel):
    """Login result. token is absent when the backend rejects the session."""

    token: str | None = None
    refresh_token: str | None = None
    user: User | None = None


# ─── Exchange (LN Markets) Configuration ───


class LNMarketsConfigRequest(BaseModel):
    api_key: str
    secret_key: str
    passphrase: str
    is_testnet: bool = False


class LNMarketsConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    user_id: int | None = None
    api_key: str | None = None
    secret_key: str | None = None
    passphrase: str | None = None
    is_testnet: bool | None = None
    created_at: str | None = None
    updated_at: str | None = None


# ─── Trading Configuration ───


class MarginProtectionRequest(BaseModel):
    is_enabled: bool
    activation_distance: float
    new_liquidation_distance: float


class MarginProtection(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    user_id: int | None = None
    is_enabled: bool | None = None
    activation_distance: float | None = None
    new_liquidation_distance: float | None = None
    created_at: str | None = None
    updated_at: str | None = None


class TakeProfitRequest(BaseModel):
    is_enabled: bool
    daily_percentage: float


class TakeProfit(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    user_id: int | None = None
    is_enabled: bool | None = None
    daily_percentage: float | None = None
    last_update: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class EntryAutomationRequest(BaseModel):
    is_enabled: bool
    amount_per_order: float
    margin_per_order: float
    number_of_orders: int
    price_variation: float
    initial_price: float
    take_profit_per_order: float
    operation_type: str
    leverage: float


class EntryAutomation(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    user_id: int | None = None
    is_enabled: bool | None = None
    amount_per_order: float | None = None
    margin_per_order: float | None = None
    number_of_orders: int | None = None
    filled_slots: int | None = None
    price_variation: float | None = None
    initial_price: float | None = None
    take_profit_per_order: float | None = None
    operation_type: str | None = None
    leverage: float | None = None
    created_at: str | None = None
    updated_at: str | None = None


class PriceAlertRequest(BaseModel):
    is_enabled: bool
    min_price: float
    max_price: float
    check_interval: int  # seconds


class PriceAlert(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    user_id: int | None = None
    is_enabled: bool | None = None
    min_price: float | None = None
    max_price: float | None = None
    check_interval: int | None = None
    last_alert: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


# ─── Bot & Account ───


class BotStatus(BaseModel):
    model_config = ConfigDict(extra="ignore")

    is_running: bool | None = None
    status: str | None = None
    last_activity: str | None = None
    error_message: str | None = None


class AccountBalance(BaseModel):
    model_config = ConfigDict(extra="ignore")

    balance: float | None = None
    currency: str | None = None
    available_balance: float | None = None
    margin_balance: float | None = None


# ─── Positions ───


class Position(BaseModel):
    """An open (or recently closed) margin position."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    symbol: str | None = None
    side: Literal["long", "short"] | None = None
    size: float | None = None
    entry_price: float | None = None
    current_price: float | None = None
    unrealized_pnl: float | None = None
    realized_pnl: float | None = None
    margin: float | None = None
    liquidation_price: float | None = None
    take_profit: float | None = None
    stop_loss: float | None = None
    created_at: str | None = None
    updated_at: str | None = None


class PriceLevelRequest(BaseModel):
    """Body for moving a position's take-profit or stop-loss."""

    price: float = Field(gt=0)
