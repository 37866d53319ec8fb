"""Venue-agnostic order execution with hard risk limits."""

from .config import (
    LiveModeConfirmationRequired,
    TradingConfig,
    TradingConfigUpdate,
    apply_trading_config_update,
    load_trading_config,
)
from .types import (
    ACTIVE_STATUSES,
    CancelResult,
    ExecuteTradeResult,
    OrderStatus,
    OrderType,
    Outcome,
    PollResult,
    SkipCode,
    TradeExecutionInput,
    VenueError,
)
from .venue import VenueAdapter, create_venue_adapter

__all__ = [
    "LiveModeConfirmationRequired",
    "TradingConfig",
    "TradingConfigUpdate",
    "apply_trading_config_update",
    "load_trading_config",
    "ACTIVE_STATUSES",
    "CancelResult",
    "ExecuteTradeResult",
    "OrderStatus",
    "OrderType",
    "Outcome",
    "PollResult",
    "SkipCode",
    "TradeExecutionInput",
    "VenueError",
    "VenueAdapter",
    "create_venue_adapter",
]
