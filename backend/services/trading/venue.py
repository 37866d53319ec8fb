from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

from .types import (
    BalanceResult,
    OrderStatusResult,
    Outcome,
    PlaceOrderResult,
    TradeExecutionInput,
)

if TYPE_CHECKING:
    from config import Settings
    from .config import TradingConfig

DEFAULT_TICK_SIZE = "0.01"


class VenueAdapter(ABC):
    """Order-book venue surface used by the executor and auto-trader.

    Signing, submission and the status protocol belong to the venue SDK;
    implementations translate between it and these types.
    """

    platform: str = "unknown"

    @abstractmethod
    def is_configured(self) -> bool:
        """Credentials present for live trading."""

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the client; raises on failure."""

    @abstractmethod
    async def get_token_id(self, market_id: str, outcome: Outcome) -> Optional[str]:
        ...

    async def get_tick_size(self, token_id: str) -> str:
        return DEFAULT_TICK_SIZE

    @abstractmethod
    async def get_market_price(self, token_id: str) -> Optional[float]:
        ...

    @abstractmethod
    async def place_order(self, order: TradeExecutionInput) -> PlaceOrderResult:
        ...

    @abstractmethod
    async def get_order_status(self, external_order_id: str) -> OrderStatusResult:
        ...

    @abstractmethod
    async def cancel_order(self, external_order_id: str) -> bool:
        ...

    @abstractmethod
    async def get_balance(self) -> BalanceResult:
        ...


def create_venue_adapter(
    config: "TradingConfig", settings: Optional["Settings"] = None
) -> VenueAdapter:
    """Build a fresh adapter for the configured venue."""
    from config import Settings

    if config.venue == "polymarket":
        from .polymarket import PolymarketVenueAdapter

        return PolymarketVenueAdapter(settings or Settings(), timeout_seconds=config.venue_timeout_seconds)
    raise ValueError(f"Unsupported trading venue: {config.venue!r}")
