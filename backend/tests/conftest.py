"""Shared fixtures for weather edge and trading tests."""

import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from datetime import timedelta
from typing import Optional

import pytest

from services.trading.config import TradingConfig
from services.trading.types import (
    BalanceResult,
    OrderStatus,
    OrderStatusResult,
    Outcome,
    PlaceOrderResult,
    TradeExecutionInput,
    VenueError,
)
from services.trading.venue import VenueAdapter
from services.weather.adapters.base import (
    EnsembleModelForecast,
    ForecastAdapter,
    ForecastSnapshot,
    HistoricalDataUnavailableError,
)
from utils.utcnow import utcnow


# ---------------------------------------------------------------------------
# Venue fake
# ---------------------------------------------------------------------------


class FakeVenueAdapter(VenueAdapter):
    """In-memory venue: records calls, returns scripted results."""

    platform = "fake"

    def __init__(self, configured: bool = True):
        self.configured = configured
        self.initialized = 0
        self.placed: list[TradeExecutionInput] = []
        self.place_error: Optional[Exception] = None
        self.place_status = OrderStatus.LIVE
        self.statuses: dict[str, OrderStatusResult] = {}
        self.status_errors: dict[str, Exception] = {}
        self.cancelled: list[str] = []
        self.cancel_results: dict[str, bool] = {}
        self.prices: dict[str, float] = {}
        self.price_error: Optional[Exception] = None
        self.tick_size = "0.01"

    def is_configured(self) -> bool:
        return self.configured

    async def initialize(self) -> None:
        self.initialized += 1

    async def get_token_id(self, market_id: str, outcome: Outcome) -> Optional[str]:
        return f"{market_id}-{outcome.value.lower()}"

    async def get_tick_size(self, token_id: str) -> str:
        return self.tick_size

    async def get_market_price(self, token_id: str) -> Optional[float]:
        if self.price_error is not None:
            raise self.price_error
        return self.prices.get(token_id)

    async def place_order(self, order: TradeExecutionInput) -> PlaceOrderResult:
        if self.place_error is not None:
            raise self.place_error
        self.placed.append(order)
        external_id = f"ext-{len(self.placed)}"
        return PlaceOrderResult(
            external_order_id=external_id,
            status=self.place_status,
            raw={"orderID": external_id, "status": self.place_status.value.upper()},
        )

    async def get_order_status(self, external_order_id: str) -> OrderStatusResult:
        if external_order_id in self.status_errors:
            raise self.status_errors[external_order_id]
        if external_order_id not in self.statuses:
            raise VenueError(f"Order not found: {external_order_id}")
        return self.statuses[external_order_id]

    async def cancel_order(self, external_order_id: str) -> bool:
        self.cancelled.append(external_order_id)
        return self.cancel_results.get(external_order_id, True)

    async def get_balance(self) -> BalanceResult:
        return BalanceResult(balance_usd=1000.0, address="0xfake")


@pytest.fixture
def fake_venue():
    return FakeVenueAdapter()


@pytest.fixture
def dry_run_config():
    return TradingConfig(dry_run=True, auto_trade_enabled=True)


@pytest.fixture
def live_config():
    return TradingConfig(dry_run=False, auto_trade_enabled=True)


# ---------------------------------------------------------------------------
# Forecast fake
# ---------------------------------------------------------------------------


class FakeForecastAdapter(ForecastAdapter):
    """Returns a fixed forecast and fixed archive values; counts calls."""

    source = "fake"

    def __init__(
        self,
        forecast_temp: float = 27.0,
        ensemble: Optional[dict[str, list[float]]] = None,
        actual: Optional[float] = None,
        history: Optional[dict] = None,
    ):
        self.forecast_temp = forecast_temp
        self.ensemble = ensemble or {}
        self.actual = actual
        self.history = history or {}
        self.forecast_calls = []
        self.actual_calls = []
        self.history_calls = []
        self.forecast_error: Optional[Exception] = None

    async def fetch_forecast(self, request):
        self.forecast_calls.append(request)
        if self.forecast_error is not None:
            raise self.forecast_error
        return ForecastSnapshot(
            source=self.source,
            target_time=request.target_time.isoformat(),
            forecast_temp=self.forecast_temp,
            forecast_temp_min=self.forecast_temp - 2.0,
            forecast_temp_max=self.forecast_temp + 2.0,
            latitude=request.lat,
            longitude=request.lon,
            timezone="GMT",
            ensemble_models=[
                EnsembleModelForecast(model=model, members=list(members))
                for model, members in self.ensemble.items()
            ],
        )

    async def fetch_daily_actual(self, lat, lon, day, variable="temperature_2m_max"):
        self.actual_calls.append((lat, lon, day, variable))
        if self.actual is None:
            raise HistoricalDataUnavailableError(f"No archive value for {day}")
        return self.actual

    async def fetch_daily_history(self, lat, lon, start, end, variables):
        self.history_calls.append((lat, lon, start, end, tuple(variables)))
        return self.history


@pytest.fixture
def fake_forecast():
    return FakeForecastAdapter()


@pytest.fixture
def make_forecast_adapter():
    return FakeForecastAdapter


@pytest.fixture
def past_resolution():
    return utcnow() - timedelta(days=2)


@pytest.fixture
def future_resolution():
    return utcnow() + timedelta(days=2)
