"""Offline strategy backtest over historical weather.

For every day and city in the window the backtest builds a ladder of
outcome buckets from the location's climatology, prices them with a
simulated market, prices them again with a simulated ECMWF + GFS ensemble
centred near the observed value, and trades the largest edges through the
same signal engine used for live runs. Realized P&L uses the same
fee/slippage model as single-run backtests.
"""

from __future__ import annotations

import json
import math
import time
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Callable, Optional, Sequence

import numpy as np

from services.backtest.pnl import calculate_pnl
from services.weather.adapters.base import ForecastAdapter
from services.weather.probability import probability_normal
from services.weather.signal_engine import BUY_NO, BUY_YES, build_trade_signal
from utils.logger import get_logger
from utils.utcnow import utcnow

logger = get_logger("backtest.strategy")

DEFAULT_START = "2025-08-15"
DEFAULT_END = "2026-02-15"
CLIMATE_START = "2019-01-01"
CLIMATE_END = "2024-12-31"
CACHE_TTL_SECONDS = 60 * 60

SCENARIO_CLIMATOLOGICAL = "Climatological Market"
SCENARIO_NOISY_FORECAST = "Noisy Forecast Market"
SCENARIOS = (
    (SCENARIO_CLIMATOLOGICAL, "Market priced by historical base rates (naive traders)"),
    (SCENARIO_NOISY_FORECAST, "Market priced by less accurate forecasts (decent traders)"),
)


def _c_to_f(c: float) -> float:
    return c * 9.0 / 5.0 + 32.0


def _f_to_c(f: float) -> float:
    return (f - 32.0) * 5.0 / 9.0


KMH_PER_MPH = 1.0 / 0.621371
CM_PER_INCH = 2.54


@dataclass(frozen=True)
class Location:
    name: str
    lat: float
    lon: float


@dataclass(frozen=True)
class Bucket:
    label: str
    rule_type: str
    threshold_low: Optional[float]
    threshold_high: Optional[float]
    upper_exclusive: bool = False  # accumulation buckets: [low, high)

    def mask(self, values: np.ndarray) -> np.ndarray:
        low = -np.inf if self.threshold_low is None else self.threshold_low
        high = np.inf if self.threshold_high is None else self.threshold_high
        if self.upper_exclusive and self.threshold_low is not None and self.threshold_high is not None:
            return (values >= low) & (values < high)
        return (values >= low) & (values <= high)

    def resolves(self, value: float) -> bool:
        return bool(self.mask(np.asarray([value], dtype=float))[0])


def _ladder_buckets(values: Sequence[float], width: float, to_display, from_display, unit: str) -> list[Bucket]:
    display = np.asarray([to_display(v) for v in values], dtype=float)
    p5, p95 = np.percentile(display, [5, 95])
    lo = math.floor(p5 / width) * width
    hi = math.ceil(p95 / width) * width

    buckets = [Bucket(f"<={lo:g}{unit}", "above_below", None, from_display(lo))]
    step = lo + 1
    while step < hi:
        top = step + width - 1
        buckets.append(Bucket(f"{step:g}-{top:g}{unit}", "range", from_display(step), from_display(top)))
        step += width
    buckets.append(Bucket(f">={hi:g}{unit}", "above_below", from_display(hi), None))
    return buckets


def temperature_buckets(values: Sequence[float]) -> list[Bucket]:
    return _ladder_buckets(values, 2, _c_to_f, _f_to_c, "F")


def wind_speed_buckets(values: Sequence[float]) -> list[Bucket]:
    return _ladder_buckets(values, 5, lambda k: k / KMH_PER_MPH, lambda m: m * KMH_PER_MPH, " mph")


def rainfall_buckets(values: Sequence[float]) -> list[Bucket]:
    edges = [0.1, 2, 10, 25, 50]
    buckets = [Bucket("0 mm", "above_below", None, 0.1)]
    for low, high in zip(edges, edges[1:]):
        buckets.append(Bucket(f"{low:g}-{high:g} mm", "range", low, high, upper_exclusive=True))
    buckets.append(Bucket(">=50 mm", "above_below", 50, None))
    return buckets


def snowfall_buckets(values: Sequence[float]) -> list[Bucket]:
    edges_in = [0.1, 1, 3, 6, 12]
    buckets = [Bucket("0 in", "above_below", None, 0.05)]
    for low, high in zip(edges_in, edges_in[1:]):
        buckets.append(
            Bucket(f"{low:g}-{high:g} in", "range", low * CM_PER_INCH, high * CM_PER_INCH, upper_exclusive=True)
        )
    buckets.append(Bucket(">=12 in", "above_below", 12 * CM_PER_INCH, None))
    return buckets


@dataclass(frozen=True)
class MetricProfile:
    metric: str
    label: str
    locations: tuple[Location, ...]
    archive_variable: str
    unit: str
    forecast_bias_std: float
    ecmwf_spread: float
    gfs_spread: float
    market_bias_std: float
    market_sigma: float
    bucket_builder: Callable[[Sequence[float]], list[Bucket]]
    seasonal: bool  # buckets from same-month climatology
    ecmwf_members: int = 51
    gfs_members: int = 31


METRIC_PROFILES: dict[str, MetricProfile] = {
    "temperature": MetricProfile(
        metric="temperature",
        label="Temperature",
        locations=(
            Location("New York", 40.71, -74.01),
            Location("Chicago", 41.88, -87.63),
            Location("Miami", 25.76, -80.19),
            Location("Denver", 39.74, -104.99),
            Location("Los Angeles", 34.05, -118.24),
        ),
        archive_variable="temperature_2m_max",
        unit="C",
        forecast_bias_std=0.8,
        ecmwf_spread=1.0,
        gfs_spread=1.3,
        market_bias_std=1.8,
        market_sigma=2.5,
        bucket_builder=temperature_buckets,
        seasonal=True,
    ),
    "snowfall": MetricProfile(
        metric="snowfall",
        label="Snowfall",
        locations=(
            Location("Denver", 39.74, -104.99),
            Location("Chicago", 41.88, -87.63),
            Location("New York", 40.71, -74.01),
            Location("Minneapolis", 44.98, -93.27),
            Location("Boston", 42.36, -71.06),
        ),
        archive_variable="snowfall_sum",
        unit="cm",
        forecast_bias_std=1.5,
        ecmwf_spread=2.0,
        gfs_spread=2.5,
        market_bias_std=3.0,
        market_sigma=4.0,
        bucket_builder=snowfall_buckets,
        seasonal=False,
    ),
    "rainfall": MetricProfile(
        metric="rainfall",
        label="Rainfall",
        locations=(
            Location("Seattle", 47.61, -122.33),
            Location("Miami", 25.76, -80.19),
            Location("Houston", 29.76, -95.37),
            Location("New York", 40.71, -74.01),
            Location("Portland", 45.52, -122.68),
        ),
        archive_variable="precipitation_sum",
        unit="mm",
        forecast_bias_std=3.0,
        ecmwf_spread=4.0,
        gfs_spread=5.0,
        market_bias_std=6.0,
        market_sigma=8.0,
        bucket_builder=rainfall_buckets,
        seasonal=False,
    ),
    "wind_speed": MetricProfile(
        metric="wind_speed",
        label="Wind Speed",
        locations=(
            Location("Miami", 25.76, -80.19),
            Location("Chicago", 41.88, -87.63),
            Location("Oklahoma City", 35.47, -97.52),
            Location("New York", 40.71, -74.01),
            Location("Denver", 39.74, -104.99),
        ),
        archive_variable="wind_gusts_10m_max",
        unit="km/h",
        forecast_bias_std=5.0,
        ecmwf_spread=7.0,
        gfs_spread=9.0,
        market_bias_std=12.0,
        market_sigma=15.0,
        bucket_builder=wind_speed_buckets,
        seasonal=True,
    ),
}


@dataclass
class StrategyBacktestConfig:
    start: str = DEFAULT_START
    end: str = DEFAULT_END
    climate_start: str = CLIMATE_START
    climate_end: str = CLIMATE_END
    metric: str = "temperature"
    fee_bps: float = 100.0
    slippage_bps: float = 50.0
    base_size_usd: float = 100.0
    confidence: float = 70.0
    min_edge: float = 0.03
    max_trades_per_event: int = 3
    min_trade_usd: float = 1.0
    seed: Optional[int] = None

    def validate(self) -> None:
        if self.metric not in METRIC_PROFILES:
            raise ValueError(f"Unsupported metric {self.metric!r}; expected one of {sorted(METRIC_PROFILES)}")
        if date.fromisoformat(self.start) > date.fromisoformat(self.end):
            raise ValueError("start must not be after end")
        if date.fromisoformat(self.climate_start) > date.fromisoformat(self.climate_end):
            raise ValueError("climate_start must not be after climate_end")
        if not (0 <= self.confidence <= 100):
            raise ValueError("confidence must be within [0, 100]")

    def cache_key(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)


@dataclass
class StrategyTrade:
    date: str
    city: str
    bucket_label: str
    side: str
    model_prob: float
    market_price: float
    edge: float
    kelly: float
    size_usd: float
    resolved_yes: bool = False
    pnl: float = 0.0

    @property
    def won(self) -> bool:
        return self.pnl > 0


@dataclass
class ScenarioResult:
    name: str
    description: str
    metrics: dict[str, Any]
    daily_pnl: list[dict[str, Any]] = field(default_factory=list)
    monthly_pnl: list[dict[str, Any]] = field(default_factory=list)
    city_breakdown: list[dict[str, Any]] = field(default_factory=list)
    trade_type_breakdown: list[dict[str, Any]] = field(default_factory=list)
    calibration: list[dict[str, Any]] = field(default_factory=list)
    edge_histogram: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class StrategyBacktestResult:
    config: dict[str, Any]
    computed_at: str
    scenarios: list[ScenarioResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ==================== market + ensemble simulation ====================


def climatological_prices(buckets: Sequence[Bucket], climate: np.ndarray) -> list[float]:
    n = climate.size
    counts = np.asarray([np.count_nonzero(b.mask(climate)) for b in buckets], dtype=float)
    smoothed = (counts + 0.5) / (n + 0.5 * len(buckets))
    normalized = smoothed / smoothed.sum()
    return [float(np.clip(p, 0.02, 0.98)) for p in normalized]


def noisy_forecast_prices(
    buckets: Sequence[Bucket], actual: float, profile: MetricProfile, rng: np.random.Generator
) -> list[float]:
    market_forecast = actual + rng.normal() * profile.market_bias_std
    probs = np.asarray(
        [
            probability_normal(market_forecast, profile.market_sigma, b.rule_type, b.threshold_low, b.threshold_high)
            for b in buckets
        ],
        dtype=float,
    )
    total = probs.sum()
    normalized = probs / total if total > 0 else np.full(len(buckets), 1.0 / len(buckets))
    return [float(np.clip(p, 0.02, 0.98)) for p in normalized]


def simulate_ensemble(actual: float, profile: MetricProfile, rng: np.random.Generator) -> np.ndarray:
    forecast_mean = actual + rng.normal() * profile.forecast_bias_std
    ecmwf = forecast_mean + rng.normal(size=profile.ecmwf_members) * profile.ecmwf_spread
    gfs = forecast_mean + rng.normal(size=profile.gfs_members) * profile.gfs_spread
    return np.concatenate([ecmwf, gfs])


def find_trades(
    buckets: Sequence[Bucket],
    model_probs: Sequence[float],
    market_prices: Sequence[float],
    config: StrategyBacktestConfig,
) -> list[tuple[Bucket, StrategyTrade]]:
    candidates: list[tuple[Bucket, StrategyTrade]] = []
    for bucket, model_prob, price in zip(buckets, model_probs, market_prices):
        prob = min(0.99, max(0.01, model_prob))
        signal = build_trade_signal(
            model_prob=prob,
            yes_price=price,
            base_size_usd=config.base_size_usd,
            user_confidence=config.confidence,
            max_position_usd=config.base_size_usd,
            min_edge=config.min_edge,
            fee_bps=config.fee_bps,
            slippage_bps=config.slippage_bps,
        )
        size = signal.trade_plan.half_kelly_size_usd
        if not signal.should_trade or size < config.min_trade_usd:
            continue
        candidates.append(
            (
                bucket,
                StrategyTrade(
                    date="",
                    city="",
                    bucket_label=bucket.label,
                    side=signal.recommendation,
                    model_prob=prob,
                    market_price=price,
                    edge=signal.edge,
                    kelly=signal.trade_plan.kelly_fraction,
                    size_usd=size,
                ),
            )
        )
    candidates.sort(key=lambda item: abs(item[1].edge), reverse=True)
    return candidates[: config.max_trades_per_event]


# ==================== aggregate metrics ====================


def _r2(value: float) -> float:
    return round(value + 0.0, 2)


def _pct(numerator: float, denominator: float) -> float:
    return round(numerator / denominator * 100, 1) if denominator else 0.0


def _daily_totals(trades: Sequence[StrategyTrade]) -> list[tuple[str, float]]:
    totals: dict[str, float] = defaultdict(float)
    for trade in trades:
        totals[trade.date] += trade.pnl
    return sorted(totals.items())


def compute_metrics(trades: Sequence[StrategyTrade]) -> dict[str, Any]:
    total_pnl = sum(t.pnl for t in trades)
    invested = sum(t.size_usd for t in trades)
    wins = sum(1 for t in trades if t.won)
    losses = sum(1 for t in trades if t.pnl < 0)

    daily = np.asarray([pnl for _, pnl in _daily_totals(trades)], dtype=float)
    sharpe = 0.0
    if daily.size > 1:
        std = float(daily.std(ddof=1))
        if std > 0:
            sharpe = float(daily.mean()) / std * math.sqrt(252)

    max_drawdown = 0.0
    if daily.size:
        cumulative = np.cumsum(daily)
        peaks = np.maximum.accumulate(np.concatenate([[0.0], cumulative]))[1:]
        max_drawdown = float(np.max(peaks - cumulative))

    gross_profit = sum(t.pnl for t in trades if t.pnl > 0)
    gross_loss = abs(sum(t.pnl for t in trades if t.pnl < 0))

    longest = streak = 0
    for trade in sorted(trades, key=lambda t: t.date):
        streak = streak + 1 if trade.pnl < 0 else 0
        longest = max(longest, streak)

    def _trade_summary(trade: Optional[StrategyTrade]) -> Optional[dict[str, Any]]:
        if trade is None:
            return None
        return {
            "pnl": trade.pnl,
            "city": trade.city,
            "date": trade.date,
            "side": trade.side,
            "bucket": trade.bucket_label,
        }

    return {
        "total_pnl": _r2(total_pnl),
        "total_invested": _r2(invested),
        "roi": _pct(total_pnl, invested),
        "win_rate": _pct(wins, len(trades)),
        "wins": wins,
        "losses": losses,
        "total_trades": len(trades),
        "avg_edge": _pct(sum(abs(t.edge) for t in trades), len(trades)),
        "avg_pnl_per_trade": _r2(total_pnl / len(trades)) if trades else 0.0,
        "sharpe": _r2(sharpe),
        "max_drawdown": _r2(max_drawdown),
        "profit_factor": _r2(gross_profit / gross_loss) if gross_loss > 0 else 999.0,
        "longest_losing_streak": longest,
        "best_trade": _trade_summary(max(trades, key=lambda t: t.pnl) if trades else None),
        "worst_trade": _trade_summary(min(trades, key=lambda t: t.pnl) if trades else None),
    }


def compute_daily_pnl(trades: Sequence[StrategyTrade]) -> list[dict[str, Any]]:
    rows = []
    cumulative = 0.0
    for day, pnl in _daily_totals(trades):
        cumulative += pnl
        rows.append({"date": day, "pnl": _r2(pnl), "cumulative": _r2(cumulative)})
    return rows


def compute_monthly_pnl(trades: Sequence[StrategyTrade]) -> list[dict[str, Any]]:
    by_month: dict[str, list[StrategyTrade]] = defaultdict(list)
    for trade in trades:
        by_month[trade.date[:7]].append(trade)
    rows = []
    cumulative = 0.0
    for month in sorted(by_month):
        month_trades = by_month[month]
        pnl = sum(t.pnl for t in month_trades)
        cumulative += pnl
        rows.append(
            {
                "month": month,
                "pnl": _r2(pnl),
                "cumulative": _r2(cumulative),
                "win_rate": _pct(sum(1 for t in month_trades if t.won), len(month_trades)),
                "trades": len(month_trades),
            }
        )
    return rows


def compute_city_breakdown(trades: Sequence[StrategyTrade]) -> list[dict[str, Any]]:
    by_city: dict[str, list[StrategyTrade]] = defaultdict(list)
    for trade in trades:
        by_city[trade.city].append(trade)
    rows = [
        {
            "city": city,
            "pnl": _r2(sum(t.pnl for t in city_trades)),
            "win_rate": _pct(sum(1 for t in city_trades if t.won), len(city_trades)),
            "trades": len(city_trades),
        }
        for city, city_trades in by_city.items()
    ]
    return sorted(rows, key=lambda row: row["pnl"], reverse=True)


def compute_trade_type_breakdown(trades: Sequence[StrategyTrade]) -> list[dict[str, Any]]:
    rows = []
    for side in (BUY_YES, BUY_NO):
        side_trades = [t for t in trades if t.side == side]
        rows.append(
            {
                "side": side,
                "pnl": _r2(sum(t.pnl for t in side_trades)),
                "win_rate": _pct(sum(1 for t in side_trades if t.won), len(side_trades)),
                "trades": len(side_trades),
                "avg_edge": _pct(sum(abs(t.edge) for t in side_trades), len(side_trades)),
            }
        )
    return rows


def compute_calibration(trades: Sequence[StrategyTrade], min_count: int = 5) -> list[dict[str, Any]]:
    rows = []
    for decile in range(10):
        low, high = decile / 10, (decile + 1) / 10
        matching = [t for t in trades if low <= t.model_prob < high]
        if len(matching) < min_count:
            continue
        hit_rate = sum(1 for t in matching if t.resolved_yes) / len(matching)
        rows.append(
            {
                "label": f"{decile * 10}-{(decile + 1) * 10}%",
                "predicted": round((low + high) / 2 * 100),
                "actual": round(hit_rate * 100),
                "count": len(matching),
            }
        )
    return rows


EDGE_HISTOGRAM_BINS = (
    ("3-5%", 0.03, 0.05),
    ("5-8%", 0.05, 0.08),
    ("8-12%", 0.08, 0.12),
    ("12-20%", 0.12, 0.20),
    ("20-30%", 0.20, 0.30),
    ("30%+", 0.30, 1.0),
)


def compute_edge_histogram(trades: Sequence[StrategyTrade]) -> list[dict[str, Any]]:
    return [
        {"label": label, "count": sum(1 for t in trades if low <= abs(t.edge) < high)}
        for label, low, high in EDGE_HISTOGRAM_BINS
    ]


def summarize_scenario(name: str, description: str, trades: Sequence[StrategyTrade]) -> ScenarioResult:
    return ScenarioResult(
        name=name,
        description=description,
        metrics=compute_metrics(trades),
        daily_pnl=compute_daily_pnl(trades),
        monthly_pnl=compute_monthly_pnl(trades),
        city_breakdown=compute_city_breakdown(trades),
        trade_type_breakdown=compute_trade_type_breakdown(trades),
        calibration=compute_calibration(trades),
        edge_histogram=compute_edge_histogram(trades),
    )


# ==================== runner ====================


def _clean_series(history: dict[str, list], variable: str) -> tuple[list[str], np.ndarray]:
    dates: list[str] = []
    values: list[float] = []
    for day, value in zip(history.get("time") or [], history.get(variable) or []):
        if value is None:
            continue
        dates.append(str(day))
        values.append(float(value))
    return dates, np.asarray(values, dtype=float)


def simulate_scenario(
    scenario: str,
    profile: MetricProfile,
    config: StrategyBacktestConfig,
    location_data: dict[str, tuple[list[str], np.ndarray, list[str], np.ndarray]],
    rng: np.random.Generator,
) -> list[StrategyTrade]:
    trades: list[StrategyTrade] = []
    for location in profile.locations:
        actual_dates, actual_values, climate_dates, climate_values = location_data[location.name]

        by_month: dict[int, list[float]] = defaultdict(list)
        for day, value in zip(climate_dates, climate_values):
            by_month[int(day[5:7])].append(float(value))

        for day, actual in zip(actual_dates, actual_values):
            if profile.seasonal:
                month_values = by_month.get(int(day[5:7]), [])
                if len(month_values) < 30:
                    continue
                climate = np.asarray(month_values, dtype=float)
            else:
                climate = climate_values
            if climate.size == 0:
                continue

            buckets = profile.bucket_builder(climate)
            if len(buckets) < 3:
                continue

            if scenario == SCENARIO_CLIMATOLOGICAL:
                prices = climatological_prices(buckets, climate)
            else:
                prices = noisy_forecast_prices(buckets, float(actual), profile, rng)

            ensemble = simulate_ensemble(float(actual), profile, rng)
            model_probs = [np.count_nonzero(b.mask(ensemble)) / ensemble.size for b in buckets]

            for bucket, trade in find_trades(buckets, model_probs, prices, config):
                trade.date = day
                trade.city = location.name
                trade.resolved_yes = bucket.resolves(float(actual))
                trade.pnl = calculate_pnl(
                    trade.side,
                    trade.market_price,
                    trade.size_usd,
                    trade.resolved_yes,
                    config.fee_bps,
                    config.slippage_bps,
                )
                trades.append(trade)
    return trades


async def compute_strategy_backtest(
    config: StrategyBacktestConfig, forecast_adapter: ForecastAdapter
) -> StrategyBacktestResult:
    config.validate()
    profile = METRIC_PROFILES[config.metric]
    variable = profile.archive_variable

    location_data: dict[str, tuple[list[str], np.ndarray, list[str], np.ndarray]] = {}
    for location in profile.locations:
        actuals = await forecast_adapter.fetch_daily_history(
            location.lat, location.lon, date.fromisoformat(config.start), date.fromisoformat(config.end), [variable]
        )
        climate = await forecast_adapter.fetch_daily_history(
            location.lat,
            location.lon,
            date.fromisoformat(config.climate_start),
            date.fromisoformat(config.climate_end),
            [variable],
        )
        location_data[location.name] = (*_clean_series(actuals, variable), *_clean_series(climate, variable))

    rng = np.random.default_rng(config.seed)
    scenarios: list[ScenarioResult] = []
    for name, description in SCENARIOS:
        trades = simulate_scenario(name, profile, config, location_data, rng)
        if trades:
            scenarios.append(summarize_scenario(name, description, trades))
        logger.info("Scenario simulated", scenario=name, metric=config.metric, trades=len(trades))

    return StrategyBacktestResult(
        config={
            **asdict(config),
            "cities": [loc.name for loc in profile.locations],
            "unit": profile.unit,
        },
        computed_at=utcnow().isoformat() + "Z",
        scenarios=scenarios,
    )


class BacktestCache:
    """In-process TTL cache of backtest results keyed by the full parameter set."""

    def __init__(self, ttl_seconds: float = CACHE_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, StrategyBacktestResult]] = {}

    def get(self, key: str) -> Optional[StrategyBacktestResult]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, result = entry
        if self._clock() - stored_at >= self._ttl:
            del self._entries[key]
            return None
        return result

    def set(self, key: str, result: StrategyBacktestResult) -> None:
        self._entries[key] = (self._clock(), result)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


strategy_backtest_cache = BacktestCache()


async def run_strategy_backtest(
    config: StrategyBacktestConfig,
    forecast_adapter: ForecastAdapter,
    *,
    cache: Optional[BacktestCache] = None,
    fresh: bool = False,
) -> StrategyBacktestResult:
    """Cached entry point; ``fresh=True`` recomputes and replaces the cached entry."""
    cache = strategy_backtest_cache if cache is None else cache
    key = config.cache_key()
    if not fresh:
        cached = cache.get(key)
        if cached is not None:
            logger.debug("Strategy backtest cache hit", metric=config.metric)
            return cached

    started = time.monotonic()
    result = await compute_strategy_backtest(config, forecast_adapter)
    cache.set(key, result)
    logger.info(
        "Strategy backtest computed",
        metric=config.metric,
        scenarios=len(result.scenarios),
        elapsed_s=round(time.monotonic() - started, 2),
    )
    return result
