"""Strategy run computation, persistence and batch price refresh.

Weather is fetched once per (location, resolution time) and shared by every
sub-market of an event; each sub-market becomes one ``StrategyRun`` row.
"""

from __future__ import annotations

import asyncio
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional, Sequence

from sqlalchemy import select

from config import settings
from models.database import StrategyRun
from services.weather.adapters.base import ForecastAdapter, ForecastRequest, ForecastSnapshot
from services.weather.probability import (
    PROB_METHOD_ENSEMBLE,
    RULE_TYPES,
    ensemble_stats,
    model_probability,
    models_agree,
    probability_ensemble,
    rule_bounds,
)
from services.weather.signal_engine import TradeSignal, build_trade_signal
from utils.logger import get_logger
from utils.utcnow import to_naive_utc, utcnow

if TYPE_CHECKING:
    from services.trading.venue import VenueAdapter

logger = get_logger("weather.strategy_runs")


class RunInputError(ValueError):
    """Run input is incomplete or out of range."""


@dataclass
class RunInput:
    resolution_time: datetime
    rule_type: str
    yes_price: float
    lat: Optional[float] = None
    lon: Optional[float] = None
    threshold_low: Optional[float] = None
    threshold_high: Optional[float] = None
    no_price: Optional[float] = None
    location_text: Optional[str] = None
    metric: str = "temperature_max"
    market_url: Optional[str] = None
    market_title: Optional[str] = None
    event_slug: Optional[str] = None
    market_id: Optional[str] = None
    condition_id: Optional[str] = None
    clob_token_id_yes: Optional[str] = None
    clob_token_id_no: Optional[str] = None
    neg_risk: bool = False
    fee_bps: float = field(default_factory=lambda: settings.DEFAULT_FEE_BPS)
    slippage_bps: float = field(default_factory=lambda: settings.DEFAULT_SLIPPAGE_BPS)
    base_size_usd: float = field(default_factory=lambda: settings.DEFAULT_BASE_SIZE_USD)
    user_confidence: float = 50.0
    sigma_temp: Optional[float] = None
    time_window_hours: int = 12
    min_edge: Optional[float] = None


@dataclass
class ComputedRun:
    signal: TradeSignal
    prob_method: str
    forecast_snapshot: dict[str, Any]
    forecast_source: str


@dataclass
class RefreshResult:
    batch_id: str
    refreshed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    price_errors: int = 0


def validate_run_input(run_input: RunInput) -> None:
    if run_input.lat is None or run_input.lon is None:
        raise RunInputError("Latitude and longitude are required")
    if not (-90.0 <= run_input.lat <= 90.0) or not (-180.0 <= run_input.lon <= 180.0):
        raise RunInputError(f"Coordinates out of range: {run_input.lat}, {run_input.lon}")
    if run_input.rule_type not in RULE_TYPES:
        raise RunInputError(f"rule_type must be one of {RULE_TYPES}")
    try:
        low, high = rule_bounds(run_input.rule_type, run_input.threshold_low, run_input.threshold_high)
    except ValueError as exc:
        raise RunInputError(str(exc)) from exc
    if low > high:
        raise RunInputError(f"threshold_low {low} exceeds threshold_high {high}")
    for name in ("yes_price", "no_price"):
        price = getattr(run_input, name)
        if price is not None and not (0.0 <= price <= 1.0):
            raise RunInputError(f"{name} must be within [0, 1], got {price}")
    if not (0.0 <= run_input.user_confidence <= 100.0):
        raise RunInputError("user_confidence must be within [0, 100]")
    if run_input.min_edge is not None and not (0.0 <= run_input.min_edge <= 1.0):
        raise RunInputError("min_edge must be within [0, 1]")
    if run_input.base_size_usd < 0 or run_input.fee_bps < 0 or run_input.slippage_bps < 0:
        raise RunInputError("Sizes, fees and slippage must be non-negative")


def _threshold_label(rule_type: str, low: Optional[float], high: Optional[float]) -> str:
    if low is not None and high is None:
        return f"temp >= {low:g}C"
    if high is not None and low is None:
        return f"temp <= {high:g}C"
    return f"{low:g}C <= temp <= {high:g}C"


def _resolve_min_edge(run_input: RunInput, override: Optional[float]) -> float:
    if override is not None:
        return override
    if run_input.min_edge is not None:
        return run_input.min_edge
    return settings.MIN_EDGE


def compute_run(
    run_input: RunInput,
    forecast: ForecastSnapshot,
    *,
    min_edge: Optional[float] = None,
    max_position_usd: Optional[float] = None,
) -> ComputedRun:
    """Pure computation: forecast + prices -> probability, edge, trade plan."""
    sigma = run_input.sigma_temp if run_input.sigma_temp is not None else settings.DEFAULT_SIGMA_TEMP
    rule = (run_input.rule_type, run_input.threshold_low, run_input.threshold_high)
    label = _threshold_label(*rule)

    pooled = forecast.pooled_members
    model_prob, method = model_probability(
        mean=forecast.forecast_temp,
        sigma=sigma,
        rule_type=run_input.rule_type,
        threshold_low=run_input.threshold_low,
        threshold_high=run_input.threshold_high,
        ensemble_members=pooled,
    )

    snapshot = forecast.to_dict()
    snapshot["sigma"] = sigma
    snapshot["prob_method"] = method
    rationale = [f"Forecast temp at {forecast.target_time}: {forecast.forecast_temp:.1f}C"]

    if method == PROB_METHOD_ENSEMBLE:
        stats = ensemble_stats(pooled) or {}
        per_model = []
        for model in forecast.ensemble_models:
            prob = probability_ensemble(model.members, *rule)
            breakdown = {"model": model.model, "member_count": model.member_count, "prob": round(prob or 0.0, 4)}
            breakdown.update({k: v for k, v in (ensemble_stats(model.members) or {}).items() if k != "count"})
            per_model.append(breakdown)
            rationale.append(
                f"{model.model} ({model.member_count}m): P50={breakdown.get('p50')}C -> "
                f"P({label}) = {breakdown['prob'] * 100:.1f}%"
            )
        agree = models_agree([m["prob"] for m in per_model])
        snapshot.update(
            ensemble_p10=stats.get("p10"),
            ensemble_p50=stats.get("p50"),
            ensemble_p90=stats.get("p90"),
            ensemble_std=stats.get("std"),
            ensemble_member_count=len(pooled),
            ensemble_breakdown=per_model,
            models_agree=agree,
        )
        suffix = "" if agree is None else (" (models agree)" if agree else " (models DISAGREE)")
        rationale.append(
            f"Pooled {len(pooled)}-member ensemble ({forecast.models_label}): "
            f"P({label}) = {model_prob * 100:.1f}%{suffix}"
        )
        assumptions = [f"Probability from {len(pooled)}-member multi-model ensemble ({forecast.models_label})"]
    else:
        snapshot["models_agree"] = None
        rationale.append(f"Probability (normal, sigma={sigma:g}C): P({label}) = {model_prob * 100:.1f}%")
        assumptions = [f"Temperature ~ Normal(mean={forecast.forecast_temp:.1f}C, sigma={sigma:g}C)"]

    assumptions.append("Forecast is reasonably accurate for this time window")
    signal = build_trade_signal(
        model_prob=model_prob,
        yes_price=run_input.yes_price,
        no_price=run_input.no_price,
        base_size_usd=run_input.base_size_usd,
        user_confidence=run_input.user_confidence,
        max_position_usd=settings.MAX_POSITION_USD if max_position_usd is None else max_position_usd,
        min_edge=_resolve_min_edge(run_input, min_edge),
        fee_bps=run_input.fee_bps,
        slippage_bps=run_input.slippage_bps,
        rationale=rationale,
        assumptions=assumptions,
        invalidated_if=[
            f"Forecast updates push the outcome across the {label} boundary",
            "Market spread widens or liquidity drops below the suggested size",
        ],
    )
    return ComputedRun(
        signal=signal,
        prob_method=method,
        forecast_snapshot=snapshot,
        forecast_source=forecast.source,
    )


def _apply_computed(run: StrategyRun, computed: ComputedRun) -> None:
    signal = computed.signal
    run.forecast_source = computed.forecast_source
    run.forecast_snapshot = computed.forecast_snapshot
    run.model_prob = signal.model_prob
    run.market_implied_prob = signal.market_implied_prob
    run.edge = signal.edge
    run.recommendation = signal.recommendation
    run.trade_plan = signal.trade_plan.to_dict()


def _forecast_key(lat: float, lon: float, resolution_time: datetime) -> tuple:
    return (round(lat, 4), round(lon, 4), resolution_time)


async def _fetch_forecasts(
    forecast_adapter: ForecastAdapter, requests: dict[tuple, ForecastRequest]
) -> dict[tuple, Any]:
    keys = list(requests)
    results = await asyncio.gather(
        *(forecast_adapter.fetch_forecast(requests[k]) for k in keys),
        return_exceptions=True,
    )
    return dict(zip(keys, results))


async def create_batch(
    session_factory,
    inputs: Sequence[RunInput],
    forecast_adapter: ForecastAdapter,
    *,
    batch_id: Optional[str] = None,
) -> list[StrategyRun]:
    """Compute and persist one run per sub-market under a shared batch id."""
    if not inputs:
        raise RunInputError("At least one run input is required")
    for run_input in inputs:
        validate_run_input(run_input)

    batch_id = batch_id or str(uuid.uuid4())
    requests: dict[tuple, ForecastRequest] = {}
    for run_input in inputs:
        resolution_time = to_naive_utc(run_input.resolution_time)
        key = _forecast_key(run_input.lat, run_input.lon, resolution_time)
        requests.setdefault(
            key,
            ForecastRequest(
                lat=run_input.lat,
                lon=run_input.lon,
                target_time=resolution_time,
                time_window_hours=run_input.time_window_hours,
            ),
        )
    forecasts = await _fetch_forecasts(forecast_adapter, requests)
    for result in forecasts.values():
        if isinstance(result, Exception):
            # Nothing is persisted when any location lacks a forecast.
            raise result

    runs: list[StrategyRun] = []
    async with session_factory() as session:
        for run_input in inputs:
            resolution_time = to_naive_utc(run_input.resolution_time)
            forecast = forecasts[_forecast_key(run_input.lat, run_input.lon, resolution_time)]
            computed = compute_run(run_input, forecast)
            run = StrategyRun(
                id=str(uuid.uuid4()),
                batch_id=batch_id,
                market_url=run_input.market_url,
                market_title=run_input.market_title,
                event_slug=run_input.event_slug,
                market_id=run_input.market_id,
                condition_id=run_input.condition_id,
                clob_token_id_yes=run_input.clob_token_id_yes,
                clob_token_id_no=run_input.clob_token_id_no,
                neg_risk=run_input.neg_risk,
                resolution_time=resolution_time,
                location_text=run_input.location_text,
                lat=run_input.lat,
                lon=run_input.lon,
                metric=run_input.metric,
                rule_type=run_input.rule_type,
                threshold_low=run_input.threshold_low,
                threshold_high=run_input.threshold_high,
                yes_price=run_input.yes_price,
                no_price=run_input.no_price if run_input.no_price is not None else round(1.0 - run_input.yes_price, 4),
                fee_bps=run_input.fee_bps,
                slippage_bps=run_input.slippage_bps,
                base_size_usd=run_input.base_size_usd,
                user_confidence=run_input.user_confidence,
                sigma_temp=run_input.sigma_temp,
            )
            _apply_computed(run, computed)
            session.add(run)
            runs.append(run)
        await session.commit()

    logger.info(
        "Created strategy runs",
        batch_id=batch_id,
        runs=len(runs),
        trade_signals=sum(1 for r in runs if r.recommendation != "NO_TRADE"),
    )
    return runs


async def create_run(session_factory, run_input: RunInput, forecast_adapter: ForecastAdapter) -> StrategyRun:
    runs = await create_batch(session_factory, [run_input], forecast_adapter)
    return runs[0]


def _run_input_from_row(run: StrategyRun, yes_price: float) -> RunInput:
    return RunInput(
        resolution_time=run.resolution_time,
        rule_type=run.rule_type,
        yes_price=yes_price,
        no_price=round(1.0 - yes_price, 4),
        lat=run.lat,
        lon=run.lon,
        threshold_low=run.threshold_low,
        threshold_high=run.threshold_high,
        fee_bps=run.fee_bps or 0.0,
        slippage_bps=run.slippage_bps or 0.0,
        base_size_usd=run.base_size_usd,
        user_confidence=run.user_confidence,
        sigma_temp=run.sigma_temp,
    )


async def _fresh_yes_price(venue: Optional["VenueAdapter"], run: StrategyRun) -> Optional[float]:
    if venue is None or not run.clob_token_id_yes:
        return None
    price = await asyncio.wait_for(
        venue.get_market_price(run.clob_token_id_yes),
        timeout=settings.VENUE_TIMEOUT_SECONDS,
    )
    if price is None or not math.isfinite(price) or not (0.0 <= price <= 1.0):
        return None
    return float(price)


async def refresh_batch(
    session_factory,
    batch_id: str,
    forecast_adapter: ForecastAdapter,
    venue: Optional["VenueAdapter"] = None,
    *,
    now: Optional[datetime] = None,
) -> RefreshResult:
    """Re-price and recompute every run in a batch whose resolution is still pending."""
    now = now or utcnow()
    result = RefreshResult(batch_id=batch_id)
    log = logger.with_context(batch_id=batch_id)

    async with session_factory() as session:
        rows = (
            await session.execute(select(StrategyRun).where(StrategyRun.batch_id == batch_id))
        ).scalars().all()

        pending: list[StrategyRun] = []
        for run in rows:
            if run.backtested_at is not None or run.resolution_time <= now or run.lat is None or run.lon is None:
                result.skipped += 1
            else:
                pending.append(run)

        requests: dict[tuple, ForecastRequest] = {}
        for run in pending:
            requests.setdefault(
                _forecast_key(run.lat, run.lon, run.resolution_time),
                ForecastRequest(lat=run.lat, lon=run.lon, target_time=run.resolution_time),
            )
        forecasts = await _fetch_forecasts(forecast_adapter, requests)

        for run in pending:
            forecast = forecasts[_forecast_key(run.lat, run.lon, run.resolution_time)]
            if isinstance(forecast, Exception):
                result.errors.append(f"{run.id}: forecast unavailable: {forecast}")
                continue

            yes_price = run.yes_price
            try:
                fresh = await _fresh_yes_price(venue, run)
            except Exception as exc:
                result.price_errors += 1
                log.warning("Price refresh failed; keeping stored price", run_id=run.id, error=str(exc))
                fresh = None
            if fresh is not None:
                yes_price = fresh

            computed = compute_run(_run_input_from_row(run, yes_price), forecast)
            run.yes_price = yes_price
            run.no_price = round(1.0 - yes_price, 4)
            _apply_computed(run, computed)
            run.refreshed_at = now
            result.refreshed += 1

        await session.commit()

    log.info(
        "Batch refreshed",
        refreshed=result.refreshed,
        skipped=result.skipped,
        errors=len(result.errors),
        price_errors=result.price_errors,
    )
    return result
