from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select

from models.database import StrategyRun
from services.weather.adapters.base import ForecastAdapter
from services.weather.probability import rule_satisfied
from services.weather.signal_engine import BUY_NO, BUY_YES, NO_TRADE
from utils.logger import get_logger
from utils.utcnow import utcnow

logger = get_logger("backtest.pnl")

# Daily archive variable each run metric resolves against.
METRIC_ARCHIVE_VARIABLE = {
    "temperature_max": "temperature_2m_max",
    "temperature_min": "temperature_2m_min",
}


class BacktestValidationError(ValueError):
    """Run cannot be backtested (unknown, unresolved or missing inputs)."""


@dataclass
class BacktestOutcome:
    run_id: str
    actual_outcome_value: float
    resolved_yes: bool
    pnl: float
    forecast_temp: Optional[float] = None
    forecast_error: Optional[float] = None
    already_backtested: bool = False


def resolve_outcome(
    rule_type: str,
    threshold_low: Optional[float],
    threshold_high: Optional[float],
    actual_value: float,
) -> bool:
    """Whether the contract resolved YES for an observed outcome value."""
    return rule_satisfied(actual_value, rule_type, threshold_low, threshold_high)


def calculate_pnl(
    recommendation: Optional[str],
    yes_price: float,
    size_usd: float,
    resolved_yes: bool,
    fee_bps: float = 0.0,
    slippage_bps: float = 0.0,
) -> float:
    """Realized P&L in USD, net of entry fees and slippage, rounded to cents.

    BUY_YES pays ``(1 - yes) * size`` when YES resolves and loses
    ``yes * size`` otherwise; BUY_NO mirrors that at ``no = 1 - yes``.
    """
    if recommendation in (None, NO_TRADE) or not size_usd:
        return 0.0

    if recommendation == BUY_YES:
        gross = (1.0 - yes_price) * size_usd if resolved_yes else -yes_price * size_usd
    elif recommendation == BUY_NO:
        no_price = 1.0 - yes_price
        gross = (1.0 - no_price) * size_usd if not resolved_yes else -no_price * size_usd
    else:
        raise ValueError(f"Unknown recommendation: {recommendation!r}")

    costs = (fee_bps + slippage_bps) / 10000.0 * size_usd
    return round(gross - costs + 0.0, 2)


def _suggested_size(run: StrategyRun) -> float:
    plan = run.trade_plan or {}
    try:
        return float(plan.get("suggested_size_usd") or 0.0)
    except (TypeError, ValueError):
        return 0.0


def _stored_outcome(run: StrategyRun) -> BacktestOutcome:
    forecast_temp = (run.forecast_snapshot or {}).get("forecast_temp")
    return BacktestOutcome(
        run_id=run.id,
        actual_outcome_value=run.actual_outcome_value,
        resolved_yes=bool(run.resolved_yes),
        pnl=run.pnl or 0.0,
        forecast_temp=forecast_temp,
        forecast_error=(
            round(run.actual_outcome_value - forecast_temp, 1)
            if forecast_temp is not None and run.actual_outcome_value is not None
            else None
        ),
        already_backtested=True,
    )


async def backtest_run(
    session_factory,
    run_id: str,
    forecast_adapter: ForecastAdapter,
    *,
    now: Optional[datetime] = None,
) -> BacktestOutcome:
    """Attach the observed outcome and realized P&L to a resolved run (once)."""
    now = now or utcnow()
    async with session_factory() as session:
        run = (
            await session.execute(select(StrategyRun).where(StrategyRun.id == run_id))
        ).scalar_one_or_none()
        if run is None:
            raise BacktestValidationError(f"Run not found: {run_id}")
        if run.backtested_at is not None:
            return _stored_outcome(run)
        if run.resolution_time > now:
            raise BacktestValidationError("Resolution time hasn't passed yet. Cannot backtest.")
        if run.lat is None or run.lon is None:
            raise BacktestValidationError("Missing lat/lon for this run")

        variable = METRIC_ARCHIVE_VARIABLE.get(run.metric or "temperature_max", "temperature_2m_max")
        # HistoricalDataUnavailableError propagates to the caller untouched.
        actual = await forecast_adapter.fetch_daily_actual(
            run.lat, run.lon, run.resolution_time.date(), variable
        )

        resolved_yes = resolve_outcome(run.rule_type, run.threshold_low, run.threshold_high, actual)
        pnl = calculate_pnl(
            run.recommendation,
            run.yes_price,
            _suggested_size(run),
            resolved_yes,
            run.fee_bps or 0.0,
            run.slippage_bps or 0.0,
        )

        run.actual_outcome_value = actual
        run.resolved_yes = resolved_yes
        run.pnl = pnl
        run.backtested_at = now
        await session.commit()

    forecast_temp = (run.forecast_snapshot or {}).get("forecast_temp")
    logger.info(
        "Run backtested",
        run_id=run_id,
        actual=actual,
        resolved_yes=resolved_yes,
        pnl=pnl,
    )
    return BacktestOutcome(
        run_id=run_id,
        actual_outcome_value=actual,
        resolved_yes=resolved_yes,
        pnl=pnl,
        forecast_temp=forecast_temp,
        forecast_error=round(actual - forecast_temp, 1) if forecast_temp is not None else None,
    )
