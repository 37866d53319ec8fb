"""Risk gates for the executor and the auto-trader.

Each evaluator returns a RiskResult; the first failing check sets
``reason``. Rejections are ordinary results, never exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from services.weather.signal_engine import NO_TRADE

from .types import SkipCode


@dataclass
class RiskCheck:
    key: str
    passed: bool
    detail: str
    code: Optional[SkipCode] = None
    score: float | None = None


@dataclass
class RiskResult:
    allowed: bool
    reason: str
    code: Optional[SkipCode] = None
    checks: list[RiskCheck] = field(default_factory=list)


def _safe_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _pct(value: float) -> str:
    return f"{value * 100:.1f}%"


def _first_failure(checks: list[RiskCheck]) -> RiskResult:
    for check in checks:
        if not check.passed:
            return RiskResult(allowed=False, reason=check.detail, code=check.code, checks=checks)
    return RiskResult(allowed=True, reason="All risk checks passed", checks=checks)


def evaluate_execution_risk(
    *,
    active_order_exists: bool,
    size_usd: float,
    edge: float,
    open_exposure_usd: float,
    max_total_exposure_usd: float,
    min_edge: float,
    dry_run: bool,
) -> RiskResult:
    """Executor gates in order: active order, live exposure, absolute edge floor."""
    checks: list[RiskCheck] = [
        RiskCheck(
            key="active_order",
            passed=not active_order_exists,
            detail="Active order already exists for this run",
            code=SkipCode.ACTIVE_ORDER_EXISTS,
        )
    ]

    projected = open_exposure_usd + size_usd
    checks.append(
        RiskCheck(
            key="exposure",
            passed=dry_run or projected <= max_total_exposure_usd,
            detail=(
                "dry run"
                if dry_run
                else f"Total exposure would exceed limit: ${open_exposure_usd:.2f} + ${size_usd:.2f} "
                f"> ${max_total_exposure_usd:.2f}"
            ),
            code=SkipCode.EXPOSURE_LIMIT,
            score=projected,
        )
    )

    checks.append(
        RiskCheck(
            key="edge_floor",
            passed=abs(edge) >= min_edge,
            detail=f"Edge too small: {_pct(abs(edge))} < {_pct(min_edge)}",
            code=SkipCode.EDGE_TOO_SMALL,
            score=abs(edge),
        )
    )
    return _first_failure(checks)


def evaluate_signal_gates(
    *,
    recommendation: Optional[str],
    token_id: Optional[str],
    outcome_label: str,
    edge: Optional[float],
    min_edge: float,
    conviction: Optional[float],
    min_conviction: float,
    models_agree: Optional[bool],
    require_models_agree: bool,
    size_usd: float,
) -> RiskResult:
    """Auto-trader gates, evaluated lazily so later checks never see missing inputs."""
    checks: list[RiskCheck] = []

    def gate(check: RiskCheck) -> bool:
        checks.append(check)
        return check.passed

    if not gate(
        RiskCheck(
            key="recommendation",
            passed=bool(recommendation) and recommendation != NO_TRADE,
            detail=f"No trade signal (recommendation: {recommendation})",
            code=SkipCode.NO_TRADE_SIGNAL,
        )
    ):
        return _first_failure(checks)

    if not gate(
        RiskCheck(
            key="token",
            passed=bool(token_id),
            detail=f"Missing {outcome_label} token ID",
            code=SkipCode.MISSING_TOKEN,
        )
    ):
        return _first_failure(checks)

    abs_edge = abs(_safe_float(edge))
    if not gate(
        RiskCheck(
            key="edge",
            passed=abs_edge >= min_edge,
            detail=f"Edge too small: {_pct(abs_edge)} < {_pct(min_edge)}",
            code=SkipCode.EDGE_TOO_SMALL,
            score=abs_edge,
        )
    ):
        return _first_failure(checks)

    conviction_value = _safe_float(conviction)
    if not gate(
        RiskCheck(
            key="conviction",
            passed=conviction_value >= min_conviction,
            detail=f"Conviction too low: {conviction_value:g} < {min_conviction:g}",
            code=SkipCode.CONVICTION_TOO_LOW,
            score=conviction_value,
        )
    ):
        return _first_failure(checks)

    # Unknown agreement (single model, deterministic fallback) does not block.
    if not gate(
        RiskCheck(
            key="models_agree",
            passed=not (require_models_agree and models_agree is False),
            detail="Models disagree on direction",
            code=SkipCode.MODELS_DISAGREE,
        )
    ):
        return _first_failure(checks)

    gate(
        RiskCheck(
            key="size",
            passed=size_usd > 0,
            detail="No suggested size (Kelly = 0)",
            code=SkipCode.NO_SIZE,
            score=size_usd,
        )
    )
    return _first_failure(checks)
