from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

BUY_YES = "BUY_YES"
BUY_NO = "BUY_NO"
NO_TRADE = "NO_TRADE"
RECOMMENDATIONS = (BUY_YES, BUY_NO, NO_TRADE)


@dataclass
class TradePlan:
    recommended_side: str
    kelly_fraction: float
    kelly_size_usd: float
    suggested_size_usd: float
    half_kelly_size_usd: float
    rationale: list[str] = field(default_factory=list)
    assumptions: list[str] = field(default_factory=list)
    invalidated_if: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TradeSignal:
    model_prob: float
    market_implied_prob: float
    edge: float  # model_prob - market_implied_prob, unadjusted
    recommendation: str
    trade_plan: TradePlan
    side_price: Optional[float] = None
    side_edge: Optional[float] = None  # chosen side, net of fees/slippage
    raw_kelly: float = 0.0

    @property
    def should_trade(self) -> bool:
        return self.recommendation != NO_TRADE


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def _round_usd(value: float) -> float:
    return round(value + 0.0, 2)


def _validate_inputs(model_prob: float, yes_price: float, user_confidence: float, base_size_usd: float) -> None:
    if not (0.0 <= yes_price <= 1.0) or math.isnan(yes_price):
        raise ValueError(f"yes_price must be within [0, 1], got {yes_price}")
    if not (0.0 <= model_prob <= 1.0) or math.isnan(model_prob):
        raise ValueError(f"model_prob must be within [0, 1], got {model_prob}")
    if not (0.0 <= user_confidence <= 100.0):
        raise ValueError(f"user_confidence must be within [0, 100], got {user_confidence}")
    if base_size_usd < 0:
        raise ValueError(f"base_size_usd must be non-negative, got {base_size_usd}")


def recommend(edge: float, min_edge: float) -> str:
    if abs(edge) < min_edge:
        return NO_TRADE
    return BUY_YES if edge > 0 else BUY_NO


def side_price_for(recommendation: str, yes_price: float) -> Optional[float]:
    """Price paid per share for the recommended side (NO trades at 1 - yes)."""
    if recommendation == BUY_YES:
        return yes_price
    if recommendation == BUY_NO:
        return 1.0 - yes_price
    return None


def raw_kelly_fraction(side_prob: float, side_price: float, cost_fraction: float = 0.0) -> tuple[float, float]:
    """Unclamped Kelly fraction ``edge / (p * (1 - p))`` for buying one side.

    ``side_prob`` is the model probability that the bought side pays out and
    ``cost_fraction`` the combined fee + slippage charged on entry. Returns
    ``(kelly, side_edge)``; prices outside (0, 1) have no defined fraction
    and return 0.
    """
    side_edge = side_prob - side_price - cost_fraction
    if not (0.0 < side_price < 1.0):
        return 0.0, side_edge
    return side_edge / (side_price * (1.0 - side_price)), side_edge


def build_trade_signal(
    *,
    model_prob: float,
    yes_price: float,
    base_size_usd: float,
    user_confidence: float,
    max_position_usd: float,
    min_edge: float = 0.05,
    fee_bps: float = 0.0,
    slippage_bps: float = 0.0,
    no_price: Optional[float] = None,
    rationale: Optional[list[str]] = None,
    assumptions: Optional[list[str]] = None,
    invalidated_if: Optional[list[str]] = None,
) -> TradeSignal:
    """Turn a model probability and a traded YES price into a sized recommendation."""
    _validate_inputs(model_prob, yes_price, user_confidence, base_size_usd)

    market_implied_prob = yes_price
    edge = model_prob - market_implied_prob
    cost_fraction = (fee_bps + slippage_bps) / 10000.0

    recommendation = recommend(edge, min_edge)
    side_price = side_price_for(recommendation, yes_price)
    raw_kelly = 0.0
    side_edge: Optional[float] = None
    notes: list[str] = list(rationale or [])
    notes.append(f"Model probability: {model_prob * 100:.1f}%")
    notes.append(f"Market implied: {market_implied_prob * 100:.1f}%")
    notes.append(f"Edge: {edge * 100:.2f}%")

    if recommendation != NO_TRADE:
        side_prob = model_prob if recommendation == BUY_YES else 1.0 - model_prob
        raw_kelly, side_edge = raw_kelly_fraction(side_prob, side_price, cost_fraction)
        if raw_kelly <= 0:
            notes.append(
                f"Kelly fraction {raw_kelly:.4f} is not positive after "
                f"{fee_bps:g}bps fees + {slippage_bps:g}bps slippage; no trade"
            )
            recommendation = NO_TRADE
    else:
        notes.append(f"Edge below min threshold of {min_edge * 100:.1f}%; no trade recommended")

    kelly = _clamp01(raw_kelly) if recommendation != NO_TRADE else 0.0
    kelly_size = _round_usd(kelly * base_size_usd)
    suggested = _round_usd(min(kelly * base_size_usd * (user_confidence / 100.0), max_position_usd))
    half_kelly = _round_usd(suggested / 2.0)

    if recommendation != NO_TRADE:
        notes.append(
            f"Kelly fraction: {kelly * 100:.1f}% of ${base_size_usd:.2f} = ${kelly_size:.2f}"
        )
        notes.append(
            f"Suggested size (x {user_confidence:g}% conviction, cap ${max_position_usd:.2f}): "
            f"${suggested:.2f}; half-Kelly ${half_kelly:.2f}"
        )

    plan_assumptions = list(assumptions or [])
    effective_no = no_price if no_price is not None else 1.0 - yes_price
    plan_assumptions.append(
        f"Market is liquid enough to execute at YES={yes_price:.3f}/NO={effective_no:.3f}"
    )
    plan_assumptions.append("Market price is read as probability with no spread or vig adjustment")

    plan = TradePlan(
        recommended_side=recommendation,
        kelly_fraction=round(kelly, 4),
        kelly_size_usd=kelly_size,
        suggested_size_usd=suggested,
        half_kelly_size_usd=half_kelly,
        rationale=notes,
        assumptions=plan_assumptions,
        invalidated_if=list(invalidated_if or []),
    )
    return TradeSignal(
        model_prob=model_prob,
        market_implied_prob=market_implied_prob,
        edge=edge,
        recommendation=recommendation,
        trade_plan=plan,
        side_price=side_price,
        side_edge=side_edge,
        raw_kelly=raw_kelly,
    )
