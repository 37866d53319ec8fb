import sys
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from services.weather.signal_engine import (
    BUY_NO,
    BUY_YES,
    NO_TRADE,
    build_trade_signal,
    raw_kelly_fraction,
    recommend,
)


def _signal(**overrides):
    params = dict(
        model_prob=0.70,
        yes_price=0.50,
        base_size_usd=100.0,
        user_confidence=50.0,
        max_position_usd=50.0,
    )
    params.update(overrides)
    return build_trade_signal(**params)


def test_edge_is_model_minus_market_without_adjustment():
    signal = _signal(model_prob=0.63, yes_price=0.41, fee_bps=100, slippage_bps=50)
    assert signal.market_implied_prob == 0.41
    assert signal.edge == 0.63 - 0.41


def test_small_edge_is_no_trade_with_zero_sizes():
    signal = _signal(model_prob=0.55, yes_price=0.52)
    assert signal.recommendation == NO_TRADE
    assert signal.should_trade is False
    plan = signal.trade_plan
    assert plan.recommended_side == NO_TRADE
    assert plan.kelly_fraction == 0.0
    assert plan.suggested_size_usd == 0.0
    assert plan.half_kelly_size_usd == 0.0


def test_buy_yes_kelly_sizing():
    signal = _signal()
    assert signal.recommendation == BUY_YES
    plan = signal.trade_plan
    # (0.70 - 0.50) / (0.5 * 0.5) = 0.8
    assert plan.kelly_fraction == pytest.approx(0.8)
    assert plan.kelly_size_usd == pytest.approx(80.0)
    assert plan.suggested_size_usd == pytest.approx(40.0)
    assert plan.half_kelly_size_usd == pytest.approx(20.0)


def test_buy_no_uses_complement_price_and_clamps_fraction():
    signal = _signal(model_prob=0.20, yes_price=0.50, user_confidence=100.0)
    assert signal.recommendation == BUY_NO
    assert signal.side_price == pytest.approx(0.50)
    plan = signal.trade_plan
    assert plan.kelly_fraction == 1.0
    assert plan.suggested_size_usd == 50.0  # capped at max position
    assert plan.half_kelly_size_usd == 25.0


def test_suggested_size_never_exceeds_max_position():
    signal = _signal(model_prob=0.95, yes_price=0.30, base_size_usd=10_000.0, user_confidence=100.0)
    assert signal.trade_plan.suggested_size_usd <= 50.0
    assert signal.trade_plan.kelly_size_usd > 50.0


def test_fees_making_kelly_negative_force_no_trade():
    signal = _signal(model_prob=0.56, yes_price=0.50, fee_bps=400, slippage_bps=300)
    assert abs(signal.edge) >= 0.05
    assert signal.raw_kelly < 0
    assert signal.recommendation == NO_TRADE
    assert signal.trade_plan.suggested_size_usd == 0.0
    assert signal.trade_plan.half_kelly_size_usd == 0.0


def test_degenerate_side_price_has_no_kelly():
    assert raw_kelly_fraction(0.9, 0.0)[0] == 0.0
    assert raw_kelly_fraction(0.9, 1.0)[0] == 0.0
    signal = _signal(model_prob=0.60, yes_price=0.0)
    assert signal.recommendation == NO_TRADE


def test_recommend_threshold_is_inclusive():
    assert recommend(0.05, 0.05) == BUY_YES
    assert recommend(-0.05, 0.05) == BUY_NO
    assert recommend(0.049, 0.05) == NO_TRADE


@pytest.mark.parametrize(
    "overrides",
    [
        {"yes_price": 1.2},
        {"yes_price": -0.1},
        {"model_prob": 1.5},
        {"user_confidence": 101.0},
        {"base_size_usd": -1.0},
    ],
)
def test_invalid_inputs_raise(overrides):
    with pytest.raises(ValueError):
        _signal(**overrides)


def test_trade_plan_serializes_for_storage():
    plan = _signal().trade_plan.to_dict()
    assert plan["recommended_side"] == BUY_YES
    assert isinstance(plan["rationale"], list)
    assert any("no spread or vig" in a for a in plan["assumptions"])
