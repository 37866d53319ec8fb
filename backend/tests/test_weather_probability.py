import math
import sys
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from services.weather.probability import (
    PROB_METHOD_ENSEMBLE,
    PROB_METHOD_NORMAL,
    ensemble_stats,
    model_probability,
    models_agree,
    normal_cdf,
    probability_ensemble,
    probability_normal,
    rule_bounds,
    rule_satisfied,
)


def test_normal_cdf_reference_points():
    assert normal_cdf(0.0) == pytest.approx(0.5)
    assert normal_cdf(1.96) == pytest.approx(0.975, abs=1e-3)
    assert normal_cdf(math.inf) == 1.0
    assert normal_cdf(-math.inf) == 0.0


def test_above_threshold_at_mean_is_half():
    assert probability_normal(25.0, 2.0, "above_below", 25.0, None) == pytest.approx(0.5)


def test_below_threshold_uses_high_bound():
    prob = probability_normal(20.0, 2.0, "above_below", None, 22.0)
    assert prob == pytest.approx(normal_cdf(1.0))


def test_above_below_with_both_thresholds_is_a_range():
    both = probability_normal(25.0, 2.0, "above_below", 24.0, 26.0)
    ranged = probability_normal(25.0, 2.0, "range", 24.0, 26.0)
    assert both == pytest.approx(ranged)
    assert 0.0 < both < 1.0


def test_probability_stays_within_unit_interval():
    for mean in (-40.0, 0.0, 24.9, 25.0, 60.0):
        for sigma in (0.01, 1.0, 5.0, 50.0):
            for low, high in ((25.0, None), (None, 25.0), (20.0, 30.0)):
                rule = "range" if low is not None and high is not None else "above_below"
                prob = probability_normal(mean, sigma, rule, low, high)
                assert 0.0 <= prob <= 1.0


def test_zero_sigma_is_deterministic():
    assert probability_normal(26.0, 0.0, "above_below", 25.0, None) == 1.0
    assert probability_normal(24.0, 0.0, "above_below", 25.0, None) == 0.0
    assert probability_normal(25.0, -1.0, "range", 24.0, 26.0) == 1.0
    assert probability_normal(25.0, float("nan"), "range", 26.0, 27.0) == 0.0


def test_inverted_range_has_zero_probability():
    assert probability_normal(25.0, 2.0, "range", 30.0, 20.0) == 0.0
    assert probability_ensemble([21.0, 25.0, 29.0], "range", 30.0, 20.0) == 0.0


def test_unknown_rule_or_missing_thresholds_raise():
    with pytest.raises(ValueError):
        rule_bounds("between", 1.0, 2.0)
    with pytest.raises(ValueError):
        rule_bounds("above_below", None, None)


def test_rule_boundary_is_inclusive():
    assert rule_satisfied(24.9, "above_below", 25.0, None) is False
    assert rule_satisfied(25.0, "above_below", 25.0, None) is True
    assert rule_satisfied(30.0, "range", 20.0, 30.0) is True
    assert rule_satisfied(30.1, "range", 20.0, 30.0) is False


def test_ensemble_probability_is_member_fraction():
    members = [20.0, 24.0, 25.0, 26.0, 30.0]
    assert probability_ensemble(members, "above_below", 25.0, None) == pytest.approx(0.6)
    assert probability_ensemble(members + [float("nan"), None], "above_below", 25.0, None) == pytest.approx(0.6)


def test_empty_ensemble_returns_none():
    assert probability_ensemble([], "above_below", 25.0, None) is None
    assert ensemble_stats([]) is None


def test_ensemble_stats_percentiles():
    stats = ensemble_stats([float(v) for v in range(0, 11)])
    assert stats["p10"] == pytest.approx(1.0)
    assert stats["p50"] == pytest.approx(5.0)
    assert stats["p90"] == pytest.approx(9.0)
    assert stats["count"] == 11


def test_models_agree_requires_two_models_on_same_side():
    assert models_agree([0.7, 0.8]) is True
    assert models_agree([0.2, 0.1]) is True
    assert models_agree([0.7, 0.3]) is False
    assert models_agree([0.5, 0.7]) is False
    assert models_agree([0.9]) is None


def test_model_probability_prefers_ensemble_and_falls_back_to_normal():
    prob, method = model_probability(
        mean=25.0,
        sigma=2.0,
        rule_type="above_below",
        threshold_low=25.0,
        threshold_high=None,
        ensemble_members=[26.0, 27.0, 24.0, 28.0],
    )
    assert method == PROB_METHOD_ENSEMBLE
    assert prob == pytest.approx(0.75)

    prob, method = model_probability(
        mean=25.0,
        sigma=2.0,
        rule_type="above_below",
        threshold_low=25.0,
        threshold_high=None,
        ensemble_members=[],
    )
    assert method == PROB_METHOD_NORMAL
    assert prob == pytest.approx(0.5)
