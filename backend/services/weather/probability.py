"""Forecast-to-probability model for threshold and range weather contracts.

Two estimators share one resolution rule:

* normal model: outcome ~ N(mean, sigma); probability from the standard
  normal CDF at ``(threshold - mean) / sigma``.
* ensemble model: fraction of ensemble members that satisfy the rule.

Both return values clamped to [0, 1]. Degenerate inputs (sigma <= 0,
inverted ranges) resolve to 0 or 1 and never to NaN.
"""

from __future__ import annotations

import math
from typing import Iterable, Optional, Sequence

import numpy as np

RULE_ABOVE_BELOW = "above_below"
RULE_RANGE = "range"
RULE_TYPES = (RULE_ABOVE_BELOW, RULE_RANGE)

PROB_METHOD_NORMAL = "normal"
PROB_METHOD_ENSEMBLE = "ensemble"


def _clamp01(value: float) -> float:
    if value != value:  # NaN
        return 0.0
    return max(0.0, min(1.0, value))


def normal_cdf(x: float) -> float:
    """Standard normal CDF via erf."""
    if x == math.inf:
        return 1.0
    if x == -math.inf:
        return 0.0
    return 0.5 * (1.0 + math.erf(x / math.sqrt(2.0)))


def rule_bounds(
    rule_type: str,
    threshold_low: Optional[float],
    threshold_high: Optional[float],
) -> tuple[float, float]:
    """Closed interval [low, high] in which the contract resolves YES.

    A missing bound is open (-inf / +inf). For ``above_below`` with only a
    low threshold the rule is X >= low, with only a high threshold X <= high.
    """
    if rule_type not in RULE_TYPES:
        raise ValueError(f"Unknown rule_type: {rule_type!r}")
    if threshold_low is None and threshold_high is None:
        raise ValueError("At least one threshold is required")
    low = -math.inf if threshold_low is None else float(threshold_low)
    high = math.inf if threshold_high is None else float(threshold_high)
    return low, high


def rule_satisfied(
    value: float,
    rule_type: str,
    threshold_low: Optional[float],
    threshold_high: Optional[float],
) -> bool:
    low, high = rule_bounds(rule_type, threshold_low, threshold_high)
    return low <= value <= high


def probability_normal(
    mean: float,
    sigma: float,
    rule_type: str,
    threshold_low: Optional[float],
    threshold_high: Optional[float],
) -> float:
    low, high = rule_bounds(rule_type, threshold_low, threshold_high)
    if low > high or not math.isfinite(mean):
        return 0.0

    if sigma is None or not math.isfinite(sigma) or sigma <= 0:
        # Zero variance: the outcome is the mean itself.
        return 1.0 if low <= mean <= high else 0.0

    upper = normal_cdf((high - mean) / sigma) if math.isfinite(high) else 1.0
    lower = normal_cdf((low - mean) / sigma) if math.isfinite(low) else 0.0
    return _clamp01(upper - lower)


def probability_ensemble(
    members: Iterable[float],
    rule_type: str,
    threshold_low: Optional[float],
    threshold_high: Optional[float],
) -> Optional[float]:
    """Empirical probability from ensemble members; None when there are no usable members."""
    low, high = rule_bounds(rule_type, threshold_low, threshold_high)
    values = np.asarray([float(m) for m in members if m is not None], dtype=float)
    values = values[np.isfinite(values)]
    if values.size == 0:
        return None
    hits = np.count_nonzero((values >= low) & (values <= high))
    return _clamp01(hits / values.size)


def ensemble_stats(members: Sequence[float]) -> Optional[dict[str, float]]:
    """p10/p50/p90/std summary of ensemble members (rounded for snapshots)."""
    values = np.asarray([float(m) for m in members if m is not None], dtype=float)
    values = values[np.isfinite(values)]
    if values.size == 0:
        return None
    p10, p50, p90 = np.percentile(values, [10, 50, 90])
    return {
        "p10": round(float(p10), 1),
        "p50": round(float(p50), 1),
        "p90": round(float(p90), 1),
        "std": round(float(values.std()), 2),
        "count": int(values.size),
    }


def models_agree(per_model_probabilities: Sequence[float]) -> Optional[bool]:
    """True when every model sits on the same side of 50%; None with fewer than two models."""
    probs = [float(p) for p in per_model_probabilities]
    if len(probs) < 2:
        return None
    return all(p > 0.5 for p in probs) or all(p < 0.5 for p in probs)


def model_probability(
    *,
    mean: float,
    sigma: float,
    rule_type: str,
    threshold_low: Optional[float],
    threshold_high: Optional[float],
    ensemble_members: Optional[Sequence[float]] = None,
) -> tuple[float, str]:
    """Pick the ensemble estimator when members exist, else fall back to the normal model."""
    if ensemble_members:
        prob = probability_ensemble(ensemble_members, rule_type, threshold_low, threshold_high)
        if prob is not None:
            return prob, PROB_METHOD_ENSEMBLE
    return (
        probability_normal(mean, sigma, rule_type, threshold_low, threshold_high),
        PROB_METHOD_NORMAL,
    )
