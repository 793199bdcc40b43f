"""
Denial-rate trajectory shaping and proportional integer distribution.

Pure functions. Invalid input raises ``ValueError`` instead of being clamped,
because it always means the scenario feeding the pipeline is malformed.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from fractions import Fraction

from portalsim.schemas.scenario import TrajectoryShape

# Steepness of the fast-then-flat curve. At k=5 about 87% of the change is
# done 40% of the way through the window.
STEEP_K = 5.0


@dataclass(frozen=True)
class CurveSpec:
    shape: TrajectoryShape
    baseline_rate: float
    current_rate: float


def _check_rate(name: str, value: float):
    if not 0 <= value <= 100:
        raise ValueError(f"{name} must be within [0, 100], got {value}")


def shape_progress(shape: TrajectoryShape, progress: float) -> float:
    """Fraction of the baseline→current change completed at *progress* (0..1)."""
    if not 0 <= progress <= 1:
        raise ValueError(f"progress must be within [0, 1], got {progress}")
    shape = TrajectoryShape(shape)

    if shape in (TrajectoryShape.STABLE, TrajectoryShape.FLAT):
        return 0.0
    if shape == TrajectoryShape.STEEP_IMPROVEMENT:
        return (1 - math.exp(-STEEP_K * progress)) / (1 - math.exp(-STEEP_K))
    if shape == TrajectoryShape.SLIGHT_IMPROVEMENT:
        return math.log2(1 + progress)
    # gradual_improvement and regression move linearly
    return progress


def denial_rate_for_month(
    curve: CurveSpec,
    month_index: int,
    total_months: int,
    rng: random.Random | None = None,
    noise_pct: float = 3.0,
) -> float:
    """Target denial rate (0..100) for one month of a pattern's window.

    Without *rng* the result is the smooth curve value. With it, a bounded
    perturbation of up to ±noise_pct points is added. The perturbation is
    damped toward the window's ends so the baseline and current anchors stay
    close to their declared values.
    """
    if total_months < 1:
        raise ValueError(f"total_months must be at least 1, got {total_months}")
    if not 0 <= month_index < total_months:
        raise ValueError(f"month_index {month_index} outside [0, {total_months})")
    if noise_pct < 0:
        raise ValueError(f"noise_pct must be non-negative, got {noise_pct}")
    _check_rate("baseline_rate", curve.baseline_rate)
    _check_rate("current_rate", curve.current_rate)

    if curve.shape in (TrajectoryShape.STABLE, TrajectoryShape.FLAT):
        rate = curve.baseline_rate
    else:
        progress = month_index / (total_months - 1) if total_months > 1 else 1.0
        fraction = shape_progress(curve.shape, progress)
        rate = curve.baseline_rate + (curve.current_rate - curve.baseline_rate) * fraction

    if rng is not None and noise_pct > 0:
        edge = min(month_index, total_months - 1 - month_index) / (total_months / 2)
        rate += (rng.random() - 0.5) * 2 * noise_pct * min(1.0, edge + 0.3)

    return min(100.0, max(0.0, round(rate, 2)))


def distribute_counts(total: int, weights: list[float]) -> list[int]:
    """Split *total* across buckets in proportion to *weights*.

    Largest-remainder method: floors first, then the leftover units go to
    the largest fractional remainders, ties broken by bucket order. The
    result always sums to *total* exactly.
    """
    if total < 0:
        raise ValueError(f"total must be non-negative, got {total}")
    if not weights:
        raise ValueError("weights must not be empty")
    if any(w < 0 for w in weights):
        raise ValueError(f"weights must be non-negative, got {weights}")

    exact_weights = [Fraction(w) for w in weights]
    weight_sum = sum(exact_weights)
    if weight_sum == 0:
        if total == 0:
            return [0] * len(weights)
        raise ValueError("weights sum to zero but total is positive")

    shares = [total * w / weight_sum for w in exact_weights]
    counts = [math.floor(s) for s in shares]
    leftover = total - sum(counts)

    order = sorted(range(len(shares)), key=lambda i: (-(shares[i] - counts[i]), i))
    for i in order[:leftover]:
        counts[i] += 1
    return counts


def distribute_denied(claim_count: int, denial_rate: float) -> int:
    """Denied claims for *claim_count* claims at *denial_rate* percent, rounded half up."""
    if claim_count < 0:
        raise ValueError(f"claim_count must be non-negative, got {claim_count}")
    _check_rate("denial_rate", denial_rate)
    denied = math.floor(Fraction(claim_count) * Fraction(denial_rate) / 100 + Fraction(1, 2))
    return min(claim_count, max(0, denied))


def check_series_shape(shape: TrajectoryShape, rates: list[float], noise_pct: float) -> list[str]:
    """Soft checks on a declared monthly series against its named shape."""
    problems: list[str] = []
    if len(rates) < 2:
        return problems
    shape = TrajectoryShape(shape)

    if shape in (TrajectoryShape.STABLE, TrajectoryShape.FLAT):
        band = max(rates) - min(rates)
        if band > 2 * noise_pct:
            problems.append(
                f"{shape.value} series spans {band:.1f} points, more than {2 * noise_pct:.1f}"
            )
    elif shape == TrajectoryShape.GRADUAL_IMPROVEMENT:
        for prev, cur in zip(rates, rates[1:]):
            if cur - prev > noise_pct:
                problems.append(
                    f"gradual series rises from {prev} to {cur}, more than {noise_pct} points"
                )
                break
    return problems
