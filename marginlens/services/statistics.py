"""
Shared statistical helpers for the baseline and insight engines.

All helpers are total: empty input, zero denominators and degenerate series
produce 0 or None, never NaN or Infinity.
"""
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

import numpy as np


# Minimum relative day-over-day price move that counts as a price signal
ELASTICITY_PRICE_CHANGE_THRESHOLD = 0.02
# Point elasticities outside this open interval are treated as outliers
ELASTICITY_OUTLIER_BOUND = 10.0
# Deviation (in standard deviations) beyond which performance is abnormal
DEVIATION_THRESHOLD = 0.5


@dataclass
class DailyPoint:
    """One business day of sales for a single item."""
    quantity: float
    revenue: float
    price: float


def mean(xs: Iterable[float]) -> float:
    """Arithmetic mean, 0 for empty input."""
    values = np.asarray(list(xs), dtype=float)
    if values.size == 0:
        return 0.0
    return float(np.mean(values))


def standard_deviation(xs: Iterable[float]) -> float:
    """Population standard deviation (divide by N), 0 for fewer than 2 points."""
    values = np.asarray(list(xs), dtype=float)
    if values.size < 2:
        return 0.0
    return float(np.std(values, ddof=0))


def coefficient_of_variation(xs: Sequence[float]) -> float:
    """std / mean, or 1.0 (maximally uncertain) when the mean is not positive."""
    avg = mean(xs)
    if avg <= 0:
        return 1.0
    return standard_deviation(xs) / avg


def percent_change(before: float, after: float) -> float:
    """Relative change in percent; 0 when there is no prior value to compare to."""
    if before == 0:
        return 0.0
    return (after - before) / before * 100


def estimate_elasticity(daily_series: Sequence[DailyPoint]) -> Optional[float]:
    """
    Mean point elasticity (%dQuantity / %dPrice) over consecutive days.

    Only day pairs whose price moved by more than 2% are used, and point
    estimates outside (-10, 10) are discarded. Returns None when no day pair
    qualifies.
    """
    elasticities: List[float] = []

    for prev, curr in zip(daily_series, daily_series[1:]):
        if prev.price == 0 or prev.quantity == 0:
            continue

        pct_change_price = (curr.price - prev.price) / prev.price
        if abs(pct_change_price) <= ELASTICITY_PRICE_CHANGE_THRESHOLD:
            continue

        pct_change_qty = (curr.quantity - prev.quantity) / prev.quantity
        e = pct_change_qty / pct_change_price
        if -ELASTICITY_OUTLIER_BOUND < e < ELASTICITY_OUTLIER_BOUND:
            elasticities.append(e)

    if not elasticities:
        return None
    return mean(elasticities)


def estimate_seasonality(daily_series: Sequence[DailyPoint]) -> Optional[float]:
    """
    Weekend/weekday seasonality index.

    No seasonality model exists yet, so this always returns None and
    baselines store NULL.
    """
    return None


def deviation_sigma(current_value: float, avg: float, std: float) -> float:
    """z-score of current_value against (avg, std); 0 when std is 0."""
    if std <= 0:
        return 0.0
    return (current_value - avg) / std


def classify_deviation(deviation: float, threshold: float = DEVIATION_THRESHOLD) -> str:
    """'above' / 'below' / 'normal' relative to +-threshold standard deviations."""
    if deviation > threshold:
        return "above"
    if deviation < -threshold:
        return "below"
    return "normal"


def clamp(value: float, lower: float = 0.0, upper: float = 1.0) -> float:
    return max(lower, min(upper, value))
