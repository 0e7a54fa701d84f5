"""Descriptive statistics for repeated audit measurements.

Every function here works on a one-dimensional sample of floats and
sorts with Python's ``sorted``, which compares numbers numerically.
Order-dependent statistics (median, percentiles) are therefore safe
for values of different magnitudes, e.g. ``[10, 2, 33]`` sorts to
``[2, 10, 33]``.

Percentiles use the nearest-rank convention ``index = ceil(p/100 * n)``
on the 0-based ascending sort, clamped to the last element.  For the
series 1..100 this gives p95 = 96 and p99 = 100.
"""

from __future__ import annotations

import math
import statistics
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence


# ---------------------------------------------------------------------------
# Value classification
# ---------------------------------------------------------------------------


def is_metric_value(value: Any) -> bool:
    """Return True if *value* is a well-formed numeric measurement.

    Zero counts.  Booleans, ``None``, strings, NaN and infinities do not.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        # ints too large for a float
        return False


# ---------------------------------------------------------------------------
# Individual statistics
# ---------------------------------------------------------------------------


def _require(values: Sequence[float]) -> None:
    if not values:
        raise ValueError("statistic of an empty sample is undefined")


def average(values: Sequence[float]) -> float:
    """Arithmetic mean."""
    _require(values)
    return statistics.fmean(values)


def median(values: Sequence[float]) -> float:
    """Middle value of the numerically sorted sample.

    For an even-sized sample this is the mean of the two central values.
    """
    _require(values)
    ordered = sorted(values)
    middle = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[middle - 1] + ordered[middle]) / 2
    return ordered[middle]


def standard_deviation(values: Sequence[float]) -> float:
    """Population standard deviation (divisor N, not N-1)."""
    _require(values)
    return statistics.pstdev(values)


def percentile(values: Sequence[float], p: float) -> float:
    """Nearest-rank percentile, clamped to the sample bounds.

    Args:
        values: Sample (any order).
        p: Percentile in [0, 100].
    """
    _require(values)
    if not 0 <= p <= 100:
        raise ValueError(f"percentile must be in [0, 100], got {p}")
    ordered = sorted(values)
    index = math.ceil(p / 100 * len(ordered))
    return ordered[min(index, len(ordered) - 1)]


def spread(values: Sequence[float]) -> float:
    """Range of the sample (max - min)."""
    _require(values)
    return max(values) - min(values)


def mean_absolute_deviation(values: Sequence[float]) -> float:
    """Mean of absolute deviations from the average."""
    mean = average(values)
    return statistics.fmean(abs(v - mean) for v in values)


def coefficient_of_variation(values: Sequence[float]) -> float:
    """Standard deviation as a percentage of the average.

    Returns ``inf`` when the average is zero and the sample varies, and
    ``nan`` when it is zero and constant.  Callers must treat either as
    "not meaningful" rather than as a number.
    """
    mean = average(values)
    stdev = standard_deviation(values)
    if mean == 0:
        return math.nan if stdev == 0 else math.inf
    return stdev / mean * 100


# ---------------------------------------------------------------------------
# MetricSummary
# ---------------------------------------------------------------------------


def _finite_or_none(value: float) -> float | None:
    return value if math.isfinite(value) else None


@dataclass(frozen=True)
class MetricSummary:
    """Summary statistics for one metric across the runs of a batch."""

    n: int
    average: float
    median: float
    standard_deviation: float
    percentile95: float
    percentile99: float
    min: float
    max: float
    spread: float
    mean_absolute_deviation: float
    coefficient_of_variation_pct: float  # non-finite when average == 0
    values: tuple[float, ...] = field(default_factory=tuple)

    @property
    def cv_defined(self) -> bool:
        """Whether the coefficient of variation is a meaningful number."""
        return math.isfinite(self.coefficient_of_variation_pct)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict.

        Non-finite values become ``None`` so the output stays valid JSON.
        """
        return {
            "n": self.n,
            "average": self.average,
            "median": self.median,
            "standardDeviation": self.standard_deviation,
            "percentile95": self.percentile95,
            "percentile99": self.percentile99,
            "minMax": {"min": self.min, "max": self.max},
            "spread": self.spread,
            "meanAbsoluteDeviation": self.mean_absolute_deviation,
            "variationCoefficient": _finite_or_none(self.coefficient_of_variation_pct),
            "values": list(self.values),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MetricSummary:
        """Rebuild from :meth:`to_dict` output by recomputing from ``values``."""
        return describe(data["values"])


def describe(values: Sequence[float]) -> MetricSummary:
    """Compute a :class:`MetricSummary` for a non-empty sample.

    Raises:
        ValueError: If *values* is empty.
    """
    _require(values)
    ordered = sorted(values)
    return MetricSummary(
        n=len(values),
        average=average(values),
        median=median(ordered),
        standard_deviation=standard_deviation(values),
        percentile95=percentile(ordered, 95),
        percentile99=percentile(ordered, 99),
        min=ordered[0],
        max=ordered[-1],
        spread=ordered[-1] - ordered[0],
        mean_absolute_deviation=mean_absolute_deviation(values),
        coefficient_of_variation_pct=coefficient_of_variation(values),
        values=tuple(values),
    )


# ---------------------------------------------------------------------------
# Batch aggregation
# ---------------------------------------------------------------------------


def group_series(samples: Iterable[Mapping[str, Any]]) -> dict[str, list[float]]:
    """Group metric values by name across runs.

    Each element of *samples* maps metric name to value for one run.
    Values that are not well-formed numbers are skipped, as are metrics
    a run does not report, so a series holds one entry per run that
    reported the metric.  Series preserve run order; metric names keep
    first-seen order.
    """
    series: dict[str, list[float]] = {}
    for run in samples:
        for name, value in run.items():
            if not is_metric_value(value):
                continue
            series.setdefault(name, []).append(float(value))
    return series


def summarize(samples: Iterable[Mapping[str, Any]]) -> dict[str, MetricSummary]:
    """Summarize every metric that has at least one numeric value."""
    return {name: describe(values) for name, values in group_series(samples).items()}
