"""Sparkline series assembly across quarter records.

Quarter records carry metric values in one of two encodings:

  - current:  ``{"value": 1500.0, "unit": "millions", "display": "$1,500M"}``
  - legacy:   ``{"value": "$1,500M", ...}``   (display string only)

:func:`parse_metric_value` is the single place the second form is turned into
a number. Series are expressed in millions for currency amounts, percentage
points for ratios, and dollars for per-share values.
"""

from __future__ import annotations

import math
import re
from typing import Iterable

from sec_quarters.models import QuarterRecord, SeriesPoint, SparklineSeries, Trend

UNIVERSAL_METRICS: tuple[str, ...] = (
    "revenue",
    "grossMarginPct",
    "operatingMarginPct",
    "operatingIncome",
    "operatingCashFlow",
    "rndRatioPct",
    "netIncome",
    "epsDiluted",
)

# Relative change beyond which a series counts as trending
TREND_THRESHOLD = 0.05

_CURRENCY_CHARS = "$€£¥,"
_NUMBER_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)$")
# Suffix multipliers into the series base unit (millions)
_SUFFIXES = {"M": 1.0, "B": 1000.0, "%": 1.0}


def parse_metric_value(raw: object) -> float | None:
    """Coerce a stored metric value to a float, or None when it cannot be read.

    >>> parse_metric_value("$1,500M")
    1500.0
    >>> parse_metric_value("$1.2B")
    1200.0
    >>> parse_metric_value("($0.29)")
    -0.29
    >>> parse_metric_value("35.0%")
    35.0
    >>> parse_metric_value("N/A") is None
    True
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
        return value if math.isfinite(value) else None
    if not isinstance(raw, str):
        return None

    text = "".join(ch for ch in raw if not ch.isspace() and ch not in _CURRENCY_CHARS)
    negative = False
    if len(text) >= 2 and text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1]

    multiplier = 1.0
    if text and text[-1].upper() in _SUFFIXES:
        multiplier = _SUFFIXES[text[-1].upper()]
        text = text[:-1]

    if not _NUMBER_RE.match(text):
        return None
    value = float(text) * multiplier
    return -value if negative else value


def compute_trend(values: list[float]) -> tuple[Trend, float | None]:
    """Trend label and percent change from the first to the last value.

    Change is None with fewer than two values or a zero starting point.
    """
    if len(values) < 2:
        return "neutral", None
    first, last = values[0], values[-1]
    if first == 0:
        return "neutral", None

    ratio = (last - first) / abs(first)
    if ratio > TREND_THRESHOLD:
        trend: Trend = "positive"
    elif ratio < -TREND_THRESHOLD:
        trend = "negative"
    else:
        trend = "neutral"
    return trend, round(ratio * 100, 1)


def _metric_value(record: QuarterRecord, metric: str) -> float | None:
    point = record.metrics.get(metric)
    if point is None:
        return None
    return parse_metric_value(point.value)


def build_series(
    historical: Iterable[QuarterRecord],
    current: QuarterRecord | None,
    metric: str,
) -> SparklineSeries:
    """Numeric series for *metric* over *historical* (+ *current* when it is a new quarter).

    Values that do not parse are dropped, never zeroed.
    """
    points: list[SeriesPoint] = []
    for record in sorted(historical, key=lambda r: r.quarter):
        value = _metric_value(record, metric)
        if value is not None:
            points.append(SeriesPoint(quarter=record.quarter, value=value))

    if current is not None and current.quarter not in {p.quarter for p in points}:
        value = _metric_value(current, metric)
        if value is not None:
            points.append(SeriesPoint(quarter=current.quarter, value=value))

    values = [p.value for p in points]
    trend, change = compute_trend(values)
    return SparklineSeries(
        metric=metric,
        points=points,
        count=len(points),
        min=min(values) if values else None,
        max=max(values) if values else None,
        first=values[0] if values else None,
        latest=values[-1] if values else None,
        trend=trend,
        change_percent=change,
    )


def build_sparklines(
    historical: list[QuarterRecord],
    current: QuarterRecord | None,
    metric: str = "all",
) -> dict[str, SparklineSeries]:
    """Series for one metric, or for every universal metric when *metric* is ``"all"``."""
    if metric == "all":
        names = list(UNIVERSAL_METRICS)
    elif metric in UNIVERSAL_METRICS:
        names = [metric]
    else:
        raise ValueError(
            f"Unknown metric '{metric}'. Choose one of: all, {', '.join(UNIVERSAL_METRICS)}"
        )
    return {name: build_series(historical, current, name) for name in names}
