"""Pydantic models for filings, quarter records and derived views.

Everything persisted or returned to callers is serialized with camelCase
aliases (``model_dump(by_alias=True)``), matching the records already sitting
in the store from earlier releases.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Filing identity
# ---------------------------------------------------------------------------

class FilingRef(CamelModel):
    """Identity of one real-world filing. Re-derived from the source on every request."""
    symbol: str
    form_type: str
    accession_number: str
    filing_date: str
    primary_document: str | None = None
    cik: str | None = None


class FilingDocument(CamelModel):
    filing: FilingRef
    full_text: str


class FilingTrackerRecord(CamelModel):
    """Pointer to the last successfully processed filing per (symbol, form type)."""
    symbol: str
    form_type: str
    accession_number: str
    filing_date: str
    quarter: str
    updated_at: datetime | None = None


class ChangeDecision(CamelModel):
    is_new: bool
    quarter: str


# ---------------------------------------------------------------------------
# Quarter records
# ---------------------------------------------------------------------------

class MetricPoint(CamelModel):
    # float for current records; a display string such as "$1,500M" in legacy ones
    value: float | str | None = None
    unit: str | None = None
    display: str | None = None
    trend: str | None = None


class Insight(CamelModel):
    category: str
    headline: str
    detail: str
    impact: str
    confidence: float
    source_quote: str | None = None


class Segment(CamelModel):
    name: str
    revenue: str | None = None
    growth_yoy: str | None = Field(default=None, alias="growthYoY")
    key_driver: str | None = None
    status: str | None = None


class QuarterRecord(CamelModel):
    """Permanent per-quarter extraction result, addressed by (symbol, quarter)."""
    quarter: str
    symbol: str
    extracted_at: datetime | None = None
    accession_number: str | None = None
    filing_date: str | None = None
    form_type: str | None = None
    metrics: dict[str, MetricPoint] = {}
    insights: list[Insight] = []
    segments: list[Segment] = []
    extraction_notes: str | None = None
    model: str | None = None
    # written by earlier releases instead of extractedAt
    cached_at: datetime | None = None


# ---------------------------------------------------------------------------
# Derived views
# ---------------------------------------------------------------------------

Trend = Literal["positive", "negative", "neutral"]
CacheType = Literal["quarter", "stale"]
FilingStatus = Literal["new", "unchanged"]


class SeriesPoint(CamelModel):
    quarter: str
    value: float


class SparklineSeries(CamelModel):
    metric: str
    points: list[SeriesPoint] = []
    count: int = 0
    min: float | None = None
    max: float | None = None
    first: float | None = None
    latest: float | None = None
    trend: Trend = "neutral"
    change_percent: float | None = None


class QueryResult(CamelModel):
    """Outcome of one orchestrated request, before it is shaped for a caller."""
    record: QuarterRecord
    filing: FilingRef | None = None
    from_cache: bool = False
    cache_type: CacheType | None = None
    filing_status: FilingStatus | None = None
    error: str | None = None
    persisted: bool = True
