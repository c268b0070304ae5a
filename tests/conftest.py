"""Shared fakes: filing source, extractor, Mongo collection, flaky store."""

from __future__ import annotations

import copy

import pytest
from pymongo.errors import PyMongoError

from sec_quarters.db import InMemoryStore
from sec_quarters.errors import NoFilingError, StoreError
from sec_quarters.extractor import InsightsPipeline, MetricsPipeline
from sec_quarters.models import FilingDocument, FilingRef, MetricPoint, QuarterRecord
from sec_quarters.quarters import parse_quarter
from sec_quarters.service import QuarterlyDataService
from sec_quarters.sparklines import UNIVERSAL_METRICS


class FakeFilingSource:
    """Filing source with an in-memory filing list (newest first)."""

    def __init__(self):
        self.filings: list[FilingRef] = []
        self.texts: dict[str, str] = {}
        self.error: Exception | None = None
        self.text_error: Exception | None = None
        self.calls: list[tuple] = []

    def add(self, accession: str, filing_date: str, symbol: str = "ACME", form_type: str = "10-Q") -> FilingRef:
        ref = FilingRef(
            symbol=symbol,
            form_type=form_type,
            accession_number=accession,
            filing_date=filing_date,
            primary_document=f"{accession}.htm",
        )
        self.filings.append(ref)
        self.filings.sort(key=lambda f: f.filing_date, reverse=True)
        return ref

    def _matching(self, symbol: str, form_type: str) -> list[FilingRef]:
        if self.error is not None:
            raise self.error
        return [f for f in self.filings if f.symbol == symbol.upper() and f.form_type == form_type]

    def list_filings(self, symbol, form_type="10-Q", limit=8, use_cache=True):
        self.calls.append(("list", symbol, use_cache))
        return self._matching(symbol, form_type)[:limit]

    def get_latest_filing(self, symbol, form_type="10-Q", metadata_only=True, use_cache=True):
        self.calls.append(("latest", symbol, metadata_only, use_cache))
        filings = self._matching(symbol, form_type)
        if not filings:
            raise NoFilingError(f"No {form_type} filings found for {symbol}", details={"symbol": symbol})
        if metadata_only:
            return filings[0]
        return FilingDocument(filing=filings[0], full_text=self.get_filing_text(filings[0]))

    def get_filing_text(self, filing):
        self.calls.append(("text", filing.accession_number))
        if self.text_error is not None:
            raise self.text_error
        return self.texts.get(filing.accession_number, f"10-Q text for {filing.accession_number}")

    def text_fetches(self) -> int:
        return sum(1 for call in self.calls if call[0] == "text")


class FakeExtractor:
    """Extraction collaborator returning a fixed (or text-dependent) reply."""

    model = "fake-model"

    def __init__(self, output=None):
        self.output = output
        self.error: Exception | None = None
        self.calls = 0

    def extract(self, full_text, symbol):
        self.calls += 1
        if self.error is not None:
            raise self.error
        if callable(self.output):
            return self.output(full_text)
        return copy.deepcopy(self.output)


def metrics_reply(**overrides) -> dict:
    values = {
        "revenue": 1500.0,
        "grossMarginPct": 35.0,
        "operatingMarginPct": 8.5,
        "operatingIncome": 127.5,
        "operatingCashFlow": 150.0,
        "rndRatioPct": 8.2,
        "netIncome": 75.0,
        "epsDiluted": 0.5,
    }
    values.update(overrides)
    return {
        "quarterYear": "Q1 2025",
        "metrics": {
            name: {"value": value, "unit": "millions", "display": None if value is None else str(value)}
            for name, value in values.items()
        },
        "extractionNotes": "none",
    }


def insights_reply() -> dict:
    return {
        "companyInsights": [
            {
                "category": "growth-driver",
                "headline": "Cloud revenue accelerated",
                "detail": "Cloud grew 30% year over year on new enterprise deals.",
                "impact": "positive",
                "confidence": 0.9,
                "sourceQuote": "Cloud revenue increased 30%",
            },
            {
                "category": "financial-performance",
                "headline": "Gross margin expanded",
                "detail": "Mix shift toward software lifted gross margin.",
                "impact": "positive",
                "confidence": 0.7,
            },
        ],
        "segments": [
            {"name": "Cloud", "revenue": "$900M", "growthYoY": "+30%", "keyDriver": "Enterprise", "status": "growing"},
        ],
    }


def filing_date_for(quarter: str) -> str:
    """A filing date that maps onto *quarter*."""
    year, q = parse_quarter(quarter)
    if q == 4:
        return f"{year + 1}-02-10"
    return f"{year}-{3 * q + 2:02d}-10"


class FakeCollection:
    """Just enough of a pymongo Collection for MongoStore."""

    def __init__(self):
        self.docs: dict[str, dict] = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise PyMongoError("connection refused")

    def find_one(self, query):
        self._check()
        doc = self.docs.get(query["_id"])
        return dict(doc) if doc is not None else None

    def replace_one(self, query, doc, upsert=False):
        self._check()
        if upsert or query["_id"] in self.docs:
            self.docs[query["_id"]] = dict(doc)

    def delete_one(self, query):
        self._check()
        self.docs.pop(query["_id"], None)


class FlakyStore(InMemoryStore):
    """In-memory store whose writes (or reads) can be switched to fail."""

    def __init__(self):
        super().__init__()
        self.fail_writes = False
        self.fail_reads = False

    def get(self, key):
        if self.fail_reads:
            raise StoreError(f"read failed for {key}")
        return super().get(key)

    def set(self, key, value, ttl=None):
        if self.fail_writes:
            raise StoreError(f"write failed for {key}")
        return super().set(key, value, ttl)


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def source():
    return FakeFilingSource()


@pytest.fixture
def metrics_extractor():
    return FakeExtractor(metrics_reply())


@pytest.fixture
def insights_extractor():
    return FakeExtractor(insights_reply())


@pytest.fixture
def service(store, source, metrics_extractor, insights_extractor):
    return QuarterlyDataService(
        store=store,
        source=source,
        pipelines={
            "metrics": MetricsPipeline(metrics_extractor),
            "insights": InsightsPipeline(insights_extractor),
        },
        form_type="10-Q",
        sparkline_quarters=8,
        sparkline_ttl=3600,
    )


@pytest.fixture
def make_record():
    """Factory for metrics QuarterRecords: ``make_record("2025-Q1", revenue=100)``."""

    def _make(quarter: str, symbol: str = "ACME", **metrics) -> QuarterRecord:
        return QuarterRecord(
            quarter=quarter,
            symbol=symbol,
            accession_number=f"acc-{quarter}",
            filing_date=filing_date_for(quarter),
            form_type="10-Q",
            metrics={
                name: MetricPoint(value=metrics[name]) for name in UNIVERSAL_METRICS if name in metrics
            },
        )

    return _make
