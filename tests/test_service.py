"""Tests for the service facade: response shapes, sparklines, backfill."""

import pytest

from sec_quarters.cache import sparkline_key
from sec_quarters.errors import ExtractionQuality, NoDataError
from sec_quarters.models import FilingTrackerRecord
from sec_quarters.quarters import recent_quarter_keys

from conftest import filing_date_for, metrics_reply


# ── metrics / insights ────────────────────────────────────────────────

def test_get_metrics_response(service, source):
    source.add("0001", "2025-05-10")
    result = service.get_metrics("acme")

    assert result["status"] == "success"
    assert result["symbol"] == "ACME"
    assert result["quarter"] == "2025-Q1"
    assert result["filing"]["accessionNumber"] == "0001"
    assert result["universalMetrics"]["revenue"]["value"] == 1500.0
    assert result["fromCache"] is False
    assert result["cacheType"] is None
    assert result["filingStatus"] == "new"
    assert result["error"] is None
    assert result["lastUpdated"] is not None

    cached = service.get_metrics("ACME")
    assert cached["fromCache"] is True
    assert cached["cacheType"] == "quarter"
    assert cached["filingStatus"] == "unchanged"
    assert cached["universalMetrics"] == result["universalMetrics"]


def test_get_insights_response(service, source):
    source.add("0001", "2025-05-10")
    result = service.get_insights("ACME")

    assert [i["category"] for i in result["companyInsights"]] == ["growth-driver", "margin-impact"]
    assert result["companyInsights"][0]["sourceQuote"] == "Cloud revenue increased 30%"
    assert result["segments"][0]["growthYoY"] == "+30%"


def test_metrics_stale_response(service, source, metrics_extractor):
    source.add("0001", "2025-05-10")
    service.get_metrics("ACME")
    metrics_extractor.error = ExtractionQuality("too sparse")

    result = service.get_metrics("ACME", force_reprocess=True)
    assert result["fromCache"] is True
    assert result["cacheType"] == "stale"
    assert result["error"] == "too sparse"


def test_metrics_without_any_data(service, source, metrics_extractor):
    source.add("0001", "2025-05-10")
    metrics_extractor.error = ExtractionQuality("too sparse")
    with pytest.raises(NoDataError):
        service.get_metrics("ACME")


# ── sparklines ────────────────────────────────────────────────────────

def _seed_history(service, source, make_record):
    q0, q1, q2 = recent_quarter_keys(3)
    service.metrics_quarters.put("ACME", q0, make_record(q0, revenue=100.0))
    service.metrics_quarters.put("ACME", q1, make_record(q1, revenue="$120M"))
    source.add("0003", filing_date_for(q2))
    return q0, q1, q2


def test_sparklines_combine_history_and_current(service, source, metrics_extractor, make_record):
    metrics_extractor.output = metrics_reply(revenue=80.0)
    q0, q1, q2 = _seed_history(service, source, make_record)

    result = service.get_sparklines("ACME", metric="revenue")
    revenue = result["sparklines"]["revenue"]
    assert [p["quarter"] for p in revenue["points"]] == [q0, q1, q2]
    assert [p["value"] for p in revenue["points"]] == [100.0, 120.0, 80.0]
    assert revenue["changePercent"] == -20.0
    assert revenue["trend"] == "negative"
    assert result["currentQuarter"] == q2
    assert result["filingStatus"] == "new"
    assert result["viewCached"] is False


def test_sparklines_view_cache_and_refresh(service, source, metrics_extractor, make_record):
    _seed_history(service, source, make_record)
    service.get_sparklines("ACME")
    calls_before = len(source.calls)

    cached = service.get_sparklines("ACME")
    assert cached["viewCached"] is True
    assert len(source.calls) == calls_before

    refreshed = service.get_sparklines("ACME", refresh=True)
    assert refreshed["viewCached"] is False
    assert ("latest", "ACME", True, False) in source.calls
    # refresh never forces re-extraction of an unchanged filing
    assert metrics_extractor.calls == 1
    assert refreshed["cacheType"] == "quarter"


def test_sparklines_all_metrics(service, source, make_record):
    _seed_history(service, source, make_record)
    result = service.get_sparklines("ACME")
    assert len(result["sparklines"]) == 8
    # history only carries revenue; the current quarter fills the rest
    assert result["sparklines"]["netIncome"]["count"] == 1


def test_sparklines_rebuild_over_unreadable_view_cache(service, store, source, make_record):
    _seed_history(service, source, make_record)
    store.set(sparkline_key("ACME", "all"), b"not json")

    result = service.get_sparklines("ACME")
    assert result["viewCached"] is False
    assert len(result["sparklines"]) == 8
    assert service.get_sparklines("ACME")["viewCached"] is True


def test_sparklines_unknown_metric(service, source):
    with pytest.raises(ValueError):
        service.get_sparklines("ACME", metric="ebitda")
    assert source.calls == []


def test_stale_sparklines_are_not_view_cached(service, source, metrics_extractor, make_record):
    _seed_history(service, source, make_record)
    metrics_extractor.error = RuntimeError("boom")

    stale = service.get_sparklines("ACME")
    assert stale["cacheType"] == "stale"
    assert service.get_sparklines("ACME")["viewCached"] is False


# ── backfill ──────────────────────────────────────────────────────────

def _three_filings(source):
    source.add("0001", "2025-05-10")
    source.add("0002", "2025-08-07")
    source.add("0003", "2025-11-05")


def test_backfill_stores_missing_quarters(service, source, make_record):
    _three_filings(source)
    service.metrics_quarters.put("ACME", "2025-Q2", make_record("2025-Q2", revenue=1.0))

    summary = service.backfill("acme", quarters=3)
    assert [e["quarter"] for e in summary["processed"]] == ["2025-Q3", "2025-Q1"]
    assert [e["quarter"] for e in summary["skipped"]] == ["2025-Q2"]
    assert summary["failed"] == []
    assert summary["trackerUpdated"] is True
    assert service.tracker.get("ACME", "10-Q").accession_number == "0003"
    assert service.metrics_quarters.get("ACME", "2025-Q1") is not None
    assert service.backfill_status("ACME")["status"] == "complete"


def test_backfill_dry_run_writes_nothing(service, source, metrics_extractor):
    _three_filings(source)
    summary = service.backfill("ACME", quarters=3, dry_run=True)

    assert len(summary["planned"]) == 3
    assert summary["processed"] == []
    assert metrics_extractor.calls == 0
    assert service.metrics_quarters.get("ACME", "2025-Q1") is None
    assert service.tracker.get("ACME", "10-Q") is None


def test_backfill_records_failures_and_continues(service, source, metrics_extractor):
    _three_filings(source)

    def reply(text):
        if "0002" in text:
            raise RuntimeError("rate limited")
        return metrics_reply()

    metrics_extractor.output = reply
    summary = service.backfill("ACME", quarters=3)

    assert [e["accessionNumber"] for e in summary["failed"]] == ["0002"]
    assert "rate limited" in summary["failed"][0]["error"]
    assert len(summary["processed"]) == 2


def test_backfill_never_moves_tracker_backwards(service, source):
    _three_filings(source)
    service.tracker.set("ACME", "10-Q", FilingTrackerRecord(
        symbol="ACME", form_type="10-Q", accession_number="0009", filing_date="2026-02-01", quarter="2025-Q4",
    ))
    summary = service.backfill("ACME", quarters=3)

    assert summary["trackerUpdated"] is False
    assert service.tracker.get("ACME", "10-Q").accession_number == "0009"


def test_backfill_force_reextracts(service, source, metrics_extractor, make_record):
    _three_filings(source)
    service.metrics_quarters.put("ACME", "2025-Q2", make_record("2025-Q2", revenue=1.0))
    summary = service.backfill("ACME", quarters=3, force=True)

    assert summary["skipped"] == []
    assert metrics_extractor.calls == 3
    assert service.metrics_quarters.get("ACME", "2025-Q2").metrics["revenue"].value == 1500.0


# ── diagnostics ───────────────────────────────────────────────────────

def test_cache_stats_and_health(service, source, make_record):
    q0, q1, _ = _seed_history(service, source, make_record)
    service.get_insights("ACME")

    stats = service.cache_stats("ACME")
    assert stats["historicalQuartersCached"] == 2
    assert stats["cachedQuarters"] == [q0, q1]
    assert stats["insightQuartersCached"] == 1
    assert stats["hasTrackedFiling"] is True

    health = service.health()
    assert health["status"] == "ok"
    assert health["store"] == "memory"
