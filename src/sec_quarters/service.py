"""Service facade shared by the HTTP API, the MCP server and the CLI.

Wires one key-value store into the quarter stores and the shared filing
tracker, builds an orchestrator + stale fallback per pipeline, and shapes
results into the camelCase dicts every surface returns.

Data flow for a metrics request:
  1. SEC submissions (metadata only) → latest 10-Q identity
  2. ChangeDetector vs. the shared filing tracker → new / unchanged
  3. unchanged + stored quarter → answer from the quarter store
  4. otherwise fetch text → Claude extraction → validate → store
  5. any recoverable failure → last known-good quarter, marked stale
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sec_quarters.cache import (
    FilingTracker,
    QuarterStore,
    ViewCache,
    cache_stats,
    job_key,
    sparkline_key,
)
from sec_quarters.config import get_config
from sec_quarters.db import KeyValueStore, get_store
from sec_quarters.extractor import ExtractionPipeline, default_pipelines
from sec_quarters.models import FilingRef, FilingTrackerRecord, QueryResult, QuarterRecord
from sec_quarters.orchestrator import ExtractionOrchestrator, StaleFallback
from sec_quarters.quarters import filing_date_to_quarter
from sec_quarters.sec_client import get_sec_client
from sec_quarters.sparklines import UNIVERSAL_METRICS, build_sparklines

log = logging.getLogger(__name__)

# Backfill progress is kept for a day
JOB_TTL = 86_400


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _dump(model: Any) -> Any:
    return model.model_dump(mode="json", by_alias=True) if model is not None else None


class QuarterlyDataService:
    """Everything a query surface needs, behind one object."""

    def __init__(
        self,
        store: KeyValueStore | None = None,
        source: Any = None,
        pipelines: dict[str, ExtractionPipeline] | None = None,
        *,
        form_type: str | None = None,
        sparkline_quarters: int | None = None,
        sparkline_ttl: int | None = None,
    ):
        config = get_config()
        self.store = store if store is not None else get_store()
        self.source = source if source is not None else get_sec_client()
        self.pipelines = pipelines if pipelines is not None else default_pipelines()
        self.form_type = form_type or config.form_type
        self.sparkline_quarters = sparkline_quarters or config.sparkline_quarters

        self.tracker = FilingTracker(self.store)
        self.views = ViewCache(self.store, sparkline_ttl or config.sparkline_cache_ttl)
        self.jobs = ViewCache(self.store, JOB_TTL)

        metrics = self.pipelines["metrics"]
        insights = self.pipelines["insights"]
        self.metrics_quarters = QuarterStore(self.store, metrics.namespace)
        self.insights_quarters = QuarterStore(self.store, insights.namespace)
        self.metrics = StaleFallback(
            ExtractionOrchestrator(self.source, metrics, self.metrics_quarters, self.tracker, self.form_type),
            lookback_quarters=self.sparkline_quarters,
        )
        self.insights = StaleFallback(
            ExtractionOrchestrator(self.source, insights, self.insights_quarters, self.tracker, self.form_type),
            lookback_quarters=self.sparkline_quarters,
        )

    # ═══════════════════════════════════════════════════════════════════
    #  Per-quarter views
    # ═══════════════════════════════════════════════════════════════════

    def get_metrics(self, symbol: str, refresh: bool = False, force_reprocess: bool = False) -> dict:
        """Universal metrics for the latest quarter of *symbol*."""
        result = self.metrics.run(symbol, force_reprocess=force_reprocess, refresh=refresh)
        record = result.record
        return self._response(result, {
            "universalMetrics": {name: _dump(point) for name, point in record.metrics.items()},
            "extractionNotes": record.extraction_notes,
        })

    def get_insights(self, symbol: str, refresh: bool = False, force_reprocess: bool = False) -> dict:
        """Company insights and segment notes for the latest quarter of *symbol*."""
        result = self.insights.run(symbol, force_reprocess=force_reprocess, refresh=refresh)
        record = result.record
        return self._response(result, {
            "companyInsights": [_dump(i) for i in record.insights],
            "segments": [_dump(s) for s in record.segments],
        })

    def _response(self, result: QueryResult, payload: dict) -> dict:
        record = result.record
        updated = record.extracted_at or record.cached_at
        return {
            "status": "success",
            "symbol": record.symbol,
            "quarter": record.quarter,
            "filing": _dump(result.filing),
            **payload,
            "fromCache": result.from_cache,
            "cacheType": result.cache_type,
            "filingStatus": result.filing_status,
            "error": result.error,
            "persisted": result.persisted,
            "model": record.model,
            "lastUpdated": updated.isoformat() if updated else None,
        }

    # ═══════════════════════════════════════════════════════════════════
    #  Sparklines
    # ═══════════════════════════════════════════════════════════════════

    def get_sparklines(self, symbol: str, metric: str = "all", refresh: bool = False) -> dict:
        """Multi-quarter series for one metric (or all of them).

        Stored quarters for the last ``sparkline_quarters`` calendar quarters,
        plus the latest quarter served by the metrics pipeline when it is not
        stored yet. The assembled result is cached briefly; *refresh* skips
        that cache and the filing metadata cache, but never forces extraction.
        """
        if metric != "all" and metric not in UNIVERSAL_METRICS:
            raise ValueError(
                f"Unknown metric '{metric}'. Choose one of: all, {', '.join(UNIVERSAL_METRICS)}"
            )
        symbol = symbol.upper()
        key = sparkline_key(symbol, metric)

        if not refresh:
            cached = self.views.get(key)
            if cached is not None:
                log.info("Sparkline view cache hit for %s (%s)", symbol, metric)
                cached["viewCached"] = True
                return cached

        historical = self.metrics_quarters.get_range(symbol, self.sparkline_quarters)
        current = self.metrics.run(symbol, refresh=refresh)
        series = build_sparklines(historical, current.record, metric)

        response = {
            "status": "success",
            "symbol": symbol,
            "metric": metric,
            "quartersRequested": self.sparkline_quarters,
            "currentQuarter": current.record.quarter,
            "sparklines": {name: _dump(s) for name, s in series.items()},
            "fromCache": current.from_cache,
            "cacheType": current.cache_type,
            "filingStatus": current.filing_status,
            "error": current.error,
            "viewCached": False,
            "generatedAt": _now_iso(),
        }
        # Stale answers are not pinned for the whole TTL
        if current.cache_type != "stale":
            self.views.set(key, response)
        return response

    # ═══════════════════════════════════════════════════════════════════
    #  Backfill (runs as a background task from the API)
    # ═══════════════════════════════════════════════════════════════════

    def backfill(self, symbol: str, quarters: int = 8, dry_run: bool = False, force: bool = False) -> dict:
        """Extract and permanently store metrics for the last *quarters* filings.

        Quarters already stored are skipped unless *force*. A failure on one
        filing is recorded and the walk continues. The filing tracker only
        moves forward: it is set when the newest processed filing is newer
        than the one it points at.
        """
        symbol = symbol.upper()
        pipeline = self.metrics.orchestrator.pipeline
        summary: dict[str, Any] = {
            "symbol": symbol,
            "formType": self.form_type,
            "quartersRequested": quarters,
            "dryRun": dry_run,
            "processed": [],
            "skipped": [],
            "planned": [],
            "failed": [],
            "trackerUpdated": False,
        }

        self._set_job(symbol, "processing", 0, 0, "Listing filings")
        filings = self.source.list_filings(symbol, self.form_type, limit=quarters, use_cache=False)
        total = len(filings)
        log.info("Backfilling %d %s filings for %s%s", total, self.form_type, symbol, " (dry run)" if dry_run else "")

        newest: tuple[FilingRef, str] | None = None
        for idx, filing in enumerate(filings):
            self._set_job(symbol, "processing", idx + 1, total, f"{filing.form_type} {filing.accession_number}")
            entry = {"accessionNumber": filing.accession_number, "filingDate": filing.filing_date}
            try:
                quarter = filing_date_to_quarter(filing.filing_date)
                entry["quarter"] = quarter

                if not force and self.metrics_quarters.get(symbol, quarter) is not None:
                    summary["skipped"].append(entry)
                    continue
                if dry_run:
                    summary["planned"].append(entry)
                    continue

                record = self._extract_filing(pipeline, symbol, quarter, filing)
                entry["persisted"] = self.metrics_quarters.put(symbol, quarter, record)
                summary["processed"].append(entry)
                if newest is None or filing.filing_date > newest[0].filing_date:
                    newest = (filing, quarter)
            except Exception as exc:
                log.warning("Backfill failed for %s %s: %s", symbol, filing.accession_number, exc)
                entry["error"] = str(exc)
                summary["failed"].append(entry)

        if newest is not None:
            summary["trackerUpdated"] = self._advance_tracker(symbol, *newest)

        self._set_job(symbol, "complete", total, total, "Done")
        log.info(
            "Backfill for %s complete: %d processed, %d skipped, %d planned, %d failed",
            symbol, len(summary["processed"]), len(summary["skipped"]),
            len(summary["planned"]), len(summary["failed"]),
        )
        return summary

    def _extract_filing(self, pipeline: ExtractionPipeline, symbol: str, quarter: str, filing: FilingRef) -> QuarterRecord:
        text = self.source.get_filing_text(filing)
        raw = pipeline.extract(text, symbol)
        return pipeline.build_record(raw, symbol=symbol, quarter=quarter, filing=filing)

    def _advance_tracker(self, symbol: str, filing: FilingRef, quarter: str) -> bool:
        tracked = self.tracker.get(symbol, self.form_type)
        if tracked is not None and tracked.filing_date >= filing.filing_date:
            return False
        return self.tracker.set(symbol, self.form_type, FilingTrackerRecord(
            symbol=symbol,
            form_type=self.form_type,
            accession_number=filing.accession_number,
            filing_date=filing.filing_date,
            quarter=quarter,
        ))

    def _set_job(self, symbol: str, status: str, progress: int, total: int, detail: str = "") -> None:
        self.jobs.set(job_key(symbol, "backfill"), {
            "symbol": symbol,
            "status": status,
            "progress": progress,
            "total": total,
            "detail": detail,
            "updatedAt": _now_iso(),
        })

    def backfill_status(self, symbol: str) -> dict:
        """Progress of the most recent backfill for *symbol*."""
        return self.jobs.get(job_key(symbol, "backfill")) or {"symbol": symbol.upper(), "status": "none"}

    def fail_job(self, symbol: str, detail: str) -> None:
        self._set_job(symbol.upper(), "error", 0, 0, detail)

    # ═══════════════════════════════════════════════════════════════════
    #  Diagnostics
    # ═══════════════════════════════════════════════════════════════════

    def cache_stats(self, symbol: str) -> dict:
        stats = cache_stats(
            self.metrics_quarters, self.tracker, symbol, self.form_type, self.sparkline_quarters,
        )
        stats["insightQuartersCached"] = len(
            self.insights_quarters.get_range(symbol, self.sparkline_quarters)
        )
        return stats

    def health(self) -> dict:
        available = self.store.ping()
        return {
            "status": "ok" if available else "degraded",
            "store": self.store.name,
            "storeAvailable": available,
            "formType": self.form_type,
        }


_service: QuarterlyDataService | None = None


def get_service() -> QuarterlyDataService:
    """Get or create the shared QuarterlyDataService singleton."""
    global _service
    if _service is None:
        _service = QuarterlyDataService()
    return _service
