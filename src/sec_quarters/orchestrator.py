"""Check → fetch → extract → validate → store, with a stale-data safety net.

One ExtractionOrchestrator serves one pipeline (metrics or insights). Per call:

    CHECK_CACHE ── hit and filing unchanged ──────────────► RETURN_CACHED
         │
         └─► FETCH_FULL_CONTENT → EXTRACT → VALIDATE ──────► STORE_AND_RETURN
                     any failure ──────────────────────────► FAIL

No lock is taken. Two requests that see the same new filing may both
extract and both write; the last write to the quarter key wins, which is
acceptable because both came from the same filing text.

StaleFallback wraps an orchestrator and turns recoverable failures into the
last known-good quarter, marked stale. Without one it raises NoDataError.
Nothing here ever invents a value to cover for a failure.
"""

from __future__ import annotations

import logging
from typing import Any

from sec_quarters.cache import FilingTracker, QuarterStore
from sec_quarters.change_detector import ChangeDetector
from sec_quarters.errors import (
    RECOVERABLE_ERRORS,
    ExtractionError,
    FetchError,
    NoDataError,
    QuarterCacheError,
)
from sec_quarters.extractor import ExtractionPipeline
from sec_quarters.models import (
    ChangeDecision,
    FilingDocument,
    FilingRef,
    FilingTrackerRecord,
    QueryResult,
    QuarterRecord,
)
from sec_quarters.quarters import filing_date_to_quarter
from sec_quarters.sec_client import is_annual_form

log = logging.getLogger(__name__)


class ExtractionOrchestrator:
    def __init__(
        self,
        source: Any,
        pipeline: ExtractionPipeline,
        quarters: QuarterStore,
        tracker: FilingTracker,
        form_type: str = "10-Q",
    ):
        if is_annual_form(form_type):
            raise ValueError(f"{form_type} filings are not mapped to quarters")
        self.source = source
        self.pipeline = pipeline
        self.quarters = quarters
        self.tracker = tracker
        self.form_type = form_type
        self.detector = ChangeDetector(tracker)

    def run(self, symbol: str, *, force_reprocess: bool = False, refresh: bool = False) -> QueryResult:
        symbol = symbol.upper()

        # CHECK_CACHE
        latest = self._latest_filing(symbol, refresh)
        decision = self._decide(symbol, force_reprocess, latest)
        status = "new" if decision.is_new else "unchanged"

        cached = self.quarters.get(symbol, decision.quarter)
        if cached is not None and not decision.is_new:
            log.info(
                "%s cache hit for %s %s (filing %s unchanged)",
                self.pipeline.name, symbol, decision.quarter, latest.accession_number,
            )
            return QueryResult(
                record=cached,
                filing=latest,
                from_cache=True,
                cache_type="quarter",
                filing_status="unchanged",
            )

        if decision.is_new:
            log.info("New %s filing for %s: %s (%s)", self.form_type, symbol, latest.accession_number, decision.quarter)
        else:
            log.info("No %s record for %s %s, extracting", self.pipeline.name, symbol, decision.quarter)

        try:
            return self._extract_and_store(symbol, latest, refresh, status)
        except QuarterCacheError as exc:
            exc.details.setdefault("symbol", symbol)
            exc.details.setdefault("filing_status", status)
            raise

    # ── steps ─────────────────────────────────────────────────────────

    def _latest_filing(self, symbol: str, refresh: bool) -> FilingRef:
        try:
            return self.source.get_latest_filing(
                symbol, self.form_type, metadata_only=True, use_cache=not refresh,
            )
        except QuarterCacheError:
            raise
        except Exception as exc:
            raise FetchError(f"Filing source failed for {symbol}: {exc}", details={"symbol": symbol}) from exc

    def _decide(self, symbol: str, force_reprocess: bool, latest: FilingRef) -> ChangeDecision:
        try:
            return self.detector.decide(symbol, self.form_type, force_reprocess, latest)
        except ValueError as exc:
            raise FetchError(
                f"Filing {latest.accession_number} has no usable filing date: {exc}",
                details={"symbol": symbol},
            ) from exc

    def _fetch_document(self, symbol: str, refresh: bool) -> FilingDocument:
        try:
            return self.source.get_latest_filing(
                symbol, self.form_type, metadata_only=False, use_cache=not refresh,
            )
        except QuarterCacheError:
            raise
        except Exception as exc:
            raise FetchError(f"Could not fetch filing text for {symbol}: {exc}") from exc

    def _extract(self, text: str, symbol: str) -> dict:
        try:
            return self.pipeline.extract(text, symbol)
        except QuarterCacheError:
            raise
        except Exception as exc:
            raise ExtractionError(f"{self.pipeline.name} extraction failed for {symbol}: {exc}") from exc

    def _extract_and_store(self, symbol: str, latest: FilingRef, refresh: bool, status: str) -> QueryResult:
        # FETCH_FULL_CONTENT
        document = self._fetch_document(symbol, refresh)
        filing = document.filing
        if filing.accession_number != latest.accession_number:
            log.info("Latest filing for %s moved to %s while fetching", symbol, filing.accession_number)
        try:
            quarter = filing_date_to_quarter(filing.filing_date)
        except ValueError as exc:
            raise FetchError(f"Filing {filing.accession_number} has no usable filing date") from exc

        # EXTRACT → VALIDATE
        raw = self._extract(document.full_text, symbol)
        record = self.pipeline.build_record(raw, symbol=symbol, quarter=quarter, filing=filing)

        # STORE_AND_RETURN: two independent writes, neither fatal
        stored = self.quarters.put(symbol, quarter, record)
        tracked = self.tracker.set(symbol, self.form_type, FilingTrackerRecord(
            symbol=symbol,
            form_type=self.form_type,
            accession_number=filing.accession_number,
            filing_date=filing.filing_date,
            quarter=quarter,
        ))
        if not (stored and tracked):
            log.warning(
                "Returning unpersisted %s for %s %s (record stored=%s, tracker stored=%s)",
                self.pipeline.name, symbol, quarter, stored, tracked,
            )

        return QueryResult(
            record=record,
            filing=filing,
            from_cache=False,
            cache_type=None,
            filing_status=status,
            persisted=stored and tracked,
        )


class StaleFallback:
    """Serve the last known-good quarter when fresh extraction fails."""

    def __init__(self, orchestrator: ExtractionOrchestrator, lookback_quarters: int = 8):
        self.orchestrator = orchestrator
        self.lookback_quarters = lookback_quarters

    def run(self, symbol: str, *, force_reprocess: bool = False, refresh: bool = False) -> QueryResult:
        symbol = symbol.upper()
        try:
            return self.orchestrator.run(symbol, force_reprocess=force_reprocess, refresh=refresh)
        except RECOVERABLE_ERRORS as exc:
            stale = self.last_known_good(symbol)
            name = self.orchestrator.pipeline.name
            if stale is None:
                log.error("No %s data for %s to fall back on after %s: %s", name, symbol, exc.code, exc)
                raise NoDataError(
                    f"No {name} data is available for {symbol}: {exc}",
                    details={"symbol": symbol, "cause": exc.code},
                ) from exc

            log.warning("Serving stale %s for %s %s after %s: %s", name, symbol, stale.quarter, exc.code, exc)
            return QueryResult(
                record=stale,
                filing=_filing_from_record(stale, self.orchestrator.form_type),
                from_cache=True,
                cache_type="stale",
                # None when the failure came before the filing was compared
                filing_status=exc.details.get("filing_status"),
                error=str(exc),
            )

    def last_known_good(self, symbol: str) -> QuarterRecord | None:
        """The tracked quarter's record, else the newest stored recent quarter."""
        orchestrator = self.orchestrator
        tracked = orchestrator.tracker.get(symbol, orchestrator.form_type)
        if tracked is not None:
            record = orchestrator.quarters.get(symbol, tracked.quarter)
            if record is not None:
                return record
        records = orchestrator.quarters.get_range(symbol, self.lookback_quarters)
        return records[-1] if records else None


def _filing_from_record(record: QuarterRecord, form_type: str) -> FilingRef | None:
    if not record.accession_number or not record.filing_date:
        return None
    return FilingRef(
        symbol=record.symbol,
        form_type=record.form_type or form_type,
        accession_number=record.accession_number,
        filing_date=record.filing_date,
    )
