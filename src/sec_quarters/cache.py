"""Quarter store, filing tracker and ephemeral view cache on top of a KeyValueStore.

Key layout (symbols lower-cased):

    {symbol}:{namespace}:{quarter}          permanent quarter record
    {symbol}:filing:latest-{form type}      permanent filing tracker
    {symbol}:sparklines:{metric}            assembled sparklines (TTL)
    {symbol}:job:{name}                     background job progress (TTL)

Reads that hit a StoreError are reported as absent; writes report False.
Neither ever raises to the caller.
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from typing import Any

from pydantic import ValidationError

from sec_quarters.db import KeyValueStore
from sec_quarters.errors import StoreError
from sec_quarters.models import FilingTrackerRecord, QuarterRecord
from sec_quarters.quarters import recent_quarter_keys

log = logging.getLogger(__name__)

METRICS_NAMESPACE = "metrics"
INSIGHTS_NAMESPACE = "insights"


def quarter_key(symbol: str, namespace: str, quarter: str) -> str:
    return f"{symbol.lower()}:{namespace}:{quarter}"


def tracker_key(symbol: str, form_type: str) -> str:
    return f"{symbol.lower()}:filing:latest-{form_type.lower()}"


def sparkline_key(symbol: str, metric: str) -> str:
    return f"{symbol.lower()}:sparklines:{metric}"


def job_key(symbol: str, job: str) -> str:
    return f"{symbol.lower()}:job:{job}"


class QuarterStore:
    """Permanent per-quarter records for one pipeline namespace."""

    def __init__(self, store: KeyValueStore, namespace: str = METRICS_NAMESPACE):
        self.store = store
        self.namespace = namespace

    def get(self, symbol: str, quarter: str) -> QuarterRecord | None:
        key = quarter_key(symbol, self.namespace, quarter)
        try:
            raw = self.store.get(key)
        except StoreError as exc:
            log.warning("Quarter read failed for %s: %s", key, exc)
            return None
        if raw is None:
            return None
        try:
            return QuarterRecord.model_validate_json(raw)
        except ValidationError as exc:
            log.warning("Discarding unreadable quarter record %s: %s", key, exc)
            return None

    def put(self, symbol: str, quarter: str, record: QuarterRecord) -> bool:
        """Write *record* permanently. Returns False when the store rejected it."""
        key = quarter_key(symbol, self.namespace, quarter)
        record = record.model_copy(update={"symbol": symbol.upper(), "quarter": quarter})
        payload = record.model_dump_json(by_alias=True).encode("utf-8")
        try:
            ok = self.store.set(key, payload)
        except StoreError as exc:
            log.warning("Quarter write failed for %s: %s", key, exc)
            return False
        if ok:
            log.info("Stored %s record for %s %s", self.namespace, symbol.upper(), quarter)
        return ok

    def get_range(self, symbol: str, last_n_quarters: int, today: date | None = None) -> list[QuarterRecord]:
        """Stored records for the last N calendar quarters, oldest first.

        Quarters without a record are skipped, so the result may be shorter than N.
        """
        records = []
        for quarter in recent_quarter_keys(last_n_quarters, today=today):
            record = self.get(symbol, quarter)
            if record is not None:
                records.append(record)
        return records


class FilingTracker:
    """Last successfully processed filing per (symbol, form type).

    Shared by every pipeline working on the same symbol, so they agree on
    whether a filing is new. Last write wins.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    def get(self, symbol: str, form_type: str) -> FilingTrackerRecord | None:
        key = tracker_key(symbol, form_type)
        try:
            raw = self.store.get(key)
        except StoreError as exc:
            log.warning("Tracker read failed for %s: %s", key, exc)
            return None
        if raw is None:
            return None
        try:
            return FilingTrackerRecord.model_validate_json(raw)
        except ValidationError as exc:
            log.warning("Discarding unreadable tracker record %s: %s", key, exc)
            return None

    def set(self, symbol: str, form_type: str, record: FilingTrackerRecord) -> bool:
        key = tracker_key(symbol, form_type)
        record = record.model_copy(update={"updated_at": datetime.now(timezone.utc)})
        try:
            ok = self.store.set(key, record.model_dump_json(by_alias=True).encode("utf-8"))
        except StoreError as exc:
            log.warning("Tracker write failed for %s: %s", key, exc)
            return False
        if ok:
            log.info(
                "Updated latest %s tracker for %s: %s (%s)",
                form_type, symbol.upper(), record.accession_number, record.quarter,
            )
        return ok


class ViewCache:
    """Short-lived JSON cache for assembled views; always rebuildable."""

    def __init__(self, store: KeyValueStore, ttl: int):
        self.store = store
        self.ttl = ttl

    def get(self, key: str) -> dict | None:
        try:
            raw = self.store.get(key)
        except StoreError as exc:
            log.debug("View cache read failed for %s: %s", key, exc)
            return None
        if not raw:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            log.debug("Ignoring unreadable view cache entry %s: %s", key, exc)
            return None

    def set(self, key: str, value: dict[str, Any]) -> bool:
        try:
            return self.store.set(key, json.dumps(value, default=str).encode("utf-8"), ttl=self.ttl)
        except StoreError as exc:
            log.debug("View cache write failed for %s: %s", key, exc)
            return False


def cache_stats(
    quarters: QuarterStore,
    tracker: FilingTracker,
    symbol: str,
    form_type: str,
    num_quarters: int = 8,
    today: date | None = None,
) -> dict:
    """Summarize what is cached for *symbol* (for debugging and dashboards)."""
    keys = recent_quarter_keys(num_quarters, today=today)
    cached = [q for q in keys if quarters.get(symbol, q) is not None]
    tracked = tracker.get(symbol, form_type)
    return {
        "symbol": symbol.upper(),
        "historicalQuartersCached": len(cached),
        "totalQuarters": len(keys),
        "quarters": keys,
        "cachedQuarters": cached,
        "hasTrackedFiling": tracked is not None,
        "trackedQuarter": tracked.quarter if tracked else None,
        "available": quarters.store.ping(),
        "backend": quarters.store.name,
    }
