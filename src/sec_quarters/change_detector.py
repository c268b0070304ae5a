"""Decide whether the latest filing needs extraction.

The decision is a pure function of the tracker state and the filing identity;
all writes happen in the orchestrator.
"""

from __future__ import annotations

from sec_quarters.cache import FilingTracker
from sec_quarters.models import ChangeDecision, FilingRef, FilingTrackerRecord
from sec_quarters.quarters import filing_date_to_quarter
from sec_quarters.sec_client import is_annual_form


def detect_change(
    tracked: FilingTrackerRecord | None,
    latest: FilingRef,
    force_reprocess: bool = False,
) -> ChangeDecision:
    """``is_new`` iff forced, nothing tracked yet, or the accession number moved."""
    if is_annual_form(latest.form_type):
        raise ValueError(f"{latest.form_type} filings are not mapped to quarters")

    is_new = (
        force_reprocess
        or tracked is None
        or tracked.accession_number != latest.accession_number
    )
    return ChangeDecision(is_new=is_new, quarter=filing_date_to_quarter(latest.filing_date))


class ChangeDetector:
    """Reads the shared tracker and applies :func:`detect_change`."""

    def __init__(self, tracker: FilingTracker):
        self.tracker = tracker

    def decide(
        self,
        symbol: str,
        form_type: str,
        force_reprocess: bool,
        latest: FilingRef,
    ) -> ChangeDecision:
        return detect_change(self.tracker.get(symbol, form_type), latest, force_reprocess)
