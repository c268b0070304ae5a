"""Failure taxonomy for the quarterly filing cache.

FetchError / ExtractionError / ExtractionQuality are recoverable: the stale
fallback may answer with the last known-good quarter instead. StoreError is
never fatal to a request. NoFilingError and NoDataError are terminal.
"""

from __future__ import annotations

from typing import Any


class QuarterCacheError(Exception):
    """Base class for every error raised by this package.

    Attributes:
        code: stable machine-readable error code
        status_code: HTTP status used by the API surface
        details: structured context for logs and responses
    """

    code: str = "QUARTER_CACHE_ERROR"
    status_code: int = 500

    def __init__(self, message: str = "", *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = details or {}


class FetchError(QuarterCacheError):
    """Filing source unreachable or returned no usable metadata."""

    code = "FETCH_ERROR"
    status_code = 502


class ExtractionError(QuarterCacheError):
    """The extraction collaborator call itself failed."""

    code = "EXTRACTION_ERROR"
    status_code = 502


class ExtractionQuality(QuarterCacheError):
    """The collaborator ran but produced a structurally insufficient result."""

    code = "EXTRACTION_QUALITY"
    status_code = 502


class StoreError(QuarterCacheError):
    """A durable store read or write failed."""

    code = "STORE_ERROR"
    status_code = 503


class NoFilingError(QuarterCacheError):
    """No filing identity could be established for the symbol."""

    code = "NO_FILING"
    status_code = 404


class NoDataError(QuarterCacheError):
    """Fresh computation failed and no known-good quarter exists to fall back on."""

    code = "NO_DATA"
    status_code = 503


# Failures the stale fallback is allowed to absorb
RECOVERABLE_ERRORS: tuple[type[QuarterCacheError], ...] = (
    FetchError,
    ExtractionError,
    ExtractionQuality,
)
