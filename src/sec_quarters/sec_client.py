"""Direct SEC EDGAR API client — the filing source.

Uses only public SEC endpoints (no API key needed, just User-Agent header):
  - company_tickers.json        — ticker→CIK resolution
  - submissions/CIK{cik}.json   — company filing list (metadata only, cheap)
  - Archives/edgar/data/{cik}/{acc}/{doc}  — filing document HTML/text

Rate limited to 8 req/sec per SEC guidelines. The tickers map and the
submissions JSON are cached in memory for a short time; callers that need
the freshest filing list pass ``use_cache=False``.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from typing import Any

import requests
from bs4 import BeautifulSoup

from sec_quarters.errors import FetchError, NoFilingError
from sec_quarters.models import FilingDocument, FilingRef

log = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════
#  Constants
# ═══════════════════════════════════════════════════════════════════════════

SEC_BASE = "https://www.sec.gov"
DATA_BASE = "https://data.sec.gov"
TICKERS_URL = f"{SEC_BASE}/files/company_tickers.json"
SUBMISSIONS_URL = f"{DATA_BASE}/submissions/CIK{{cik}}.json"
DOCUMENT_URL = f"{SEC_BASE}/Archives/edgar/data/{{cik}}/{{acc}}/{{doc}}"

# SEC requires a descriptive User-Agent with contact email
DEFAULT_USER_AGENT = "SEC-Quarters sec-quarters@example.com"

# Rate limiting: SEC allows up to 10 req/s; we use 8 to stay safe
MAX_REQUESTS_PER_SECOND = 8.0
MIN_REQUEST_INTERVAL = 1.0 / MAX_REQUESTS_PER_SECOND

# Cache TTLs (seconds)
TICKERS_CACHE_TTL = 1800      # 30 minutes for ticker→CIK mapping
SUBMISSIONS_CACHE_TTL = 120   # 2 minutes for submissions/filings list

DEFAULT_MAX_CHARS = 300_000

_ANNUAL_FORMS = ("10-K", "20-F", "10-K/A", "20-F/A")


def is_annual_form(form_type: str) -> bool:
    """Check if a form type is an annual filing (10-K or 20-F)."""
    return form_type.upper() in _ANNUAL_FORMS


# ═══════════════════════════════════════════════════════════════════════════
#  Cache helper
# ═══════════════════════════════════════════════════════════════════════════

class _CacheEntry:
    """Simple timestamped cache entry."""
    __slots__ = ("data", "timestamp")

    def __init__(self, data: Any):
        self.data = data
        self.timestamp = time.time()

    def expired(self, ttl: float) -> bool:
        return (time.time() - self.timestamp) > ttl


# ═══════════════════════════════════════════════════════════════════════════
#  SEC EDGAR Client
# ═══════════════════════════════════════════════════════════════════════════

class SECClient:
    """HTTP client for SEC EDGAR public APIs.

    Thread-safe with rate limiting and in-memory caching.
    """

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        max_chars: int = DEFAULT_MAX_CHARS,
        submissions_ttl: float = SUBMISSIONS_CACHE_TTL,
    ):
        self.user_agent = user_agent
        self.max_chars = max_chars
        self.submissions_ttl = submissions_ttl
        self.headers = {
            "User-Agent": user_agent,
            "Accept-Encoding": "gzip, deflate",
        }
        # Rate limiter state
        self._last_request_time = 0.0
        self._rate_lock = threading.Lock()
        # Caches
        self._tickers_cache: _CacheEntry | None = None
        self._submissions_cache: dict[str, _CacheEntry] = {}

    # ── Rate-limited HTTP request ─────────────────────────────────────

    def _request(self, url: str, timeout: int = 30, retries: int = 2) -> requests.Response:
        """Make a GET request with rate limiting and automatic retry.

        Retries on 429 (rate-limit), 500/502/503/504 (server errors),
        and connection errors. Anything left over is raised as-is.
        """
        last_exc: Exception | None = None
        for attempt in range(1 + retries):
            with self._rate_lock:
                elapsed = time.time() - self._last_request_time
                if elapsed < MIN_REQUEST_INTERVAL:
                    time.sleep(MIN_REQUEST_INTERVAL - elapsed)
                self._last_request_time = time.time()

            try:
                resp = requests.get(url, headers=self.headers, timeout=timeout)
                if resp.status_code == 429 and attempt < retries:
                    wait = min(2 ** attempt, 10)
                    log.warning("SEC rate-limited (429), retrying in %ds…", wait)
                    time.sleep(wait)
                    continue
                if resp.status_code in (500, 502, 503, 504) and attempt < retries:
                    wait = min(2 ** attempt, 8)
                    log.warning("SEC %d error, retrying in %ds…", resp.status_code, wait)
                    time.sleep(wait)
                    continue
                resp.raise_for_status()
                return resp
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as exc:
                last_exc = exc
                if attempt < retries:
                    wait = min(2 ** attempt, 8)
                    log.warning("Request to SEC failed, retrying in %ds: %s", wait, exc)
                    time.sleep(wait)
                    continue
                raise

        if last_exc:
            raise last_exc
        raise requests.exceptions.ConnectionError(f"Failed after {retries + 1} attempts: {url}")

    def _request_json(self, url: str, timeout: int = 30) -> dict:
        """GET request that returns parsed JSON."""
        return self._request(url, timeout=timeout).json()

    # ── Ticker → CIK resolution ──────────────────────────────────────

    def _get_tickers_map(self) -> dict[str, str]:
        """Uppercase ticker → zero-padded CIK, cached for TICKERS_CACHE_TTL."""
        if self._tickers_cache and not self._tickers_cache.expired(TICKERS_CACHE_TTL):
            return self._tickers_cache.data

        log.info("Fetching SEC company_tickers.json (cached for %ds)", TICKERS_CACHE_TTL)
        try:
            raw = self._request_json(TICKERS_URL)
        except (requests.exceptions.RequestException, ValueError) as exc:
            raise FetchError(f"Could not load SEC tickers list: {exc}") from exc

        mapping: dict[str, str] = {}
        for entry in raw.values():
            ticker = str(entry.get("ticker", "")).upper()
            cik = str(entry.get("cik_str", ""))
            if ticker and cik:
                mapping[ticker] = cik.zfill(10)

        self._tickers_cache = _CacheEntry(mapping)
        return mapping

    def resolve_cik(self, ticker_or_cik: str) -> str:
        """Resolve a ticker symbol or CIK number to a zero-padded CIK string.

        Accepts: "AAPL", "320193", "0000320193"
        Returns: "0000320193"
        """
        clean = ticker_or_cik.strip().upper()
        if clean.startswith("CIK"):
            clean = clean[3:].lstrip("0") or "0"
        if clean.isdigit():
            return clean.zfill(10)

        cik = self._get_tickers_map().get(clean)
        if cik is None:
            raise NoFilingError(
                f"Could not resolve '{ticker_or_cik}' to a CIK number",
                details={"symbol": ticker_or_cik},
            )
        return cik

    # ── Filing list ───────────────────────────────────────────────────

    def _get_submissions(self, cik: str, use_cache: bool = True) -> dict:
        """Fetch (and cache) the submissions JSON for a company."""
        cik_padded = cik.zfill(10)

        cached = self._submissions_cache.get(cik_padded)
        if use_cache and cached and not cached.expired(self.submissions_ttl):
            return cached.data

        url = SUBMISSIONS_URL.format(cik=cik_padded)
        try:
            data = self._request_json(url)
        except requests.exceptions.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else 0
            if status == 404:
                raise NoFilingError(f"SEC has no submissions for CIK {cik_padded}") from exc
            raise FetchError(f"Submissions fetch failed for CIK {cik_padded} (HTTP {status})") from exc
        except (requests.exceptions.RequestException, ValueError) as exc:
            raise FetchError(f"Submissions fetch failed for CIK {cik_padded}: {exc}") from exc

        self._submissions_cache[cik_padded] = _CacheEntry(data)
        return data

    def list_filings(
        self,
        symbol: str,
        form_type: str = "10-Q",
        limit: int = 8,
        use_cache: bool = True,
    ) -> list[FilingRef]:
        """Filings of *form_type* for *symbol*, most recent first."""
        cik = self.resolve_cik(symbol)
        data = self._get_submissions(cik, use_cache=use_cache)

        # The submissions response has filings in columnar format
        recent = data.get("filings", {}).get("recent", {})
        accessions = recent.get("accessionNumber", [])
        forms = recent.get("form", [])
        dates = recent.get("filingDate", [])
        primary_docs = recent.get("primaryDocument", [])

        results: list[FilingRef] = []
        for i, accession in enumerate(accessions):
            form = forms[i] if i < len(forms) else ""
            if form != form_type:
                continue
            filing_date = dates[i] if i < len(dates) else ""
            if not accession or not filing_date:
                continue
            results.append(FilingRef(
                symbol=symbol.upper(),
                form_type=form,
                accession_number=accession,
                filing_date=filing_date,
                primary_document=primary_docs[i] if i < len(primary_docs) else None,
                cik=cik,
            ))

        results.sort(key=lambda f: f.filing_date, reverse=True)
        return results[:limit]

    def get_latest_filing(
        self,
        symbol: str,
        form_type: str = "10-Q",
        metadata_only: bool = True,
        use_cache: bool = True,
    ) -> FilingRef | FilingDocument:
        """Identity of the newest *form_type* filing, plus its text unless *metadata_only*.

        The metadata path costs one (usually cached) submissions lookup; the
        document body is only downloaded when asked for.
        """
        filings = self.list_filings(symbol, form_type=form_type, limit=1, use_cache=use_cache)
        if not filings:
            raise NoFilingError(
                f"No {form_type} filings found for {symbol.upper()}",
                details={"symbol": symbol.upper(), "form_type": form_type},
            )
        latest = filings[0]
        if metadata_only:
            return latest
        return FilingDocument(filing=latest, full_text=self.get_filing_text(latest))

    # ── Filing document text ──────────────────────────────────────────

    def get_filing_text(self, filing: FilingRef) -> str:
        """Download the primary document of *filing* and return plain text."""
        if not filing.primary_document:
            raise FetchError(f"Filing {filing.accession_number} has no primary document")

        cik = filing.cik or self.resolve_cik(filing.symbol)
        url = DOCUMENT_URL.format(
            cik=str(int(cik)),
            acc=filing.accession_number.replace("-", ""),
            doc=filing.primary_document,
        )
        log.info("Fetching filing document: %s", url)
        try:
            raw = self._request(url, timeout=60).text
        except requests.exceptions.RequestException as exc:
            raise FetchError(f"Could not fetch filing document {url}: {exc}") from exc

        if filing.primary_document.endswith((".htm", ".html")):
            text = strip_html(raw)
        else:
            text = raw
        if not text.strip():
            raise FetchError(f"Filing {filing.accession_number} has no readable text")
        return text[: self.max_chars]


def strip_html(html: str) -> str:
    """Reduce filing HTML to readable text; tables become tab-separated rows."""
    soup = BeautifulSoup(html, "html.parser")

    for tag in soup(["script", "style"]):
        tag.decompose()
    for tag in soup.find_all(attrs={"style": re.compile(r"display\s*:\s*none", re.I)}):
        tag.decompose()

    for table in soup.find_all("table"):
        rows_text = []
        for tr in table.find_all("tr"):
            cells = [td.get_text(strip=True) for td in tr.find_all(["td", "th"])]
            cells = [c for c in cells if c]
            if cells:
                rows_text.append("\t".join(cells))
        if rows_text:
            table.replace_with("\n".join(rows_text) + "\n")
        else:
            table.decompose()

    text = soup.get_text("\n")
    # Normalize whitespace: collapse spaces within lines, limit blank lines
    text = text.replace("\xa0", " ")
    # Collapse runs of spaces; tabs separate table cells and are kept
    text = re.sub(r" {2,}", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


# ═══════════════════════════════════════════════════════════════════════════
#  Module-level singleton, shared across the app
# ═══════════════════════════════════════════════════════════════════════════

_client: SECClient | None = None


def get_sec_client() -> SECClient:
    """Get or create the shared SECClient singleton.

    Reads EDGAR_IDENTITY from config for the User-Agent header.
    """
    global _client
    if _client is None:
        from sec_quarters.config import get_config
        config = get_config()
        _client = SECClient(
            user_agent=config.edgar_identity,
            max_chars=config.max_filing_chars,
            submissions_ttl=config.filing_metadata_ttl,
        )
    return _client
