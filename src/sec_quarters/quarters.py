"""Quarter key arithmetic.

10-Q filings land roughly 45 days after the quarter they report on, so the
filing month alone identifies the quarter:

    filed Apr-Jun  -> Q1 of the same year
    filed Jul-Sep  -> Q2
    filed Oct-Dec  -> Q3
    filed Jan-Mar  -> Q4 of the prior year

Annual reports (which would carry Q4) are not mapped here.
"""

from __future__ import annotations

import re
from datetime import date, datetime

_QUARTER_RE = re.compile(r"^(\d{4})-Q([1-4])$")


def filing_date_to_quarter(filing_date: str) -> str:
    """Map a filing date (``YYYY-MM-DD``) to its canonical quarter key.

    >>> filing_date_to_quarter("2025-08-07")
    '2025-Q2'
    >>> filing_date_to_quarter("2025-02-01")
    '2024-Q4'

    Raises ValueError for anything that is not a calendar date.
    """
    filed = datetime.strptime(filing_date.strip()[:10], "%Y-%m-%d")
    year, month = filed.year, filed.month

    if 4 <= month <= 6:
        return f"{year}-Q1"
    if 7 <= month <= 9:
        return f"{year}-Q2"
    if 10 <= month <= 12:
        return f"{year}-Q3"
    return f"{year - 1}-Q4"


def parse_quarter(quarter: str) -> tuple[int, int]:
    """Split ``"2025-Q2"`` into ``(2025, 2)``."""
    m = _QUARTER_RE.match(quarter)
    if not m:
        raise ValueError(f"Not a quarter key: {quarter!r}")
    return int(m.group(1)), int(m.group(2))


def recent_quarter_keys(count: int, today: date | None = None) -> list[str]:
    """Calendar quarter keys for the last *count* quarters, oldest first.

    The current calendar quarter is the last element. Keys are generated,
    never discovered from storage.
    """
    today = today or date.today()
    year = today.year
    quarter = (today.month - 1) // 3 + 1

    keys: list[str] = []
    for _ in range(max(count, 0)):
        keys.append(f"{year}-Q{quarter}")
        quarter -= 1
        if quarter == 0:
            quarter = 4
            year -= 1
    keys.reverse()
    return keys
