"""SEC Quarters: MCP server over the quarterly filing cache.

Tools
─────
  1. get_quarter_metrics    — eight universal GAAP metrics, latest quarter
  2. get_quarter_insights   — company insights + segments, latest quarter
  3. get_sparklines         — multi-quarter series per metric
  4. get_cache_stats        — which quarters are stored for a symbol

Failures come back as ``{"error", "message", "symbol"}`` rather than data.
"""

from __future__ import annotations

from fastmcp import FastMCP

from sec_quarters.errors import QuarterCacheError
from sec_quarters.service import get_service

mcp = FastMCP(name="SEC-Quarters")


def _error(symbol: str, exc: QuarterCacheError) -> dict:
    return {"error": exc.code, "message": exc.message or str(exc), "symbol": symbol.upper()}


@mcp.tool()
def get_quarter_metrics(symbol: str, refresh: bool = False, force_reprocess: bool = False) -> dict:
    """Get the eight universal metrics for a company's latest quarterly filing.

    Args:
        symbol: ticker (e.g. 'AAPL')
        refresh: skip short-lived caches (filing metadata) without re-extracting
        force_reprocess: re-extract even if the filing has not changed

    Values are in millions of USD, percentage points, or dollars per share.
    The result says whether it came from the quarter cache or a stale fallback.
    """
    try:
        return get_service().get_metrics(symbol, refresh=refresh, force_reprocess=force_reprocess)
    except QuarterCacheError as exc:
        return _error(symbol, exc)


@mcp.tool()
def get_quarter_insights(symbol: str, refresh: bool = False, force_reprocess: bool = False) -> dict:
    """Get qualitative insights and segment notes from a company's latest 10-Q.

    Insights are categorized (growth-driver, risk, guidance, ...) with impact
    and confidence.
    """
    try:
        return get_service().get_insights(symbol, refresh=refresh, force_reprocess=force_reprocess)
    except QuarterCacheError as exc:
        return _error(symbol, exc)


@mcp.tool()
def get_sparklines(symbol: str, metric: str = "all", refresh: bool = False) -> dict:
    """Get quarter-by-quarter series for one metric or all of them.

    metric: 'all', 'revenue', 'grossMarginPct', 'operatingMarginPct',
    'operatingIncome', 'operatingCashFlow', 'rndRatioPct', 'netIncome', 'epsDiluted'.
    """
    try:
        return get_service().get_sparklines(symbol, metric=metric, refresh=refresh)
    except QuarterCacheError as exc:
        return _error(symbol, exc)
    except ValueError as exc:
        return {"error": "INVALID_METRIC", "message": str(exc), "symbol": symbol.upper()}


@mcp.tool()
def get_cache_stats(symbol: str) -> dict:
    """Show which recent quarters are stored for a company and which filing is tracked."""
    return get_service().cache_stats(symbol)


# ═══════════════════════════════════════════════════════════════════════════
#  ENTRY POINT
# ═══════════════════════════════════════════════════════════════════════════

if __name__ == "__main__":
    import logging
    import sys

    logging.basicConfig(level=logging.INFO, stream=sys.stderr)
    # python -m sec_quarters.server --sse for remote hosting; STDIO otherwise
    if "--sse" in sys.argv:
        mcp.run(transport="sse")
    else:
        mcp.run()
