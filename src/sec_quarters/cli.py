"""Command-line access to the quarterly filing cache.

Usage:

  # Latest quarter's universal metrics / insights
  sec-quarters metrics AAPL
  sec-quarters metrics AAPL --force-reprocess
  sec-quarters insights NVDA --refresh

  # Sparkline series (one metric or all)
  sec-quarters sparklines MSFT --metric revenue

  # Fill the quarter store from the last N filings
  sec-quarters backfill AAPL --quarters 8 --dry-run

  # What is stored for a symbol
  sec-quarters stats AAPL

  # Configuration, SEC EDGAR and store connectivity
  sec-quarters health
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time

from sec_quarters.config import get_config
from sec_quarters.errors import QuarterCacheError

log = logging.getLogger(__name__)


def _fmt(val, indent=2):
    """Pretty-print a value."""
    if isinstance(val, (dict, list)):
        return json.dumps(val, indent=indent, default=str)
    return str(val)


def _header(title: str):
    print(f"\n{'=' * 60}")
    print(f"  {title}")
    print(f"{'=' * 60}\n")


def _service():
    from sec_quarters.service import get_service
    return get_service()


def _cache_line(result: dict) -> str:
    source = result.get("cacheType") or "fresh extraction"
    line = f"  Quarter {result.get('quarter') or result.get('currentQuarter')}  ({source}, filing {result.get('filingStatus')})"
    if result.get("error"):
        line += f"\n  Stale because: {result['error']}"
    return line


# ═══════════════════════════════════════════════════════════════════════════
#  Commands
# ═══════════════════════════════════════════════════════════════════════════

def cmd_metrics(args) -> int:
    _header(f"Universal metrics: {args.symbol.upper()}")
    result = _service().get_metrics(args.symbol, refresh=args.refresh, force_reprocess=args.force_reprocess)
    print(_cache_line(result) + "\n")
    for name, point in result["universalMetrics"].items():
        display = point.get("display") or ("N/A" if point.get("value") is None else point["value"])
        print(f"  {name:20s}  {display}")
    return 0


def cmd_insights(args) -> int:
    _header(f"Company insights: {args.symbol.upper()}")
    result = _service().get_insights(args.symbol, refresh=args.refresh, force_reprocess=args.force_reprocess)
    print(_cache_line(result) + "\n")
    for insight in result["companyInsights"]:
        print(f"  [{insight['impact']:>8s}] {insight['category']}: {insight['headline']}")
    if result["segments"]:
        print("\n  Segments:")
        for seg in result["segments"]:
            print(f"    {seg['name']:24s} {seg.get('revenue') or ''} {seg.get('growthYoY') or ''}")
    return 0


def cmd_sparklines(args) -> int:
    _header(f"Sparklines: {args.symbol.upper()} ({args.metric})")
    result = _service().get_sparklines(args.symbol, metric=args.metric, refresh=args.refresh)
    print(_cache_line(result) + "\n")
    for name, series in result["sparklines"].items():
        values = " ".join(f"{p['value']:g}" for p in series["points"])
        change = series.get("changePercent")
        change_txt = f"{change:+.1f}%" if change is not None else "n/a"
        print(f"  {name:20s}  {series['trend']:>8s} {change_txt:>8s}   {values}")
    return 0


def cmd_backfill(args) -> int:
    _header(f"Backfill: {args.symbol.upper()} (last {args.quarters} filings)")
    summary = _service().backfill(args.symbol, quarters=args.quarters, dry_run=args.dry_run, force=args.force)
    for label in ("processed", "planned", "skipped", "failed"):
        entries = summary[label]
        if not entries:
            continue
        print(f"  {label.capitalize()} ({len(entries)}):")
        for entry in entries:
            extra = f"  {entry['error']}" if "error" in entry else ""
            print(f"    {entry.get('quarter', '?'):8s} {entry['accessionNumber']}  {entry['filingDate']}{extra}")
    print(f"\n  Tracker updated: {summary['trackerUpdated']}")
    return 1 if summary["failed"] else 0


def cmd_stats(args) -> int:
    _header(f"Cache stats: {args.symbol.upper()}")
    print(_fmt(_service().cache_stats(args.symbol)))
    return 0


def cmd_health(args) -> int:
    """Configuration, SEC EDGAR and store checks."""
    _header("SEC Quarters Health Check")
    checks = []

    print("  [1/3] Configuration...")
    cfg = get_config()
    print(f"    EDGAR_IDENTITY: {cfg.edgar_identity[:30]}...")
    print(f"    ANTHROPIC_API_KEY: {'set' if cfg.anthropic_api_key else 'not set'}")
    print(f"    MONGODB_URI: {'set' if cfg.mongodb_uri else 'not set'}")
    checks.append(("Config", "PASS" if cfg.anthropic_api_key else "WARN"))

    print("\n  [2/3] SEC EDGAR API...")
    try:
        from sec_quarters.sec_client import get_sec_client
        t0 = time.time()
        cik = get_sec_client().resolve_cik("AAPL")
        print(f"    Resolved AAPL -> CIK {cik} ({time.time() - t0:.1f}s)")
        checks.append(("SEC EDGAR", "PASS"))
    except QuarterCacheError as e:
        print(f"    ERROR: {e}")
        checks.append(("SEC EDGAR", "FAIL"))

    print("\n  [3/3] Quarter store...")
    from sec_quarters.db import is_available
    if is_available():
        print("    MongoDB connected")
        checks.append(("Store", "PASS"))
    else:
        print("    In-process store (records will not survive restarts)")
        checks.append(("Store", "SKIP" if not cfg.mongodb_uri else "FAIL"))

    print(f"\n{'─' * 44}")
    for name, status in checks:
        print(f"  {name:16s}  {status}")
    return 1 if any(status == "FAIL" for _, status in checks) else 0


# ═══════════════════════════════════════════════════════════════════════════
#  Argument parsing
# ═══════════════════════════════════════════════════════════════════════════

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sec-quarters", description="Quarterly SEC filing cache")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    for name, fn, help_text in (
        ("metrics", cmd_metrics, "universal metrics for the latest quarter"),
        ("insights", cmd_insights, "company insights for the latest quarter"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("symbol")
        p.add_argument("--refresh", action="store_true", help="bypass short-lived caches")
        p.add_argument("--force-reprocess", action="store_true", help="re-extract even if unchanged")
        p.set_defaults(func=fn)

    p = sub.add_parser("sparklines", help="multi-quarter metric series")
    p.add_argument("symbol")
    p.add_argument("--metric", default="all")
    p.add_argument("--refresh", action="store_true")
    p.set_defaults(func=cmd_sparklines)

    p = sub.add_parser("backfill", help="store metrics for the last N quarterly filings")
    p.add_argument("symbol")
    p.add_argument("--quarters", type=int, default=8)
    p.add_argument("--dry-run", action="store_true", help="list what would be extracted")
    p.add_argument("--force", action="store_true", help="re-extract quarters already stored")
    p.set_defaults(func=cmd_backfill)

    p = sub.add_parser("stats", help="cached quarters for a symbol")
    p.add_argument("symbol")
    p.set_defaults(func=cmd_stats)

    p = sub.add_parser("health", help="configuration and connectivity checks")
    p.set_defaults(func=cmd_health)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    level = logging.DEBUG if args.verbose else get_config().log_level.upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        return args.func(args)
    except QuarterCacheError as exc:
        print(f"\n  ERROR [{exc.code}]: {exc.message or exc}", file=sys.stderr)
        return 2
    except ValueError as exc:
        print(f"\n  ERROR: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
