"""SEC Quarters HTTP API.

Endpoints:
  GET  /health                          store connectivity
  GET  /api/universal-metrics           eight GAAP metrics, latest quarter
  GET  /api/company-insights            insights + segments, latest quarter
  GET  /api/sparkline-data              multi-quarter series per metric
  GET  /api/cache-stats/{symbol}        what is stored for a symbol
  POST /api/backfill/{symbol}           historical backfill (background task)
  GET  /api/backfill/{symbol}/status    backfill progress

Every quarter view carries fromCache / cacheType / filingStatus. Failures map
to the error's HTTP status with ``{error, message, symbol}``; there is no
200 response without real data behind it.

Run:  python -m sec_quarters.api_app
Open: http://localhost:{PORT}  (default 8877)
"""

from __future__ import annotations

import logging

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sec_quarters.errors import QuarterCacheError
from sec_quarters.service import QuarterlyDataService, get_service

log = logging.getLogger(__name__)

app = FastAPI(title="SEC Quarters")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(QuarterCacheError)
async def quarter_cache_error_handler(request: Request, exc: QuarterCacheError):
    log.warning("%s %s failed: %s %s", request.method, request.url.path, exc.code, exc)
    symbol = (
        exc.details.get("symbol")
        or request.query_params.get("symbol")
        or request.path_params.get("symbol")
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.code,
            "message": exc.message or str(exc),
            "symbol": symbol.upper() if symbol else None,
        },
    )


def _symbol(value: str) -> str:
    symbol = value.strip().upper()
    if not symbol:
        raise HTTPException(status_code=400, detail="symbol is required")
    return symbol


# ═══════════════════════════════════════════════════════════════════════════
#  Health check
# ═══════════════════════════════════════════════════════════════════════════

@app.get("/health")
def health(service: QuarterlyDataService = Depends(get_service)):
    return service.health()


# ═══════════════════════════════════════════════════════════════════════════
#  Quarter views
# ═══════════════════════════════════════════════════════════════════════════

@app.get("/api/universal-metrics")
def universal_metrics(
    symbol: str = Query(...),
    refresh: bool = False,
    force_reprocess: bool = Query(False, alias="forceReprocess"),
    service: QuarterlyDataService = Depends(get_service),
):
    """Universal metrics for the latest quarterly filing."""
    return service.get_metrics(_symbol(symbol), refresh=refresh, force_reprocess=force_reprocess)


@app.get("/api/company-insights")
def company_insights(
    symbol: str = Query(...),
    refresh: bool = False,
    force_reprocess: bool = Query(False, alias="forceReprocess"),
    service: QuarterlyDataService = Depends(get_service),
):
    """Company insights and segment notes for the latest quarterly filing."""
    return service.get_insights(_symbol(symbol), refresh=refresh, force_reprocess=force_reprocess)


@app.get("/api/sparkline-data")
def sparkline_data(
    symbol: str = Query(...),
    metric: str = "all",
    refresh: bool = False,
    service: QuarterlyDataService = Depends(get_service),
):
    """Sparkline series built from stored quarters plus the current one."""
    try:
        return service.get_sparklines(_symbol(symbol), metric=metric, refresh=refresh)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


# ═══════════════════════════════════════════════════════════════════════════
#  Cache diagnostics and backfill
# ═══════════════════════════════════════════════════════════════════════════

@app.get("/api/cache-stats/{symbol}")
def get_cache_stats(symbol: str, service: QuarterlyDataService = Depends(get_service)):
    return service.cache_stats(_symbol(symbol))


def _run_backfill(service: QuarterlyDataService, symbol: str, quarters: int, dry_run: bool, force: bool):
    try:
        service.backfill(symbol, quarters=quarters, dry_run=dry_run, force=force)
    except QuarterCacheError as exc:
        log.error("Backfill for %s aborted: %s", symbol, exc)
        service.fail_job(symbol, str(exc))


@app.post("/api/backfill/{symbol}")
def trigger_backfill(
    symbol: str,
    bg: BackgroundTasks,
    quarters: int = Query(8, ge=1, le=40),
    dry_run: bool = Query(False, alias="dryRun"),
    force: bool = False,
    service: QuarterlyDataService = Depends(get_service),
):
    """Start a historical backfill as a background task."""
    symbol = _symbol(symbol)
    bg.add_task(_run_backfill, service, symbol, quarters, dry_run, force)
    return {"status": "started", "symbol": symbol, "quarters": quarters, "dryRun": dry_run}


@app.get("/api/backfill/{symbol}/status")
def backfill_status(symbol: str, service: QuarterlyDataService = Depends(get_service)):
    return service.backfill_status(_symbol(symbol))


if __name__ == "__main__":
    import uvicorn

    from sec_quarters.config import get_config

    config = get_config()
    logging.basicConfig(level=config.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    print(f"\n  SEC Quarters → http://localhost:{config.port}\n")
    uvicorn.run(app, host="0.0.0.0", port=config.port, log_level="info")
