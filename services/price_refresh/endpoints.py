"""
ScrapRate — Price refresh API endpoints.

Routes:
  GET   /prices                — Cached national price sheet
  GET   /prices/{metal_id}     — One cached price
  GET   /scheduler/status      — Schedule, last/next run, cache size and source
  POST  /scheduler/start       — Start the weekly timer
  POST  /scheduler/stop        — Stop the weekly timer
  POST  /scheduler/refresh     — Run a refresh cycle now
  PATCH /scheduler/config      — Change enabled flag or weekly trigger time
"""

from __future__ import annotations

import os
import sys
from typing import List

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", "packages"))

from fastapi import APIRouter, Depends, HTTPException, Request, status

from common.logging_util import get_logger
from common.types import (
    PriceRecord,
    RefreshResult,
    ScheduleConfigUpdate,
    SchedulerStatus,
)
from scheduler import ConfigInvalid, FetchFailed, PriceRefreshScheduler, RefreshBusy

log    = get_logger(__name__)
router = APIRouter()


def get_refresher(request: Request) -> PriceRefreshScheduler:
    return request.app.state.refresher


# ── Prices ────────────────────────────────────────────────────────────────────

@router.get("/prices", response_model=List[PriceRecord], tags=["prices"])
async def list_prices(refresher: PriceRefreshScheduler = Depends(get_refresher)):
    """Return the cached price batch; empty until the first cycle completes."""
    return refresher.get_cached_prices()


@router.get("/prices/{metal_id}", response_model=PriceRecord, tags=["prices"])
async def get_price(metal_id: str, refresher: PriceRefreshScheduler = Depends(get_refresher)):
    record = refresher.get_price_for_metal(metal_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No cached price for metal '{metal_id}'",
        )
    return record


# ── Scheduler ─────────────────────────────────────────────────────────────────

@router.get("/scheduler/status", response_model=SchedulerStatus, tags=["scheduler"])
async def scheduler_status(refresher: PriceRefreshScheduler = Depends(get_refresher)):
    return refresher.get_status()


@router.post("/scheduler/start", response_model=SchedulerStatus, tags=["scheduler"])
async def scheduler_start(refresher: PriceRefreshScheduler = Depends(get_refresher)):
    refresher.start()
    return refresher.get_status()


@router.post("/scheduler/stop", response_model=SchedulerStatus, tags=["scheduler"])
async def scheduler_stop(refresher: PriceRefreshScheduler = Depends(get_refresher)):
    refresher.stop()
    return refresher.get_status()


@router.post(
    "/scheduler/refresh",
    response_model=RefreshResult,
    summary="Run a price refresh cycle now",
    tags=["scheduler"],
)
async def scheduler_refresh(refresher: PriceRefreshScheduler = Depends(get_refresher)):
    """
    Fetch the price sheet immediately.

    - **409** if a cycle is already running (the request is not queued).
    - **503** if the fetch failed and there is neither a cache nor a fallback sheet.

    A response with `used_fallback: true` means the endpoint could not be
    used and `error` says why; the app shows this as a non-fatal warning.
    """
    try:
        return await refresher.force_update()
    except RefreshBusy as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    except FetchFailed as exc:
        log.error("Manual refresh failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


@router.patch("/scheduler/config", response_model=SchedulerStatus, tags=["scheduler"])
async def scheduler_config(
    payload: ScheduleConfigUpdate,
    refresher: PriceRefreshScheduler = Depends(get_refresher),
):
    try:
        return refresher.update_config(payload.model_dump(exclude_unset=True))
    except ConfigInvalid as exc:
        raise HTTPException(status_code=422, detail=exc.reason)
