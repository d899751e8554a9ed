"""
ScrapRate — Price refresh service (FastAPI app).

Composition root: builds the PriceRefreshScheduler from environment config,
keeps it on app.state and starts/stops its timer with the app.
"""

from __future__ import annotations

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", "packages"))

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from common.config import (
    CHECK_INTERVAL_SECONDS,
    PRICING_ENDPOINT_URL,
    PRICING_TIMEOUT_SECONDS,
    SCHEDULE_ENABLED,
    SCHEDULE_HOUR,
    SCHEDULE_MINUTE,
    SCHEDULE_TIMEZONE,
    SCHEDULE_WEEKDAY,
    SCHEDULER_AUTOSTART,
)
from common.logging_util import get_logger
from common.types import ScheduleConfig
from endpoints import router
from scheduler import PriceRefreshScheduler

log = get_logger("price_refresh")

app = FastAPI(
    title       = "ScrapRate — Price Refresh Service",
    description = "Weekly national scrap price sheet: scheduled fetch, normalisation and cache.",
    version     = "0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins  = ["*"],
    allow_methods  = ["*"],
    allow_headers  = ["*"],
)

app.include_router(router)


def build_refresher() -> PriceRefreshScheduler:
    """Create a scheduler from the environment settings in common.config."""
    config = ScheduleConfig(
        enabled        = SCHEDULE_ENABLED,
        target_weekday = SCHEDULE_WEEKDAY,
        target_hour    = SCHEDULE_HOUR,
        target_minute  = SCHEDULE_MINUTE,
        timezone_name  = SCHEDULE_TIMEZONE,
    )
    return PriceRefreshScheduler(
        PRICING_ENDPOINT_URL,
        config                 = config,
        timeout                = PRICING_TIMEOUT_SECONDS,
        check_interval_seconds = CHECK_INTERVAL_SECONDS,
    )


@app.on_event("startup")
async def startup():
    app.state.refresher = build_refresher()
    if SCHEDULER_AUTOSTART:
        app.state.refresher.start()
    else:
        log.info("SCHEDULER_AUTOSTART is off; start the timer via POST /scheduler/start")


@app.on_event("shutdown")
async def shutdown():
    if hasattr(app.state, "refresher"):
        app.state.refresher.stop()


@app.get("/health")
async def health():
    return {"status": "ok", "service": "price_refresh"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)
