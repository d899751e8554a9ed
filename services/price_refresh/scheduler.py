"""
ScrapRate — Price refresh scheduler.

Owns the weekly schedule, the periodic timer and the cache of the latest
price batch.  One cycle:
  1. GET the pricing endpoint (single attempt, bounded timeout, via egress).
  2. Normalise the body into PriceRecords.
  3. Replace the cache wholesale, or fall back to the last good batch, or to
     the built-in sheet when nothing better exists.
  4. Stamp last_run, recompute next_run, write an audit entry.

At most one cycle runs at a time.  Scheduled ticks and manual triggers share
the same guard; a trigger that arrives while a cycle is running is rejected
with RefreshBusy, never queued.

Uses APScheduler's AsyncIOScheduler for the minute-granularity check.  The
in-process timer suits dev hosting and tests; a production deployment can
call `force_update()` from cron or a scheduled function instead.
"""

from __future__ import annotations

import asyncio
import os
import sys
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Sequence, Tuple

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", "packages"))

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from pydantic import ValidationError

from common.audit import new_request_id, write_audit_entry
from common.egress import EgressViolation, egress_get
from common.logging_util import get_logger
from common.types import (
    PriceRecord,
    PriceSource,
    RefreshResult,
    ScheduleConfig,
    SchedulerStatus,
)

from fallback_data import DEFAULT_FALLBACK_PRICES, build_fallback_batch
from normalizer import ParseError, normalize_response
from weekly_trigger import compute_next_occurrence, describe

log = get_logger("price_refresh.scheduler")

HttpGet = Callable[..., Awaitable[httpx.Response]]

UPDATABLE_FIELDS = frozenset(
    {"enabled", "target_weekday", "target_hour", "target_minute", "timezone_name"}
)
SCHEDULE_SHAPE_FIELDS = ("target_weekday", "target_hour", "target_minute", "timezone_name")

_CHECK_JOB_ID = "price_refresh_check"


# ── Exceptions ────────────────────────────────────────────────────────────────

class RefreshBusy(Exception):
    """Raised when a refresh is requested while a cycle is already running."""
    def __init__(self, trigger: str):
        self.trigger = trigger
        super().__init__(f"RefreshBusy: a price refresh cycle is already running (trigger='{trigger}')")


class FetchFailed(Exception):
    """Raised when the fetch failed and neither a cache nor a fallback sheet exists."""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"FetchFailed: {reason}")


class ConfigInvalid(Exception):
    """Raised by update_config(); the current config is left untouched."""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"ConfigInvalid: {reason}")


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class PriceRefreshScheduler:
    """
    Scheduled fetch-normalise-cache for the national price sheet.

    Args:
        endpoint_url:            Pricing endpoint (must be on the egress allowlist).
        config:                  Initial schedule; defaults to Monday 23:59 America/Chicago.
        fallback_prices:         Seed rows for the built-in sheet.
        http_get:                Async GET callable with egress_get's signature.
        timeout:                 HTTP timeout in seconds.
        check_interval_seconds:  How often the timer compares now with next_run.
        clock:                   Returns the current aware UTC datetime.
    """

    def __init__(
        self,
        endpoint_url: str,
        *,
        config: Optional[ScheduleConfig] = None,
        fallback_prices: Sequence[Mapping[str, Any]] = DEFAULT_FALLBACK_PRICES,
        http_get: HttpGet = egress_get,
        timeout: float = 10.0,
        check_interval_seconds: int = 60,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._endpoint_url    = endpoint_url
        self._config          = config or ScheduleConfig()
        self._fallback_prices = list(fallback_prices)
        self._http_get        = http_get
        self._timeout         = timeout
        self._check_interval  = check_interval_seconds
        self._clock           = clock

        self._cache: Tuple[PriceRecord, ...] = ()
        self._timer: Optional[AsyncIOScheduler] = None
        self._is_updating = False
        self._last_source: Optional[PriceSource] = None
        self._last_error:  Optional[str] = None

        log.info("Price refresh scheduler initialised endpoint=%s", endpoint_url)

    # ── Properties ────────────────────────────────────────────────────────────

    @property
    def endpoint_url(self) -> str:
        return self._endpoint_url

    @property
    def is_running(self) -> bool:
        return self._timer is not None

    @property
    def is_updating(self) -> bool:
        return self._is_updating

    # ── Timer control ─────────────────────────────────────────────────────────

    def _compute_next_run(self) -> datetime:
        cfg = self._config
        return compute_next_occurrence(
            self._clock(), cfg.target_weekday, cfg.target_hour, cfg.target_minute, cfg.tz,
        )

    def start(self) -> None:
        """
        Start the periodic check.  No-op if already running.

        Must be called with an asyncio event loop running (AsyncIOScheduler
        binds to it).
        """
        if self._timer is not None:
            log.info("Price refresh scheduler already running")
            return

        next_run = self._compute_next_run()
        self._config = self._config.model_copy(update={"next_run": next_run})

        timer = AsyncIOScheduler(timezone="UTC")
        timer.add_job(
            self._tick,
            IntervalTrigger(seconds=self._check_interval, timezone="UTC"),
            id               = _CHECK_JOB_ID,
            name             = "ScrapRate price refresh check",
            max_instances    = 1,
            coalesce         = True,
            replace_existing = True,
        )
        timer.start()
        self._timer = timer
        log.info(
            "Price refresh scheduler started — next run %s",
            describe(next_run, self._config.tz),
        )

    def stop(self) -> None:
        """Cancel the periodic check.  An in-flight cycle is left to finish."""
        if self._timer is None:
            return
        self._timer.shutdown(wait=False)
        self._timer = None
        log.info("Price refresh scheduler stopped")

    async def _tick(self) -> None:
        # APScheduler cancels pending job futures on shutdown; the shield
        # keeps a running cycle alive through stop().
        await asyncio.shield(self.check_and_run())

    async def check_and_run(self) -> Optional[RefreshResult]:
        """
        Run a scheduled cycle if one is due.  Never raises.

        Returns the RefreshResult when a cycle ran, otherwise None.
        """
        cfg = self._config
        if not cfg.enabled or cfg.next_run is None:
            return None
        if self._clock() < cfg.next_run:
            return None
        if self._is_updating:
            log.info("Scheduled refresh is due but a cycle is already running; skipping tick")
            return None

        log.info("Executing scheduled price refresh from %s", self._endpoint_url)
        try:
            return await self._run_cycle(trigger="scheduled")
        except Exception as exc:
            log.exception("Scheduled price refresh error: %s", exc)
            return None

    # ── Manual trigger ────────────────────────────────────────────────────────

    async def force_update(self) -> RefreshResult:
        """
        Run one cycle now, regardless of schedule.

        Raises:
            RefreshBusy: if a cycle is already running.
            FetchFailed: if the fetch failed and no cache or fallback exists.
        """
        log.info("Manual price refresh triggered")
        return await self._run_cycle(trigger="manual")

    trigger_manual_refresh = force_update

    # ── Cycle ─────────────────────────────────────────────────────────────────

    async def _run_cycle(self, trigger: str) -> RefreshResult:
        if self._is_updating:
            raise RefreshBusy(trigger)
        self._is_updating = True

        request_id = new_request_id()
        try:
            started_at = self._clock()
            log.info("Refresh cycle started request_id=%s trigger=%s", request_id, trigger)

            batch, error = await self._fetch_batch(started_at)
            used_fallback = batch is None
            if batch is None:
                try:
                    batch = self._fallback_batch(started_at)
                except FetchFailed:
                    self._last_error = error
                    self._config = self._config.model_copy(
                        update={"next_run": self._compute_next_run()}
                    )
                    raise

            # Single assignment: readers never see a mix of two batches.
            self._cache = tuple(batch)
            source = batch[0].source
            self._last_source = source
            self._last_error  = error

            completed_at = self._clock()
            self._config = self._config.model_copy(
                update={"last_run": completed_at, "next_run": self._compute_next_run()}
            )
        finally:
            self._is_updating = False

        log.info(
            "Refresh cycle complete: %d prices source=%s fallback=%s — next run %s",
            len(batch), source.value, used_fallback,
            describe(self._config.next_run, self._config.tz),
        )
        write_audit_entry(
            request_id = request_id,
            actor      = trigger,
            action     = "price_refresh_cycle",
            payload    = {
                "count":         len(batch),
                "source":        source.value,
                "used_fallback": used_fallback,
                "error":         error,
                "completed_at":  completed_at,
            },
        )
        return RefreshResult(
            request_id    = str(request_id),
            trigger       = trigger,
            source        = source,
            used_fallback = used_fallback,
            error         = error,
            completed_at  = completed_at,
            prices        = list(batch),
        )

    async def _fetch_batch(
        self, fetched_at: datetime
    ) -> Tuple[Optional[List[PriceRecord]], Optional[str]]:
        """
        Fetch and normalise one price sheet.

        Returns (records, None) on success, or (None, reason) when the caller
        should fall back.  Transport, HTTP and shape errors never escape.
        """
        try:
            response = await self._http_get(
                self._endpoint_url,
                headers = {"Accept": "application/json"},
                timeout = self._timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except EgressViolation as exc:
            log.error("Pricing endpoint blocked by egress policy: %s", exc)
            return None, f"egress: {exc}"
        except httpx.HTTPError as exc:
            log.warning("Pricing endpoint request failed: %s", exc)
            return None, f"network: {exc}"
        except ValueError as exc:
            log.warning("Pricing endpoint returned invalid JSON: %s", exc)
            return None, f"parse: invalid JSON ({exc})"

        try:
            result = normalize_response(payload, fetched_at)
        except ParseError as exc:
            log.warning("Unexpected price sheet shape: %s", exc)
            return None, f"parse: {exc}"

        if not result.accepted:
            log.warning("Price sheet had no valid records (%d rejected)", len(result.rejected))
            return None, f"parse: no valid records ({len(result.rejected)} rejected)"

        log.info("Fetched %d prices from pricing endpoint", len(result.accepted))
        return result.accepted, None

    def _fallback_batch(self, fetched_at: datetime) -> List[PriceRecord]:
        """Last good batch if there is one, else the built-in sheet."""
        if self._cache:
            log.warning("Using %d cached prices from the last completed cycle", len(self._cache))
            return list(self._cache)

        batch = build_fallback_batch(self._fallback_prices, fetched_at)
        if not batch:
            raise FetchFailed("pricing endpoint unavailable and no fallback prices configured")
        log.warning("Using built-in fallback price sheet (%d prices)", len(batch))
        return batch

    # ── Queries ───────────────────────────────────────────────────────────────

    def get_status(self) -> SchedulerStatus:
        return SchedulerStatus(
            **self._config.model_dump(),
            is_running   = self.is_running,
            is_updating  = self._is_updating,
            cached_count = len(self._cache),
            last_source  = self._last_source,
            last_error   = self._last_error,
            endpoint_url = self._endpoint_url,
        )

    def get_cached_prices(self) -> List[PriceRecord]:
        return list(self._cache)

    def get_price_for_metal(self, metal_id: str) -> Optional[PriceRecord]:
        for record in self._cache:
            if record.metal_id == metal_id:
                return record
        return None

    # ── Configuration ─────────────────────────────────────────────────────────

    def update_config(self, partial: Mapping[str, Any]) -> SchedulerStatus:
        """
        Merge `partial` into the schedule.

        Only UPDATABLE_FIELDS may be set.  A change to the weekday, time or
        timezone recomputes next_run; a running timer is restarted so the new
        settings apply immediately.

        Raises:
            ConfigInvalid: unknown field or out-of-range value.
        """
        unknown = set(partial) - UPDATABLE_FIELDS
        if unknown:
            raise ConfigInvalid(f"fields cannot be updated: {sorted(unknown)}")

        try:
            updated = ScheduleConfig.model_validate({**self._config.model_dump(), **partial})
        except ValidationError as exc:
            raise ConfigInvalid(str(exc))

        shape_changed = any(
            getattr(updated, f) != getattr(self._config, f) for f in SCHEDULE_SHAPE_FIELDS
        )
        self._config = updated
        if shape_changed:
            self._config = self._config.model_copy(update={"next_run": self._compute_next_run()})

        if self._timer is not None:
            self.stop()
            self.start()

        log.info("Scheduler configuration updated: %s", dict(partial))
        return self.get_status()
