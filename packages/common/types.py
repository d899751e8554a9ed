"""
ScrapRate — Shared Pydantic models for the price refresh service.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator


# ── Enums ────────────────────────────────────────────────────────────────────

class Weekday(enum.IntEnum):
    """Day-of-week numbering used by the schedule (Sunday first)."""
    SUNDAY    = 0
    MONDAY    = 1
    TUESDAY   = 2
    WEDNESDAY = 3
    THURSDAY  = 4
    FRIDAY    = 5
    SATURDAY  = 6


class PriceSource(str, enum.Enum):
    REMOTE   = "remote"     # parsed from the pricing endpoint
    FALLBACK = "fallback"   # built-in default sheet


# ── Pricing ───────────────────────────────────────────────────────────────────

class PriceRecord(BaseModel):
    """One national price observation for a metal grade, in USD per lb."""
    metal_id:       str
    metal_name:     str
    grade:          str
    national_price: float = Field(..., gt=0)
    timestamp:      datetime
    source:         PriceSource

    model_config = {"frozen": True}


# ── Schedule ──────────────────────────────────────────────────────────────────

class ScheduleConfig(BaseModel):
    enabled:        bool               = True
    last_run:       Optional[datetime] = None
    next_run:       Optional[datetime] = None
    target_weekday: int                = Field(int(Weekday.MONDAY), ge=0, le=6)
    target_hour:    int                = Field(23, ge=0, le=23)
    target_minute:  int                = Field(59, ge=0, le=59)
    timezone_name:  str                = "America/Chicago"

    model_config = {"extra": "forbid"}

    @field_validator("timezone_name")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone '{v}'")
        return v

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone_name)


class ScheduleConfigUpdate(BaseModel):
    """Request body for PATCH /scheduler/config.  Range checks happen in the scheduler."""
    enabled:        Optional[bool] = None
    target_weekday: Optional[int]  = None
    target_hour:    Optional[int]  = None
    target_minute:  Optional[int]  = None
    timezone_name:  Optional[str]  = None

    model_config = {"extra": "forbid"}


class SchedulerStatus(ScheduleConfig):
    """Snapshot of the schedule plus the fields the app shows on its admin screen."""
    is_running:   bool                  = False
    is_updating:  bool                  = False
    cached_count: int                   = 0
    last_source:  Optional[PriceSource] = None
    last_error:   Optional[str]         = None
    endpoint_url: str                   = ""


class RefreshResult(BaseModel):
    request_id:    str
    trigger:       str
    source:        PriceSource
    used_fallback: bool
    error:         Optional[str] = None
    completed_at:  datetime
    prices:        List[PriceRecord]
