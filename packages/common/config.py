"""
ScrapRate — Environment-based configuration.

All settings are read from environment variables (12-factor style).
No secrets are hard-coded; defaults are safe for local dev only.
"""

import os
from typing import List


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


# ── Pricing endpoint ─────────────────────────────────────────────────────────
# Gumloop interface that publishes the weekly national scrap price sheet.
PRICING_ENDPOINT_URL: str = os.getenv(
    "PRICING_ENDPOINT_URL",
    "https://www.gumloop.com/interface/New-Interface-vRoDvMTdG29c2mwqEJNYTX",
)
PRICING_TIMEOUT_SECONDS: float = float(os.getenv("PRICING_TIMEOUT_SECONDS", "10"))

# ── Refresh schedule ─────────────────────────────────────────────────────────
# Weekday uses 0=Sunday..6=Saturday.  Default: Monday 23:59 US Central.
SCHEDULE_ENABLED:  bool = _env_bool("SCHEDULE_ENABLED", "true")
SCHEDULE_WEEKDAY:  int  = int(os.getenv("SCHEDULE_WEEKDAY", "1"))
SCHEDULE_HOUR:     int  = int(os.getenv("SCHEDULE_HOUR", "23"))
SCHEDULE_MINUTE:   int  = int(os.getenv("SCHEDULE_MINUTE", "59"))
SCHEDULE_TIMEZONE: str  = os.getenv("SCHEDULE_TIMEZONE", "America/Chicago")

# How often the timer checks whether next_run has passed.  Must not exceed
# 60s or a minute-precision trigger can be missed.
CHECK_INTERVAL_SECONDS: int = int(os.getenv("CHECK_INTERVAL_SECONDS", "60"))

# Start the periodic timer when the service boots.
SCHEDULER_AUTOSTART: bool = _env_bool("SCHEDULER_AUTOSTART", "true")

# ── Egress allowlist ─────────────────────────────────────────────────────────
EGRESS_ALLOWLIST: List[str] = [
    "gumloop.com",            # weekly price sheet interface
] + [
    d.strip() for d in os.getenv("EGRESS_EXTRA_DOMAINS", "").split(",") if d.strip()
]

# ── Audit ────────────────────────────────────────────────────────────────────
# In-memory audit entries kept; the oldest are dropped beyond this.
AUDIT_LOG_MAX_ENTRIES: int = int(os.getenv("AUDIT_LOG_MAX_ENTRIES", "1000"))
