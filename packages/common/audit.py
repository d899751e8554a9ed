"""
ScrapRate — Append-only audit log of price refresh cycles.

There is no database, so entries live in process memory and reset on
restart.  Only the newest AUDIT_LOG_MAX_ENTRIES are kept.  Each entry contains:
  - request_id:   UUID (v4), correlates the log lines of one cycle
  - actor:        who started the cycle ("scheduled", "manual")
  - action:       short verb/noun describing what happened
  - payload_hash: SHA256 hex of the serialised outcome payload
"""

from __future__ import annotations

import hashlib
import json
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque

from common.config import AUDIT_LOG_MAX_ENTRIES


def _sha256(payload: Any) -> str:
    """Return SHA-256 hex digest of the JSON-serialised payload."""
    raw = json.dumps(payload, default=str, sort_keys=True).encode()
    return hashlib.sha256(raw).hexdigest()


def new_request_id() -> uuid.UUID:
    """Generate a fresh request UUID."""
    return uuid.uuid4()


_IN_MEMORY_LOG: Deque[dict] = deque(maxlen=AUDIT_LOG_MAX_ENTRIES)


def write_audit_entry(
    *,
    request_id: uuid.UUID,
    actor:       str,
    action:      str,
    payload:     Any,
) -> dict:
    """
    Append an entry and return it.

    Args:
        request_id: UUID identifying the current cycle.
        actor:      Who is performing the action.
        action:     Short description, e.g. "price_refresh_cycle".
        payload:    Any JSON-serialisable object.  Its hash is stored.
    """
    entry = {
        "request_id":   str(request_id),
        "actor":        actor,
        "action":       action,
        "payload_hash": _sha256(payload),
        "created_at":   datetime.now(tz=timezone.utc).isoformat(),
    }
    _IN_MEMORY_LOG.append(entry)
    return entry


def get_memory_log() -> list[dict]:
    """Return a copy of the in-memory audit log."""
    return list(_IN_MEMORY_LOG)


def clear_memory_log() -> None:
    """Clear in-memory log (test teardown only)."""
    _IN_MEMORY_LOG.clear()
