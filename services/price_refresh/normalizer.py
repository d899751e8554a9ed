"""
ScrapRate — Price sheet normalizer.

Responsibilities:
  1. Locate the record array inside a JSON body whose shape is not fixed.
  2. Map each record's field names onto PriceRecord via FIELD_ALIASES.
  3. Parse prices that arrive as numbers or as strings like "$3.50/lb".
  4. Drop individual bad records; never fail the whole batch for one of them.

The pricing endpoint is an untrusted, evolving interface, so every field is
looked up through an ordered alias list rather than a fixed key.
"""

from __future__ import annotations

import math
import os
import re
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", "packages"))

from common.logging_util import get_logger
from common.types import PriceRecord, PriceSource

log = get_logger(__name__)


# ── Exceptions ────────────────────────────────────────────────────────────────

class ParseError(Exception):
    """Raised when no record array can be found in the response body."""


class NormalizationSkip(ValueError):
    """Raised for a single record that cannot be turned into a PriceRecord."""


# ── Alias tables ──────────────────────────────────────────────────────────────

# Keys probed, in order, when the body is an object rather than a bare list.
RECORD_CONTAINER_KEYS: Tuple[str, ...] = ("prices", "data", "results", "rows", "items")

# canonical field → source-field aliases, first match wins
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "metal_id":       ("metalId", "metal_id", "id", "slug", "metalSlug", "metal_slug"),
    "metal_name":     ("metalName", "metal_name", "name", "metal"),
    "grade":          ("grade", "metal_grade", "metalGrade", "type"),
    "national_price": ("nationalPrice", "national_price", "price", "value",
                       "pricePerLb", "price_per_lb", "rate", "amount"),
    "timestamp":      ("timestamp", "updated_at", "updatedAt", "date", "time"),
}

DEFAULT_METAL_NAME = "Unknown Metal"
DEFAULT_GRADE      = "Standard"

# Currency symbols, thousands separators and whitespace; exponents survive.
_PRICE_NOISE = re.compile(r"[$€£,\s]")
_PRICE_UNIT  = re.compile(r"/\s*(lb|lbs|pound)\.?$", re.IGNORECASE)
_SLUG_NOISE  = re.compile(r"[^a-z0-9]+")

# Epoch values above this are treated as milliseconds.
_EPOCH_MS_THRESHOLD = 10_000_000_000


# ── Response shape probing ────────────────────────────────────────────────────

def extract_records(payload: Any) -> List[Any]:
    """
    Return the record array from a decoded JSON body.

    Probe order: the body itself if it is a list, then RECORD_CONTAINER_KEYS,
    then the first key whose value is a list.

    Raises:
        ParseError: if no list is found.
    """
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, Mapping):
        raise ParseError(f"Unexpected response body type: {type(payload).__name__}")

    for key in RECORD_CONTAINER_KEYS:
        value = payload.get(key)
        if isinstance(value, list):
            return value

    for key, value in payload.items():
        if isinstance(value, list):
            log.info("Record array found under non-standard key '%s'", key)
            return value

    raise ParseError(f"No record array in response (keys: {sorted(payload)[:10]})")


# ── Field extraction ──────────────────────────────────────────────────────────

def extract_field(item: Mapping[str, Any], aliases: Sequence[str]) -> Optional[Any]:
    """Return the first non-empty value among `aliases`, or None."""
    for alias in aliases:
        value = item.get(alias)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def parse_price(raw: Any) -> float:
    """
    Parse a per-pound price.

    Accepts ints, floats and strings carrying currency symbols, thousands
    separators or unit suffixes ("$1,204.50", "3.50/lb").  The result must be
    finite and strictly positive.

    Raises:
        NormalizationSkip: if the value cannot be used as a price.
    """
    if isinstance(raw, bool):
        raise NormalizationSkip(f"price is a boolean: {raw!r}")

    if isinstance(raw, str):
        cleaned = _PRICE_NOISE.sub("", _PRICE_UNIT.sub("", raw.strip()))
    elif isinstance(raw, (int, float)):
        cleaned = raw
    else:
        raise NormalizationSkip(f"unsupported price type: {type(raw).__name__}")

    try:
        value = float(cleaned)
    except (OverflowError, ValueError):
        raise NormalizationSkip(f"unparseable price: {raw!r:.80}")

    if not math.isfinite(value) or value <= 0:
        raise NormalizationSkip(f"price must be positive and finite: {raw!r:.80}")
    return value


def parse_timestamp(raw: Any, default: datetime) -> datetime:
    """
    Parse ISO-8601 strings or epoch seconds/milliseconds into an aware
    datetime.  Falls back to `default` when the value is missing or garbled;
    a bad timestamp is not a reason to drop an otherwise valid price.
    """
    if raw is None or isinstance(raw, bool):
        return default

    if isinstance(raw, datetime):
        parsed = raw
    elif isinstance(raw, (int, float)) or (isinstance(raw, str) and raw.strip().isdecimal()):
        try:
            seconds = float(raw)
            if seconds > _EPOCH_MS_THRESHOLD:
                seconds /= 1000.0
            parsed = datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return default
    elif isinstance(raw, str):
        text = raw.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return default
    else:
        return default

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _slugify(*parts: str) -> str:
    return _SLUG_NOISE.sub("-", " ".join(parts).lower()).strip("-")


def normalize_record(item: Any, fetched_at: datetime) -> PriceRecord:
    """
    Convert one raw element of the price sheet into a PriceRecord.

    Raises:
        NormalizationSkip: if the element is not an object, has no usable
            identifier, or has no valid price.
    """
    if not isinstance(item, Mapping):
        raise NormalizationSkip(f"record is not an object: {type(item).__name__}")

    raw_name  = extract_field(item, FIELD_ALIASES["metal_name"])
    raw_grade = extract_field(item, FIELD_ALIASES["grade"])
    raw_id    = extract_field(item, FIELD_ALIASES["metal_id"])

    name  = str(raw_name).strip() if raw_name is not None else DEFAULT_METAL_NAME
    grade = str(raw_grade).strip() if raw_grade is not None else DEFAULT_GRADE

    if raw_id is not None:
        metal_id = str(raw_id).strip()
    elif raw_name is not None:
        metal_id = _slugify(name, grade)
    else:
        raise NormalizationSkip("record has neither an id nor a name")

    raw_price = extract_field(item, FIELD_ALIASES["national_price"])
    if raw_price is None:
        raise NormalizationSkip(f"no price field for {metal_id}")
    price = parse_price(raw_price)

    return PriceRecord(
        metal_id       = metal_id,
        metal_name     = name,
        grade          = grade,
        national_price = price,
        timestamp      = parse_timestamp(extract_field(item, FIELD_ALIASES["timestamp"]), fetched_at),
        source         = PriceSource.REMOTE,
    )


# ── Main normalizer ───────────────────────────────────────────────────────────

class NormalizationResult:
    """Container for the outcome of a normalisation run."""

    def __init__(self) -> None:
        self.accepted: List[PriceRecord] = []
        self.rejected: List[Tuple[Any, str]] = []  # (raw item, reason)

    def accept(self, record: PriceRecord) -> None:
        self.accepted.append(record)
        log.debug(
            "ACCEPTED %s (%s) value=%s",
            record.metal_id, record.grade, record.national_price,
        )

    def reject(self, item: Any, reason: str) -> None:
        self.rejected.append((item, reason))
        log.warning("REJECTED record reason=%s", reason)

    @property
    def summary(self) -> str:
        return (
            f"Normalisation complete: "
            f"{len(self.accepted)} accepted, {len(self.rejected)} rejected"
        )


def normalize(items: Sequence[Any], fetched_at: datetime) -> NormalizationResult:
    """
    Normalise a sequence of raw records.

    Args:
        items:       Elements of the record array found by extract_records().
        fetched_at:  Cycle instant; used for records without a timestamp.

    Returns:
        NormalizationResult with .accepted and .rejected lists.
    """
    result = NormalizationResult()
    for item in items:
        try:
            result.accept(normalize_record(item, fetched_at))
        except NormalizationSkip as exc:
            result.reject(item, str(exc))
        except (ValueError, OverflowError, ValidationError) as exc:
            result.reject(item, f"{type(exc).__name__}: {exc!s:.200}")

    log.info(result.summary)
    return result


def normalize_response(payload: Any, fetched_at: datetime) -> NormalizationResult:
    """Probe `payload` for its record array and normalise it.  Raises ParseError."""
    return normalize(extract_records(payload), fetched_at)
