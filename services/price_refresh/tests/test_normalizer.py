"""
Tests for ScrapRate price sheet normalizer.

Requirements verified:
  - The record array is found as a bare list, under prices/data/results/
    rows/items, or under the first list-valued key.
  - Field names are mapped through FIELD_ALIASES.
  - Prices tolerate "$" and "," and must be finite and > 0.
  - A bad record is dropped without failing the rest of the batch.
"""

from __future__ import annotations

import math
import os
import sys
from datetime import datetime, timezone

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", "..", "packages"))
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from common.types import PriceSource
from normalizer import (
    DEFAULT_GRADE,
    DEFAULT_METAL_NAME,
    FIELD_ALIASES,
    NormalizationSkip,
    ParseError,
    extract_field,
    extract_records,
    normalize,
    normalize_record,
    normalize_response,
    parse_price,
    parse_timestamp,
)

FETCHED_AT = datetime(2024, 1, 9, 5, 59, tzinfo=timezone.utc)


def copper(**overrides) -> dict:
    item = {"metalId": "copper-1", "metalName": "Copper", "grade": "#1 Bare Bright Copper", "nationalPrice": 3.5}
    item.update(overrides)
    return item


# ── extract_records() ─────────────────────────────────────────────────────────

class TestExtractRecords:
    def test_bare_list(self):
        assert extract_records([copper()]) == [copper()]

    @pytest.mark.parametrize("key", ["prices", "data", "results", "rows", "items"])
    def test_conventional_keys(self, key):
        assert extract_records({key: [copper()]}) == [copper()]

    def test_conventional_keys_probed_in_order(self):
        body = {"items": [{"id": "i"}], "prices": [{"id": "p"}], "data": [{"id": "d"}]}
        assert extract_records(body) == [{"id": "p"}]

    def test_first_list_valued_key_as_last_resort(self):
        body = {"status": "ok", "count": 1, "metals": [copper()], "other": [1]}
        assert extract_records(body) == [copper()]

    def test_conventional_key_not_a_list_is_skipped(self):
        body = {"data": {"prices": "n/a"}, "sheet": [copper()]}
        assert extract_records(body) == [copper()]

    def test_object_without_list_raises(self):
        with pytest.raises(ParseError):
            extract_records({"status": "ok", "message": "no data"})

    @pytest.mark.parametrize("body", ["just text", 42, None, True])
    def test_scalar_body_raises(self, body):
        with pytest.raises(ParseError):
            extract_records(body)


# ── Field helpers ─────────────────────────────────────────────────────────────

class TestExtractField:
    def test_first_alias_wins(self):
        item = {"price": 1.0, "nationalPrice": 2.0}
        assert extract_field(item, FIELD_ALIASES["national_price"]) == 2.0

    def test_blank_strings_and_none_are_skipped(self):
        item = {"metalName": "  ", "metal_name": None, "name": "Brass"}
        assert extract_field(item, FIELD_ALIASES["metal_name"]) == "Brass"

    def test_missing_returns_none(self):
        assert extract_field({}, FIELD_ALIASES["grade"]) is None


class TestParsePrice:
    @pytest.mark.parametrize("raw, expected", [
        (3.5, 3.5),
        (2, 2.0),
        ("3.50", 3.5),
        ("$3.50", 3.5),
        ("$1,204.75", 1204.75),
        (" 0.65 /lb", 0.65),
        ("3.50/LB", 3.5),
        ("1e2", 100.0),
        ("2.5E-1", 0.25),
    ])
    def test_valid(self, raw, expected):
        assert parse_price(raw) == pytest.approx(expected)

    @pytest.mark.parametrize("raw", [
        -1, 0, "0.00", "-2.5", "abc", "", "N/A", "1.2.3", "1e400", "nan",
        math.inf, math.nan, 10 ** 400, True, None, [3.5], {"usd": 3.5},
    ])
    def test_invalid(self, raw):
        with pytest.raises(NormalizationSkip):
            parse_price(raw)


class TestParseTimestamp:
    def test_iso_with_z(self):
        assert parse_timestamp("2024-01-01T00:00:00Z", FETCHED_AT) == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_iso_with_offset(self):
        ts = parse_timestamp("2024-01-01T00:00:00-06:00", FETCHED_AT)
        assert ts == datetime(2024, 1, 1, 6, 0, tzinfo=timezone.utc)

    def test_naive_iso_assumed_utc(self):
        assert parse_timestamp("2024-01-01 12:00:00", FETCHED_AT).tzinfo == timezone.utc

    def test_epoch_seconds(self):
        assert parse_timestamp(1704067200, FETCHED_AT) == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_epoch_milliseconds(self):
        assert parse_timestamp(1704067200000, FETCHED_AT) == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_epoch_digit_string(self):
        assert parse_timestamp("1704067200", FETCHED_AT) == datetime(2024, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("raw", [10 ** 400, -(10 ** 400), 1e300, "9" * 400, "\u00b2"])
    def test_out_of_range_epoch_falls_back_to_fetch_time(self, raw):
        assert parse_timestamp(raw, FETCHED_AT) == FETCHED_AT

    @pytest.mark.parametrize("raw", [None, "last monday", {"ts": 1}, False])
    def test_unusable_falls_back_to_fetch_time(self, raw):
        assert parse_timestamp(raw, FETCHED_AT) == FETCHED_AT


# ── normalize_record() ────────────────────────────────────────────────────────

class TestNormalizeRecord:
    def test_canonical_field_names(self):
        rec = normalize_record(copper(), FETCHED_AT)
        assert rec.metal_id == "copper-1"
        assert rec.metal_name == "Copper"
        assert rec.grade == "#1 Bare Bright Copper"
        assert rec.national_price == 3.5
        assert rec.timestamp == FETCHED_AT
        assert rec.source == PriceSource.REMOTE

    def test_snake_case_aliases(self):
        rec = normalize_record(
            {"metal_id": "brass-red", "metal_name": "Brass", "metal_grade": "Red Brass",
             "national_price": "2.50", "updated_at": "2024-01-02T00:00:00Z"},
            FETCHED_AT,
        )
        assert (rec.metal_id, rec.metal_name, rec.grade, rec.national_price) == ("brass-red", "Brass", "Red Brass", 2.5)
        assert rec.timestamp == datetime(2024, 1, 2, tzinfo=timezone.utc)

    @pytest.mark.parametrize("alias", ["price", "value", "pricePerLb", "rate", "amount"])
    def test_price_aliases(self, alias):
        rec = normalize_record({"id": "steel-heavy", "name": "Steel", alias: 0.12}, FETCHED_AT)
        assert rec.national_price == pytest.approx(0.12)

    def test_numeric_id_is_stringified(self):
        assert normalize_record({"id": 17, "name": "Lead", "price": 0.4}, FETCHED_AT).metal_id == "17"

    def test_missing_name_and_grade_get_defaults(self):
        rec = normalize_record({"id": "x-1", "price": 1.0}, FETCHED_AT)
        assert rec.metal_name == DEFAULT_METAL_NAME
        assert rec.grade == DEFAULT_GRADE

    def test_missing_id_derived_from_name_and_grade(self):
        rec = normalize_record({"name": "Copper", "grade": "#1 Bare Bright", "price": 3.5}, FETCHED_AT)
        assert rec.metal_id == "copper-1-bare-bright"

    def test_missing_id_and_name_is_skipped(self):
        with pytest.raises(NormalizationSkip):
            normalize_record({"grade": "#2", "price": 3.2}, FETCHED_AT)

    def test_missing_price_is_skipped(self):
        with pytest.raises(NormalizationSkip):
            normalize_record({"id": "copper-2", "name": "Copper"}, FETCHED_AT)

    @pytest.mark.parametrize("item", ["copper", 3.5, None, ["copper-1", 3.5]])
    def test_non_object_is_skipped(self, item):
        with pytest.raises(NormalizationSkip):
            normalize_record(item, FETCHED_AT)


# ── normalize() / normalize_response() ────────────────────────────────────────

class TestNormalize:
    def test_documented_example_body(self):
        body = {"data": [{
            "metal_id": "copper-1", "name": "Copper", "metal_grade": "#1",
            "price": "$3.50", "date": "2024-01-01T00:00:00Z",
        }]}
        result = normalize_response(body, FETCHED_AT)
        assert len(result.accepted) == 1
        rec = result.accepted[0]
        assert rec.metal_id == "copper-1"
        assert rec.metal_name == "Copper"
        assert rec.grade == "#1"
        assert rec.national_price == 3.50
        assert rec.source == PriceSource.REMOTE
        assert rec.timestamp == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_invalid_records_dropped_others_kept(self):
        items = [
            copper(),
            {"id": "neg", "name": "Bad", "price": -1},
            {"id": "txt", "name": "Bad", "price": "abc"},
            {"id": "brass-yellow", "name": "Brass", "price": 2.1},
        ]
        result = normalize(items, FETCHED_AT)
        assert [r.metal_id for r in result.accepted] == ["copper-1", "brass-yellow"]
        assert len(result.rejected) == 2

    def test_oversized_values_do_not_abort_batch(self):
        items = [
            {"id": "a", "price": 3.5},
            {"id": "huge-price", "price": 10 ** 400},
            {"id": "huge-ts", "price": 1.0, "timestamp": 10 ** 400},
            {"id": "super-ts", "price": 1.0, "timestamp": "²"},
            {"id": 10 ** 5000, "price": 1.0},
        ]
        result = normalize(items, FETCHED_AT)
        assert [r.metal_id for r in result.accepted] == ["a", "huge-ts", "super-ts"]
        assert all(r.timestamp == FETCHED_AT for r in result.accepted[1:])
        assert len(result.rejected) == 2

    def test_rejection_reason_included(self):
        result = normalize([{"id": "neg", "name": "Bad", "price": -1}], FETCHED_AT)
        item, reason = result.rejected[0]
        assert item["id"] == "neg"
        assert "positive" in reason

    def test_all_invalid_produces_no_accepted(self):
        result = normalize([{"id": "a", "price": 0}, "junk"], FETCHED_AT)
        assert result.accepted == []
        assert len(result.rejected) == 2

    def test_empty_incoming_produces_empty_result(self):
        result = normalize([], FETCHED_AT)
        assert result.accepted == []
        assert result.rejected == []

    def test_summary(self):
        result = normalize([copper(), {"id": "x"}], FETCHED_AT)
        assert result.summary == "Normalisation complete: 1 accepted, 1 rejected"

    def test_response_without_array_raises(self):
        with pytest.raises(ParseError):
            normalize_response({"error": "quota exceeded"}, FETCHED_AT)
