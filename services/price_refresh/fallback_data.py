"""
ScrapRate — Built-in national price sheet.

Used when the pricing endpoint is unreachable or returns nothing usable and
no earlier batch is cached.  Values are typical US national averages in
USD per lb; refresh them by hand when the market moves a lot.
"""

from __future__ import annotations

import os
import sys
from datetime import datetime
from typing import Any, Dict, List, Mapping, Sequence

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", "packages"))

from common.types import PriceRecord, PriceSource

DEFAULT_FALLBACK_PRICES: List[Dict[str, Any]] = [
    {"metal_id": "copper-1",           "metal_name": "Copper",          "grade": "#1 Bare Bright Copper",     "national_price": 3.50},
    {"metal_id": "copper-2",           "metal_name": "Copper",          "grade": "#2 Copper",                 "national_price": 3.20},
    {"metal_id": "aluminum-extrusion", "metal_name": "Aluminum",        "grade": "Aluminum Extrusion",        "national_price": 0.65},
    {"metal_id": "aluminum-cans",      "metal_name": "Aluminum",        "grade": "Aluminum Cans (UBC)",       "national_price": 0.45},
    {"metal_id": "brass-yellow",       "metal_name": "Brass",           "grade": "Yellow Brass",              "national_price": 2.10},
    {"metal_id": "brass-red",          "metal_name": "Brass",           "grade": "Red Brass",                 "national_price": 2.50},
    {"metal_id": "steel-heavy",        "metal_name": "Steel",           "grade": "Heavy Melting Steel (HMS)", "national_price": 0.12},
    {"metal_id": "steel-light",        "metal_name": "Steel",           "grade": "Light Iron",                "national_price": 0.08},
    {"metal_id": "stainless-304",      "metal_name": "Stainless Steel", "grade": "304 Stainless",             "national_price": 0.55},
    {"metal_id": "stainless-316",      "metal_name": "Stainless Steel", "grade": "316 Stainless",             "national_price": 0.75},
]


def build_fallback_batch(
    seed: Sequence[Mapping[str, Any]],
    fetched_at: datetime,
) -> List[PriceRecord]:
    """Stamp the seed rows with `fetched_at` and tag them as fallback data."""
    return [
        PriceRecord(
            metal_id       = row["metal_id"],
            metal_name     = row["metal_name"],
            grade          = row["grade"],
            national_price = float(row["national_price"]),
            timestamp      = fetched_at,
            source         = PriceSource.FALLBACK,
        )
        for row in seed
        if float(row["national_price"]) > 0
    ]
