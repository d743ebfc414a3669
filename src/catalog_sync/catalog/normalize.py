from __future__ import annotations

import re
from typing import Dict, List, Optional, Sequence, Tuple

from .models import ItemRecord, is_keyable

_SPACE_RE = re.compile(r"\s+")

# canonical field -> accepted source headers, first match wins
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "market": ("market", "country", "site"),
    "asin": ("asin", "product id", "product_id"),
    "title": ("title", "name"),
    "link": ("link", "url"),
    "image_url": ("image_url", "image url", "imageurl", "image"),
    "remark": ("remark", "note"),
    "status": ("status", "state"),
    "discount_price": ("discount price", "discount_price", "discount"),
    "commission": ("commission", "fee"),
}

IDENTITY_FIELDS = ("market", "asin")


def normalize_header(value: str | None) -> str:
    if value is None:
        return ""
    return _SPACE_RE.sub(" ", str(value)).strip().lower()


def build_header_map(headers: Sequence[str]) -> Dict[str, int]:
    """
    Resolve each canonical field to a column index using FIELD_ALIASES.
    Fields with no matching header are left out of the map.
    """
    positions: Dict[str, int] = {}
    for idx, h in enumerate(headers):
        # duplicated header names: keep the leftmost column
        positions.setdefault(normalize_header(h), idx)

    header_map: Dict[str, int] = {}
    for field, aliases in FIELD_ALIASES.items():
        for alias in aliases:
            if alias in positions:
                header_map[field] = positions[alias]
                break
    return header_map


def missing_identity_columns(header_map: Dict[str, int]) -> List[str]:
    return [f for f in IDENTITY_FIELDS if f not in header_map]


def _cell(row: Sequence[str], header_map: Dict[str, int], field: str) -> str:
    idx = header_map.get(field)
    if idx is None or idx >= len(row):
        return ""
    value = row[idx]
    return "" if value is None else str(value).strip()


def normalize_row(row: Sequence[str], header_map: Dict[str, int], updated_at: str) -> Optional[ItemRecord]:
    """
    Returns None when the row has no usable market or asin; callers count it
    as skipped.
    """
    market = _cell(row, header_map, "market")
    asin = _cell(row, header_map, "asin")
    if not is_keyable(market, asin):
        return None
    return ItemRecord(
        market=market,
        asin=asin,
        title=_cell(row, header_map, "title"),
        link=_cell(row, header_map, "link"),
        image_url=_cell(row, header_map, "image_url"),
        remark=_cell(row, header_map, "remark"),
        discount_price=_cell(row, header_map, "discount_price"),
        commission=_cell(row, header_map, "commission"),
        status=_cell(row, header_map, "status"),
        updated_at=updated_at,
    )
