from __future__ import annotations

from typing import Dict, Iterable, List, Tuple
from urllib.parse import urlparse

from .models import ItemRecord


def is_absolute_http_url(value: str | None) -> bool:
    s = (value or "").strip()
    if not s:
        return False
    try:
        parsed = urlparse(s)
    except ValueError:
        return False
    return parsed.scheme.lower() in {"http", "https"} and bool(parsed.netloc)


def completeness_rank(record: ItemRecord) -> Tuple[bool, bool, int]:
    return (
        is_absolute_http_url(record.link),
        bool(record.image_url.strip()),
        len(record.title.strip()),
    )


def prefer(incumbent: ItemRecord, challenger: ItemRecord) -> ItemRecord:
    """
    Pick the more complete of two records sharing an identity key.
    Ties keep the incumbent (first seen).
    """
    if completeness_rank(challenger) > completeness_rank(incumbent):
        return challenger
    return incumbent


def dedupe_records(records: Iterable[ItemRecord]) -> Tuple[List[ItemRecord], int]:
    """
    Returns:
      - one record per key, in first-seen order
      - number of collisions resolved
    """
    chosen: Dict[str, ItemRecord] = {}
    collisions = 0
    for rec in records:
        key = rec.key
        if key in chosen:
            collisions += 1
            chosen[key] = prefer(chosen[key], rec)
        else:
            chosen[key] = rec
    return list(chosen.values()), collisions
