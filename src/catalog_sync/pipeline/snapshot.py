from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Type, TypeVar

from pydantic import ValidationError

from ..catalog.models import ArchiveEntry, ItemRecord, is_keyable
from ..utils.json_utils import dumps_pretty, safe_load_json, write_text_atomic

R = TypeVar("R", bound=ItemRecord)


def sort_key(record: ItemRecord) -> Tuple[str, str]:
    return (record.market.casefold(), record.asin.casefold())


def sorted_records(records: Iterable[R]) -> List[R]:
    return sorted(records, key=sort_key)


def serialize_records(records: Iterable[ItemRecord]) -> str:
    return dumps_pretty([r.model_dump() for r in sorted_records(records)])


def load_snapshot(path: Path, model: Type[R]) -> Tuple[List[R], int, Optional[str]]:
    """
    Load a snapshot array, tolerating a missing or malformed file.

    Returns:
      - records that carry both market and asin
      - number of entries dropped (not an object, or no usable identity)
      - error message when the whole file was unusable, else None
    """
    data, err = safe_load_json(path)
    if err:
        return [], 0, err
    if not isinstance(data, list):
        return [], 0, f"Snapshot at {path} is not a JSON array"

    records: List[R] = []
    dropped = 0
    for item in data:
        if not isinstance(item, dict):
            dropped += 1
            continue
        try:
            rec = model.model_validate(item)
        except ValidationError:
            dropped += 1
            continue
        if not is_keyable(rec.market, rec.asin):
            dropped += 1
            continue
        records.append(rec)
    return records, dropped, None


def write_snapshots(
    active: Iterable[ItemRecord],
    archive: Iterable[ArchiveEntry],
    products_path: Path,
    archive_path: Path,
) -> None:
    # Serialize both before touching either file.
    products_text = serialize_records(active)
    archive_text = serialize_records(archive)
    write_text_atomic(products_path, products_text)
    write_text_atomic(archive_path, archive_text)
