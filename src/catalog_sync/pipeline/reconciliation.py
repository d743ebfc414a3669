from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ..catalog.classify import archive_reason, classify
from ..catalog.dedup import dedupe_records
from ..catalog.models import REASON_REMOVED, ArchiveEntry, ItemRecord
from ..catalog.normalize import build_header_map, missing_identity_columns, normalize_row
from ..errors import FeedError
from ..feed.decode import FeedTable
from ..utils.time import utc_now_iso
from .snapshot import sorted_records


@dataclass
class RunReport:
    rows_total: int = 0
    rows_skipped: int = 0
    duplicates_resolved: int = 0
    offline: int = 0
    excluded: int = 0
    removed_from_active: int = 0
    reactivated: int = 0
    prior_dropped: int = 0
    active_count: int = 0
    archive_count: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class ReconcileResult:
    active: List[ItemRecord]
    archive: List[ArchiveEntry]
    report: RunReport


def merge_archive_entry(
    existing: Optional[ArchiveEntry],
    record: ItemRecord,
    reason: str,
    now: str,
) -> ArchiveEntry:
    """
    Upsert one archive entry.

    Precedence per field:
      - item fields (title, link, ...): the incoming record wins, empty values included
      - archived_reason / archived_at: set when the entry is new or the reason changed,
        otherwise kept from the existing entry
      - last_seen_at: always the run clock
    """
    fields = {name: getattr(record, name) for name in ItemRecord.model_fields}
    if existing is None or existing.archived_reason != reason:
        archived_at = now
    else:
        archived_at = existing.archived_at or now
    return ArchiveEntry(**fields, archived_reason=reason, archived_at=archived_at, last_seen_at=now)


def _index_by_key(records: Iterable[ItemRecord]) -> Dict[str, ItemRecord]:
    out: Dict[str, ItemRecord] = {}
    for rec in records:
        out.setdefault(rec.key, rec)
    return out


def _carry_updated_at(rec: ItemRecord, prev: Optional[ItemRecord]) -> ItemRecord:
    # An unchanged row keeps its previous timestamp so the snapshot stays byte-stable.
    if prev is not None and prev.updated_at and rec.same_content(prev):
        return rec.model_copy(update={"updated_at": prev.updated_at})
    return rec


def reconcile_records(
    records: Iterable[ItemRecord],
    prior_active: Iterable[ItemRecord],
    prior_archive: Iterable[ArchiveEntry],
    now: Optional[str] = None,
    report: Optional[RunReport] = None,
) -> ReconcileResult:
    """
    Merge one run's normalized records with the prior active/archive state.

    Phases, in order: classify and dedupe the incoming records, upsert
    excluded/offline records into the archive, archive prior actives that
    are gone from the feed, then drop archive entries that are active again.
    """
    now = now or utc_now_iso()
    report = report or RunReport()

    prior_active_map = _index_by_key(prior_active)
    archive_map: Dict[str, ArchiveEntry] = {}
    for entry in prior_archive:
        archive_map[entry.key] = entry

    # Classify + dedup
    candidates: List[ItemRecord] = []
    exclusions: List[Tuple[ItemRecord, str]] = []
    for rec in records:
        classification = classify(rec)
        reason = archive_reason(classification)
        if reason is None:
            candidates.append(rec)
            continue
        if classification == "excluded":
            report.excluded += 1
        else:
            report.offline += 1
        exclusions.append((rec, reason))

    deduped, collisions = dedupe_records(candidates)
    report.duplicates_resolved += collisions
    active_map: Dict[str, ItemRecord] = {}
    for rec in deduped:
        active_map[rec.key] = _carry_updated_at(rec, prior_active_map.get(rec.key))

    # Absorb exclusions; an active row for the same key in this run wins.
    touched: Set[str] = set()
    for rec, reason in exclusions:
        key = rec.key
        if key in active_map:
            continue
        archive_map[key] = merge_archive_entry(archive_map.get(key), rec, reason, now)
        touched.add(key)

    # Disappearances. This run's explicit classification wins, and a key
    # already archived keeps its reason and archived_at.
    for key, prev in prior_active_map.items():
        if key in active_map or key in touched:
            continue
        report.removed_from_active += 1
        existing = archive_map.get(key)
        if existing is not None:
            archive_map[key] = existing.model_copy(update={"last_seen_at": now})
            continue
        archive_map[key] = merge_archive_entry(None, prev, REASON_REMOVED, now)

    # Reactivation keeps membership exclusive.
    for key in active_map:
        if archive_map.pop(key, None) is not None:
            report.reactivated += 1

    active = sorted_records(active_map.values())
    archive = sorted_records(archive_map.values())
    report.active_count = len(active)
    report.archive_count = len(archive)
    return ReconcileResult(active=active, archive=archive, report=report)


def reconcile_feed(
    table: FeedTable,
    prior_active: Iterable[ItemRecord],
    prior_archive: Iterable[ArchiveEntry],
    now: Optional[str] = None,
) -> ReconcileResult:
    """
    Normalize a decoded feed and reconcile it.
    Raises FeedError when the header lacks identity columns or no row is usable.
    """
    header_map = build_header_map(table.headers)
    missing = missing_identity_columns(header_map)
    if missing:
        raise FeedError(
            f"CSV header does not include {', '.join(repr(m) for m in missing)}. Probably not the correct export."
        )

    now = now or utc_now_iso()
    report = RunReport()
    records: List[ItemRecord] = []
    for row in table.rows:
        report.rows_total += 1
        rec = normalize_row(row, header_map, updated_at=now)
        if rec is None:
            report.rows_skipped += 1
            continue
        records.append(rec)

    if not records:
        raise FeedError(f"CSV has {report.rows_total} data rows but none with both market and asin.")

    return reconcile_records(records, prior_active, prior_archive, now=now, report=report)
