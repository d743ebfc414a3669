from __future__ import annotations

import pytest

from catalog_sync.catalog.models import (
    REASON_EXCLUDED,
    REASON_OFFLINE,
    REASON_REMOVED,
    ArchiveEntry,
    ItemRecord,
)
from catalog_sync.errors import FeedError
from catalog_sync.feed.decode import FeedTable, parse_feed
from catalog_sync.pipeline.reconciliation import merge_archive_entry, reconcile_feed, reconcile_records
from catalog_sync.pipeline.snapshot import serialize_records

T0 = "2026-01-01T00:00:00Z"
T1 = "2026-01-02T00:00:00Z"
T2 = "2026-01-03T00:00:00Z"


def _rec(market: str, asin: str, **kw) -> ItemRecord:
    return ItemRecord(market=market, asin=asin, **kw)


def _keys(records) -> list:
    return [r.key for r in records]


def _by_key(records) -> dict:
    return {r.key: r for r in records}


def test_scenario_a_new_active_item():
    table = parse_feed("market,asin,status\nUS,ABC123,\n")
    result = reconcile_feed(table, [], [], now=T0)
    assert _keys(result.active) == ["US|ABC123"]
    assert result.archive == []
    assert result.report.rows_total == 1
    assert result.report.active_count == 1


def test_scenario_b_disappeared_item_is_archived():
    prior = [_rec("US", "ABC123", title="Lamp", updated_at=T0)]
    result = reconcile_records([_rec("US", "OTHER1")], prior, [], now=T1)
    assert _keys(result.active) == ["US|OTHER1"]
    assert _keys(result.archive) == ["US|ABC123"]
    entry = result.archive[0]
    assert entry.archived_reason == REASON_REMOVED
    assert entry.archived_at == T1
    assert entry.last_seen_at == T1
    # fields carried from the prior active record
    assert entry.title == "Lamp"
    assert entry.updated_at == T0
    assert result.report.removed_from_active == 1


def test_scenario_c_duplicate_resolves_to_complete_row():
    text = (
        "market,asin,title,link,image_url\n"
        "US,ABC123,Lamp,,\n"
        "US,ABC123,Lamp,https://www.amazon.com/dp/ABC123,https://m.media-amazon.com/images/I/1.jpg\n"
    )
    result = reconcile_feed(parse_feed(text), [], [], now=T0)
    assert len(result.active) == 1
    winner = result.active[0]
    assert winner.link == "https://www.amazon.com/dp/ABC123"
    assert winner.image_url == "https://m.media-amazon.com/images/I/1.jpg"
    assert result.report.duplicates_resolved == 1


def test_scenario_d_numeric_asin_excluded_even_if_active():
    table = parse_feed("market,asin,status\nDE,1234567,active\nDE,B0VALID1,active\n")
    result = reconcile_feed(table, [], [], now=T0)
    assert _keys(result.active) == ["DE|B0VALID1"]
    assert _keys(result.archive) == ["DE|1234567"]
    assert result.archive[0].archived_reason == REASON_EXCLUDED
    assert result.report.excluded == 1


def test_offline_row_archived_with_offline_reason():
    result = reconcile_records([_rec("US", "ABC123", status="offline")], [], [], now=T0)
    assert result.active == []
    assert result.archive[0].archived_reason == REASON_OFFLINE
    assert result.report.offline == 1


def test_offline_this_run_beats_disappearance():
    prior = [_rec("US", "ABC123", updated_at=T0)]
    result = reconcile_records([_rec("US", "ABC123", status="stopped")], prior, [], now=T1)
    assert result.active == []
    assert result.archive[0].archived_reason == REASON_OFFLINE
    assert result.archive[0].status == "stopped"
    assert result.report.removed_from_active == 0


def test_disappeared_key_already_archived_keeps_reason_and_archived_at():
    prior_active = [_rec("US", "ABC123", title="Lamp", updated_at=T0)]
    prior_archive = [
        ArchiveEntry(market="US", asin="ABC123", archived_reason=REASON_OFFLINE, archived_at=T0, last_seen_at=T0)
    ]
    result = reconcile_records([_rec("US", "OTHER1")], prior_active, prior_archive, now=T1)
    assert _keys(result.active) == ["US|OTHER1"]
    entry = _by_key(result.archive)["US|ABC123"]
    assert entry.archived_reason == REASON_OFFLINE
    assert entry.archived_at == T0
    assert entry.last_seen_at == T1
    assert result.report.removed_from_active == 1


def test_active_row_wins_over_offline_row_for_same_key():
    records = [_rec("US", "ABC123", status="offline"), _rec("US", "ABC123", status="")]
    result = reconcile_records(records, [], [], now=T0)
    assert _keys(result.active) == ["US|ABC123"]
    assert result.archive == []


def test_reactivated_item_leaves_archive():
    archive = [
        ArchiveEntry(market="US", asin="ABC123", archived_reason=REASON_REMOVED, archived_at=T0, last_seen_at=T0)
    ]
    result = reconcile_records([_rec("US", "ABC123")], [], archive, now=T1)
    assert _keys(result.active) == ["US|ABC123"]
    assert result.archive == []
    assert result.report.reactivated == 1


def test_untouched_archive_entries_are_retained():
    archive = [
        ArchiveEntry(market="FR", asin="OLD1", archived_reason=REASON_REMOVED, archived_at=T0, last_seen_at=T0),
        ArchiveEntry(market="FR", asin="OLD2", archived_reason="legacy_tag", archived_at=T0, last_seen_at=T0),
    ]
    result = reconcile_records([_rec("US", "ABC123")], [], archive, now=T1)
    kept = _by_key(result.archive)
    assert set(kept) == {"FR|OLD1", "FR|OLD2"}
    # history is not rewritten for entries this run did not observe
    assert kept["FR|OLD1"].last_seen_at == T0
    assert kept["FR|OLD2"].archived_reason == "legacy_tag"


def test_merge_archive_entry_precedence():
    existing = ArchiveEntry(
        market="US",
        asin="ABC123",
        title="Old title",
        remark="old remark",
        archived_reason=REASON_OFFLINE,
        archived_at=T0,
        last_seen_at=T0,
    )
    incoming = _rec("US", "ABC123", title="New title", status="off")

    same_reason = merge_archive_entry(existing, incoming, REASON_OFFLINE, T1)
    assert same_reason.title == "New title"
    # new values win even when empty
    assert same_reason.remark == ""
    assert same_reason.archived_at == T0
    assert same_reason.last_seen_at == T1

    changed = merge_archive_entry(same_reason, incoming, REASON_REMOVED, T2)
    assert changed.archived_reason == REASON_REMOVED
    assert changed.archived_at == T2
    assert changed.last_seen_at == T2

    fresh = merge_archive_entry(None, incoming, REASON_OFFLINE, T1)
    assert fresh.archived_at == T1 and fresh.last_seen_at == T1


def test_repeated_offline_keeps_archived_at_and_refreshes_last_seen():
    first = reconcile_records([_rec("US", "ABC123", status="off")], [], [], now=T0)
    second = reconcile_records([_rec("US", "ABC123", status="off")], first.active, first.archive, now=T1)
    entry = second.archive[0]
    assert entry.archived_at == T0
    assert entry.last_seen_at == T1


def test_no_loss_and_mutual_exclusion():
    prior_active = [
        _rec("US", "KEEP1"),
        _rec("US", "GONE1"),
        _rec("DE", "OFF1"),
        _rec("DE", "9999"),
    ]
    prior_archive = [ArchiveEntry(market="JP", asin="BACK1", archived_reason=REASON_REMOVED)]
    records = [
        _rec("US", "KEEP1"),
        _rec("DE", "OFF1", status="disabled"),
        _rec("DE", "9999"),
        _rec("JP", "BACK1"),
        _rec("UK", "NEW1"),
    ]
    result = reconcile_records(records, prior_active, prior_archive, now=T1)
    active = set(_keys(result.active))
    archive = set(_keys(result.archive))

    assert not active & archive
    for rec in prior_active:
        assert rec.key in active | archive
    assert active == {"US|KEEP1", "JP|BACK1", "UK|NEW1"}
    reasons = {e.key: e.archived_reason for e in result.archive}
    assert reasons == {
        "US|GONE1": REASON_REMOVED,
        "DE|OFF1": REASON_OFFLINE,
        "DE|9999": REASON_EXCLUDED,
    }


def test_keys_are_case_insensitive_across_runs():
    prior = [_rec("us", "abc123")]
    result = reconcile_records([_rec("US", "ABC123")], prior, [], now=T1)
    assert _keys(result.active) == ["US|ABC123"]
    assert result.archive == []


def test_idempotent_with_same_clock():
    text = "market;asin;title;status\nUS;B2;Two;\nDE;A1;One;\nDE;111;Num;\nUS;B3;Three;off\n"
    r1 = reconcile_feed(parse_feed(text), [], [], now=T0)
    r2 = reconcile_feed(parse_feed(text), [], [], now=T0)
    assert serialize_records(r1.active) == serialize_records(r2.active)
    assert serialize_records(r1.archive) == serialize_records(r2.archive)


def test_unchanged_feed_keeps_active_snapshot_byte_stable():
    text = "market,asin,title\nUS,B2,Two\nDE,A1,One\n"
    first = reconcile_feed(parse_feed(text), [], [], now=T0)
    second = reconcile_feed(parse_feed(text), first.active, first.archive, now=T1)
    assert serialize_records(first.active) == serialize_records(second.active)


def test_changed_row_gets_new_updated_at():
    first = reconcile_feed(parse_feed("market,asin,title\nUS,B2,Two\n"), [], [], now=T0)
    second = reconcile_feed(parse_feed("market,asin,title\nUS,B2,Two v2\n"), first.active, [], now=T1)
    assert second.active[0].updated_at == T1


def test_output_sorted_by_market_then_asin():
    records = [_rec("us", "b1"), _rec("DE", "Z9"), _rec("de", "a1"), _rec("US", "A2")]
    result = reconcile_records(records, [], [], now=T0)
    assert _keys(result.active) == ["DE|A1", "DE|Z9", "US|A2", "US|B1"]


def test_rows_without_identity_are_counted_and_skipped():
    table = parse_feed("market,asin\nUS,A1\n,A2\nUS,\n")
    result = reconcile_feed(table, [], [], now=T0)
    assert result.report.rows_total == 3
    assert result.report.rows_skipped == 2
    assert _keys(result.active) == ["US|A1"]


def test_header_without_asin_column_is_fatal():
    table = FeedTable(headers=["market", "title"], rows=[["US", "x"]], delimiter=",")
    with pytest.raises(FeedError):
        reconcile_feed(table, [], [], now=T0)


def test_feed_with_no_usable_rows_is_fatal():
    table = FeedTable(headers=["market", "asin"], rows=[["", "A1"], ["US", ""]], delimiter=",")
    with pytest.raises(FeedError):
        reconcile_feed(table, [_rec("US", "A1")], [], now=T0)
