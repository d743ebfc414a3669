from __future__ import annotations

from pathlib import Path
from typing import Optional

from rich.console import Console

from ..catalog.models import ArchiveEntry, ItemRecord
from ..config import SyncConfig
from ..feed.decode import parse_feed
from ..feed.fetch import FeedClient, read_local_feed
from ..utils.time import utc_now_iso
from .reconciliation import RunReport, reconcile_feed
from .snapshot import load_snapshot, write_snapshots

console = Console()


def read_feed_text(cfg: SyncConfig, client: Optional[FeedClient] = None) -> str:
    cfg.require_feed_source()
    if cfg.csv_file is not None:
        console.print(f"\\[sync] reading CSV_FILE: {cfg.csv_file}")
        return read_local_feed(cfg.csv_file)
    client = client or FeedClient(timeout_s=cfg.timeout_s, max_retries=cfg.retries, retry_backoff_s=cfg.backoff_s)
    console.print(f"\\[sync] fetching CSV_URL: {cfg.csv_url}")
    return client.fetch_text(cfg.csv_url)


def run_sync(cfg: SyncConfig, now: Optional[str] = None, client: Optional[FeedClient] = None) -> RunReport:
    """
    One sync run: load prior snapshots, read and decode the feed, reconcile,
    write products/archive. Any SyncError propagates before a file is written.
    """
    now = now or utc_now_iso()
    console.print(f"\\[sync] start: {now}")

    prior_active, active_dropped, err = load_snapshot(cfg.products_path, ItemRecord)
    if err:
        console.print(f"[yellow]\\[sync] prior active set treated as empty:[/yellow] {err}")
    prior_archive, archive_dropped, err = load_snapshot(cfg.archive_path, ArchiveEntry)
    if err:
        console.print(f"[yellow]\\[sync] prior archive treated as empty:[/yellow] {err}")

    text = read_feed_text(cfg, client=client)
    table = parse_feed(text)
    result = reconcile_feed(table, prior_active, prior_archive, now=now)
    report = result.report
    report.prior_dropped = active_dropped + archive_dropped

    write_snapshots(result.active, result.archive, cfg.products_path, cfg.archive_path)

    console.print(
        f"\\[sync] rows total: {report.rows_total}, skipped: {report.rows_skipped}, "
        f"offline(status): {report.offline}, excluded(numeric asin): {report.excluded}, "
        f"duplicates: {report.duplicates_resolved}"
    )
    console.print(f"\\[sync] active products: {report.active_count}")
    console.print(f"\\[sync] removed from active -> archived: {report.removed_from_active}")
    if report.reactivated:
        console.print(f"\\[sync] reactivated from archive: {report.reactivated}")
    if report.prior_dropped:
        console.print(f"[yellow]\\[sync] prior entries without market/asin dropped:[/yellow] {report.prior_dropped}")
    console.print(f"\\[sync] archive size: {report.archive_count}")
    console.print(f"[green]\\[sync] wrote:[/green] {_display(cfg.products_path)} / {_display(cfg.archive_path)}")
    return report


def _display(path: Path) -> str:
    try:
        return str(Path(path).relative_to(Path.cwd()))
    except ValueError:
        return str(path)
