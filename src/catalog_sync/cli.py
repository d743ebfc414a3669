from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from rich.console import Console

from .config import ConfigError, SyncConfig, load_config
from .errors import SyncError
from .pages.render import render_from_snapshots
from .pipeline.run import run_sync

console = Console()


def _load_config_or_exit(args: argparse.Namespace) -> SyncConfig:
    config_path = Path(args.config) if args.config else None
    try:
        cfg = load_config(config_path)
        if getattr(args, "csv_file", None):
            cfg.set("feed", "csv_file", args.csv_file)
        if getattr(args, "csv_url", None):
            # an explicit URL replaces any configured local file
            cfg.set("feed", "csv_file", "")
            cfg.set("feed", "csv_url", args.csv_url)
        if args.products:
            cfg.set("output", "products_json", args.products)
        if args.archive:
            cfg.set("output", "archive_json", args.archive)
        if getattr(args, "pages_dir", None):
            cfg.set("pages", "dir", args.pages_dir)
        cfg.validate()
        return cfg
    except ConfigError as e:
        console.print(f"[red]Config error:[/red] {e}")
        sys.exit(2)


def cmd_sync(args: argparse.Namespace) -> int:
    cfg = _load_config_or_exit(args)
    try:
        cfg.require_feed_source()
    except ConfigError as e:
        console.print(f"[red]\\[sync] ERROR:[/red] {e}")
        return 2

    try:
        run_sync(cfg)
    except SyncError as e:
        # Nothing has been written at this point.
        console.print(f"[red]\\[sync] ERROR:[/red] {e}")
        return 1

    if args.pages:
        render_from_snapshots(cfg.products_path, cfg.archive_path, cfg.pages_dir, cfg.site_origin)
    return 0


def cmd_pages(args: argparse.Namespace) -> int:
    cfg = _load_config_or_exit(args)
    if not cfg.products_path.exists():
        console.print(f"[red]Missing products.json at:[/red] {cfg.products_path}")
        return 1
    render_from_snapshots(cfg.products_path, cfg.archive_path, cfg.pages_dir, cfg.site_origin)
    return 0


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", type=str, default="config.yml", help="Path to config.yml (optional)")
    p.add_argument("--products", type=str, help="Override active snapshot path (products.json)")
    p.add_argument("--archive", type=str, help="Override archive snapshot path (archive.json)")
    p.add_argument("--pages-dir", type=str, help="Override preview pages output directory")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="catalog-sync",
        description="Reconcile a product CSV export into products.json / archive.json.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_sync = sub.add_parser("sync", help="Read the feed and rewrite products.json and archive.json")
    _add_common(p_sync)
    src = p_sync.add_mutually_exclusive_group()
    src.add_argument("--csv-file", type=str, help="Local CSV export (takes precedence over a URL)")
    src.add_argument("--csv-url", type=str, help="Remote CSV export URL")
    p_sync.add_argument("--pages", action="store_true", help="Regenerate preview pages after a successful sync")
    p_sync.set_defaults(func=cmd_sync)

    p_pages = sub.add_parser("pages", help="Generate static preview pages from the current snapshots")
    _add_common(p_pages)
    p_pages.set_defaults(func=cmd_pages)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    load_dotenv()  # variables from .env if present; real environment wins
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except SystemExit:
        raise
    except Exception as e:
        console.print(f"[red]Unexpected error:[/red] {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
