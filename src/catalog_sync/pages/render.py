from __future__ import annotations

import html
import json
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable
from urllib.parse import quote

from rich.console import Console

from ..catalog.dedup import is_absolute_http_url
from ..catalog.models import ArchiveEntry, ItemRecord
from ..pipeline.snapshot import load_snapshot
from ..utils.json_utils import write_text_atomic

console = Console()

SITE_NAME = "Product Picks"
OG_DESCRIPTION = (
    "Independent product reference. Purchases are completed on Amazon. "
    "As an Amazon Associate, we earn from qualifying purchases."
)


@dataclass
class PagesResult:
    written: int
    skipped: int
    out_dir: Path


def _esc(value: str) -> str:
    return html.escape(value or "", quote=True)


def weserv_url(image_url: str) -> str:
    # weserv expects the source without its scheme
    stripped = image_url.split("://", 1)[1] if "://" in image_url else image_url
    return "https://images.weserv.nl/?url=" + quote(stripped, safe="")


def page_url(site_origin: str, market_lower: str, asin: str) -> str:
    return f"{site_origin}/p/{market_lower}/{quote(asin, safe='')}"


def open_url(site_origin: str, market_lower: str, asin: str) -> str:
    return f"{site_origin}/?open={quote(f'/p/{market_lower}/{asin}', safe='')}"


def build_page_html(record: ItemRecord, site_origin: str) -> str:
    market = record.market
    market_lower = market.lower()
    asin = record.asin
    title = record.title or f"ASIN {asin}"
    image = record.image_url
    proxy = weserv_url(image)
    page = page_url(site_origin, market_lower, asin)
    target = open_url(site_origin, market_lower, asin)
    # "</" would close the script element early
    target_js = json.dumps(target).replace("</", "<\\/")

    # No meta refresh: some preview crawlers stop parsing at it. Humans get a JS redirect.
    return f"""<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8"/>
  <meta name="viewport" content="width=device-width,initial-scale=1"/>

  <title>{_esc(title)} • {_esc(market)} • {SITE_NAME}</title>
  <meta name="description" content="{_esc(OG_DESCRIPTION)}"/>

  <meta property="og:type" content="product"/>
  <meta property="og:site_name" content="{SITE_NAME}"/>
  <meta property="og:title" content="{_esc(title)}"/>
  <meta property="og:description" content="{_esc(OG_DESCRIPTION)}"/>
  <meta property="og:url" content="{_esc(page)}"/>

  <meta property="og:image" content="{_esc(proxy)}"/>
  <meta property="og:image" content="{_esc(image)}"/>
  <meta property="og:image:width" content="1200"/>
  <meta property="og:image:height" content="630"/>

  <meta name="twitter:card" content="summary_large_image"/>
  <meta name="twitter:title" content="{_esc(title)}"/>
  <meta name="twitter:description" content="{_esc(OG_DESCRIPTION)}"/>
  <meta name="twitter:image" content="{_esc(proxy)}"/>

  <meta name="robots" content="index,follow"/>
</head>
<body>
  <script>
    location.replace({target_js});
  </script>

  <noscript>
    <p>Redirecting… <a href="{_esc(target)}">Open product page</a></p>
  </noscript>
</body>
</html>
"""


def _safe_segment(value: str) -> bool:
    return bool(value) and value not in {".", ".."} and "/" not in value and "\\" not in value


def _check_out_dir(out_dir: Path) -> None:
    resolved = out_dir.resolve()
    cwd = Path.cwd().resolve()
    if resolved == cwd or resolved in cwd.parents:
        raise ValueError(f"Refusing to clear pages directory {out_dir}: it contains the working directory")


def _pageable(records: Iterable[ItemRecord]) -> Dict[str, ItemRecord]:
    out: Dict[str, ItemRecord] = {}
    for rec in records:
        out.setdefault(rec.key, rec)
    return out


def render_pages(
    active: Iterable[ItemRecord],
    archive: Iterable[ItemRecord],
    out_dir: Path,
    site_origin: str,
) -> PagesResult:
    """
    One page per identity across active and archived items, so a shared link
    keeps previewing after the item leaves the listing. Active records win
    when a key appears in both inputs. The output directory is rebuilt.
    """
    out_dir = Path(out_dir)
    by_key = _pageable(list(active) + list(archive))

    _check_out_dir(out_dir)
    if out_dir.exists():
        shutil.rmtree(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    written = 0
    skipped = 0
    for key in sorted(by_key):
        rec = by_key[key]
        if not _safe_segment(rec.market) or not _safe_segment(rec.asin) or not is_absolute_http_url(rec.image_url):
            skipped += 1
            continue
        target = out_dir / rec.market.lower() / rec.asin / "index.html"
        write_text_atomic(target, build_page_html(rec, site_origin))
        written += 1

    console.print(f"[green]Generated {written} product preview pages[/green] under {out_dir}")
    if skipped:
        console.print(f"[yellow]Skipped {skipped} items missing market/asin/image_url[/yellow]")
    return PagesResult(written=written, skipped=skipped, out_dir=out_dir)


def render_from_snapshots(products_path: Path, archive_path: Path, out_dir: Path, site_origin: str) -> PagesResult:
    active, _, err = load_snapshot(products_path, ItemRecord)
    if err:
        console.print(f"[yellow]Active snapshot unavailable:[/yellow] {err}")
    archived, _, err = load_snapshot(archive_path, ArchiveEntry)
    if err:
        console.print(f"[yellow]Archive snapshot unavailable:[/yellow] {err}")
    return render_pages(active, archived, out_dir, site_origin)
