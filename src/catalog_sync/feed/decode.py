from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from typing import List

from ..errors import FeedError

MIN_FEED_CHARS = 10
_HTML_MARKERS = ("<html", "<!doctype", "<body", "</html>")


@dataclass
class FeedTable:
    headers: List[str]
    rows: List[List[str]]
    delimiter: str


def looks_like_html(text: str) -> bool:
    head = (text or "")[:400].lower()
    return any(marker in head for marker in _HTML_MARKERS)


def detect_delimiter(header_line: str) -> str:
    # Most exports are comma separated; some locales export with semicolons.
    return ";" if header_line.count(";") > header_line.count(",") else ","


def first_line(text: str) -> str:
    return text.split("\n", 1)[0].rstrip("\r")


def _is_blank(row: List[str]) -> bool:
    return all(not (cell or "").strip() for cell in row)


def parse_feed(text: str | None) -> FeedTable:
    """
    Decode a delimited export into a header row and data rows.

    Raises FeedError for content that cannot be a valid export: empty or
    too short, an HTML login/error page, or a header with no data rows.
    Identity-column checks are left to the caller that owns the alias table.
    """
    if text is None or len(text.strip()) < MIN_FEED_CHARS:
        raise FeedError("CSV content empty or too short.")
    text = text.lstrip("\ufeff")
    if looks_like_html(text):
        raise FeedError("CSV content looks like HTML (login/error page).")

    delimiter = detect_delimiter(first_line(text))
    reader = csv.reader(io.StringIO(text, newline=""), delimiter=delimiter, quotechar='"', doublequote=True)
    try:
        grid = [row for row in reader]
    except csv.Error as e:
        raise FeedError(f"CSV could not be decoded: {e}") from e

    while grid and _is_blank(grid[-1]):
        grid.pop()
    if not grid:
        raise FeedError("CSV content has no header row.")
    headers = [h.strip() for h in grid[0]]
    rows = [row for row in grid[1:] if row and not _is_blank(row)]
    if not rows:
        raise FeedError("CSV parsed but has no data rows.")
    return FeedTable(headers=headers, rows=rows, delimiter=delimiter)
