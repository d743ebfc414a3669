from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Optional

import requests
from rich.console import Console

from ..errors import FeedError, FeedFetchError

console = Console()


def _default_headers() -> Dict[str, str]:
    return {
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
        "User-Agent": "catalog-sync/1.0",
    }


@dataclass
class FeedClient:
    timeout_s: float = 20.0
    max_retries: int = 4
    retry_backoff_s: float = 1.0
    headers: Dict[str, str] = field(default_factory=_default_headers)
    sleep: Callable[[float], None] = time.sleep

    def fetch_text(self, url: str) -> str:
        """
        GET the feed with a cache-busting `ts` parameter.
        Non-2xx responses and transport errors are retried with exponential backoff.
        """
        params = {"ts": str(int(time.time() * 1000))}
        attempt = 0
        last_exc: Optional[Exception] = None
        while attempt <= self.max_retries:
            try:
                resp = requests.get(url, headers=self.headers, params=params, timeout=self.timeout_s)
                resp.raise_for_status()
                # exports are UTF-8 regardless of the declared charset
                resp.encoding = "utf-8"
                return resp.text
            except requests.RequestException as e:
                last_exc = e
                attempt += 1
                if attempt > self.max_retries:
                    break
                sleep_s = self.retry_backoff_s * (2 ** (attempt - 1))
                console.print(f"[yellow]\\[sync] fetch attempt {attempt} failed:[/yellow] {e}; retrying in {sleep_s:.1f}s")
                self.sleep(sleep_s)
        raise FeedFetchError(f"Feed fetch failed after {self.max_retries + 1} attempts: {last_exc}")


def read_local_feed(path: Path) -> str:
    p = Path(path)
    if not p.exists():
        raise FeedFetchError(f"CSV file not found: {p}")
    try:
        return p.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError as e:
        raise FeedError(f"CSV file is not valid UTF-8: {p}: {e}") from e
