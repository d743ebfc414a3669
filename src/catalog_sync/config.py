from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

DEFAULT_SITE_ORIGIN = "https://ama.omino.top"

# environment variable -> (section, key)
ENV_OVERRIDES = {
    "CSV_FILE": ("feed", "csv_file"),
    "CSV_URL": ("feed", "csv_url"),
    "FETCH_TIMEOUT_S": ("feed", "timeout_s"),
    "FETCH_RETRIES": ("feed", "retries"),
    "PRODUCTS_JSON": ("output", "products_json"),
    "ARCHIVE_JSON": ("output", "archive_json"),
    "PAGES_DIR": ("pages", "dir"),
    "SITE_ORIGIN": ("pages", "site_origin"),
}


class ConfigError(Exception):
    pass


def _default_raw() -> Dict[str, Any]:
    return {
        "feed": {"csv_file": "", "csv_url": "", "timeout_s": 20, "retries": 4, "backoff_s": 1.0},
        "output": {"products_json": "products.json", "archive_json": "archive.json"},
        "pages": {"dir": "p", "site_origin": DEFAULT_SITE_ORIGIN},
    }


@dataclass
class SyncConfig:
    raw: Dict[str, Any] = field(default_factory=_default_raw)
    base_dir: Path = field(default_factory=Path.cwd)

    def _get(self, section: str, key: str, default: Any = None) -> Any:
        value = (self.raw.get(section) or {}).get(key)
        return default if value is None else value

    def _path(self, value: str) -> Path:
        p = Path(value)
        return p if p.is_absolute() else self.base_dir / p

    @property
    def csv_file(self) -> Optional[Path]:
        value = str(self._get("feed", "csv_file", "")).strip()
        return self._path(value) if value else None

    @property
    def csv_url(self) -> Optional[str]:
        value = str(self._get("feed", "csv_url", "")).strip()
        return value or None

    @property
    def timeout_s(self) -> float:
        return float(self._get("feed", "timeout_s", 20))

    @property
    def retries(self) -> int:
        return int(self._get("feed", "retries", 4))

    @property
    def backoff_s(self) -> float:
        return float(self._get("feed", "backoff_s", 1.0))

    @property
    def products_path(self) -> Path:
        return self._path(str(self._get("output", "products_json", "products.json")))

    @property
    def archive_path(self) -> Path:
        return self._path(str(self._get("output", "archive_json", "archive.json")))

    @property
    def pages_dir(self) -> Path:
        return self._path(str(self._get("pages", "dir", "p")))

    @property
    def site_origin(self) -> str:
        return str(self._get("pages", "site_origin", DEFAULT_SITE_ORIGIN)).rstrip("/")

    def set(self, section: str, key: str, value: Any) -> None:
        self.raw.setdefault(section, {})[key] = value

    def require_feed_source(self) -> None:
        """
        A local file wins over a URL; one of the two must be configured.
        """
        if self.csv_file is None and self.csv_url is None:
            raise ConfigError("CSV_FILE or CSV_URL must be provided.")

    def validate(self) -> None:
        try:
            timeout_s, retries, backoff_s = self.timeout_s, self.retries, self.backoff_s
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid feed settings: {e}") from e
        if timeout_s <= 0:
            raise ConfigError("feed.timeout_s must be positive")
        if retries < 0:
            raise ConfigError("feed.retries must be >= 0")
        if backoff_s < 0:
            raise ConfigError("feed.backoff_s must be >= 0")
        if self.products_path == self.archive_path:
            raise ConfigError("output.products_json and output.archive_json must differ")


def _merge_sections(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    for section, values in override.items():
        if isinstance(values, dict):
            base.setdefault(section, {}).update(values)
        else:
            base[section] = values


def load_config(path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> SyncConfig:
    """
    Defaults, then the YAML file (if given and present), then environment variables.
    Relative paths resolve against the YAML file's directory, else the working directory.
    """
    raw = _default_raw()
    base_dir = Path.cwd()
    if path is not None:
        p = Path(path)
        if p.exists():
            try:
                data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Failed to parse YAML at {p}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigError(f"Config at {p} must be a mapping")
            _merge_sections(raw, data)
            base_dir = p.resolve().parent

    env = os.environ if env is None else env
    for name, (section, key) in ENV_OVERRIDES.items():
        value = (env.get(name) or "").strip()
        if value:
            raw.setdefault(section, {})[key] = value

    cfg = SyncConfig(raw=raw, base_dir=base_dir)
    cfg.validate()
    return cfg
