from __future__ import annotations

from typing import Literal, Optional

from .models import REASON_EXCLUDED, REASON_OFFLINE, ItemRecord

Classification = Literal["active", "offline", "excluded"]

OFFLINE_TOKENS = (
    "off",
    "offline",
    "inactive",
    "disabled",
    "down",
    "removed",
    "delete",
    "deleted",
    "0",
    "false",
    "no",
    "stop",
    "stopped",
)


def is_numeric_asin(asin: str | None) -> bool:
    s = (asin or "").strip()
    return bool(s) and s.isascii() and s.isdigit()


def is_offline_status(status: str | None) -> bool:
    s = (status or "").strip().lower()
    if not s:
        # no signal is not a negative signal
        return False
    return any(s == tok or tok in s for tok in OFFLINE_TOKENS)


def classify(record: ItemRecord) -> Classification:
    """
    Structural exclusion is checked first: the status of an excluded record
    is not authoritative.
    """
    if is_numeric_asin(record.asin):
        return "excluded"
    if is_offline_status(record.status):
        return "offline"
    return "active"


def archive_reason(classification: Classification) -> Optional[str]:
    if classification == "excluded":
        return REASON_EXCLUDED
    if classification == "offline":
        return REASON_OFFLINE
    return None
