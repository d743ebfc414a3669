from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

REASON_EXCLUDED = "excluded_numeric_asin"
REASON_OFFLINE = "status_offline"
REASON_REMOVED = "removed_from_csv"

# Fields compared when deciding whether a feed row changed since the last run.
CONTENT_FIELDS = (
    "title",
    "link",
    "image_url",
    "remark",
    "discount_price",
    "commission",
    "status",
)


KEY_SEPARATOR = "|"


def make_key(market: Optional[str], asin: Optional[str]) -> str:
    """
    Identity key shared by the active and archive sets: "MARKET|ASIN".
    """
    m = (market or "").strip().upper()
    a = (asin or "").strip().upper()
    return f"{m}{KEY_SEPARATOR}{a}"


def is_keyable(market: Optional[str], asin: Optional[str]) -> bool:
    """
    Both identity parts present and free of the key separator, so that
    distinct (market, asin) pairs never share a key.
    """
    if not market or not asin:
        return False
    return KEY_SEPARATOR not in market and KEY_SEPARATOR not in asin


class ItemRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    market: str
    asin: str
    title: str = ""
    link: str = ""
    image_url: str = ""
    remark: str = ""
    discount_price: str = ""
    commission: str = ""
    status: str = ""
    updated_at: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_str(cls, v: Any) -> str:
        if v is None:
            return ""
        return str(v).strip()

    @field_validator("market", "asin")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.upper()

    @property
    def key(self) -> str:
        return make_key(self.market, self.asin)

    def same_content(self, other: "ItemRecord") -> bool:
        return all(getattr(self, f) == getattr(other, f) for f in CONTENT_FIELDS)


class ArchiveEntry(ItemRecord):
    # Kept as a plain string so tags written by older runs survive a reload.
    archived_reason: str = ""
    archived_at: str = ""
    last_seen_at: str = ""
