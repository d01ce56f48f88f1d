"""
Table Key Resolution

A table key scopes carts and order lookups. It is either the number of a
dine-in table ("7", never "007") or one of two sentinels for orders that
have no table: TAKEAWAY and DELIVERY.

Link parameters understood by resolve_table_key():
    table  - raw table number from the QR code link
    mode   - "takeaway" or "delivery"; wins over any table number
    merge  - order id an "add more items" flow should merge into
    from   - source page marker ("chooser" = the user picked a mode)
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

TAKEAWAY = "TAKEAWAY"
DELIVERY = "DELIVERY"
SENTINEL_KEYS = frozenset({TAKEAWAY, DELIVERY})

_MODE_TO_SENTINEL = {
    "takeaway": TAKEAWAY,
    "delivery": DELIVERY,
}

_NON_DIGITS = re.compile(r"[^0-9]")


class ResolutionSource(str, Enum):
    LINK = "link"
    CACHE = "cache"


@dataclass(frozen=True)
class TableResolution:
    """Outcome of resolving link parameters into a table key."""
    table_key: Optional[str]
    source: Optional[ResolutionSource] = None
    merge_target: Optional[int] = None
    deliberate: bool = False

    @property
    def is_resolved(self) -> bool:
        return self.table_key is not None


def is_sentinel(table_key: Optional[str]) -> bool:
    """True for TAKEAWAY / DELIVERY keys."""
    return table_key in SENTINEL_KEYS


def normalize_table_key(raw: Optional[str]) -> Optional[str]:
    """
    Normalize a raw table identifier.

    Sentinels pass through (case-insensitive). Anything else keeps only its
    digits, without leading zeros. Returns None when nothing usable remains.

    >>> normalize_table_key(" 007 ")
    '7'
    >>> normalize_table_key("T-12")
    '12'
    >>> normalize_table_key("000") is None
    True
    """
    if raw is None:
        return None
    text = str(raw).strip()
    if text.upper() in SENTINEL_KEYS:
        return text.upper()
    digits = _NON_DIGITS.sub("", text).lstrip("0")
    return digits or None


def _parse_merge_target(raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    digits = _NON_DIGITS.sub("", str(raw))
    return int(digits) if digits else None


def resolve_table_key(
    params: Mapping[str, str],
    last_used: Optional[str] = None,
) -> TableResolution:
    """
    Resolve link parameters into a table key.

    Order of precedence: order mode, table number, last used key.
    An empty result means the caller has to ask the user; nothing is guessed.
    """
    merge_target = _parse_merge_target(params.get("merge"))
    deliberate = (params.get("from") or "").strip().lower() == "chooser"

    mode = (params.get("mode") or "").strip().lower()
    if mode in _MODE_TO_SENTINEL:
        return TableResolution(
            table_key=_MODE_TO_SENTINEL[mode],
            source=ResolutionSource.LINK,
            merge_target=merge_target,
            deliberate=deliberate,
        )

    from_link = normalize_table_key(params.get("table"))
    if from_link is not None and not is_sentinel(from_link):
        return TableResolution(
            table_key=from_link,
            source=ResolutionSource.LINK,
            merge_target=merge_target,
            deliberate=deliberate,
        )

    cached = normalize_table_key(last_used)
    if cached is not None:
        return TableResolution(
            table_key=cached,
            source=ResolutionSource.CACHE,
            merge_target=merge_target,
            deliberate=deliberate,
        )

    return TableResolution(table_key=None, merge_target=merge_target, deliberate=deliberate)
