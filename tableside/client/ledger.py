"""
Bill Ledger

Local bill collection, one bill per order. Bills are identified by their
order_ref (falling back to their own id); every read goes through
dedupe(), and every change is written to the cache before returning.
"""

import logging
from typing import Iterable, Optional

from pydantic import ValidationError

from tableside.billing import dedupe_bills
from tableside.client.cache import DurableCache
from tableside.schemas import BillResponse

logger = logging.getLogger(__name__)

BILLS_CACHE_KEY = "cached_bills"


def dedupe(bills: Iterable[BillResponse]) -> list[BillResponse]:
    """Unique by order_ref or id, first occurrence kept in place."""
    return dedupe_bills(bills)


class BillLedger:
    def __init__(self, cache: DurableCache):
        self.cache = cache
        self._bills: list[BillResponse] = []

    @property
    def bills(self) -> list[BillResponse]:
        return dedupe(self._bills)

    def get(self, order_ref: int) -> Optional[BillResponse]:
        for bill in self._bills:
            if bill.ledger_key == order_ref:
                return bill
        return None

    def hydrate(self) -> int:
        """Load bills from the cache; returns how many were restored."""
        stored = self.cache.get(BILLS_CACHE_KEY, [])
        if not isinstance(stored, list):
            logger.warning("Ignoring malformed cached bills")
            return 0
        bills = []
        for entry in stored:
            try:
                bills.append(BillResponse.model_validate(entry))
            except ValidationError as e:
                logger.warning(f"Dropping malformed cached bill: {e.error_count()} error(s)")
        self._bills = dedupe(bills)
        return len(self._bills)

    def replace_all(self, bills: Iterable[BillResponse]) -> None:
        """Adopt the server's list after a full refetch."""
        self._bills = dedupe(bills)
        self._persist()

    def upsert(self, bill: BillResponse) -> None:
        """Replace the bill with the same ledger key, or prepend it."""
        key = bill.ledger_key
        for index, existing in enumerate(self._bills):
            if existing.ledger_key == key:
                self._bills[index] = bill
                break
        else:
            self._bills.insert(0, bill)
        self._persist()

    def _persist(self) -> None:
        self.cache.set(
            BILLS_CACHE_KEY,
            [bill.model_dump(mode="json") for bill in self._bills],
        )
