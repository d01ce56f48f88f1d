"""
Cart Store

One cart per table key, persisted under cart_<table_key> on every
mutation. All operations are synchronous and local; the network is only
involved at checkout (see OrderStore.submit).

Switching tables never merges carts: the previous table's cart stays in the
cache under its own key and is restored when that table becomes active
again.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Optional

from tableside.billing import calculate_bill_details, calculate_subtotal
from tableside.client.cache import DurableCache
from tableside.client.session import TableSession

logger = logging.getLogger(__name__)

CART_KEY_PREFIX = "cart_"


def cart_cache_key(table_key: str) -> str:
    return f"{CART_KEY_PREFIX}{table_key}"


@dataclass(frozen=True)
class MenuProduct:
    """What the menu hands to the cart."""
    product_ref: str
    name: str
    unit_price: float
    image: Optional[str] = None


@dataclass
class CartLine:
    product_ref: str
    name: str
    unit_price: float
    quantity: int = 1
    image: Optional[str] = None

    @property
    def line_total(self) -> float:
        return self.unit_price * self.quantity

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CartLine":
        line = cls(
            product_ref=str(data["product_ref"]),
            name=str(data["name"]),
            unit_price=float(data["unit_price"]),
            quantity=int(data["quantity"]),
            image=data.get("image"),
        )
        if line.quantity < 1:
            raise ValueError(f"quantity must be >= 1, got {line.quantity}")
        return line


class CartStore:
    """Cart lines of the active table."""

    def __init__(self, cache: DurableCache, table_session: Optional[TableSession] = None):
        self.cache = cache
        self.table_key: Optional[str] = None
        self._lines: list[CartLine] = []

        if table_session is not None:
            table_session.on_change(lambda _previous, key: self.switch_table(key))
            if table_session.table_key is not None:
                self.switch_table(table_session.table_key)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    @property
    def lines(self) -> list[CartLine]:
        return list(self._lines)

    @property
    def is_empty(self) -> bool:
        return not self._lines

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self._lines)

    @property
    def subtotal(self) -> float:
        return calculate_subtotal(self._lines)

    def bill_details(self) -> dict[str, float]:
        """Preview with the same formula the server uses."""
        return calculate_bill_details(self._lines)

    def snapshot(self) -> list[dict[str, Any]]:
        """Order-ready copies of the current lines."""
        return [line.to_dict() for line in self._lines]

    def quantity_of(self, product_ref: str) -> int:
        line = self._find(product_ref)
        return line.quantity if line else 0

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def add_item(self, product: MenuProduct) -> None:
        line = self._find(product.product_ref)
        if line is not None:
            line.quantity += 1
        else:
            self._lines.append(CartLine(
                product_ref=product.product_ref,
                name=product.name,
                unit_price=product.unit_price,
                image=product.image,
            ))
        self._persist()

    def update_quantity(self, product_ref: str, quantity: int) -> None:
        """Set a line's quantity; below 1 removes the line."""
        if quantity < 1:
            self.remove_item(product_ref)
            return
        line = self._find(product_ref)
        if line is None:
            return
        line.quantity = quantity
        self._persist()

    def remove_item(self, product_ref: str) -> None:
        remaining = [line for line in self._lines if line.product_ref != product_ref]
        if len(remaining) != len(self._lines):
            self._lines = remaining
            self._persist()

    def clear(self) -> None:
        """Empty the cart and drop its durable record."""
        self._lines = []
        if self.table_key is not None:
            self.cache.delete(cart_cache_key(self.table_key))

    def switch_table(self, table_key: str) -> None:
        """Show the cart stored for table_key (empty if none)."""
        if table_key == self.table_key:
            return
        adopting = self.table_key is None and bool(self._lines)
        self.table_key = table_key
        stored = self._load(table_key)
        if adopting and not stored:
            # A cart built before any table was chosen belongs to the first table
            self._persist()
        else:
            self._lines = stored
        logger.debug(f"Cart switched to table {table_key} ({len(self._lines)} line(s))")

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _find(self, product_ref: str) -> Optional[CartLine]:
        for line in self._lines:
            if line.product_ref == product_ref:
                return line
        return None

    def _persist(self) -> None:
        # Without a table the cart exists only in memory
        if self.table_key is None:
            return
        self.cache.set(cart_cache_key(self.table_key), self.snapshot())

    def _load(self, table_key: str) -> list[CartLine]:
        stored = self.cache.get(cart_cache_key(table_key), [])
        if not isinstance(stored, list):
            logger.warning(f"Ignoring malformed cart for table {table_key}")
            return []

        lines: list[CartLine] = []
        seen = set()
        for entry in stored:
            try:
                line = CartLine.from_dict(entry)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Dropping malformed cart line for table {table_key}: {e}")
                continue
            if line.product_ref in seen:
                continue
            seen.add(line.product_ref)
            lines.append(line)
        return lines
