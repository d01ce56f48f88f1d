"""
Bill Calculation

The one place bill totals are computed. The server, the client cart
preview and manually entered admin orders all call calculate_bill_details()
so a live order and its printed bill can never disagree.

Totals are exact float sums; format_amount() rounds for display only.
"""

from typing import Any, Iterable, Mapping, Union

CGST_RATE = 0.025
SGST_RATE = 0.025

LineLike = Union[Mapping[str, Any], Any]


def _line_value(line: LineLike, field: str) -> Any:
    if isinstance(line, Mapping):
        return line[field]
    return getattr(line, field)


def calculate_subtotal(items: Iterable[LineLike]) -> float:
    """Sum of unit_price × quantity over all lines."""
    return sum(
        _line_value(item, "unit_price") * _line_value(item, "quantity")
        for item in items
    )


def calculate_bill_details(items: Iterable[LineLike]) -> dict[str, float]:
    """
    Calculate subtotal, CGST, SGST and grand total for a list of lines.

    Lines may be mappings or objects exposing unit_price and quantity.

    >>> calculate_bill_details([{"unit_price": 180, "quantity": 2},
    ...                         {"unit_price": 150, "quantity": 1}])
    {'subtotal': 510, 'cgst': 12.75, 'sgst': 12.75, 'grand_total': 535.5}
    """
    subtotal = calculate_subtotal(items)
    cgst = subtotal * CGST_RATE
    sgst = subtotal * SGST_RATE
    return {
        "subtotal": subtotal,
        "cgst": cgst,
        "sgst": sgst,
        "grand_total": subtotal + cgst + sgst,
    }


def format_amount(amount: float, currency: str = "₹") -> str:
    """Presentation-only rounding."""
    return f"{currency}{amount:,.2f}"


def bill_key(bill: LineLike) -> Any:
    """Ledger identity of a bill: its order_ref, else its own id."""
    if isinstance(bill, Mapping):
        order_ref, own_id = bill.get("order_ref"), bill.get("id")
    else:
        order_ref, own_id = getattr(bill, "order_ref", None), getattr(bill, "id", None)
    return order_ref if order_ref is not None else own_id


def dedupe_bills(bills: Iterable[LineLike]) -> list:
    """
    Drop bills whose ledger identity was already seen.

    The first occurrence wins and keeps its position, so applying this
    twice gives the same list as applying it once.
    """
    seen = set()
    unique = []
    for bill in bills:
        key = bill_key(bill)
        if key in seen:
            continue
        seen.add(key)
        unique.append(bill)
    return unique
