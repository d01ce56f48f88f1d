"""
Notification Center

Transient notices for the screen: "items added to order #12" toasts from
itemsAdded events and non-blocking alerts raised when a request fails.
Both lists are bounded; the oldest entry drops out first.
"""

import itertools
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

MAX_NOTICES = 10


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ItemsAddedNotice:
    id: str
    order_id: int
    table_key: str
    items: list[dict[str, Any]]
    count: int
    received_at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class Alert:
    id: str
    message: str
    level: str = "error"
    raised_at: datetime = field(default_factory=_now)


class NotificationCenter:
    """Bounded, dismissible notices, newest first."""

    def __init__(self, limit: int = MAX_NOTICES):
        self._items_added: deque[ItemsAddedNotice] = deque(maxlen=limit)
        self._alerts: deque[Alert] = deque(maxlen=limit)
        self._ids = itertools.count(1)

    @property
    def items_added(self) -> list[ItemsAddedNotice]:
        return list(self._items_added)

    @property
    def alerts(self) -> list[Alert]:
        return list(self._alerts)

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def notify_items_added(
        self,
        order_id: int,
        table_key: str,
        items: list[dict[str, Any]],
    ) -> ItemsAddedNotice:
        notice = ItemsAddedNotice(
            id=self._next_id("items"),
            order_id=order_id,
            table_key=table_key,
            items=items,
            count=sum(int(item.get("quantity", 0)) for item in items),
        )
        self._items_added.appendleft(notice)
        return notice

    def alert(self, message: str, level: str = "error") -> Alert:
        alert = Alert(id=self._next_id("alert"), message=message, level=level)
        self._alerts.appendleft(alert)
        return alert

    def dismiss(self, notice_id: str) -> bool:
        for queue in (self._items_added, self._alerts):
            for entry in queue:
                if entry.id == notice_id:
                    queue.remove(entry)
                    return True
        return False

    def dismiss_all(self) -> None:
        self._items_added.clear()
        self._alerts.clear()
