"""
Tests for the client bill ledger, notification center and event bus.
"""

from tableside.client.bus import EventBus
from tableside.client.ledger import BILLS_CACHE_KEY, BillLedger, dedupe
from tableside.client.notifications import MAX_NOTICES, NotificationCenter
from tableside.schemas import BillResponse, EventType, RealtimeEvent


def _bill(bill_id, order_ref, total=100.0):
    return BillResponse(
        id=bill_id,
        order_ref=order_ref,
        table_key="7",
        items=[],
        subtotal=total,
        cgst=0.0,
        sgst=0.0,
        grand_total=total,
    )


class TestBillLedger:

    def test_dedupe_is_idempotent(self):
        bills = [_bill(1, 10), _bill(2, 10), _bill(3, None), _bill(4, 20)]

        once = dedupe(bills)

        assert [b.id for b in once] == [1, 3, 4]
        assert dedupe(once) == once

    def test_upsert_replaces_by_order_ref(self, cache):
        ledger = BillLedger(cache)
        ledger.upsert(_bill(1, 10, total=100))
        ledger.upsert(_bill(1, 10, total=250))

        assert len(ledger.bills) == 1
        assert ledger.get(10).grand_total == 250

    def test_new_bills_are_prepended(self, cache):
        ledger = BillLedger(cache)
        ledger.upsert(_bill(1, 10))
        ledger.upsert(_bill(2, 11))

        assert [b.order_ref for b in ledger.bills] == [11, 10]

    def test_writes_through_and_hydrates(self, cache):
        ledger = BillLedger(cache)
        ledger.upsert(_bill(1, 10))
        assert len(cache.get(BILLS_CACHE_KEY)) == 1

        restored = BillLedger(cache)
        assert restored.hydrate() == 1
        assert restored.get(10).id == 1

    def test_hydrate_collapses_duplicates_and_skips_junk(self, cache):
        cache.set(BILLS_CACHE_KEY, [
            _bill(1, 10).model_dump(mode="json"),
            _bill(2, 10).model_dump(mode="json"),
            {"id": "not-a-bill"},
        ])

        ledger = BillLedger(cache)

        assert ledger.hydrate() == 1
        assert ledger.bills[0].id == 1


class TestNotificationCenter:

    def test_items_added_list_is_capped(self):
        center = NotificationCenter()
        for order_id in range(1, 15):
            center.notify_items_added(order_id, "7", [{"product_ref": "p", "quantity": 2}])

        notices = center.items_added
        assert len(notices) == MAX_NOTICES
        assert notices[0].order_id == 14
        assert notices[0].count == 2
        assert len({n.id for n in notices}) == MAX_NOTICES

    def test_dismiss_one_and_all(self):
        center = NotificationCenter()
        first = center.notify_items_added(1, "7", [])
        center.alert("Could not refresh orders")

        assert center.dismiss(first.id)
        assert not center.dismiss(first.id)
        assert center.items_added == []
        assert len(center.alerts) == 1

        center.dismiss_all()
        assert center.alerts == []


class TestEventBus:

    def _event(self, event_type):
        return RealtimeEvent(type=event_type, payload={})

    def test_typed_delivery_and_unsubscribe(self):
        bus = EventBus()
        created, everything = [], []
        unsubscribe = bus.subscribe(EventType.ORDER_CREATED, created.append)
        bus.subscribe(None, everything.append)

        bus.publish(self._event(EventType.ORDER_CREATED))
        bus.publish(self._event(EventType.BILL_CREATED))
        unsubscribe()
        bus.publish(self._event(EventType.ORDER_CREATED))

        assert len(created) == 1
        assert len(everything) == 3

    def test_failing_handler_does_not_block_others(self):
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(EventType.ITEMS_ADDED, broken)
        bus.subscribe(EventType.ITEMS_ADDED, received.append)

        assert bus.publish(self._event(EventType.ITEMS_ADDED)) == 2
        assert len(received) == 1
