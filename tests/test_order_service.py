"""
Tests for the server-side order service: create-or-merge, idempotent
submissions, status pipeline and the events each operation publishes.
"""

import asyncio

import pytest
from sqlalchemy import func, select

from tableside.models import Bill, Order
from tableside.schemas import EventType, OrderSource, OrderStatus, SubmitOutcome
from tableside.services.orders import (
    InvalidStatusTransitionError,
    MergeTargetError,
    OrderNotFoundError,
    OrderService,
    merge_items,
)
from tableside.tables import DELIVERY, TAKEAWAY
from tests.menu import LASSI, NOODLES, PANEER


async def _count(session, model):
    return (await session.execute(select(func.count(model.id)))).scalar()


class TestSubmitCreate:

    @pytest.mark.asyncio
    async def test_creates_order_and_bill(self, order_service, db_session, make_submission):
        result = await order_service.submit_order(make_submission())

        assert result.outcome == SubmitOutcome.CREATED
        assert result.order.status == OrderStatus.PREPARING
        assert result.order.table_key == "7"
        assert result.bill.order_ref == result.order.id
        assert result.order.subtotal == 510
        assert result.order.grand_total == pytest.approx(535.5)
        assert result.bill.grand_total == result.order.grand_total
        assert await _count(db_session, Bill) == 1

    @pytest.mark.asyncio
    async def test_publishes_created_events(self, order_service, broker, make_submission):
        await order_service.submit_order(make_submission())

        assert [e.type for e in broker.history] == [
            EventType.ORDER_CREATED,
            EventType.BILL_CREATED,
        ]
        assert broker.history[0].order().bill_details.subtotal == 510

    @pytest.mark.asyncio
    async def test_client_bill_details_are_not_trusted(self, order_service, make_submission):
        data = make_submission(bill_details={
            "subtotal": 1, "cgst": 0, "sgst": 0, "grand_total": 1,
        })

        result = await order_service.submit_order(data)

        assert result.order.subtotal == 510

    @pytest.mark.asyncio
    async def test_missing_table_falls_back_to_takeaway(self, order_service, make_submission):
        result = await order_service.submit_order(make_submission(table_key=None))

        assert result.order.table_key == TAKEAWAY

    @pytest.mark.asyncio
    async def test_manual_order_keeps_customer_details(self, order_service, make_submission):
        result = await order_service.submit_order(make_submission(
            table_key="DELIVERY",
            source=OrderSource.MANUAL,
            customer_name="Asha",
            customer_address="12 MG Road",
            delivery_time="19:30",
        ))

        assert result.order.source == OrderSource.MANUAL
        assert result.order.customer_address == "12 MG Road"
        assert result.bill.customer_name == "Asha"


class TestSubmitMerge:

    @pytest.mark.asyncio
    async def test_second_submission_merges(self, order_service, db_session, broker, make_submission):
        first = await order_service.submit_order(make_submission())
        second = await order_service.submit_order(
            make_submission(lines=((LASSI, 2),), notes="less sugar")
        )

        assert second.outcome == SubmitOutcome.MERGED
        assert second.order.id == first.order.id
        assert [i["product_ref"] for i in second.order.items] == ["p-101", "p-205", "p-310"]
        assert second.order.subtotal == 630
        assert second.bill.subtotal == 630
        assert second.order.notes == "less sugar"
        assert await _count(db_session, Order) == 1
        assert await _count(db_session, Bill) == 1

        assert [e.type for e in broker.history][2:] == [
            EventType.ORDER_UPDATED,
            EventType.BILL_UPDATED,
            EventType.ITEMS_ADDED,
        ]
        added = broker.history[-1].items_added()
        assert added.order_id == first.order.id
        assert added.count == 2

    @pytest.mark.asyncio
    async def test_repeated_product_adds_quantity(self, order_service, make_submission):
        await order_service.submit_order(make_submission(lines=((PANEER, 1),)))
        merged = await order_service.submit_order(make_submission(lines=((PANEER, 2),)))

        assert merged.order.items == [
            {**PANEER, "quantity": 3, "image": None},
        ]
        assert merged.added_items[0]["quantity"] == 2

    @pytest.mark.asyncio
    async def test_notes_are_appended(self, order_service, make_submission):
        await order_service.submit_order(make_submission(notes="no onion"))
        merged = await order_service.submit_order(make_submission(notes="extra spicy"))

        assert merged.order.notes == "no onion\nextra spicy"

    @pytest.mark.asyncio
    async def test_served_order_is_not_merged_into(self, order_service, make_submission):
        first = await order_service.submit_order(make_submission())
        await order_service.advance_status(first.order.id, OrderStatus.SERVED)

        second = await order_service.submit_order(make_submission())

        assert second.outcome == SubmitOutcome.CREATED
        assert second.order.id != first.order.id

    @pytest.mark.asyncio
    async def test_other_tables_stay_separate(self, order_service, make_submission):
        a = await order_service.submit_order(make_submission(table_key="1"))
        b = await order_service.submit_order(make_submission(table_key="2"))

        assert a.order.id != b.order.id
        assert b.outcome == SubmitOutcome.CREATED


class TestSentinels:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", [TAKEAWAY, DELIVERY])
    async def test_sentinel_submissions_never_auto_merge(self, order_service, make_submission, key):
        first = await order_service.submit_order(make_submission(table_key=key))
        second = await order_service.submit_order(make_submission(table_key=key))

        assert second.outcome == SubmitOutcome.CREATED
        assert second.order.id != first.order.id

    @pytest.mark.asyncio
    async def test_explicit_merge_target_is_honoured(self, order_service, make_submission):
        first = await order_service.submit_order(make_submission(table_key=TAKEAWAY))
        second = await order_service.submit_order(
            make_submission(table_key=TAKEAWAY, lines=((LASSI, 1),), merge_into=first.order.id)
        )

        assert second.outcome == SubmitOutcome.MERGED
        assert second.order.id == first.order.id

    @pytest.mark.asyncio
    async def test_merge_target_on_other_table_is_rejected(self, order_service, make_submission):
        first = await order_service.submit_order(make_submission(table_key="3"))

        with pytest.raises(MergeTargetError):
            await order_service.submit_order(
                make_submission(table_key="4", merge_into=first.order.id)
            )

    @pytest.mark.asyncio
    async def test_closed_merge_target_is_ignored(self, order_service, make_submission):
        first = await order_service.submit_order(make_submission(table_key=TAKEAWAY))
        await order_service.advance_status(first.order.id, OrderStatus.SERVED)

        second = await order_service.submit_order(
            make_submission(table_key=TAKEAWAY, merge_into=first.order.id)
        )

        assert second.outcome == SubmitOutcome.CREATED


class TestIdempotency:

    @pytest.mark.asyncio
    async def test_replayed_token_is_not_applied_twice(
        self, order_service, db_session, broker, make_submission
    ):
        data = make_submission(token="dup-token-0001")
        first = await order_service.submit_order(data)
        published = len(broker.history)

        again = await order_service.submit_order(data)

        assert again.replayed is True
        assert again.outcome == SubmitOutcome.CREATED
        assert again.order.id == first.order.id
        assert again.order.subtotal == 510
        assert await _count(db_session, Order) == 1
        assert len(broker.history) == published

    @pytest.mark.asyncio
    async def test_replayed_merge_reports_merge(self, order_service, make_submission):
        await order_service.submit_order(make_submission())
        data = make_submission(lines=((LASSI, 1),), token="merge-token-01")
        await order_service.submit_order(data)

        again = await order_service.submit_order(data)

        assert again.outcome == SubmitOutcome.MERGED
        assert again.replayed is True
        assert again.order.subtotal == 570

    @pytest.mark.asyncio
    async def test_concurrent_submissions_yield_one_order(
        self, session_maker, broker, locks, make_submission
    ):
        async def submit(lines):
            async with session_maker() as session:
                service = OrderService(session, broker, locks)
                return await service.submit_order(make_submission(lines=lines))

        results = await asyncio.gather(
            submit(((PANEER, 1),)),
            submit(((NOODLES, 1),)),
            submit(((LASSI, 1),)),
        )

        assert len({r.order.id for r in results}) == 1
        assert sorted(r.outcome.value for r in results) == ["created", "merged", "merged"]
        async with session_maker() as session:
            order = (await session.execute(select(Order))).scalar_one()
            assert order.subtotal == 390
            assert await _count(session, Bill) == 1


class TestAdvanceStatus:

    @pytest.mark.asyncio
    async def test_forward_moves_and_skips(self, order_service, broker, make_submission):
        order = (await order_service.submit_order(make_submission())).order

        await order_service.advance_status(order.id, OrderStatus.COOKING)
        served = await order_service.advance_status(order.id, OrderStatus.SERVED)

        assert served.status == OrderStatus.SERVED
        assert served.served_at is not None
        assert broker.events_of(EventType.ORDER_UPDATED)[-1].order().status == OrderStatus.SERVED

    @pytest.mark.asyncio
    async def test_same_status_is_a_noop(self, order_service, broker, make_submission):
        order = (await order_service.submit_order(make_submission())).order
        published = len(broker.history)

        await order_service.advance_status(order.id, OrderStatus.PREPARING)

        assert len(broker.history) == published

    @pytest.mark.asyncio
    async def test_regression_is_rejected(self, order_service, make_submission):
        order = (await order_service.submit_order(make_submission())).order
        await order_service.advance_status(order.id, OrderStatus.READY)

        with pytest.raises(InvalidStatusTransitionError):
            await order_service.advance_status(order.id, OrderStatus.COOKING)

    @pytest.mark.asyncio
    async def test_unknown_order(self, order_service):
        with pytest.raises(OrderNotFoundError):
            await order_service.advance_status(999, OrderStatus.READY)


class TestQueries:

    @pytest.mark.asyncio
    async def test_list_orders_filters_by_status(self, order_service, make_submission):
        a = (await order_service.submit_order(make_submission(table_key="1"))).order
        await order_service.submit_order(make_submission(table_key="2"))
        await order_service.advance_status(a.id, OrderStatus.READY)

        total, ready = await order_service.list_orders(limit=10, status=OrderStatus.READY)

        assert total == 1
        assert [o.id for o in ready] == [a.id]

    @pytest.mark.asyncio
    async def test_table_snapshot_open_only(self, order_service, make_submission):
        old = (await order_service.submit_order(make_submission(table_key="6"))).order
        await order_service.advance_status(old.id, OrderStatus.SERVED)
        new = (await order_service.submit_order(make_submission(table_key="6"))).order

        everything = await order_service.list_table_orders("6")
        open_only = await order_service.list_table_orders("6", open_only=True)

        assert {o.id for o in everything} == {old.id, new.id}
        assert [o.id for o in open_only] == [new.id]

    @pytest.mark.asyncio
    async def test_list_bills_newest_first(self, order_service, make_submission):
        first = await order_service.submit_order(make_submission(table_key="1"))
        second = await order_service.submit_order(make_submission(table_key="2"))

        total, bills = await order_service.list_bills(limit=10)

        assert total == 2
        assert [b.order_ref for b in bills] == [second.order.id, first.order.id]


class TestMergeItems:

    def test_keeps_original_price_snapshot(self, make_submission):
        existing = [{**PANEER, "quantity": 1, "image": None}]
        incoming = make_submission(lines=(({**PANEER, "unit_price": 999.0}, 1),)).items

        merged = merge_items(existing, incoming)

        assert merged == [{**PANEER, "quantity": 2, "image": None}]
        assert existing[0]["quantity"] == 1
