"""
Order Service

Server-side authority for the order lifecycle:
    - submit_order: create a new order or merge into the table's open order
    - advance_status: move an order forward through the kitchen pipeline
    - queries for orders, table snapshots and bills

Every mutation is committed before its realtime events are published, so a
client that refetches after an event always sees at least that state.

Submissions for one table key are serialised by an in-process lock; a
partial unique index on open dine-in orders covers several workers, and a
lost insert race is retried as a merge.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Union

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tableside.billing import calculate_bill_details, dedupe_bills
from tableside.models import Bill, Order, SubmissionRecord
from tableside.schemas import (
    BillResponse,
    EventType,
    OrderItem,
    OrderResponse,
    OrderStatus,
    OrderSubmit,
    RealtimeEvent,
    SubmitOutcome,
)
from tableside.services.events import BaseEventBroker
from tableside.tables import TAKEAWAY, is_sentinel

logger = logging.getLogger(__name__)

MAX_SUBMIT_ATTEMPTS = 2


# =============================================================================
# ERRORS
# =============================================================================

class OrderServiceError(Exception):
    """Base class for order domain errors."""
    status_code = 400
    code = "order_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class OrderNotFoundError(OrderServiceError):
    status_code = 404
    code = "order_not_found"


class InvalidStatusTransitionError(OrderServiceError):
    status_code = 409
    code = "invalid_status_transition"


class MergeTargetError(OrderServiceError):
    status_code = 422
    code = "invalid_merge_target"


# =============================================================================
# LOCKS
# =============================================================================

class TableLockRegistry:
    """One asyncio.Lock per table key, created on first use."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    def for_table(self, table_key: str) -> asyncio.Lock:
        lock = self._locks.get(table_key)
        if lock is None:
            lock = self._locks[table_key] = asyncio.Lock()
        return lock


# =============================================================================
# HELPERS
# =============================================================================

@dataclass
class SubmitResult:
    """What submit_order did, before serialisation."""
    outcome: SubmitOutcome
    order: Order
    bill: Bill
    added_items: list[dict[str, Any]] = field(default_factory=list)
    replayed: bool = False


def merge_items(existing: Iterable[dict], incoming: Iterable[OrderItem]) -> list[dict]:
    """
    Append incoming lines to an order's items.

    A product already on the order keeps its original price snapshot and
    gets the extra quantity, so product_ref stays unique within the order.
    """
    merged = [dict(line) for line in existing]
    by_ref = {line["product_ref"]: line for line in merged}
    for item in incoming:
        line = by_ref.get(item.product_ref)
        if line is not None:
            line["quantity"] += item.quantity
        else:
            line = item.model_dump()
            merged.append(line)
            by_ref[item.product_ref] = line
    return merged


def _apply_totals(target: Union[Order, Bill], items: list[dict]) -> None:
    totals = calculate_bill_details(items)
    target.subtotal = totals["subtotal"]
    target.cgst = totals["cgst"]
    target.sgst = totals["sgst"]
    target.grand_total = totals["grand_total"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def serialize_order(order: Order) -> dict[str, Any]:
    return OrderResponse.model_validate(order).model_dump(mode="json")


def serialize_bill(bill: Bill) -> dict[str, Any]:
    return BillResponse.model_validate(bill).model_dump(mode="json")


# =============================================================================
# SERVICE
# =============================================================================

class OrderService:
    """Order aggregate operations bound to one database session."""

    def __init__(
        self,
        db: AsyncSession,
        broker: BaseEventBroker,
        locks: TableLockRegistry,
    ):
        self.db = db
        self.broker = broker
        self.locks = locks

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get_order(self, order_id: int) -> Order:
        order = await self.db.get(Order, order_id)
        if order is None:
            raise OrderNotFoundError(f"Order #{order_id} not found")
        return order

    async def get_bill_for_order(self, order_id: int) -> Bill:
        result = await self.db.execute(select(Bill).where(Bill.order_ref == order_id))
        bill = result.scalar_one_or_none()
        if bill is None:
            raise OrderNotFoundError(f"Bill for order #{order_id} not found")
        return bill

    async def find_open_order(self, table_key: str) -> Optional[Order]:
        result = await self.db.execute(
            select(Order)
            .where(Order.table_key == table_key, Order.status != OrderStatus.SERVED)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_orders(
        self,
        limit: int,
        status: Optional[OrderStatus] = None,
    ) -> tuple[int, list[Order]]:
        query = select(Order).order_by(Order.created_at.desc(), Order.id.desc())
        count_query = select(func.count(Order.id))
        if status is not None:
            query = query.where(Order.status == status)
            count_query = count_query.where(Order.status == status)

        total = (await self.db.execute(count_query)).scalar() or 0
        result = await self.db.execute(query.limit(limit))
        return total, list(result.scalars().all())

    async def list_table_orders(self, table_key: str, open_only: bool = False) -> list[Order]:
        query = (
            select(Order)
            .where(Order.table_key == table_key)
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        if open_only:
            query = query.where(Order.status != OrderStatus.SERVED)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def list_bills(self, limit: int) -> tuple[int, list[Bill]]:
        total = (await self.db.execute(select(func.count(Bill.id)))).scalar() or 0
        result = await self.db.execute(
            select(Bill).order_by(Bill.created_at.desc(), Bill.id.desc()).limit(limit)
        )
        return total, dedupe_bills(result.scalars().all())

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    async def submit_order(self, data: OrderSubmit) -> SubmitResult:
        """
        Create a new order for the table or merge into its open one.

        A submission_id that was already applied returns the recorded result
        with replayed=True and publishes nothing.
        """
        table_key = data.table_key or TAKEAWAY

        async with self.locks.for_table(table_key):
            for attempt in range(1, MAX_SUBMIT_ATTEMPTS + 1):
                replay = await self._replay(data.submission_id)
                if replay is not None:
                    logger.info(
                        f"Submission {data.submission_id} replayed for order #{replay.order.id}"
                    )
                    return replay

                target = await self._resolve_merge_target(table_key, data.merge_into)
                try:
                    if target is not None:
                        result = await self._merge(target, data)
                    else:
                        result = await self._create(table_key, data)
                    await self.db.commit()
                    break
                except IntegrityError:
                    await self.db.rollback()
                    if attempt == MAX_SUBMIT_ATTEMPTS:
                        raise
                    logger.warning(
                        f"Concurrent submission for table {table_key}, retrying as merge"
                    )

            await self.db.refresh(result.order)
            await self.db.refresh(result.bill)

            logger.info(
                f"Order #{result.order.id} {result.outcome.value} for table {table_key} "
                f"({len(result.added_items)} line(s), total {result.order.grand_total:.2f})"
            )
            # Published under the lock so one table's events leave in commit order
            await self._publish_submit_events(result)
        return result

    async def _replay(self, token: str) -> Optional[SubmitResult]:
        record = await self.db.get(SubmissionRecord, token)
        if record is None:
            return None
        order = await self.get_order(record.order_id)
        bill = await self.get_bill_for_order(record.order_id)
        return SubmitResult(
            outcome=record.outcome,
            order=order,
            bill=bill,
            added_items=list(record.items or []),
            replayed=True,
        )

    async def _resolve_merge_target(
        self,
        table_key: str,
        merge_into: Optional[int],
    ) -> Optional[Order]:
        if merge_into is not None:
            target = await self.db.get(Order, merge_into)
            if target is not None and target.status.is_open:
                if target.table_key != table_key:
                    raise MergeTargetError(
                        f"Order #{merge_into} belongs to table {target.table_key}, "
                        f"not {table_key}"
                    )
                return target
            logger.info(f"Merge target #{merge_into} is closed or missing, ignoring it")

        if is_sentinel(table_key):
            return None
        return await self.find_open_order(table_key)

    async def _create(self, table_key: str, data: OrderSubmit) -> SubmitResult:
        items = [item.model_dump() for item in data.items]
        now = _utcnow()

        order = Order(
            table_key=table_key,
            items=items,
            notes=data.notes,
            source=data.source,
            status=OrderStatus.PREPARING,
            customer_name=data.customer_name,
            customer_phone=data.customer_phone,
            customer_address=data.customer_address,
            delivery_time=data.delivery_time,
            waiter_ref=data.waiter_ref,
            updated_at=now,
        )
        _apply_totals(order, items)
        self.db.add(order)
        await self.db.flush()

        bill = Bill(
            order_ref=order.id,
            table_key=table_key,
            items=items,
            customer_name=data.customer_name,
            updated_at=now,
        )
        _apply_totals(bill, items)
        self.db.add(bill)

        self.db.add(SubmissionRecord(
            token=data.submission_id,
            order_id=order.id,
            outcome=SubmitOutcome.CREATED,
            items=items,
        ))
        await self.db.flush()

        return SubmitResult(
            outcome=SubmitOutcome.CREATED,
            order=order,
            bill=bill,
            added_items=items,
        )

    async def _merge(self, order: Order, data: OrderSubmit) -> SubmitResult:
        bill = await self.get_bill_for_order(order.id)
        merged = merge_items(order.items or [], data.items)
        added = [item.model_dump() for item in data.items]
        now = _utcnow()

        # JSON columns are replaced, never mutated in place
        order.items = merged
        _apply_totals(order, merged)
        order.updated_at = now
        if data.notes:
            order.notes = f"{order.notes}\n{data.notes}" if order.notes else data.notes
        for attr in ("customer_name", "customer_phone", "customer_address",
                     "delivery_time", "waiter_ref"):
            incoming = getattr(data, attr)
            if incoming and not getattr(order, attr):
                setattr(order, attr, incoming)

        bill.items = merged
        _apply_totals(bill, merged)
        bill.updated_at = now
        if order.customer_name and not bill.customer_name:
            bill.customer_name = order.customer_name

        self.db.add(SubmissionRecord(
            token=data.submission_id,
            order_id=order.id,
            outcome=SubmitOutcome.MERGED,
            items=added,
        ))
        await self.db.flush()

        return SubmitResult(
            outcome=SubmitOutcome.MERGED,
            order=order,
            bill=bill,
            added_items=added,
        )

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    async def advance_status(self, order_id: int, new_status: OrderStatus) -> Order:
        """
        Move an order forward through Preparing → Cooking → Ready → Served.

        Skipping ahead is allowed, asking for the current status is a no-op,
        going backwards raises InvalidStatusTransitionError.
        """
        order = await self.get_order(order_id)

        async with self.locks.for_table(order.table_key):
            await self.db.refresh(order)
            current = order.status

            if new_status == current:
                return order
            if new_status.rank < current.rank:
                raise InvalidStatusTransitionError(
                    f"Order #{order_id} cannot go back from {current.value} to {new_status.value}"
                )

            now = _utcnow()
            order.status = new_status
            order.updated_at = now
            if new_status == OrderStatus.SERVED:
                order.served_at = now
            await self.db.commit()
            await self.db.refresh(order)

            logger.info(f"Order #{order.id} moved {current.value} → {new_status.value}")
            await self._publish(EventType.ORDER_UPDATED, serialize_order(order))
        return order

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    async def _publish_submit_events(self, result: SubmitResult) -> None:
        order_payload = serialize_order(result.order)
        bill_payload = serialize_bill(result.bill)

        if result.outcome == SubmitOutcome.CREATED:
            await self._publish(EventType.ORDER_CREATED, order_payload)
            await self._publish(EventType.BILL_CREATED, bill_payload)
            return

        await self._publish(EventType.ORDER_UPDATED, order_payload)
        await self._publish(EventType.BILL_UPDATED, bill_payload)
        await self._publish(EventType.ITEMS_ADDED, {
            "order_id": result.order.id,
            "table_key": result.order.table_key,
            "items": result.added_items,
        })

    async def _publish(self, event_type: EventType, payload: dict[str, Any]) -> None:
        # The change is already committed; clients reconcile on their next refetch
        try:
            await self.broker.publish(RealtimeEvent(type=event_type, payload=payload))
        except Exception:
            logger.exception(f"Failed to publish {event_type.value}")
