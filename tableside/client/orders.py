"""
Order Store

Client-side view of the order aggregate:
    - local order collection, hydrated from the cache and refetched from
      the server
    - checkout: turns the active cart into a submission
    - kitchen/waiter status changes (server-confirmed only)
    - realtime event handlers

Every submission is tracked as pending -> confirmed | failed. The cart is
cleared as soon as a submission is dispatched; a failed submission keeps
its items and token, so a retry that reaches the server twice is still
applied once.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import ValidationError

from tableside.client.api import ApiClient
from tableside.client.bus import EventBus
from tableside.client.cache import DurableCache
from tableside.client.cart import CartStore
from tableside.client.errors import ApiAuthError, ClientError, OrderValidationError
from tableside.client.ledger import BillLedger
from tableside.client.notifications import NotificationCenter
from tableside.schemas import (
    EventType,
    OrderResponse,
    OrderSource,
    OrderStatus,
    OrderSubmit,
    RealtimeEvent,
    SubmitOutcome,
)

logger = logging.getLogger(__name__)

ORDERS_CACHE_KEY = "orders"


# =============================================================================
# SUBMISSIONS
# =============================================================================

class SubmissionState(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass
class Submission:
    """One checkout attempt, shown to the user until the server confirms it."""
    token: str
    table_key: str
    items: list[dict[str, Any]]
    notes: Optional[str] = None
    merge_target: Optional[int] = None
    source: OrderSource = OrderSource.CUSTOMER
    details: dict[str, Any] = field(default_factory=dict)
    state: SubmissionState = SubmissionState.PENDING
    outcome: Optional[SubmitOutcome] = None
    order_id: Optional[int] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_pending(self) -> bool:
        return self.state == SubmissionState.PENDING

    def to_request(self) -> OrderSubmit:
        return OrderSubmit(
            submission_id=self.token,
            table_key=self.table_key,
            items=self.items,
            notes=self.notes,
            merge_into=self.merge_target,
            source=self.source,
            **self.details,
        )


# =============================================================================
# STORE
# =============================================================================

class OrderStore:
    """Orders as this client sees them, newest first."""

    def __init__(
        self,
        api: ApiClient,
        cache: DurableCache,
        ledger: BillLedger,
        notifications: NotificationCenter,
        orders_fetch_limit: int = 200,
        bills_fetch_limit: int = 100,
    ):
        self.api = api
        self.cache = cache
        self.ledger = ledger
        self.notifications = notifications
        self.orders_fetch_limit = orders_fetch_limit
        self.bills_fetch_limit = bills_fetch_limit

        self._orders: list[OrderResponse] = []
        self._submissions: dict[str, Submission] = {}
        self._inflight: dict[str, Submission] = {}

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    @property
    def orders(self) -> list[OrderResponse]:
        return list(self._orders)

    @property
    def submissions(self) -> list[Submission]:
        """Unconfirmed submissions (pending or failed), oldest first."""
        return [
            s for s in self._submissions.values()
            if s.state != SubmissionState.CONFIRMED
        ]

    def get(self, order_id: int) -> Optional[OrderResponse]:
        for order in self._orders:
            if order.id == order_id:
                return order
        return None

    def submission(self, token: str) -> Optional[Submission]:
        return self._submissions.get(token)

    def active_order_for_table(self, table_key: str) -> Optional[OrderResponse]:
        """The table's open order, used as merge target by "add more items"."""
        for order in self._orders:
            if order.table_key == table_key and order.is_open:
                return order
        return None

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def hydrate(self) -> None:
        """Restore orders and bills from the cache for an instant first paint."""
        stored = self.cache.get(ORDERS_CACHE_KEY, [])
        orders = []
        if isinstance(stored, list):
            for entry in stored:
                try:
                    orders.append(OrderResponse.model_validate(entry))
                except ValidationError as e:
                    logger.warning(f"Dropping malformed cached order: {e.error_count()} error(s)")
        else:
            logger.warning("Ignoring malformed cached orders")
        self._orders = orders
        bills = self.ledger.hydrate()
        logger.info(f"Hydrated {len(orders)} order(s) and {bills} bill(s) from cache")

    async def refresh(self) -> bool:
        """
        Refetch orders and bills from the server.

        On failure the local state is kept and an alert is raised.
        Returns True when both collections were refreshed.
        """
        try:
            orders = await self.api.fetch_orders(limit=self.orders_fetch_limit)
            bills = await self.api.fetch_bills(limit=self.bills_fetch_limit)
        except ClientError as e:
            logger.warning(f"Refresh failed, keeping local state: {e.message}")
            self._alert(e, "Could not refresh orders")
            return False

        self._orders = list(orders)
        self._persist()
        self.ledger.replace_all(bills)
        logger.info(f"Refreshed {len(orders)} order(s) and {len(bills)} bill(s)")
        return True

    # -------------------------------------------------------------------------
    # Checkout
    # -------------------------------------------------------------------------

    async def submit(
        self,
        cart: CartStore,
        notes: Optional[str] = None,
        merge_target: Optional[int] = None,
        source: OrderSource = OrderSource.CUSTOMER,
        **details: Any,
    ) -> Submission:
        """
        Submit the cart of the active table.

        While a submission for the same table is pending, that submission is
        returned and nothing is sent.

        Raises:
            OrderValidationError: no table selected, or the cart is empty
        """
        table_key = cart.table_key
        if table_key is None:
            raise OrderValidationError("Choose a table or order mode first")

        inflight = self._inflight.get(table_key)
        if inflight is not None:
            logger.info(f"Submission {inflight.token} for table {table_key} still pending")
            return inflight

        if cart.is_empty:
            raise OrderValidationError("Cart is empty")

        submission = Submission(
            token=uuid.uuid4().hex,
            table_key=table_key,
            items=cart.snapshot(),
            notes=notes,
            merge_target=merge_target,
            source=source,
            details={k: v for k, v in details.items() if v is not None},
        )
        try:
            submission.to_request()
        except ValidationError as e:
            raise OrderValidationError(
                f"Order cannot be placed: {e.error_count()} invalid field(s)",
                detail=e.errors(),
            ) from e

        self._submissions[submission.token] = submission
        cart.clear()

        await self._send(submission)
        return submission

    async def retry(self, token: str) -> Submission:
        """Resend a failed submission with its original token."""
        submission = self._submissions.get(token)
        if submission is None or submission.state != SubmissionState.FAILED:
            raise OrderValidationError(f"No failed submission {token}")

        inflight = self._inflight.get(submission.table_key)
        if inflight is not None:
            return inflight

        await self._send(submission)
        return submission

    def discard(self, token: str) -> bool:
        """Forget a failed submission."""
        submission = self._submissions.get(token)
        if submission is None or submission.state != SubmissionState.FAILED:
            return False
        del self._submissions[token]
        logger.info(f"Discarded failed submission {token} for table {submission.table_key}")
        return True

    async def _send(self, submission: Submission) -> None:
        submission.state = SubmissionState.PENDING
        submission.error = None
        self._inflight[submission.table_key] = submission

        try:
            response = await self.api.submit_order(submission.to_request())
        except ClientError as e:
            submission.state = SubmissionState.FAILED
            submission.error = e.message
            logger.warning(
                f"Submission {submission.token} for table {submission.table_key} failed: {e.message}"
            )
            self._alert(e, f"Order for {submission.table_key} was not placed")
            return
        finally:
            self._inflight.pop(submission.table_key, None)

        submission.state = SubmissionState.CONFIRMED
        submission.outcome = response.outcome
        submission.order_id = response.order.id
        self._upsert(response.order)
        self.ledger.upsert(response.bill)
        logger.info(
            f"Submission {submission.token} {response.outcome.value} order #{response.order.id}"
            + (" (replayed)" if response.replayed else "")
        )

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    async def advance_status(
        self,
        order_id: int,
        status: OrderStatus,
    ) -> Optional[OrderResponse]:
        """
        Ask the server to move an order forward.

        The local copy changes only when the server confirms; on failure an
        alert is raised and None is returned.
        """
        try:
            order = await self.api.update_status(order_id, status)
        except ClientError as e:
            logger.warning(f"Status change for order #{order_id} failed: {e.message}")
            self._alert(e, f"Order #{order_id} could not be moved to {status.value}")
            return None
        self._upsert(order)
        return order

    # -------------------------------------------------------------------------
    # Realtime
    # -------------------------------------------------------------------------

    def bind(self, bus: EventBus) -> Callable[[], None]:
        """Subscribe to every event type; returns an unsubscribe callable."""
        unsubscribers = [bus.subscribe(event_type, self.apply_event) for event_type in EventType]

        def unbind() -> None:
            for unsubscribe in unsubscribers:
                unsubscribe()

        return unbind

    def apply_event(self, event: RealtimeEvent) -> None:
        """Apply one pushed event. Safe to call twice and in any order."""
        try:
            if event.type == EventType.ORDER_CREATED:
                order = event.order()
                if self.get(order.id) is None:
                    self._orders.insert(0, order)
                    self._persist()
            elif event.type == EventType.ORDER_UPDATED:
                self._upsert(event.order())
            elif event.type in (EventType.BILL_CREATED, EventType.BILL_UPDATED):
                self.ledger.upsert(event.bill())
            elif event.type == EventType.ITEMS_ADDED:
                added = event.items_added()
                self.notifications.notify_items_added(
                    order_id=added.order_id,
                    table_key=added.table_key,
                    items=[item.model_dump() for item in added.items],
                )
        except ValidationError as e:
            logger.warning(f"Ignoring malformed {event.type.value} payload: {e.error_count()} error(s)")

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _upsert(self, order: OrderResponse) -> None:
        for index, existing in enumerate(self._orders):
            if existing.id == order.id:
                self._orders[index] = order
                break
        else:
            self._orders.insert(0, order)
        self._persist()

    def _persist(self) -> None:
        self.cache.set(
            ORDERS_CACHE_KEY,
            [order.model_dump(mode="json") for order in self._orders],
        )

    def _alert(self, error: ClientError, message: str) -> None:
        if isinstance(error, ApiAuthError):
            self.notifications.alert(error.message, level="auth")
        else:
            self.notifications.alert(f"{message}: {error.message}")
