"""
Pydantic Schemas for Request/Response Validation

Shared by the FastAPI server and the client synchronisation core:
- Order submission (create-or-merge) with an idempotency token
- Status transitions
- Orders, bills and the explicit submit outcome
- Realtime event envelope
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tableside.tables import normalize_table_key


# =============================================================================
# ENUMS
# =============================================================================

class OrderStatus(str, Enum):
    """Kitchen pipeline. Served is terminal."""
    PREPARING = "Preparing"
    COOKING = "Cooking"
    READY = "Ready"
    SERVED = "Served"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @property
    def is_open(self) -> bool:
        return self is not OrderStatus.SERVED


_STATUS_RANK = {
    OrderStatus.PREPARING: 1,
    OrderStatus.COOKING: 2,
    OrderStatus.READY: 3,
    OrderStatus.SERVED: 4,
}


class OrderSource(str, Enum):
    """Who entered the order."""
    CUSTOMER = "customer"
    WAITER = "waiter"
    MANUAL = "manual"


class SubmitOutcome(str, Enum):
    CREATED = "created"
    MERGED = "merged"


class EventType(str, Enum):
    """Realtime events pushed to every connected client."""
    ORDER_CREATED = "orderCreated"
    ORDER_UPDATED = "orderUpdated"
    BILL_CREATED = "billCreated"
    BILL_UPDATED = "billUpdated"
    ITEMS_ADDED = "itemsAdded"


# =============================================================================
# LINE ITEMS
# =============================================================================

class OrderItem(BaseModel):
    """Snapshot of one cart line at submission time."""
    product_ref: str = Field(..., min_length=1, max_length=64, examples=["p-101"])
    name: str = Field(..., min_length=1, max_length=100, examples=["Paneer Butter Masala"])
    unit_price: float = Field(..., ge=0, examples=[180.0])
    quantity: int = Field(..., ge=1, examples=[2])
    image: Optional[str] = Field(None, max_length=500)

    @property
    def line_total(self) -> float:
        return self.unit_price * self.quantity


class BillDetails(BaseModel):
    subtotal: float
    cgst: float
    sgst: float
    grand_total: float


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class OrderSubmit(BaseModel):
    """
    Request schema for submitting a cart.

    The server decides whether this creates a new order or merges into the
    open order of the same table. Client-computed bill details are accepted
    for display parity but never stored; the server recomputes them.
    """
    submission_id: str = Field(..., min_length=8, max_length=64)
    table_key: Optional[str] = Field(None, max_length=20, examples=["7", "TAKEAWAY"])
    items: List[OrderItem] = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=500)
    bill_details: Optional[BillDetails] = None
    merge_into: Optional[int] = Field(None, ge=1)
    source: OrderSource = OrderSource.CUSTOMER

    customer_name: Optional[str] = Field(None, max_length=100)
    customer_phone: Optional[str] = Field(None, max_length=20)
    customer_address: Optional[str] = Field(None, max_length=255)
    delivery_time: Optional[str] = Field(None, max_length=50)
    waiter_ref: Optional[str] = Field(None, max_length=50)

    @field_validator("table_key")
    @classmethod
    def validate_table_key(cls, v: Optional[str]) -> Optional[str]:
        return normalize_table_key(v)

    @field_validator("notes")
    @classmethod
    def strip_notes(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return v.strip() or None

    @field_validator("items")
    @classmethod
    def validate_unique_products(cls, v: List[OrderItem]) -> List[OrderItem]:
        seen = set()
        for item in v:
            if item.product_ref in seen:
                raise ValueError(f"Duplicate product_ref in items: {item.product_ref}")
            seen.add(item.product_ref)
        return v


class StatusUpdate(BaseModel):
    status: OrderStatus


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class OrderResponse(BaseModel):
    """Response schema for a single order."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    table_key: str
    items: List[OrderItem]
    status: OrderStatus
    notes: Optional[str] = None
    source: OrderSource = OrderSource.CUSTOMER
    bill_details: BillDetails
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None
    delivery_time: Optional[str] = None
    waiter_ref: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    served_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status != OrderStatus.SERVED


class BillResponse(BaseModel):
    """Response schema for a bill (invoice)."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_ref: Optional[int] = None
    table_key: str
    items: List[OrderItem]
    subtotal: float
    cgst: float
    sgst: float
    grand_total: float
    customer_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def ledger_key(self) -> int:
        """Identity used for deduplication: order_ref, else own id."""
        return self.order_ref if self.order_ref is not None else self.id


class SubmitOrderResponse(BaseModel):
    """Result of a submission, tagged with what the server did."""
    outcome: SubmitOutcome
    order: OrderResponse
    bill: BillResponse
    added_items: List[OrderItem] = Field(default_factory=list)
    replayed: bool = False
    submission_id: str


class OrderListResponse(BaseModel):
    total: int
    orders: List[OrderResponse]


class BillListResponse(BaseModel):
    total: int
    bills: List[BillResponse]


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[Any] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    event_broker: str
    websocket_clients: int
    timestamp: datetime


# =============================================================================
# REALTIME EVENTS
# =============================================================================

class ItemsAddedPayload(BaseModel):
    order_id: int
    table_key: str
    items: List[OrderItem]

    @property
    def count(self) -> int:
        return sum(item.quantity for item in self.items)


class RealtimeEvent(BaseModel):
    """
    Wire envelope for pushed events.

    Payloads are full snapshots (OrderResponse / BillResponse dumps) except
    for itemsAdded, which carries only the delta.
    """
    type: EventType
    payload: dict[str, Any]
    emitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def order(self) -> OrderResponse:
        return OrderResponse.model_validate(self.payload)

    def bill(self) -> BillResponse:
        return BillResponse.model_validate(self.payload)

    def items_added(self) -> ItemsAddedPayload:
        return ItemsAddedPayload.model_validate(self.payload)
