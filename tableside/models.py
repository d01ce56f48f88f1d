"""
SQLAlchemy Database Models

Order lifecycle persistence:
- Orders with a fixed kitchen pipeline (Preparing → Cooking → Ready → Served)
- One bill per order, updated in place when more items are merged in
- Accepted submission tokens, so a replayed submit is answered, not re-applied
"""

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.sql import func

from tableside.database import Base
from tableside.schemas import OrderSource, OrderStatus, SubmitOutcome
from tableside.tables import DELIVERY, TAKEAWAY


# Open dine-in orders are unique per table. Enum columns store member names.
_OPEN_DINE_IN = text(
    f"status != 'SERVED' AND table_key NOT IN ('{TAKEAWAY}', '{DELIVERY}')"
)


class Order(Base):
    """
    Main Order table.

    Items are stored as a JSON list of line snapshots:
    {product_ref, name, unit_price, quantity, image}.
    """
    __tablename__ = "orders"
    __table_args__ = (
        Index(
            "uq_orders_open_table",
            "table_key",
            unique=True,
            postgresql_where=_OPEN_DINE_IN,
            sqlite_where=_OPEN_DINE_IN,
        ),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # =========================================================================
    # TABLE & ITEMS
    # =========================================================================
    table_key = Column(String(20), nullable=False, index=True)
    items = Column(JSON, nullable=False, default=list)
    notes = Column(Text, nullable=True)
    source = Column(Enum(OrderSource), default=OrderSource.CUSTOMER, nullable=False)

    # =========================================================================
    # STATUS
    # =========================================================================
    status = Column(
        Enum(OrderStatus),
        default=OrderStatus.PREPARING,
        nullable=False,
        index=True
    )

    # =========================================================================
    # PRICING
    # =========================================================================
    subtotal = Column(Float, nullable=False, default=0.0)
    cgst = Column(Float, nullable=False, default=0.0)
    sgst = Column(Float, nullable=False, default=0.0)
    grand_total = Column(Float, nullable=False, default=0.0)

    # =========================================================================
    # CUSTOMER / DELIVERY (takeaway, delivery and manual orders)
    # =========================================================================
    customer_name = Column(String(100), nullable=True)
    customer_phone = Column(String(20), nullable=True)
    customer_address = Column(String(255), nullable=True)
    delivery_time = Column(String(50), nullable=True)
    waiter_ref = Column(String(50), nullable=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    served_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def bill_details(self) -> dict[str, float]:
        return {
            "subtotal": self.subtotal,
            "cgst": self.cgst,
            "sgst": self.sgst,
            "grand_total": self.grand_total,
        }

    def __repr__(self):
        return f"<Order #{self.id} - table {self.table_key} - {self.status.value}>"


class Bill(Base):
    """
    Invoice derived from an order. order_ref is unique: a merge updates the
    existing bill rather than adding a second one.
    """
    __tablename__ = "bills"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_ref = Column(
        Integer,
        ForeignKey("orders.id"),
        nullable=False,
        unique=True,
        index=True,
    )
    table_key = Column(String(20), nullable=False)
    items = Column(JSON, nullable=False, default=list)

    subtotal = Column(Float, nullable=False, default=0.0)
    cgst = Column(Float, nullable=False, default=0.0)
    sgst = Column(Float, nullable=False, default=0.0)
    grand_total = Column(Float, nullable=False, default=0.0)

    customer_name = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<Bill #{self.id} - order {self.order_ref} - {self.grand_total:.2f}>"


class SubmissionRecord(Base):
    """
    Client idempotency tokens already applied.

    A resubmitted token is answered from here instead of creating or merging
    a second time.
    """
    __tablename__ = "order_submissions"

    token = Column(String(64), primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    outcome = Column(Enum(SubmitOutcome), nullable=False)
    items = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<Submission {self.token} - order {self.order_id} - {self.outcome.value}>"
