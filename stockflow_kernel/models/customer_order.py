"""
Module: stockflow_kernel.models.customer_order
Responsibility: ORM persistence for customer orders, their line items, and
    the preparer sessions of warehouse workers assembling them.
Architecture position: Kernel > Models.  May import from db/base.py and
    sibling models.

Invariants enforced:
    - total_cost == sum(item.subtotal) at every observable state.
    - Status changes follow VALID_TRANSITIONS (validate_transition).
    - batch_allocation is written once, when preparation completes, and is
      read back when a prepared order is cancelled or rejected.
      batch_allocation_version records the snapshot schema.
    - At most one working OrderPreparer per (order, worker).

Failure modes:
    - InvalidStateError from validate_transition on an illegal move.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockflow_kernel.db.base import IdType, TrackedBase, UUIDString
from stockflow_kernel.exceptions import InvalidStateError
from stockflow_kernel.models.customer import Customer
from stockflow_kernel.models.product import Product


class CustomerOrderStatus(str, Enum):
    """
    Customer order lifecycle.

    State machine:
        Pending   -> Accepted | Rejected | Cancelled
        Accepted  -> Preparing | Rejected | Cancelled
        Preparing -> Preparing | Prepared | Rejected | Cancelled
        Prepared  -> Assigned | Rejected | Cancelled
        Assigned  -> on_theway | Rejected | Cancelled
        on_theway -> Shipped | Returned | Rejected | Cancelled
        Shipped   -> Cancelled
        Returned  -> Cancelled
        Rejected, Cancelled: terminal
    """

    PENDING = "Pending"
    ACCEPTED = "Accepted"
    PREPARING = "Preparing"
    PREPARED = "Prepared"
    ASSIGNED = "Assigned"
    ON_THE_WAY = "on_theway"
    SHIPPED = "Shipped"
    RETURNED = "Returned"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"


_S = CustomerOrderStatus

VALID_TRANSITIONS: dict[CustomerOrderStatus, frozenset[CustomerOrderStatus]] = {
    _S.PENDING: frozenset({_S.ACCEPTED, _S.REJECTED, _S.CANCELLED}),
    _S.ACCEPTED: frozenset({_S.PREPARING, _S.REJECTED, _S.CANCELLED}),
    # Preparing -> Preparing: another worker joins the preparation
    _S.PREPARING: frozenset({_S.PREPARING, _S.PREPARED, _S.REJECTED, _S.CANCELLED}),
    _S.PREPARED: frozenset({_S.ASSIGNED, _S.REJECTED, _S.CANCELLED}),
    _S.ASSIGNED: frozenset({_S.ON_THE_WAY, _S.REJECTED, _S.CANCELLED}),
    _S.ON_THE_WAY: frozenset({_S.SHIPPED, _S.RETURNED, _S.REJECTED, _S.CANCELLED}),
    _S.SHIPPED: frozenset({_S.CANCELLED}),
    _S.RETURNED: frozenset({_S.CANCELLED}),
    _S.REJECTED: frozenset(),
    _S.CANCELLED: frozenset(),
}

# Statuses in which preparation has already deducted inventory
INVENTORY_COMMITTED_STATUSES: frozenset[CustomerOrderStatus] = frozenset({
    _S.PREPARED,
    _S.ASSIGNED,
    _S.ON_THE_WAY,
    _S.SHIPPED,
    _S.RETURNED,
})


class PaymentMethod(str, Enum):
    CASH = "cash"
    DEBT = "debt"
    PARTIAL = "partial"


class PreparerStatus(str, Enum):
    WORKING = "working"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CustomerOrder(TrackedBase):
    """
    A customer order moving from creation through shipment or cancellation.

    Contract:
        Only the customer order service and the delivery service write
        ``status``.  The Prepared transition is performed with a guarded
        UPDATE so that one concurrent completer wins.
    """

    __tablename__ = "customer_orders"
    __table_args__ = (
        Index("idx_customer_order_status", "status"),
        Index("idx_customer_order_customer", "customer_id"),
        Index("idx_customer_order_courier_status", "courier_id", "status"),
        CheckConstraint("amount_paid >= 0", name="ck_customer_order_paid_non_negative"),
    )

    customer_id: Mapped[int] = mapped_column(
        IdType, ForeignKey("customers.id"), nullable=False
    )

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CustomerOrderStatus.PENDING.value
    )

    total_cost: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    discount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    amount_paid: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    payment_method: Mapped[str | None] = mapped_column(String(20), nullable=True)

    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Preparation
    preparation_started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    preparation_completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # JSON array of {productId, allocation: [{batchId, quantity}], ...}
    batch_allocation: Mapped[list[dict[str, Any]] | None] = mapped_column(
        JSON, nullable=True
    )
    batch_allocation_version: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Delivery linkage
    courier_id: Mapped[int | None] = mapped_column(
        IdType, ForeignKey("couriers.id"), nullable=True
    )
    estimated_delivery_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    delivery_delay_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    assigned_at: Mapped[datetime | None] = mapped_column(nullable=True)
    delivery_started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    delivery_ended_at: Mapped[datetime | None] = mapped_column(nullable=True)
    delivery_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    return_reason: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Cancellation
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    cancelled_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    customer: Mapped[Customer] = relationship(Customer)

    items: Mapped[list["CustomerOrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="CustomerOrderItem.id",
    )

    preparers: Mapped[list["OrderPreparer"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderPreparer.id",
    )

    @property
    def status_enum(self) -> CustomerOrderStatus:
        return CustomerOrderStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return not VALID_TRANSITIONS[self.status_enum]

    @property
    def outstanding_debt(self) -> Decimal:
        return self.total_cost - self.amount_paid

    @property
    def items_total(self) -> Decimal:
        return sum((item.subtotal for item in self.items), Decimal("0"))

    def can_transition_to(self, target: CustomerOrderStatus) -> bool:
        return target in VALID_TRANSITIONS[self.status_enum]

    def validate_transition(self, target: CustomerOrderStatus, reason: str | None = None) -> None:
        """
        Raises:
            InvalidStateError: If ``target`` is not reachable from the
                current status.
        """
        if not self.can_transition_to(target):
            raise InvalidStateError(
                "CustomerOrder", self.id, self.status, target.value, reason=reason
            )

    def working_preparers(self) -> list["OrderPreparer"]:
        return [p for p in self.preparers if p.status == PreparerStatus.WORKING.value]

    def __repr__(self) -> str:
        return f"<CustomerOrder {self.id} {self.status} total={self.total_cost}>"


class CustomerOrderItem(TrackedBase):
    """One order line: subtotal == unit_price * quantity."""

    __tablename__ = "customer_order_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_customer_order_item_quantity_positive"),
    )

    order_id: Mapped[int] = mapped_column(
        IdType, ForeignKey("customer_orders.id"), nullable=False
    )
    product_id: Mapped[int] = mapped_column(
        IdType, ForeignKey("products.id"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(nullable=False)

    order: Mapped[CustomerOrder] = relationship(back_populates="items")
    product: Mapped[Product] = relationship(Product)

    def __repr__(self) -> str:
        return f"<CustomerOrderItem product={self.product_id} qty={self.quantity}>"


class OrderPreparer(TrackedBase):
    """
    A warehouse worker's preparation session on an order.

    Many workers may hold working rows on one order at once.  Completing
    preparation requires a working row; the completer's row becomes
    completed and every other working row becomes cancelled.
    """

    __tablename__ = "order_preparers"
    __table_args__ = (
        Index("idx_preparer_order_status", "order_id", "status"),
        Index("idx_preparer_worker", "worker_id"),
    )

    order_id: Mapped[int] = mapped_column(
        IdType, ForeignKey("customer_orders.id"), nullable=False
    )
    worker_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PreparerStatus.WORKING.value
    )
    started_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    order: Mapped[CustomerOrder] = relationship(back_populates="preparers")

    def __repr__(self) -> str:
        return f"<OrderPreparer order={self.order_id} worker={self.worker_id} {self.status}>"
