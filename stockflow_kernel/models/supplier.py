"""
Module: stockflow_kernel.models.supplier
Responsibility: ORM persistence for suppliers, their price lists, and the
    restock orders placed with them.
Architecture position: Kernel > Models.

Invariants enforced:
    - SupplierOrder.total_cost == sum(subtotal of items with status Accepted)
      once the supplier has responded; before that it covers every item.
    - Each (supplier, product) has at most one price-list row.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockflow_kernel.db.base import IdType, TrackedBase, UUIDString
from stockflow_kernel.exceptions import InvalidStateError
from stockflow_kernel.models.product import Product


class SupplierOrderStatus(str, Enum):
    """
    Supplier order lifecycle.

    State machine:
        Pending -> Accepted | PartiallyAccepted | Declined
        PartiallyAccepted -> Accepted | Delivered
        Accepted -> Delivered
        Declined, Delivered: terminal
    """

    PENDING = "Pending"
    PARTIALLY_ACCEPTED = "PartiallyAccepted"
    ACCEPTED = "Accepted"
    DECLINED = "Declined"
    DELIVERED = "Delivered"


VALID_TRANSITIONS: dict[SupplierOrderStatus, frozenset[SupplierOrderStatus]] = {
    SupplierOrderStatus.PENDING: frozenset({
        SupplierOrderStatus.ACCEPTED,
        SupplierOrderStatus.PARTIALLY_ACCEPTED,
        SupplierOrderStatus.DECLINED,
    }),
    SupplierOrderStatus.PARTIALLY_ACCEPTED: frozenset({
        SupplierOrderStatus.ACCEPTED,
        SupplierOrderStatus.DELIVERED,
    }),
    SupplierOrderStatus.ACCEPTED: frozenset({SupplierOrderStatus.DELIVERED}),
    SupplierOrderStatus.DECLINED: frozenset(),
    SupplierOrderStatus.DELIVERED: frozenset(),
}


class SupplierItemStatus(str, Enum):
    """Per-item decision; an item with no decision yet has status None."""

    ACCEPTED = "Accepted"
    DECLINED = "Declined"


class PriceListStatus(str, Enum):
    ACTIVE = "Active"
    NOT_ACTIVE = "NotActive"


class Supplier(TrackedBase):
    __tablename__ = "suppliers"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    prices: Mapped[list["SupplierProductPrice"]] = relationship(
        back_populates="supplier", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Supplier {self.id} {self.name!r}>"


class SupplierProductPrice(TrackedBase):
    """A supplier's quoted price for one product."""

    __tablename__ = "supplier_product_prices"
    __table_args__ = (
        UniqueConstraint("supplier_id", "product_id", name="uq_supplier_product"),
    )

    supplier_id: Mapped[int] = mapped_column(
        IdType, ForeignKey("suppliers.id"), nullable=False
    )
    product_id: Mapped[int] = mapped_column(
        IdType, ForeignKey("products.id"), nullable=False
    )
    price: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PriceListStatus.ACTIVE.value
    )

    supplier: Mapped[Supplier] = relationship(back_populates="prices")


class SupplierOrder(TrackedBase):
    """An inbound restock order."""

    __tablename__ = "supplier_orders"
    __table_args__ = (
        Index("idx_supplier_order_status", "status"),
        Index("idx_supplier_order_supplier", "supplier_id"),
    )

    supplier_id: Mapped[int] = mapped_column(
        IdType, ForeignKey("suppliers.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SupplierOrderStatus.PENDING.value
    )
    total_cost: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    received_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    received_at: Mapped[datetime | None] = mapped_column(nullable=True)

    supplier: Mapped[Supplier] = relationship(Supplier)

    items: Mapped[list["SupplierOrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="SupplierOrderItem.id",
    )

    @property
    def status_enum(self) -> SupplierOrderStatus:
        return SupplierOrderStatus(self.status)

    @property
    def accepted_items(self) -> list["SupplierOrderItem"]:
        return [i for i in self.items if i.status == SupplierItemStatus.ACCEPTED.value]

    @property
    def accepted_total(self) -> Decimal:
        return sum((i.subtotal for i in self.accepted_items), Decimal("0"))

    def validate_transition(self, target: SupplierOrderStatus, reason: str | None = None) -> None:
        if target not in VALID_TRANSITIONS[self.status_enum]:
            raise InvalidStateError(
                "SupplierOrder", self.id, self.status, target.value, reason=reason
            )

    def __repr__(self) -> str:
        return f"<SupplierOrder {self.id} {self.status} total={self.total_cost}>"


class SupplierOrderItem(TrackedBase):
    __tablename__ = "supplier_order_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_supplier_item_quantity_positive"),
    )

    order_id: Mapped[int] = mapped_column(
        IdType, ForeignKey("supplier_orders.id"), nullable=False
    )
    product_id: Mapped[int] = mapped_column(
        IdType, ForeignKey("products.id"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    cost_price: Mapped[Decimal] = mapped_column(nullable=False)
    original_cost_price: Mapped[Decimal] = mapped_column(nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Filled in by the supplier on acceptance or by the receiving worker
    received_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    prod_date: Mapped[date | None] = mapped_column(nullable=True)
    exp_date: Mapped[date | None] = mapped_column(nullable=True)
    batch_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    order: Mapped[SupplierOrder] = relationship(back_populates="items")
    product: Mapped[Product] = relationship(Product)

    @property
    def effective_quantity(self) -> int:
        """Received quantity when recorded, else the ordered quantity."""
        if self.received_quantity is not None:
            return self.received_quantity
        return self.quantity

    def __repr__(self) -> str:
        return (
            f"<SupplierOrderItem product={self.product_id} "
            f"qty={self.quantity} {self.status}>"
        )
