"""
Module: stockflow_kernel.models.batch
Responsibility: ORM persistence for dated inventory lots.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - quantity >= 0 (CHECK constraint).  It only grows on reversal of an
      allocation; new stock arrives as a new batch.
    - status is Depleted exactly when an Active lot reaches 0, and returns
      to Active when a reversal restores quantity.
    - Expired is set by BatchLedger.mark_expired and is never undone.

Audit relevance:
    supplier_id / supplier_order_id record where the lot came from.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockflow_kernel.db.base import IdType, TrackedBase
from stockflow_kernel.models.product import Product


class BatchStatus(str, Enum):
    """
    Lot lifecycle.

    State machine:
        Active -> Depleted (quantity reached 0)
        Depleted -> Active (allocation reversed)
        Active -> Expired (expiry date passed)
    """

    ACTIVE = "Active"
    EXPIRED = "Expired"
    DEPLETED = "Depleted"


class Batch(TrackedBase):
    """A dated slice of a product's stock."""

    __tablename__ = "product_batches"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_batch_quantity_non_negative"),
        # FIFO reads: Active lots of one product
        Index("idx_batch_product_status", "product_id", "status"),
        Index("idx_batch_exp_date", "exp_date"),
    )

    product_id: Mapped[int] = mapped_column(
        IdType, ForeignKey("products.id"), nullable=False
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    original_quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    prod_date: Mapped[date | None] = mapped_column(nullable=True)

    exp_date: Mapped[date | None] = mapped_column(nullable=True)

    batch_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    received_date: Mapped[datetime] = mapped_column(nullable=False)

    cost_price: Mapped[Decimal | None] = mapped_column(nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BatchStatus.ACTIVE.value
    )

    supplier_id: Mapped[int | None] = mapped_column(
        IdType, ForeignKey("suppliers.id"), nullable=True
    )

    supplier_order_id: Mapped[int | None] = mapped_column(
        IdType, ForeignKey("supplier_orders.id"), nullable=True
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    product: Mapped[Product] = relationship(Product)

    @property
    def status_enum(self) -> BatchStatus:
        return BatchStatus(self.status)

    def __repr__(self) -> str:
        return (
            f"<Batch {self.id} product={self.product_id} "
            f"qty={self.quantity} {self.status}>"
        )
