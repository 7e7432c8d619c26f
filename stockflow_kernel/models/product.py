"""
Module: stockflow_kernel.models.product
Responsibility: ORM persistence for stock-keeping units.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - quantity equals the sum of the product's Active batch quantities
      whenever batch rows exist for it.  Only BatchLedger and BatchMutator
      write this column; catalog fields belong to catalog management.
    - Products without any batch rows are "simple quantity" products whose
      stock lives in quantity alone.

Failure modes:
    - IntegrityError if quantity would go negative (CHECK constraint).
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from stockflow_kernel.db.base import TrackedBase


class Product(TrackedBase):
    """A stock-keeping unit with an aggregate on-hand quantity."""

    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_product_quantity_non_negative"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    low_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=10)

    cost_price: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    sell_price: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    # Latest supplier-declared dates seen on delivery
    prod_date: Mapped[date | None] = mapped_column(nullable=True)
    exp_date: Mapped[date | None] = mapped_column(nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.low_stock

    def __repr__(self) -> str:
        return f"<Product {self.id} {self.name!r} qty={self.quantity}>"
