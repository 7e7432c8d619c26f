"""
Module: stockflow_kernel.models.customer
Responsibility: ORM persistence for customers and their debt ledger balance.
Architecture position: Kernel > Models.

Invariants enforced:
    - account_balance never goes below 0.  Reductions (payments, cancelled
      debt) are floored at 0 by the services.
"""

from decimal import Decimal

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from stockflow_kernel.db.base import TrackedBase


class Customer(TrackedBase):
    """A customer with a running account balance of unpaid order value."""

    __tablename__ = "customers"

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    address: Mapped[str | None] = mapped_column(String(500), nullable=True)

    account_balance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    latitude: Mapped[Decimal | None] = mapped_column(nullable=True)
    longitude: Mapped[Decimal | None] = mapped_column(nullable=True)

    def add_debt(self, amount: Decimal) -> None:
        self.account_balance = self.account_balance + amount

    def reduce_debt(self, amount: Decimal) -> Decimal:
        """Reduce the balance, floored at 0.  Returns the new balance."""
        self.account_balance = max(Decimal("0"), self.account_balance - amount)
        return self.account_balance

    def __repr__(self) -> str:
        return f"<Customer {self.id} {self.name!r} balance={self.account_balance}>"
