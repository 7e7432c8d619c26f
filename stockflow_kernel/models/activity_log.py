"""
Module: stockflow_kernel.models.activity_log
Responsibility: ORM persistence for the append-only order activity log.
Architecture position: Kernel > Models.

Invariants enforced:
    - Rows are never updated or deleted.  db/immutability.py installs ORM
      listeners that raise ImmutabilityViolationError on either.
    - A row is written in the same transaction as the status change it
      describes, so a rolled-back operation leaves no entry.

Audit relevance:
    The activity log is the only record of who moved an order, when, and
    from which status.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from stockflow_kernel.db.base import Base, IdType, UUIDString


class OrderType(str, Enum):
    CUSTOMER = "customer"
    SUPPLIER = "supplier"


class OrderActivityLog(Base):
    """One immutable entry describing a state change on an order."""

    __tablename__ = "order_activity_logs"
    __table_args__ = (
        Index("idx_activity_order", "order_type", "order_id"),
        Index("idx_activity_actor", "actor_id"),
    )

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    order_type: Mapped[str] = mapped_column(String(20), nullable=False)

    # Polymorphic reference: customer_orders.id or supplier_orders.id
    order_id: Mapped[int] = mapped_column(IdType, nullable=False)

    action: Mapped[str] = mapped_column(String(255), nullable=False)

    previous_status: Mapped[str | None] = mapped_column(String(20), nullable=True)

    new_status: Mapped[str | None] = mapped_column(String(20), nullable=True)

    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<OrderActivityLog {self.order_type}:{self.order_id} "
            f"{self.previous_status}->{self.new_status}>"
        )
