"""
Module: stockflow_kernel.models.courier
Responsibility: ORM persistence for couriers and per-assignment delivery
    records.
Architecture position: Kernel > Models.

Invariants enforced:
    - One open DeliveryRecord (ended_at IS NULL) per (order, courier).
    - A courier is unavailable while any of its orders is Assigned or
      on_theway.  The delivery service recomputes is_available after every
      completion or return.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockflow_kernel.db.base import IdType, TrackedBase


class DeliveryStatus(str, Enum):
    """
    Delivery record lifecycle.

    State machine:
        assigned -> in_progress
        in_progress -> completed | returned
    """

    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    RETURNED = "returned"


class Courier(TrackedBase):
    __tablename__ = "couriers"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    current_latitude: Mapped[Decimal | None] = mapped_column(nullable=True)
    current_longitude: Mapped[Decimal | None] = mapped_column(nullable=True)
    last_location_update: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        state = "available" if self.is_available else "busy"
        return f"<Courier {self.id} {self.name!r} {state}>"


class DeliveryRecord(TrackedBase):
    """One assignment of a customer order to a courier."""

    __tablename__ = "delivery_records"
    __table_args__ = (
        Index("idx_delivery_order_courier", "order_id", "courier_id"),
        Index("idx_delivery_courier_ended", "courier_id", "ended_at"),
    )

    courier_id: Mapped[int] = mapped_column(
        IdType, ForeignKey("couriers.id"), nullable=False
    )
    order_id: Mapped[int] = mapped_column(
        IdType, ForeignKey("customer_orders.id"), nullable=False
    )
    customer_id: Mapped[int] = mapped_column(
        IdType, ForeignKey("customers.id"), nullable=False
    )

    assigned_at: Mapped[datetime] = mapped_column(nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(nullable=True)

    estimated_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    actual_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Mirrored from the order at completion
    payment_method: Mapped[str | None] = mapped_column(String(20), nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    debt_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    return_reason: Mapped[str | None] = mapped_column(String(200), nullable=True)

    customer_latitude: Mapped[Decimal | None] = mapped_column(nullable=True)
    customer_longitude: Mapped[Decimal | None] = mapped_column(nullable=True)
    courier_start_latitude: Mapped[Decimal | None] = mapped_column(nullable=True)
    courier_start_longitude: Mapped[Decimal | None] = mapped_column(nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DeliveryStatus.ASSIGNED.value
    )

    courier: Mapped[Courier] = relationship(Courier)

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    def __repr__(self) -> str:
        return f"<DeliveryRecord order={self.order_id} courier={self.courier_id} {self.status}>"
