"""
ActivityLogService -- append-only audit trail of order status changes.

Responsibility:
    Writes one OrderActivityLog row per successful state change, inside the
    caller's transaction, and reads an order's history back in order.

Invariants enforced:
    - Append-only: rows are never updated or deleted (ORM listeners in
      db/immutability.py raise ImmutabilityViolationError).
    - Atomicity: the row is flushed in the same transaction as the status
      change; a rollback removes both.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockflow_kernel.domain.clock import Clock
from stockflow_kernel.logging_config import get_logger
from stockflow_kernel.models.activity_log import OrderActivityLog, OrderType
from stockflow_kernel.services.base import BaseService

logger = get_logger("services.activity_log")


class ActivityLogService(BaseService[OrderActivityLog]):
    """Records and reads order activity."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    def record(
        self,
        *,
        actor_id: UUID,
        order_type: OrderType,
        order_id: int,
        action: str,
        previous_status: str | None,
        new_status: str | None,
        note: str | None = None,
    ) -> OrderActivityLog:
        entry = OrderActivityLog(
            actor_id=actor_id,
            order_type=OrderType(order_type).value,
            order_id=order_id,
            action=action,
            previous_status=previous_status,
            new_status=new_status,
            note=note,
            occurred_at=self.clock.now(),
        )
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "order_activity_recorded",
            extra={
                "order_type": entry.order_type,
                "order_id": order_id,
                "action": action,
                "previous_status": previous_status,
                "new_status": new_status,
                "actor_id": str(actor_id),
            },
        )
        return entry

    def history(self, order_type: OrderType, order_id: int) -> list[OrderActivityLog]:
        """All entries for one order, oldest first."""
        return list(
            self.session.execute(
                select(OrderActivityLog)
                .where(
                    OrderActivityLog.order_type == OrderType(order_type).value,
                    OrderActivityLog.order_id == order_id,
                )
                .order_by(OrderActivityLog.occurred_at, OrderActivityLog.id)
            ).scalars()
        )
