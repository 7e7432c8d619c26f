"""
DeliveryService -- courier assignment, transit and hand-over of prepared orders.

Responsibility:
    Moves customer orders Prepared -> Assigned -> on_theway -> Shipped |
    Returned, keeps one DeliveryRecord per assignment, records payment at
    hand-over and posts unpaid amounts to the customer's balance.

Architecture position:
    Modules > Delivery.  Uses kernel models and services; never imports the
    customer order service.

Invariants enforced:
    - Assignment is all-or-nothing: every order must be Prepared and
      unassigned before any is touched.
    - cash requires amount_paid == total, debt requires 0, partial
      requires 0 < amount_paid < total.
    - A courier is available exactly when none of its orders is Assigned
      or on_theway.
    - Returned orders keep their prepared stock; only cancellation
      releases it.

Failure modes:
    - CourierNotFoundError, OrderNotFoundError.
    - InvalidStateError when an order is in the wrong status or belongs to
      another courier.
    - ValidationError for out-of-range minutes, coordinates or payments.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockflow_config.settings import StockflowConfig
from stockflow_kernel.domain.clock import Clock
from stockflow_kernel.exceptions import (
    CourierNotFoundError,
    InvalidStateError,
    OrderNotFoundError,
    ValidationError,
)
from stockflow_kernel.logging_config import LogContext, get_logger
from stockflow_kernel.models.activity_log import OrderType
from stockflow_kernel.models.courier import Courier, DeliveryRecord, DeliveryStatus
from stockflow_kernel.models.customer_order import (
    CustomerOrder,
    CustomerOrderStatus,
    PaymentMethod,
)
from stockflow_kernel.services.activity_log_service import ActivityLogService
from stockflow_kernel.services.base import BaseService
from stockflow_kernel.services.batch_mutator import BatchMutator
from stockflow_modules.delivery.workflows import DELIVERY_WORKFLOW

logger = get_logger("modules.delivery.service")

_ACTIVE_ORDER_STATUSES = (CustomerOrderStatus.ASSIGNED.value, CustomerOrderStatus.ON_THE_WAY.value)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_decimal(value, field: str) -> Decimal:
    try:
        return value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number, got {value!r}", field=field)


class DeliveryService(BaseService[DeliveryRecord]):
    """Courier-side order operations.  Flush-only."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: StockflowConfig | None = None,
    ):
        super().__init__(session, clock)
        self.config = config or StockflowConfig.with_defaults()
        self.activity = ActivityLogService(session, self.clock)
        self.mutator = BatchMutator(session, self.clock)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _courier(self, courier_id: int, lock: bool = False) -> Courier:
        return self._get_or_raise(Courier, courier_id, CourierNotFoundError, lock=lock)

    def _order(self, order_id: int) -> CustomerOrder:
        return self._get_or_raise(CustomerOrder, order_id, OrderNotFoundError, lock=True)

    def _courier_order(
        self,
        courier_id: int,
        order_id: int,
        expected: CustomerOrderStatus,
        target: CustomerOrderStatus,
    ) -> CustomerOrder:
        order = self._order(order_id)
        if order.courier_id != courier_id:
            raise InvalidStateError(
                "CustomerOrder", order_id, order.status, target.value,
                reason=f"order is not assigned to courier {courier_id}",
            )
        if order.status != expected.value:
            raise InvalidStateError(
                "CustomerOrder", order_id, order.status, target.value,
                reason=f"order must be {expected.value}",
            )
        order.validate_transition(target)
        return order

    def _open_record(self, order_id: int, courier_id: int) -> DeliveryRecord | None:
        return self.session.execute(
            select(DeliveryRecord)
            .where(
                DeliveryRecord.order_id == order_id,
                DeliveryRecord.courier_id == courier_id,
                DeliveryRecord.ended_at.is_(None),
            )
            .order_by(DeliveryRecord.id.desc())
            .with_for_update()
        ).scalars().first()

    def _move_record(self, record: DeliveryRecord, target: DeliveryStatus) -> None:
        if not DELIVERY_WORKFLOW.allows(record.status, target.value):
            raise InvalidStateError("DeliveryRecord", record.id, record.status, target.value)
        record.status = target.value

    def _close_record(self, record: DeliveryRecord, target: DeliveryStatus) -> None:
        self._move_record(record, target)
        now = self.clock.now()
        record.ended_at = now
        if record.started_at is not None:
            elapsed = now - _as_utc(record.started_at)
            record.actual_minutes = max(0, round(elapsed.total_seconds() / 60))

    def refresh_availability(self, courier_id: int) -> bool:
        """Recompute ``is_available`` from the courier's open orders."""
        courier = self._courier(courier_id, lock=True)
        self.session.flush()
        open_orders = self.session.execute(
            select(func.count(CustomerOrder.id)).where(
                CustomerOrder.courier_id == courier_id,
                CustomerOrder.status.in_(_ACTIVE_ORDER_STATUSES),
            )
        ).scalar_one()
        courier.is_available = open_orders == 0
        self.session.flush()
        return courier.is_available

    def _log_status(
        self, order: CustomerOrder, actor_id: UUID, action: str, previous: str, note: str | None = None,
    ) -> None:
        self.activity.record(
            actor_id=actor_id,
            order_type=OrderType.CUSTOMER,
            order_id=order.id,
            action=action,
            previous_status=previous,
            new_status=order.status,
            note=note,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def assign(
        self,
        courier_id: int,
        order_ids: Sequence[int],
        estimated_minutes: int | None = None,
        *,
        actor_id: UUID,
    ) -> list[CustomerOrder]:
        """Hand a set of Prepared orders to one courier."""
        if not order_ids:
            raise ValidationError("At least one order is required", field="order_ids")
        if len(set(order_ids)) != len(order_ids):
            raise ValidationError("Duplicate order ids", field="order_ids")

        minutes = estimated_minutes or self.config.delivery.default_estimated_minutes
        if not 0 < minutes <= self.config.delivery.max_estimated_minutes:
            raise ValidationError(
                f"estimated_minutes must be between 1 and "
                f"{self.config.delivery.max_estimated_minutes}",
                field="estimated_minutes",
            )

        courier = self._courier(courier_id, lock=True)

        orders = [self._order(order_id) for order_id in sorted(order_ids)]
        for order in orders:
            if order.status != CustomerOrderStatus.PREPARED.value or order.courier_id is not None:
                raise InvalidStateError(
                    "CustomerOrder", order.id, order.status, CustomerOrderStatus.ASSIGNED.value,
                    reason="only unassigned Prepared orders can be assigned",
                )

        now = self.clock.now()
        for order in orders:
            previous = order.status
            order.status = CustomerOrderStatus.ASSIGNED.value
            order.courier_id = courier.id
            order.assigned_at = now
            order.estimated_delivery_minutes = minutes
            customer = order.customer
            self.session.add(DeliveryRecord(
                courier_id=courier.id,
                order_id=order.id,
                customer_id=order.customer_id,
                assigned_at=now,
                estimated_minutes=minutes,
                actual_minutes=0,
                total_amount=order.total_cost,
                customer_latitude=customer.latitude,
                customer_longitude=customer.longitude,
                status=DeliveryStatus.ASSIGNED.value,
            ))
            self._log_status(order, actor_id, "assign_courier", previous, note=f"courier {courier.id}")

        courier.is_available = False
        self.session.flush()

        logger.info(
            "orders_assigned_to_courier",
            extra={
                "courier_id": courier.id,
                "order_ids": [o.id for o in orders],
                "estimated_minutes": minutes,
            },
        )
        return orders

    def start(
        self,
        courier_id: int,
        order_ids: Sequence[int],
        *,
        actor_id: UUID,
        route_notes: str | None = None,
        latitude: Decimal | float | None = None,
        longitude: Decimal | float | None = None,
    ) -> list[CustomerOrder]:
        """Courier leaves with a set of Assigned orders."""
        if not order_ids:
            raise ValidationError("At least one order is required", field="order_ids")

        courier = self._courier(courier_id, lock=True)
        if latitude is not None and longitude is not None:
            self._set_location(courier, latitude, longitude)

        orders = [
            self._courier_order(
                courier_id, order_id, CustomerOrderStatus.ASSIGNED, CustomerOrderStatus.ON_THE_WAY,
            )
            for order_id in sorted(set(order_ids))
        ]

        now = self.clock.now()
        for order in orders:
            previous = order.status
            order.status = CustomerOrderStatus.ON_THE_WAY.value
            order.delivery_started_at = now
            if route_notes:
                order.delivery_notes = route_notes

            record = self._open_record(order.id, courier_id)
            if record is not None:
                self._move_record(record, DeliveryStatus.IN_PROGRESS)
                record.started_at = now
                record.courier_start_latitude = courier.current_latitude
                record.courier_start_longitude = courier.current_longitude
                if route_notes:
                    record.notes = route_notes

            self._log_status(order, actor_id, "start_delivery", previous, note=route_notes)

        self.session.flush()
        logger.info(
            "delivery_started",
            extra={"courier_id": courier_id, "order_ids": [o.id for o in orders]},
        )
        return orders

    def update_estimate(
        self,
        courier_id: int,
        order_id: int,
        additional_minutes: int,
        reason: str,
    ) -> CustomerOrder:
        if additional_minutes <= 0:
            raise ValidationError("additional_minutes must be positive", field="additional_minutes")
        if not reason:
            raise ValidationError("A delay reason is required", field="reason")

        order = self._order(order_id)
        if order.courier_id != courier_id or order.status != CustomerOrderStatus.ON_THE_WAY.value:
            raise InvalidStateError(
                "CustomerOrder", order_id, order.status, order.status,
                reason="estimate can only change for the courier's on_theway orders",
            )

        order.estimated_delivery_minutes = (order.estimated_delivery_minutes or 0) + additional_minutes
        order.delivery_delay_reason = reason
        record = self._open_record(order_id, courier_id)
        if record is not None:
            record.estimated_minutes += additional_minutes
        self.session.flush()

        logger.info(
            "delivery_estimate_updated",
            extra={
                "order_id": order_id,
                "courier_id": courier_id,
                "estimated_minutes": order.estimated_delivery_minutes,
            },
        )
        return order

    def update_location(
        self,
        courier_id: int,
        latitude: Decimal | float,
        longitude: Decimal | float,
    ) -> Courier:
        courier = self._courier(courier_id, lock=True)
        self._set_location(courier, latitude, longitude)
        self.session.flush()
        return courier

    def _set_location(self, courier: Courier, latitude, longitude) -> None:
        lat = _to_decimal(latitude, "latitude")
        lon = _to_decimal(longitude, "longitude")
        if not Decimal("-90") <= lat <= Decimal("90"):
            raise ValidationError("latitude must be between -90 and 90", field="latitude")
        if not Decimal("-180") <= lon <= Decimal("180"):
            raise ValidationError("longitude must be between -180 and 180", field="longitude")
        courier.current_latitude = lat
        courier.current_longitude = lon
        courier.last_location_update = self.clock.now()

    def complete(
        self,
        courier_id: int,
        order_id: int,
        payment_method: PaymentMethod | str,
        amount_paid: Decimal | int | str,
        *,
        actor_id: UUID,
        notes: str | None = None,
    ) -> CustomerOrder:
        """
        Hand the order over and record payment.

        Any unpaid remainder of a debt or partial payment is added to the
        customer's account balance.
        """
        try:
            method = PaymentMethod(payment_method)
        except ValueError:
            raise ValidationError(f"Unknown payment method {payment_method!r}", field="payment_method")
        paid = _to_decimal(amount_paid, "amount_paid")

        with LogContext.bind(
            order_type=OrderType.CUSTOMER, order_id=order_id, actor_id=actor_id, courier_id=courier_id,
        ):
            order = self._courier_order(
                courier_id, order_id, CustomerOrderStatus.ON_THE_WAY, CustomerOrderStatus.SHIPPED,
            )
            total = order.total_cost
            if paid < 0 or paid > total:
                raise ValidationError(
                    f"amount_paid must be between 0 and {total}", field="amount_paid"
                )
            if method is PaymentMethod.CASH and paid != total:
                raise ValidationError("cash payment must cover the full total", field="amount_paid")
            if method is PaymentMethod.DEBT and paid != 0:
                raise ValidationError("debt payment must record 0 paid", field="amount_paid")
            if method is PaymentMethod.PARTIAL and not 0 < paid < total:
                raise ValidationError(
                    "partial payment must be more than 0 and less than the total",
                    field="amount_paid",
                )

            previous = order.status
            now = self.clock.now()
            order.status = CustomerOrderStatus.SHIPPED.value
            order.payment_method = method.value
            order.amount_paid = paid
            order.delivery_ended_at = now
            if notes:
                order.delivery_notes = notes

            debt = total - paid
            if method is not PaymentMethod.CASH and debt > 0:
                order.customer.add_debt(debt)

            record = self._open_record(order.id, courier_id)
            if record is not None:
                self._close_record(record, DeliveryStatus.COMPLETED)
                record.payment_method = method.value
                record.amount_paid = paid
                record.debt_amount = debt
                if notes:
                    record.notes = notes

            if self.config.inventory.deduct_on_shipment:
                for item in order.items:
                    self.mutator.deduct_simple(item.product_id, item.quantity)

            self._log_status(order, actor_id, "complete_delivery", previous, note=method.value)
            self.refresh_availability(courier_id)

            logger.info(
                "delivery_completed",
                extra={
                    "order_id": order.id,
                    "courier_id": courier_id,
                    "payment_method": method.value,
                    "amount_paid": paid,
                    "debt_amount": debt,
                },
            )
        return order

    def return_order(
        self,
        courier_id: int,
        order_id: int,
        reason: str,
        *,
        actor_id: UUID,
        notes: str | None = None,
    ) -> CustomerOrder:
        """Courier brings the order back.  Prepared stock stays reserved."""
        if not reason:
            raise ValidationError("A return reason is required", field="reason")

        order = self._courier_order(
            courier_id, order_id, CustomerOrderStatus.ON_THE_WAY, CustomerOrderStatus.RETURNED,
        )
        previous = order.status
        order.status = CustomerOrderStatus.RETURNED.value
        order.return_reason = reason
        order.delivery_ended_at = self.clock.now()
        if notes:
            order.delivery_notes = notes

        record = self._open_record(order.id, courier_id)
        if record is not None:
            self._close_record(record, DeliveryStatus.RETURNED)
            record.return_reason = reason
            if notes:
                record.notes = notes

        self._log_status(order, actor_id, "return", previous, note=reason)
        self.refresh_availability(courier_id)

        logger.info(
            "delivery_returned",
            extra={"order_id": order.id, "courier_id": courier_id, "reason": reason},
        )
        return order

    def release_order(self, order: CustomerOrder, reason: str) -> None:
        """
        Close any open record for an order leaving delivery through
        cancellation or rejection.  The caller changes the order status.
        """
        if order.courier_id is None:
            return
        record = self._open_record(order.id, order.courier_id)
        if record is not None:
            self._close_record(record, DeliveryStatus.RETURNED)
            record.return_reason = reason
        self.refresh_availability(order.courier_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def current_deliveries(self, courier_id: int) -> list[CustomerOrder]:
        self._courier(courier_id)
        return list(
            self.session.execute(
                select(CustomerOrder)
                .where(
                    CustomerOrder.courier_id == courier_id,
                    CustomerOrder.status.in_(_ACTIVE_ORDER_STATUSES),
                )
                .order_by(CustomerOrder.assigned_at, CustomerOrder.id)
            ).scalars()
        )

    def delivery_history(self, courier_id: int, limit: int | None = None) -> list[DeliveryRecord]:
        """Closed records, most recent first."""
        self._courier(courier_id)
        stmt = (
            select(DeliveryRecord)
            .where(
                DeliveryRecord.courier_id == courier_id,
                DeliveryRecord.ended_at.is_not(None),
            )
            .order_by(DeliveryRecord.ended_at.desc(), DeliveryRecord.id.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars())
