"""
CustomerOrderService -- customer order lifecycle over the lot ledger.

Responsibility:
    Creates orders, accepts and rejects them, runs multi-worker
    preparation (which deducts stock and records the batch allocation),
    cancels with role checks and stock restoration, and takes debt
    payments.

Architecture position:
    Modules > Customer orders.  Uses BatchLedger, BatchMutator and
    ActivityLogService from the kernel and DeliveryService for the
    courier-side transitions.

Invariants enforced:
    - Preparation completes at most once.  The Preparing -> Prepared move
      is a guarded UPDATE issued before any stock is touched; the loser of
      a race gets StateConflictError and deducts nothing.
    - Stock leaves the ledger only at preparation and returns only when a
      prepared order is rejected or cancelled.
    - Every status change writes one activity log row in the same
      transaction.

Failure modes:
    - OrderNotFoundError / ProductNotFoundError / CustomerNotFoundError.
    - InvalidStateError for illegal moves or a role not allowed to cancel.
    - PreparerAlreadyActiveError / PreparerNotActiveError.
    - InsufficientStockError / InvalidBatchError during preparation.
    - StateConflictError when a concurrent completer won.
    - ValidationError for malformed input.

Audit relevance:
    ``batch_allocation`` on the order is the record of which lots an order
    consumed; cancellation reads it back to return stock to the same lots.
"""

from __future__ import annotations

from collections import OrderedDict
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from stockflow_config.settings import StockflowConfig
from stockflow_engines.fifo import AllocationLine
from stockflow_engines.snapshot import (
    AllocationMethodTag,
    BatchAllocationSnapshot,
    SnapshotEntry,
)
from stockflow_kernel.domain.clock import Clock
from stockflow_kernel.exceptions import (
    CustomerNotFoundError,
    InsufficientStockError,
    InvalidAllocationSnapshotError,
    InvalidBatchError,
    InvalidStateError,
    OrderNotFoundError,
    PreparerAlreadyActiveError,
    PreparerNotActiveError,
    ProductNotFoundError,
    StateConflictError,
    ValidationError,
)
from stockflow_kernel.logging_config import LogContext, get_logger
from stockflow_kernel.models.activity_log import OrderType
from stockflow_kernel.models.batch import Batch, BatchStatus
from stockflow_kernel.models.customer import Customer
from stockflow_kernel.models.customer_order import (
    CustomerOrder,
    CustomerOrderItem,
    CustomerOrderStatus,
    OrderPreparer,
    PaymentMethod,
    PreparerStatus,
)
from stockflow_kernel.models.product import Product
from stockflow_kernel.services.activity_log_service import ActivityLogService
from stockflow_kernel.services.base import BaseService
from stockflow_kernel.services.batch_ledger import BatchLedger
from stockflow_kernel.services.batch_mutator import BatchMutator
from stockflow_modules.customer_orders.models import (
    AllocationMethod,
    CancellationReason,
    CancelRole,
    ItemPreview,
    ManualAllocation,
    OrderLineRequest,
    PreparationStart,
)
from stockflow_modules.customer_orders.workflows import CUSTOMER_ORDER_WORKFLOW
from stockflow_modules.delivery.service import DeliveryService
from stockflow_modules.workflow import Transition

logger = get_logger("modules.customer_orders.service")

S = CustomerOrderStatus


class CustomerOrderService(BaseService[CustomerOrder]):
    """
    Customer order operations.

    Contract:
        Flush-only; the caller commits.  Run each call inside its own
        ``session_scope()`` so a failure rolls back stock and status
        together.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: StockflowConfig | None = None,
    ):
        super().__init__(session, clock)
        self.config = config or StockflowConfig.with_defaults()
        self.ledger = BatchLedger(session, self.clock, self.config)
        self.mutator = BatchMutator(session, self.clock)
        self.activity = ActivityLogService(session, self.clock)
        self.delivery = DeliveryService(session, self.clock, self.config)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def get_order(self, order_id: int, *, lock: bool = False) -> CustomerOrder:
        return self._get_or_raise(CustomerOrder, order_id, OrderNotFoundError, lock=lock)

    def _record(
        self,
        order: CustomerOrder,
        actor_id: UUID,
        action: str,
        previous: str | None,
        note: str | None = None,
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

    def _require(self, order: CustomerOrder, target: S, role: str | None = None) -> Transition:
        transition = CUSTOMER_ORDER_WORKFLOW.find(order.status, target.value)
        if transition is None:
            raise InvalidStateError("CustomerOrder", order.id, order.status, target.value)
        if transition.roles and role not in transition.roles:
            raise InvalidStateError(
                "CustomerOrder", order.id, order.status, target.value,
                reason=f"role {role!r} may not {transition.action} a {order.status} order",
            )
        return transition

    def _working_preparers(self, order_id: int) -> list[OrderPreparer]:
        return list(
            self.session.execute(
                select(OrderPreparer)
                .where(
                    OrderPreparer.order_id == order_id,
                    OrderPreparer.status == PreparerStatus.WORKING.value,
                )
                .order_by(OrderPreparer.id)
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def _worker_rows(self, order_id: int, worker_id: UUID) -> list[OrderPreparer]:
        return list(
            self.session.execute(
                select(OrderPreparer)
                .where(OrderPreparer.order_id == order_id, OrderPreparer.worker_id == worker_id)
                .order_by(OrderPreparer.id)
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def _cancel_preparers(self, order_id: int, keep: OrderPreparer | None = None) -> int:
        now = self.clock.now()
        cancelled = 0
        for preparer in self._working_preparers(order_id):
            if keep is not None and preparer.id == keep.id:
                continue
            preparer.status = PreparerStatus.CANCELLED.value
            preparer.completed_at = now
            cancelled += 1
        return cancelled

    def _preview(self, item: CustomerOrderItem) -> ItemPreview:
        result = self.ledger.allocate_fifo(item.product_id, item.quantity)
        return ItemPreview(
            product_id=item.product_id,
            product_name=item.product.name,
            required_quantity=item.quantity,
            available_quantity=result.total_available,
            can_fulfill=result.can_fulfill,
            allocation=result.allocation,
            alerts=result.alerts,
            simple_quantity=result.simple_quantity,
            active_batch_count=len(self.ledger.get_allocatable_batches(item.product_id)),
        )

    # ------------------------------------------------------------------
    # Creation and review
    # ------------------------------------------------------------------

    def create_order(
        self,
        customer_id: int,
        items: Sequence[OrderLineRequest],
        actor_id: UUID,
        note: str | None = None,
    ) -> CustomerOrder:
        """
        Place a Pending order priced at current sell prices.

        Lines for the same product are merged.  Each line is checked
        against the product's on-hand quantity; nothing is reserved yet.
        """
        if not items:
            raise ValidationError("An order needs at least one item", field="items")

        customer = self.session.get(Customer, customer_id)
        if customer is None:
            raise CustomerNotFoundError(customer_id)

        merged: OrderedDict[int, int] = OrderedDict()
        for line in items:
            merged[line.product_id] = merged.get(line.product_id, 0) + line.quantity

        order = CustomerOrder(
            customer_id=customer.id,
            status=S.PENDING.value,
            discount=Decimal("0"),
            amount_paid=Decimal("0"),
            payment_method=None,
            note=note,
            created_by_id=actor_id,
        )
        total = Decimal("0")
        for product_id, quantity in merged.items():
            product = self.session.get(Product, product_id)
            if product is None or not product.is_active:
                raise ProductNotFoundError(product_id)
            if quantity > product.quantity:
                raise InsufficientStockError(product_id, quantity, product.quantity)
            subtotal = product.sell_price * quantity
            order.items.append(CustomerOrderItem(
                product_id=product_id,
                quantity=quantity,
                unit_price=product.sell_price,
                subtotal=subtotal,
            ))
            total += subtotal
        order.total_cost = total

        self.session.add(order)
        self.session.flush()
        self._record(order, actor_id, "create", None, note=note)

        logger.info(
            "customer_order_created",
            extra={
                "order_id": order.id,
                "customer_id": customer.id,
                "item_count": len(order.items),
                "total_cost": total,
            },
        )
        return order

    def accept_order(self, order_id: int, actor_id: UUID, note: str | None = None) -> CustomerOrder:
        order = self.get_order(order_id, lock=True)
        self._require(order, S.ACCEPTED)
        previous = order.status
        order.status = S.ACCEPTED.value
        self.session.flush()
        self._record(order, actor_id, "accept", previous, note=note)
        logger.info("customer_order_accepted", extra={"order_id": order.id})
        return order

    def reject_order(self, order_id: int, actor_id: UUID, reason: str | None = None) -> CustomerOrder:
        """Reject the order, returning prepared stock and any posted debt."""
        with LogContext.bind(order_type=OrderType.CUSTOMER, order_id=order_id, actor_id=actor_id):
            order = self.get_order(order_id, lock=True)
            transition = self._require(order, S.REJECTED)
            previous = order.status

            self._release(order, transition)
            order.status = S.REJECTED.value
            self.session.flush()
            self.delivery.release_order(order, reason or "rejected")
            self._record(order, actor_id, "reject", previous, note=reason)

            logger.info(
                "customer_order_rejected",
                extra={"order_id": order.id, "previous_status": previous},
            )
        return order

    # ------------------------------------------------------------------
    # Preparation
    # ------------------------------------------------------------------

    def start_preparation(
        self,
        order_id: int,
        worker_id: UUID,
        notes: str | None = None,
    ) -> PreparationStart:
        """
        Open a preparer session for ``worker_id``.

        The first worker moves the order Accepted -> Preparing; later workers
        join it.  Returns a FIFO preview for every item.
        """
        order = self.get_order(order_id, lock=True)
        if order.status not in (S.ACCEPTED.value, S.PREPARING.value):
            raise InvalidStateError(
                "CustomerOrder", order.id, order.status, S.PREPARING.value,
                reason="preparation starts from Accepted or Preparing",
            )
        self._require(order, S.PREPARING)

        if any(p.worker_id == worker_id for p in self._working_preparers(order.id)):
            raise PreparerAlreadyActiveError(order.id, worker_id)

        now = self.clock.now()
        previous = order.status
        joined = previous == S.PREPARING.value
        if not joined:
            order.status = S.PREPARING.value
            order.preparation_started_at = now

        self.session.add(OrderPreparer(
            order_id=order.id,
            worker_id=worker_id,
            status=PreparerStatus.WORKING.value,
            started_at=now,
            notes=notes,
        ))
        self.session.flush()
        self._record(
            order, worker_id, "join_preparation" if joined else "start_preparation", previous, note=notes,
        )

        start = PreparationStart(
            order_id=order.id,
            worker_id=worker_id,
            joined_existing=joined,
            items=tuple(self._preview(item) for item in order.items),
        )
        logger.info(
            "customer_order_preparation_started",
            extra={
                "order_id": order.id,
                "worker_id": str(worker_id),
                "joined_existing": joined,
                "can_auto_complete": start.can_auto_complete,
            },
        )
        return start

    def complete_preparation(
        self,
        order_id: int,
        worker_id: UUID,
        method: AllocationMethod | str = AllocationMethod.AUTO_FIFO,
        manual_allocations: Iterable[ManualAllocation] | None = None,
    ) -> CustomerOrder:
        """
        Finish preparation: claim the Prepared status, deduct stock, record
        the allocation.

        Raises:
            PreparerNotActiveError: worker holds no working session.
            StateConflictError: another worker completed the order first.
            InsufficientStockError / InvalidBatchError: stock cannot be
                allocated as requested; the transaction must roll back.
        """
        try:
            method = AllocationMethod(method)
        except ValueError:
            raise ValidationError(f"Unknown allocation method {method!r}", field="method")
        if method is AllocationMethod.MANUAL_BATCHES and not self.config.inventory.allow_manual_allocation:
            raise ValidationError("Manual batch allocation is disabled", field="method")

        with LogContext.bind(order_type=OrderType.CUSTOMER, order_id=order_id, actor_id=worker_id):
            order = self.get_order(order_id, lock=True)
            working = [p for p in self._working_preparers(order.id) if p.worker_id == worker_id]
            if not working:
                # completed or superseded earlier; the order has moved on
                finished = any(
                    p.status in (PreparerStatus.COMPLETED.value, PreparerStatus.CANCELLED.value)
                    for p in self._worker_rows(order.id, worker_id)
                )
                if finished and order.status != S.PREPARING.value:
                    self._log_conflict(order.id, worker_id, order.status)
                    raise StateConflictError("CustomerOrder", order.id, S.PREPARING.value)
                raise PreparerNotActiveError(order.id, worker_id, order.status)
            preparer = working[0]

            self._claim_prepared(order)

            entries = (
                self._allocate_manual(order, list(manual_allocations or ()))
                if method is AllocationMethod.MANUAL_BATCHES
                else self._allocate_fifo(order)
            )
            snapshot = BatchAllocationSnapshot.of(entries)
            order.batch_allocation = snapshot.to_json()
            order.batch_allocation_version = snapshot.version

            now = self.clock.now()
            preparer.status = PreparerStatus.COMPLETED.value
            preparer.completed_at = now
            others = self._cancel_preparers(order.id, keep=preparer)
            self.session.flush()

            self._record(order, worker_id, "complete_preparation", S.PREPARING.value, note=method.value)

            logger.info(
                "customer_order_prepared",
                extra={
                    "order_id": order.id,
                    "worker_id": str(worker_id),
                    "method": method.value,
                    "product_count": len(entries),
                    "cancelled_preparers": others,
                },
            )
        return order

    def _claim_prepared(self, order: CustomerOrder) -> None:
        """Compare-and-set Preparing -> Prepared ahead of any stock write."""
        now = self.clock.now()
        result = self.session.execute(
            update(CustomerOrder)
            .where(CustomerOrder.id == order.id, CustomerOrder.status == S.PREPARING.value)
            .values(status=S.PREPARED.value, preparation_completed_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.session.refresh(order)
            self._log_conflict(order.id, None, order.status)
            raise StateConflictError("CustomerOrder", order.id, S.PREPARING.value)
        self.session.refresh(order)

    def _log_conflict(self, order_id: int, worker_id: UUID | None, current: str) -> None:
        logger.warning(
            "customer_order_state_conflict",
            extra={
                "order_id": order_id,
                "worker_id": str(worker_id) if worker_id else None,
                "expected_status": S.PREPARING.value,
                "current_status": current,
            },
        )

    def _allocate_fifo(self, order: CustomerOrder) -> list[SnapshotEntry]:
        entries = []
        for item in order.items:
            result = self.ledger.allocate_fifo(item.product_id, item.quantity, lock=True)
            if not result.can_fulfill:
                raise InsufficientStockError(item.product_id, item.quantity, result.total_available)
            if result.simple_quantity:
                self.mutator.deduct_simple(item.product_id, item.quantity)
                tag = AllocationMethodTag.SIMPLE_QUANTITY
            else:
                self.mutator.apply(result.allocation, item.product_id)
                tag = AllocationMethodTag.AUTO_FIFO
            entries.append(SnapshotEntry(
                product_id=item.product_id,
                allocation=result.allocation,
                method=tag,
                required_quantity=item.quantity,
                product_name=item.product.name,
            ))
        return entries

    def _allocate_manual(
        self, order: CustomerOrder, manual: list[ManualAllocation],
    ) -> list[SnapshotEntry]:
        if not manual:
            raise ValidationError(
                "manual_batches requires manual_allocations", field="manual_allocations"
            )

        by_product: dict[int, list[AllocationLine]] = {}
        for m in manual:
            by_product.setdefault(m.product_id, []).append(m.to_line())

        item_products = {item.product_id for item in order.items}
        for product_id in by_product:
            if product_id not in item_products:
                raise InvalidBatchError(None, product_id, "product is not part of this order")

        entries = []
        for item in order.items:
            lines = by_product.get(item.product_id, [])

            if not self.ledger.has_batches(item.product_id):
                if lines:
                    raise InvalidBatchError(
                        lines[0].batch_id, item.product_id, "product is not batch tracked"
                    )
                self.mutator.deduct_simple(item.product_id, item.quantity)
                entries.append(SnapshotEntry(
                    product_id=item.product_id,
                    allocation=(),
                    method=AllocationMethodTag.SIMPLE_QUANTITY,
                    required_quantity=item.quantity,
                    product_name=item.product.name,
                ))
                continue

            allocated = sum(line.quantity for line in lines)
            if allocated != item.quantity:
                raise InvalidBatchError(
                    None, item.product_id,
                    f"manual allocations total {allocated}, item requires {item.quantity}",
                )
            self._check_manual_lines(item.product_id, lines)
            self.mutator.apply(lines, item.product_id)
            entries.append(SnapshotEntry(
                product_id=item.product_id,
                allocation=tuple(lines),
                method=AllocationMethodTag.MANUAL_BATCHES,
                required_quantity=item.quantity,
                product_name=item.product.name,
            ))
        return entries

    def _check_manual_lines(self, product_id: int, lines: list[AllocationLine]) -> None:
        requested: OrderedDict[int, int] = OrderedDict()
        for line in lines:
            requested[line.batch_id] = requested.get(line.batch_id, 0) + line.quantity

        for batch_id, quantity in requested.items():
            batch = self.session.execute(
                select(Batch)
                .where(Batch.id == batch_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if batch is None:
                raise InvalidBatchError(batch_id, product_id, "batch does not exist")
            if batch.product_id != product_id:
                raise InvalidBatchError(
                    batch_id, product_id, f"batch belongs to product {batch.product_id}"
                )
            if batch.status != BatchStatus.ACTIVE.value:
                raise InvalidBatchError(batch_id, product_id, f"batch is {batch.status}")
            if quantity > batch.quantity:
                raise InsufficientStockError(product_id, quantity, batch.quantity, batch_id=batch_id)

    # ------------------------------------------------------------------
    # Cancellation and restoration
    # ------------------------------------------------------------------

    def cancel_order(
        self,
        order_id: int,
        actor_id: UUID,
        role: CancelRole | str,
        reason: CancellationReason | str,
        notes: str | None = None,
    ) -> CustomerOrder:
        """
        Cancel on behalf of ``role``.

        admin may cancel any non-terminal order, customer only before
        preparation completes, courier only while the order is on the way.
        """
        try:
            role = CancelRole(role)
        except ValueError:
            raise ValidationError(f"Unknown role {role!r}", field="role")
        try:
            reason = CancellationReason(reason)
        except ValueError:
            raise ValidationError(f"Unknown cancellation reason {reason!r}", field="reason")
        limit = self.config.delivery.max_cancellation_note_length
        if notes and len(notes) > limit:
            raise ValidationError(f"notes exceed {limit} characters", field="notes")

        with LogContext.bind(order_type=OrderType.CUSTOMER, order_id=order_id, actor_id=actor_id):
            order = self.get_order(order_id, lock=True)
            transition = self._require(order, S.CANCELLED, role=role.value)
            previous = order.status

            self._release(order, transition)
            order.status = S.CANCELLED.value
            order.cancelled_at = self.clock.now()
            order.cancellation_reason = reason.value
            order.cancelled_by_id = actor_id
            self.session.flush()
            self.delivery.release_order(order, f"cancelled: {reason.value}")

            note = reason.value if not notes else f"{reason.value}: {notes}"
            self._record(order, actor_id, "cancel", previous, note=note)

            logger.info(
                "customer_order_cancelled",
                extra={
                    "order_id": order.id,
                    "previous_status": previous,
                    "role": role.value,
                    "reason": reason.value,
                    "restored_inventory": transition.restores_inventory,
                },
            )
        return order

    def _release(self, order: CustomerOrder, transition: Transition) -> None:
        """Return prepared stock and posted debt; stop open preparation."""
        self._cancel_preparers(order.id)

        if transition.restores_inventory:
            self._restore_inventory(order)

        if order.payment_method in (PaymentMethod.DEBT.value, PaymentMethod.PARTIAL.value):
            outstanding = order.total_cost - order.amount_paid
            if outstanding > 0:
                balance = order.customer.reduce_debt(outstanding)
                logger.info(
                    "customer_debt_reversed",
                    extra={
                        "order_id": order.id,
                        "customer_id": order.customer_id,
                        "amount": outstanding,
                        "account_balance": balance,
                    },
                )

    def _load_snapshot(self, order: CustomerOrder) -> BatchAllocationSnapshot | None:
        if order.batch_allocation is None:
            return None
        try:
            return BatchAllocationSnapshot.from_json(
                order.batch_allocation, order.batch_allocation_version
            )
        except InvalidAllocationSnapshotError as exc:
            logger.warning(
                "batch_allocation_unreadable",
                extra={"order_id": order.id, "reason": exc.reason, "version": exc.version},
            )
            return None

    def _restore_inventory(self, order: CustomerOrder) -> None:
        snapshot = self._load_snapshot(order)
        if snapshot is None:
            for item in order.items:
                self._restore_untracked(order, item.product_id, item.quantity)
        else:
            for entry in snapshot.entries:
                if entry.is_simple:
                    # the product may have gained lots since preparation
                    self._restore_untracked(order, entry.product_id, entry.required_quantity)
                else:
                    self.mutator.reverse(entry.allocation, entry.product_id)

        if order.status == S.SHIPPED.value and self.config.inventory.deduct_on_shipment:
            for item in order.items:
                self.mutator.restore_simple(item.product_id, item.quantity)

        logger.info(
            "customer_order_inventory_restored",
            extra={"order_id": order.id, "from_snapshot": snapshot is not None},
        )

    def _restore_untracked(self, order: CustomerOrder, product_id: int, quantity: int) -> None:
        # No usable record of the lots consumed: simple products get their
        # quantity back, tracked products get a new lot holding it.
        if self.ledger.has_batches(product_id):
            self.ledger.create_batch(
                product_id, quantity, notes=f"Restored from cancelled order {order.id}",
            )
        else:
            self.mutator.restore_simple(product_id, quantity)

    # ------------------------------------------------------------------
    # Payment and queries
    # ------------------------------------------------------------------

    def pay_debt(
        self,
        order_id: int,
        amount: Decimal | int | str,
        payment_method: PaymentMethod | str,
        actor_id: UUID,
    ) -> CustomerOrder:
        """Record a payment against a shipped order's outstanding debt."""
        try:
            amount = amount if isinstance(amount, Decimal) else Decimal(str(amount))
        except (InvalidOperation, ValueError):
            raise ValidationError(f"amount must be a number, got {amount!r}", field="amount")
        if amount <= 0:
            raise ValidationError("amount must be positive", field="amount")
        try:
            method = PaymentMethod(payment_method)
        except ValueError:
            raise ValidationError(f"Unknown payment method {payment_method!r}", field="payment_method")
        if method is PaymentMethod.CASH:
            raise ValidationError("debt payments are recorded as debt or partial", field="payment_method")

        order = self.get_order(order_id, lock=True)
        if order.status != S.SHIPPED.value:
            raise InvalidStateError(
                "CustomerOrder", order.id, order.status, order.status,
                reason="payments are accepted only on shipped orders",
            )
        if order.payment_method not in (PaymentMethod.DEBT.value, PaymentMethod.PARTIAL.value):
            raise InvalidStateError(
                "CustomerOrder", order.id, order.status, order.status,
                reason="order has no outstanding debt",
            )
        outstanding = order.outstanding_debt
        if amount > outstanding:
            raise ValidationError(
                f"amount {amount} exceeds outstanding debt {outstanding}", field="amount"
            )

        order.amount_paid = order.amount_paid + amount
        order.payment_method = (
            PaymentMethod.CASH.value if order.amount_paid >= order.total_cost
            else PaymentMethod.PARTIAL.value
        )
        balance = order.customer.reduce_debt(amount)
        self.session.flush()
        self._record(order, actor_id, "pay_debt", order.status, note=f"{amount} via {method.value}")

        logger.info(
            "customer_debt_paid",
            extra={
                "order_id": order.id,
                "amount": amount,
                "payment_method": order.payment_method,
                "account_balance": balance,
            },
        )
        return order

    def get_batch_info(self, order_id: int) -> list[ItemPreview]:
        """Read-only FIFO preview for every item of the order."""
        order = self.get_order(order_id)
        return [self._preview(item) for item in order.items]

    # ------------------------------------------------------------------
    # Dispatcher
    # ------------------------------------------------------------------

    def transition(
        self,
        order_id: int,
        target_status: CustomerOrderStatus | str,
        payload: dict[str, Any] | None,
        actor_id: UUID,
    ) -> CustomerOrder:
        """
        Move an order to ``target_status`` through the matching operation.

        ``payload`` carries the operation's extra arguments, e.g.
        ``{"role": "admin", "reason": "out_of_stock"}`` for Cancelled or
        ``{"courier_id": 3}`` for Assigned.
        """
        try:
            target = S(target_status)
        except ValueError:
            raise ValidationError(f"Unknown status {target_status!r}", field="target_status")
        payload = payload or {}

        order = self.get_order(order_id)
        self._require(order, target, role=payload.get("role", CancelRole.ADMIN.value))

        if target is S.ACCEPTED:
            return self.accept_order(order_id, actor_id, note=payload.get("note"))
        if target is S.REJECTED:
            return self.reject_order(order_id, actor_id, reason=payload.get("reason"))
        if target is S.PREPARING:
            self.start_preparation(order_id, actor_id, notes=payload.get("notes"))
            return self.get_order(order_id)
        if target is S.PREPARED:
            return self.complete_preparation(
                order_id,
                actor_id,
                method=payload.get("method", AllocationMethod.AUTO_FIFO),
                manual_allocations=_manual_from_payload(payload.get("manual_allocations")),
            )
        if target is S.CANCELLED:
            return self.cancel_order(
                order_id,
                actor_id,
                role=payload.get("role", CancelRole.ADMIN),
                reason=payload.get("reason", CancellationReason.OTHER),
                notes=payload.get("notes"),
            )

        courier_id = payload.get("courier_id", order.courier_id)
        if courier_id is None:
            raise ValidationError("courier_id is required", field="courier_id")
        if target is S.ASSIGNED:
            self.delivery.assign(
                courier_id, [order_id], payload.get("estimated_minutes"), actor_id=actor_id,
            )
        elif target is S.ON_THE_WAY:
            self.delivery.start(
                courier_id, [order_id], actor_id=actor_id, route_notes=payload.get("notes"),
            )
        elif target is S.SHIPPED:
            self.delivery.complete(
                courier_id,
                order_id,
                payload.get("payment_method", PaymentMethod.CASH),
                payload.get("amount_paid", order.total_cost),
                actor_id=actor_id,
                notes=payload.get("notes"),
            )
        elif target is S.RETURNED:
            self.delivery.return_order(
                courier_id, order_id, payload.get("reason", ""), actor_id=actor_id,
                notes=payload.get("notes"),
            )
        return self.get_order(order_id)


def _manual_from_payload(raw: Iterable[Any] | None) -> list[ManualAllocation]:
    """Accept ManualAllocation objects or ``{productId, batchId, quantity}`` dicts."""
    result = []
    for entry in raw or ():
        if isinstance(entry, ManualAllocation):
            result.append(entry)
            continue
        try:
            result.append(ManualAllocation(
                product_id=entry.get("product_id", entry.get("productId")),
                batch_id=entry.get("batch_id", entry.get("batchId")),
                quantity=entry["quantity"],
            ))
        except (AttributeError, KeyError, TypeError):
            raise ValidationError(
                f"Malformed manual allocation {entry!r}", field="manual_allocations"
            )
    return result
