"""
SupplierOrderService -- restock orders from placement to receipt.

Responsibility:
    Creates supplier orders from the supplier's price list, records the
    supplier's per-item response (including partial acceptance), and turns
    received items into new lots in the batch ledger.

Invariants enforced:
    - total_cost == sum(subtotal of Accepted items) after every response,
      confirmation, decline and delivery.
    - Declined items are never re-offered; they stay declined through
      confirmation and delivery.
    - Receipt creates one lot per accepted item with stock and recomputes
      the product's quantity from its lots.

Failure modes:
    - SupplierNotFoundError / OrderNotFoundError / ProductNotFoundError.
    - ValidationError for inactive suppliers, unlisted products, foreign
      item ids, or received quantities out of range.
    - InvalidStateError for illegal status moves.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockflow_config.settings import StockflowConfig
from stockflow_kernel.domain.clock import Clock
from stockflow_kernel.exceptions import (
    InvalidStateError,
    OrderNotFoundError,
    ProductNotFoundError,
    SupplierNotFoundError,
    ValidationError,
)
from stockflow_kernel.logging_config import LogContext, get_logger
from stockflow_kernel.models.activity_log import OrderType
from stockflow_kernel.models.product import Product
from stockflow_kernel.models.supplier import (
    PriceListStatus,
    Supplier,
    SupplierItemStatus,
    SupplierOrder,
    SupplierOrderItem,
    SupplierOrderStatus,
    SupplierProductPrice,
)
from stockflow_kernel.services.activity_log_service import ActivityLogService
from stockflow_kernel.services.base import BaseService
from stockflow_kernel.services.batch_ledger import BatchLedger
from stockflow_modules.supplier_orders.models import (
    DeliveryReceipt,
    ItemDecision,
    ReceivedItem,
    SupplierLineRequest,
)
from stockflow_modules.supplier_orders.workflows import SUPPLIER_ORDER_WORKFLOW

logger = get_logger("modules.supplier_orders.service")

S = SupplierOrderStatus


class SupplierOrderService(BaseService[SupplierOrder]):
    """Supplier order operations.  Flush-only."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: StockflowConfig | None = None,
    ):
        super().__init__(session, clock)
        self.config = config or StockflowConfig.with_defaults()
        self.ledger = BatchLedger(session, self.clock, self.config)
        self.activity = ActivityLogService(session, self.clock)

    def get_order(self, order_id: int, *, lock: bool = False) -> SupplierOrder:
        return self._get_or_raise(SupplierOrder, order_id, OrderNotFoundError, lock=lock)

    def _move(self, order: SupplierOrder, target: S, actor_id: UUID, action: str, note: str | None) -> None:
        if not SUPPLIER_ORDER_WORKFLOW.allows(order.status, target.value, role="admin"):
            raise InvalidStateError("SupplierOrder", order.id, order.status, target.value)
        previous = order.status
        order.status = target.value
        self.session.flush()
        self.activity.record(
            actor_id=actor_id,
            order_type=OrderType.SUPPLIER,
            order_id=order.id,
            action=action,
            previous_status=previous,
            new_status=order.status,
            note=note,
        )

    def _active_price(self, supplier_id: int, product_id: int) -> SupplierProductPrice | None:
        return self.session.execute(
            select(SupplierProductPrice).where(
                SupplierProductPrice.supplier_id == supplier_id,
                SupplierProductPrice.product_id == product_id,
                SupplierProductPrice.status == PriceListStatus.ACTIVE.value,
            )
        ).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Price list
    # ------------------------------------------------------------------

    def set_supplier_price(
        self,
        supplier_id: int,
        product_id: int,
        price: Decimal,
        status: PriceListStatus | str = PriceListStatus.ACTIVE,
    ) -> SupplierProductPrice:
        """Create or update the supplier's quoted price for a product."""
        if price < 0:
            raise ValidationError("price cannot be negative", field="price")
        try:
            status = PriceListStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown price status {status!r}", field="status")
        self._get_or_raise(Supplier, supplier_id, SupplierNotFoundError)
        self._get_or_raise(Product, product_id, ProductNotFoundError)

        row = self.session.execute(
            select(SupplierProductPrice).where(
                SupplierProductPrice.supplier_id == supplier_id,
                SupplierProductPrice.product_id == product_id,
            )
        ).scalar_one_or_none()
        if row is None:
            row = SupplierProductPrice(supplier_id=supplier_id, product_id=product_id)
            self.session.add(row)
        row.price = price
        row.status = status.value
        self.session.flush()

        logger.info(
            "supplier_price_set",
            extra={
                "supplier_id": supplier_id,
                "product_id": product_id,
                "price": price,
                "status": status.value,
            },
        )
        return row

    # ------------------------------------------------------------------
    # Order lifecycle
    # ------------------------------------------------------------------

    def create_order(
        self,
        supplier_id: int,
        items: Sequence[SupplierLineRequest],
        actor_id: UUID,
        note: str | None = None,
    ) -> SupplierOrder:
        if not items:
            raise ValidationError("An order needs at least one item", field="items")

        supplier = self._get_or_raise(Supplier, supplier_id, SupplierNotFoundError)
        if not supplier.is_active:
            raise ValidationError(f"Supplier {supplier_id} is not active", field="supplier_id")

        order = SupplierOrder(
            supplier_id=supplier.id,
            status=S.PENDING.value,
            note=note,
            created_by_id=actor_id,
        )
        total = Decimal("0")
        for line in items:
            product = self._get_or_raise(Product, line.product_id, ProductNotFoundError)
            listed = self._active_price(supplier.id, product.id)
            if listed is None:
                raise ValidationError(
                    f"Product {product.id} is not on supplier {supplier.id}'s price list",
                    field="items",
                )
            cost = line.cost_price if line.cost_price is not None else listed.price
            if cost is None:
                cost = product.cost_price
            subtotal = cost * line.quantity
            order.items.append(SupplierOrderItem(
                product_id=product.id,
                quantity=line.quantity,
                cost_price=cost,
                original_cost_price=listed.price,
                subtotal=subtotal,
                status=None,
            ))
            total += subtotal
        order.total_cost = total

        self.session.add(order)
        self.session.flush()
        self.activity.record(
            actor_id=actor_id,
            order_type=OrderType.SUPPLIER,
            order_id=order.id,
            action="create",
            previous_status=None,
            new_status=order.status,
            note=note,
        )
        logger.info(
            "supplier_order_created",
            extra={
                "supplier_order_id": order.id,
                "supplier_id": supplier.id,
                "item_count": len(order.items),
                "total_cost": total,
            },
        )
        return order

    def respond(
        self,
        order_id: int,
        actor_id: UUID,
        decisions: Sequence[ItemDecision] | None = None,
        note: str | None = None,
    ) -> SupplierOrder:
        """
        Record the supplier's answer.

        No decisions accepts everything.  Items not named in ``decisions``
        are accepted as ordered.  Any declined item makes the order
        PartiallyAccepted; declining every item makes it Declined.
        """
        order = self.get_order(order_id, lock=True)
        if order.status != S.PENDING.value:
            raise InvalidStateError(
                "SupplierOrder", order.id, order.status, S.ACCEPTED.value,
                reason="only Pending orders take a response",
            )

        by_id = {item.id: item for item in order.items}
        decided: dict[int, ItemDecision] = {}
        for decision in decisions or ():
            if decision.item_id not in by_id:
                raise ValidationError(
                    f"Item {decision.item_id} does not belong to supplier order {order.id}",
                    field="decisions",
                )
            decided[decision.item_id] = decision

        for item in order.items:
            decision = decided.get(item.id)
            if decision is None:
                item.status = SupplierItemStatus.ACCEPTED.value
                continue
            item.status = decision.status.value
            if decision.status is SupplierItemStatus.ACCEPTED:
                if decision.cost_price is not None:
                    item.cost_price = decision.cost_price
                if decision.quantity is not None:
                    item.quantity = decision.quantity
                if decision.prod_date is not None:
                    item.prod_date = decision.prod_date
                if decision.exp_date is not None:
                    item.exp_date = decision.exp_date
                if decision.batch_number is not None:
                    item.batch_number = decision.batch_number
            item.subtotal = item.cost_price * item.quantity

        order.total_cost = order.accepted_total

        declined = [i for i in order.items if i.status == SupplierItemStatus.DECLINED.value]
        if len(declined) == len(order.items):
            target = S.DECLINED
        elif declined:
            target = S.PARTIALLY_ACCEPTED
        else:
            target = S.ACCEPTED
        self._move(order, target, actor_id, "respond", note)

        logger.info(
            "supplier_order_responded",
            extra={
                "supplier_order_id": order.id,
                "status": order.status,
                "declined_items": [i.id for i in declined],
                "total_cost": order.total_cost,
            },
        )
        return order

    def confirm_partial(self, order_id: int, actor_id: UUID, note: str | None = None) -> SupplierOrder:
        """Admin accepts a partially accepted order as reduced."""
        order = self.get_order(order_id, lock=True)
        if order.status != S.PARTIALLY_ACCEPTED.value:
            raise InvalidStateError(
                "SupplierOrder", order.id, order.status, S.ACCEPTED.value,
                reason="only PartiallyAccepted orders can be confirmed",
            )
        order.total_cost = order.accepted_total
        self._move(order, S.ACCEPTED, actor_id, "confirm_partial", note)
        logger.info(
            "supplier_order_partial_confirmed",
            extra={"supplier_order_id": order.id, "total_cost": order.total_cost},
        )
        return order

    def decline(self, order_id: int, actor_id: UUID, note: str | None = None) -> SupplierOrder:
        order = self.get_order(order_id, lock=True)
        if order.status != S.PENDING.value:
            raise InvalidStateError("SupplierOrder", order.id, order.status, S.DECLINED.value)
        for item in order.items:
            item.status = SupplierItemStatus.DECLINED.value
        order.total_cost = order.accepted_total
        self._move(order, S.DECLINED, actor_id, "decline", note)
        logger.info("supplier_order_declined", extra={"supplier_order_id": order.id})
        return order

    def deliver(
        self,
        order_id: int,
        actor_id: UUID,
        received: Sequence[ReceivedItem] | None = None,
        note: str | None = None,
    ) -> DeliveryReceipt:
        """
        Receive the goods.

        Each accepted item with a positive received quantity becomes a new
        lot.  Date conflicts against lots on hand are reported in the
        receipt and never block the delivery.
        """
        with LogContext.bind(order_type=OrderType.SUPPLIER, order_id=order_id, actor_id=actor_id):
            order = self.get_order(order_id, lock=True)
            if order.status not in (S.ACCEPTED.value, S.PARTIALLY_ACCEPTED.value):
                raise InvalidStateError(
                    "SupplierOrder", order.id, order.status, S.DELIVERED.value,
                    reason="only Accepted or PartiallyAccepted orders can be delivered",
                )

            by_id = {item.id: item for item in order.items}
            receipts: dict[int, ReceivedItem] = {}
            for entry in received or ():
                item = by_id.get(entry.item_id)
                if item is None:
                    raise ValidationError(
                        f"Item {entry.item_id} does not belong to supplier order {order.id}",
                        field="received",
                    )
                if item.status != SupplierItemStatus.ACCEPTED.value:
                    raise ValidationError(
                        f"Item {entry.item_id} was not accepted", field="received"
                    )
                receipts[entry.item_id] = entry

            batches = []
            conflicts = []
            for item in order.accepted_items:
                entry = receipts.get(item.id)
                quantity = item.quantity
                if entry is not None:
                    if entry.received_quantity is not None:
                        quantity = entry.received_quantity
                    if entry.batch_number is not None:
                        item.batch_number = entry.batch_number
                    if entry.notes is not None:
                        item.notes = entry.notes
                if not 0 <= quantity <= item.quantity:
                    raise ValidationError(
                        f"Received quantity for item {item.id} must be between 0 and {item.quantity}",
                        field="received_quantity",
                    )
                item.received_quantity = quantity
                item.subtotal = item.cost_price * quantity
                if quantity == 0:
                    continue

                conflict = self.ledger.check_date_conflicts(item.product_id, item.prod_date, item.exp_date)
                if conflict is not None:
                    conflicts.append(conflict)

                batches.append(self.ledger.create_batch(
                    item.product_id,
                    quantity,
                    item.prod_date,
                    item.exp_date,
                    supplier_id=order.supplier_id,
                    supplier_order_id=order.id,
                    cost_price=item.cost_price,
                    batch_number=item.batch_number,
                    notes=item.notes,
                ))
                self._advance_product_dates(item)

            order.total_cost = order.accepted_total
            order.received_by_id = actor_id
            order.received_at = self.clock.now()
            self._move(order, S.DELIVERED, actor_id, "deliver", note)

            logger.info(
                "supplier_order_delivered",
                extra={
                    "supplier_order_id": order.id,
                    "batch_ids": [b.id for b in batches],
                    "date_conflicts": len(conflicts),
                    "total_cost": order.total_cost,
                },
            )
        return DeliveryReceipt(order=order, batches=tuple(batches), date_conflicts=tuple(conflicts))

    def _advance_product_dates(self, item: SupplierOrderItem) -> None:
        product = item.product
        if item.prod_date and (product.prod_date is None or item.prod_date > product.prod_date):
            product.prod_date = item.prod_date
        if item.exp_date and (product.exp_date is None or item.exp_date > product.exp_date):
            product.exp_date = item.exp_date

    # ------------------------------------------------------------------
    # Dispatcher
    # ------------------------------------------------------------------

    def transition(
        self,
        order_id: int,
        target_status: SupplierOrderStatus | str,
        actor_id: UUID,
        item_decisions: Sequence[ItemDecision] | None = None,
        received: Sequence[ReceivedItem] | None = None,
    ) -> SupplierOrder:
        """
        Move a supplier order to ``target_status``.

        Accepted or PartiallyAccepted from Pending runs ``respond`` and the
        decisions determine which of the two results.
        """
        try:
            target = S(target_status)
        except ValueError:
            raise ValidationError(f"Unknown status {target_status!r}", field="target_status")

        order = self.get_order(order_id)
        if not SUPPLIER_ORDER_WORKFLOW.allows(order.status, target.value, role="admin"):
            raise InvalidStateError("SupplierOrder", order.id, order.status, target.value)

        if target is S.DECLINED:
            return self.decline(order_id, actor_id)
        if target is S.DELIVERED:
            return self.deliver(order_id, actor_id, received=received).order
        if order.status == S.PARTIALLY_ACCEPTED.value:
            return self.confirm_partial(order_id, actor_id)
        return self.respond(order_id, actor_id, decisions=item_decisions)
