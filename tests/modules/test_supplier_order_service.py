"""
Tests for SupplierOrderService: price lists, supplier responses with
partial acceptance, and receipt into the batch ledger.
"""

from datetime import date
from decimal import Decimal

import pytest

from stockflow_kernel.exceptions import (
    InvalidStateError,
    SupplierNotFoundError,
    ValidationError,
)
from stockflow_kernel.models import (
    BatchStatus,
    OrderType,
    PriceListStatus,
    SupplierItemStatus,
    SupplierOrderStatus,
)
from stockflow_modules.supplier_orders import (
    ItemDecision,
    ReceivedItem,
    SupplierLineRequest,
)
from tests.modules.conftest import ADMIN_ID

S = SupplierOrderStatus


@pytest.fixture
def milk_and_eggs(create_product, create_supplier):
    milk = create_product(name="Milk")
    eggs = create_product(name="Eggs")
    supplier = create_supplier(prices={milk: Decimal("1.20"), eggs: Decimal("0.30")})
    return supplier, milk, eggs


@pytest.fixture
def pending_order(milk_and_eggs, supplier_orders):
    supplier, milk, eggs = milk_and_eggs
    return supplier_orders.create_order(
        supplier.id,
        [SupplierLineRequest(milk.id, 10), SupplierLineRequest(eggs.id, 30)],
        actor_id=ADMIN_ID,
    )


class TestPriceList:

    def test_set_and_update_price(self, create_product, create_supplier, supplier_orders):
        product = create_product()
        supplier = create_supplier()

        row = supplier_orders.set_supplier_price(supplier.id, product.id, Decimal("2.00"))
        again = supplier_orders.set_supplier_price(supplier.id, product.id, Decimal("2.10"), "NotActive")

        assert row is again
        assert again.price == Decimal("2.10")
        assert again.status == PriceListStatus.NOT_ACTIVE.value

    def test_negative_price(self, create_product, create_supplier, supplier_orders):
        with pytest.raises(ValidationError):
            supplier_orders.set_supplier_price(create_supplier().id, create_product().id, Decimal("-1"))

    def test_unknown_supplier(self, create_product, supplier_orders):
        with pytest.raises(SupplierNotFoundError):
            supplier_orders.set_supplier_price(8888, create_product().id, Decimal("1"))


class TestCreateOrder:

    def test_priced_from_price_list(self, pending_order, activity_log):
        assert pending_order.status == S.PENDING.value
        assert pending_order.total_cost == Decimal("21.00")
        assert all(item.status is None for item in pending_order.items)
        assert [i.original_cost_price for i in pending_order.items] == [Decimal("1.20"), Decimal("0.30")]
        (entry,) = activity_log.history(OrderType.SUPPLIER, pending_order.id)
        assert entry.action == "create"

    def test_negotiated_cost_overrides_list(self, milk_and_eggs, supplier_orders):
        supplier, milk, _ = milk_and_eggs

        order = supplier_orders.create_order(
            supplier.id, [SupplierLineRequest(milk.id, 10, Decimal("1.00"))], actor_id=ADMIN_ID,
        )

        assert order.total_cost == Decimal("10.00")
        assert order.items[0].original_cost_price == Decimal("1.20")

    def test_unlisted_product_rejected(self, milk_and_eggs, supplier_orders, create_product):
        supplier, _, _ = milk_and_eggs
        butter = create_product(name="Butter")

        with pytest.raises(ValidationError, match="price list"):
            supplier_orders.create_order(supplier.id, [SupplierLineRequest(butter.id, 1)], actor_id=ADMIN_ID)

    def test_inactive_price_rejected(self, milk_and_eggs, supplier_orders):
        supplier, milk, _ = milk_and_eggs
        supplier_orders.set_supplier_price(supplier.id, milk.id, Decimal("1.20"), PriceListStatus.NOT_ACTIVE)

        with pytest.raises(ValidationError):
            supplier_orders.create_order(supplier.id, [SupplierLineRequest(milk.id, 1)], actor_id=ADMIN_ID)

    def test_inactive_supplier_rejected(self, create_product, create_supplier, supplier_orders):
        product = create_product()
        supplier = create_supplier(is_active=False, prices={product: Decimal("1")})

        with pytest.raises(ValidationError, match="not active"):
            supplier_orders.create_order(supplier.id, [SupplierLineRequest(product.id, 1)], actor_id=ADMIN_ID)

    def test_line_validation(self):
        with pytest.raises(ValidationError):
            SupplierLineRequest(1, 0)
        with pytest.raises(ValidationError):
            SupplierLineRequest(1, 1, Decimal("-0.01"))


class TestRespond:

    def test_accept_everything(self, pending_order, supplier_orders):
        supplier_orders.respond(pending_order.id, ADMIN_ID)

        assert pending_order.status == S.ACCEPTED.value
        assert {i.status for i in pending_order.items} == {SupplierItemStatus.ACCEPTED.value}

    def test_partial_acceptance_recomputes_total(self, pending_order, supplier_orders):
        milk_item, eggs_item = pending_order.items

        supplier_orders.respond(pending_order.id, ADMIN_ID, [
            ItemDecision(milk_item.id, "Accepted", cost_price=Decimal("1.10"), quantity=8),
            ItemDecision(eggs_item.id, "Declined"),
        ])

        assert pending_order.status == S.PARTIALLY_ACCEPTED.value
        assert milk_item.quantity == 8
        assert pending_order.total_cost == Decimal("8.80")

    def test_declining_every_item_declines_order(self, pending_order, supplier_orders):
        supplier_orders.respond(pending_order.id, ADMIN_ID, [
            ItemDecision(item.id, SupplierItemStatus.DECLINED) for item in pending_order.items
        ])

        assert pending_order.status == S.DECLINED.value
        assert pending_order.total_cost == Decimal("0")

    def test_foreign_item_rejected(self, pending_order, supplier_orders):
        with pytest.raises(ValidationError, match="does not belong"):
            supplier_orders.respond(pending_order.id, ADMIN_ID, [ItemDecision(777_777, "Accepted")])

    def test_only_pending_orders_respond(self, pending_order, supplier_orders):
        supplier_orders.respond(pending_order.id, ADMIN_ID)

        with pytest.raises(InvalidStateError):
            supplier_orders.respond(pending_order.id, ADMIN_ID)

    def test_decision_validation(self):
        with pytest.raises(ValidationError, match="Unknown item status"):
            ItemDecision(1, "Maybe")
        with pytest.raises(ValidationError):
            ItemDecision(1, "Accepted", prod_date=date(2024, 2, 1), exp_date=date(2024, 1, 1))


class TestConfirmAndDecline:

    def test_confirm_partial_keeps_declined_items_out(self, pending_order, supplier_orders):
        milk_item, eggs_item = pending_order.items
        supplier_orders.respond(pending_order.id, ADMIN_ID, [ItemDecision(eggs_item.id, "Declined")])

        supplier_orders.confirm_partial(pending_order.id, ADMIN_ID)

        assert pending_order.status == S.ACCEPTED.value
        assert eggs_item.status == SupplierItemStatus.DECLINED.value
        assert pending_order.total_cost == Decimal("12.00")

    def test_confirm_requires_partial(self, pending_order, supplier_orders):
        with pytest.raises(InvalidStateError):
            supplier_orders.confirm_partial(pending_order.id, ADMIN_ID)

    def test_decline_whole_order(self, pending_order, supplier_orders):
        supplier_orders.decline(pending_order.id, ADMIN_ID, note="out of season")

        assert pending_order.status == S.DECLINED.value
        assert pending_order.total_cost == Decimal("0")

        with pytest.raises(InvalidStateError):
            supplier_orders.deliver(pending_order.id, ADMIN_ID)


class TestDeliver:

    def test_accepted_items_become_lots(self, pending_order, supplier_orders, milk_and_eggs, batch_ledger):
        _, milk, eggs = milk_and_eggs
        milk_item, _ = pending_order.items
        supplier_orders.respond(pending_order.id, ADMIN_ID, [
            ItemDecision(milk_item.id, "Accepted", prod_date=date(2023, 12, 28), exp_date=date(2024, 2, 1)),
        ])

        receipt = supplier_orders.deliver(pending_order.id, ADMIN_ID)

        assert pending_order.status == S.DELIVERED.value
        assert pending_order.received_by_id == ADMIN_ID
        assert len(receipt.batches) == 2
        assert milk.quantity == 10
        assert eggs.quantity == 30
        (lot,) = batch_ledger.get_batches(milk.id)
        assert lot.supplier_order_id == pending_order.id
        assert lot.status == BatchStatus.ACTIVE.value
        assert lot.cost_price == Decimal("1.20")
        assert milk.exp_date == date(2024, 2, 1)
        assert not receipt.has_date_conflicts

    def test_short_delivery(self, pending_order, supplier_orders, milk_and_eggs):
        _, milk, eggs = milk_and_eggs
        milk_item, eggs_item = pending_order.items
        supplier_orders.respond(pending_order.id, ADMIN_ID)

        receipt = supplier_orders.deliver(pending_order.id, ADMIN_ID, [
            ReceivedItem(milk_item.id, received_quantity=6, batch_number="INV-42"),
            ReceivedItem(eggs_item.id, received_quantity=0),
        ])

        assert [b.batch_number for b in receipt.batches] == ["INV-42"]
        assert milk.quantity == 6
        assert eggs.quantity == 0
        assert pending_order.total_cost == Decimal("7.20")

    def test_over_receipt_rejected(self, pending_order, supplier_orders):
        milk_item, _ = pending_order.items
        supplier_orders.respond(pending_order.id, ADMIN_ID)

        with pytest.raises(ValidationError, match="between 0 and 10"):
            supplier_orders.deliver(pending_order.id, ADMIN_ID, [ReceivedItem(milk_item.id, 11)])

    def test_declined_item_cannot_be_received(self, pending_order, supplier_orders):
        _, eggs_item = pending_order.items
        supplier_orders.respond(pending_order.id, ADMIN_ID, [ItemDecision(eggs_item.id, "Declined")])

        with pytest.raises(ValidationError, match="was not accepted"):
            supplier_orders.deliver(pending_order.id, ADMIN_ID, [ReceivedItem(eggs_item.id, 5)])

    def test_partially_accepted_delivers_directly(self, pending_order, supplier_orders, milk_and_eggs):
        _, milk, eggs = milk_and_eggs
        _, eggs_item = pending_order.items
        supplier_orders.respond(pending_order.id, ADMIN_ID, [ItemDecision(eggs_item.id, "Declined")])

        supplier_orders.deliver(pending_order.id, ADMIN_ID)

        assert milk.quantity == 10
        assert eggs.quantity == 0

    def test_date_conflict_reported_not_blocking(
        self, pending_order, supplier_orders, milk_and_eggs, create_batch,
    ):
        _, milk, _ = milk_and_eggs
        on_hand = create_batch(milk, 4, date(2023, 11, 1), date(2024, 1, 20))
        milk_item, _ = pending_order.items
        supplier_orders.respond(pending_order.id, ADMIN_ID, [
            ItemDecision(milk_item.id, "Accepted", prod_date=date(2023, 12, 28), exp_date=date(2024, 2, 1)),
        ])

        receipt = supplier_orders.deliver(pending_order.id, ADMIN_ID)

        assert receipt.has_date_conflicts
        (conflict,) = receipt.date_conflicts
        assert conflict.product_id == milk.id
        assert [c.batch_id for c in conflict.conflicting_batches] == [on_hand.id]
        assert milk.quantity == 14

    def test_first_delivery_keeps_untracked_stock(self, pending_order, supplier_orders, milk_and_eggs, session):
        _, milk, _ = milk_and_eggs
        milk.quantity = 3
        session.flush()
        supplier_orders.respond(pending_order.id, ADMIN_ID)

        supplier_orders.deliver(pending_order.id, ADMIN_ID)

        assert milk.quantity == 13


class TestTransitionDispatcher:

    def test_pending_to_partially_accepted(self, pending_order, supplier_orders):
        _, eggs_item = pending_order.items

        order = supplier_orders.transition(
            pending_order.id, "PartiallyAccepted", ADMIN_ID,
            item_decisions=[ItemDecision(eggs_item.id, "Declined")],
        )

        assert order.status == S.PARTIALLY_ACCEPTED.value

    def test_partially_accepted_to_accepted_confirms(self, pending_order, supplier_orders):
        _, eggs_item = pending_order.items
        supplier_orders.respond(pending_order.id, ADMIN_ID, [ItemDecision(eggs_item.id, "Declined")])

        order = supplier_orders.transition(pending_order.id, "Accepted", ADMIN_ID)

        assert order.status == S.ACCEPTED.value

    def test_deliver_via_dispatcher(self, pending_order, supplier_orders, milk_and_eggs):
        _, milk, _ = milk_and_eggs
        supplier_orders.transition(pending_order.id, "Accepted", ADMIN_ID)

        order = supplier_orders.transition(pending_order.id, "Delivered", ADMIN_ID)

        assert order.status == S.DELIVERED.value
        assert milk.quantity == 10

    def test_illegal_move(self, pending_order, supplier_orders):
        with pytest.raises(InvalidStateError):
            supplier_orders.transition(pending_order.id, "Delivered", ADMIN_ID)

    def test_unknown_status(self, pending_order, supplier_orders):
        with pytest.raises(ValidationError):
            supplier_orders.transition(pending_order.id, "Shipped", ADMIN_ID)
