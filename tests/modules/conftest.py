"""
Shared fixtures for module tests.

DESIGN RULE: Every fixture is opt-in.  No autouse.  Each test explicitly
declares which entities it depends on in its function signature.
"""

from datetime import date
from uuid import UUID

import pytest

from stockflow_modules.customer_orders import OrderLineRequest

# Deterministic worker ids so log output and activity rows are readable
WORKER_A = UUID("00000000-0000-4000-a000-000000000001")
WORKER_B = UUID("00000000-0000-4000-a000-000000000002")
ADMIN_ID = UUID("00000000-0000-4000-a000-0000000000ad")


@pytest.fixture
def stocked_product(create_product, create_batch):
    """Milk with two dated lots: 5 units (older) and 10 units (newer)."""
    product = create_product(name="Milk")
    older = create_batch(product, 5, date(2023, 12, 1), date(2024, 3, 1), batch_number="M-1")
    newer = create_batch(product, 10, date(2023, 12, 20), date(2024, 4, 1), batch_number="M-2")
    return product, older, newer


@pytest.fixture
def place_order(customer_orders, create_customer):
    """Create a Pending order for ``{product: quantity}``."""

    def _place(lines: dict, customer=None):
        customer = customer or create_customer()
        return customer_orders.create_order(
            customer.id,
            [OrderLineRequest(product.id, quantity) for product, quantity in lines.items()],
            actor_id=ADMIN_ID,
        )

    return _place


@pytest.fixture
def prepared_order(customer_orders, place_order):
    """Drive an order through accept, start and FIFO completion."""

    def _prepare(lines: dict, customer=None):
        order = place_order(lines, customer)
        customer_orders.accept_order(order.id, ADMIN_ID)
        customer_orders.start_preparation(order.id, WORKER_A)
        return customer_orders.complete_preparation(order.id, WORKER_A)

    return _prepare


@pytest.fixture
def on_the_way_order(prepared_order, delivery, create_courier):
    """A prepared order assigned to a courier who has set off."""

    def _dispatch(lines: dict, customer=None, courier=None):
        order = prepared_order(lines, customer)
        courier = courier or create_courier()
        delivery.assign(courier.id, [order.id], actor_id=ADMIN_ID)
        delivery.start(courier.id, [order.id], actor_id=ADMIN_ID)
        return order, courier

    return _dispatch
