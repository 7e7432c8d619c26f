"""
Transaction scope tests.

session_scope() is the unit of work for every stockflow operation: it
commits on success and rolls back everything, activity log included, when
the operation raises.
"""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from stockflow_kernel.db.engine import get_engine, is_postgres, is_sqlite, session_scope
from stockflow_kernel.exceptions import InsufficientStockError
from stockflow_kernel.models import Customer, OrderActivityLog, Product
from stockflow_modules.customer_orders import CustomerOrderService, OrderLineRequest

pytestmark = [pytest.mark.slow_locks]


def _count(session, model) -> int:
    return session.scalar(select(func.count()).select_from(model))


class TestSessionScope:

    def test_commit_on_success(self, session_factory):
        with session_scope() as session:
            session.add(Product(name="Eggs", quantity=3, sell_price=Decimal("0.40")))

        check = session_factory()
        try:
            assert check.scalar(select(Product.name)) == "Eggs"
        finally:
            check.close()

    def test_rollback_on_error(self, session_factory, test_actor_id):
        with session_scope() as session:
            product = Product(name="Milk", quantity=2, sell_price=Decimal("2.50"))
            customer = Customer(name="Corner Shop", account_balance=Decimal("0"))
            session.add_all([product, customer])
            session.flush()
            product_id, customer_id = product.id, customer.id

        with pytest.raises(InsufficientStockError):
            with session_scope() as session:
                service = CustomerOrderService(session)
                service.create_order(customer_id, [OrderLineRequest(product_id, 1)], test_actor_id)
                service.create_order(customer_id, [OrderLineRequest(product_id, 5)], test_actor_id)

        check = session_factory()
        try:
            assert _count(check, OrderActivityLog) == 0
            assert check.get(Product, product_id).quantity == 2
        finally:
            check.close()

    def test_rollback_is_logged(self, session_factory, captured_logs):
        with pytest.raises(RuntimeError):
            with session_scope():
                raise RuntimeError("operation failed")

        rolled_back = [r for r in captured_logs() if r["message"] == "transaction_rolled_back"]
        assert rolled_back[0]["exc_type"] == "RuntimeError"


class TestDialect:

    def test_exactly_one_dialect_flag(self, db_engine):
        assert get_engine() is db_engine
        assert is_postgres() != is_sqlite()
