"""
Append-only activity log tests.

Verifies:
- OrderActivityLog rows cannot be updated through the ORM
- OrderActivityLog rows cannot be deleted through the ORM
- A failed service call rolls back its log entry with the rest of the work
- Listener registration is idempotent and reversible
"""

from contextlib import contextmanager

import pytest
from sqlalchemy import event

from stockflow_kernel.db.immutability import (
    _check_activity_log_delete,
    _check_activity_log_immutability,
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from stockflow_kernel.exceptions import ImmutabilityViolationError
from stockflow_kernel.models import OrderActivityLog, OrderType


@contextmanager
def disabled_immutability():
    """Temporarily remove the ORM listeners."""
    unregister_immutability_listeners()
    try:
        yield
    finally:
        register_immutability_listeners()


@pytest.fixture
def entry(activity_log, test_actor_id):
    return activity_log.record(
        actor_id=test_actor_id,
        order_type=OrderType.CUSTOMER,
        order_id=42,
        action="accept",
        previous_status="Pending",
        new_status="Accepted",
    )


class TestActivityLogImmutability:

    def test_update_is_blocked(self, session, entry):
        entry.note = "rewritten"

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "OrderActivityLog"
        assert exc_info.value.entity_id == str(entry.id)
        session.rollback()

    def test_status_rewrite_is_blocked(self, session, entry):
        entry.new_status = "Cancelled"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_delete_is_blocked(self, session, entry):
        session.delete(entry)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_violation_is_logged(self, session, entry, captured_logs):
        entry.note = "rewritten"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

        blocked = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert blocked and blocked[0]["operation"] == "UPDATE"

    def test_new_entries_are_allowed(self, session, activity_log, test_actor_id, entry):
        activity_log.record(
            actor_id=test_actor_id,
            order_type=OrderType.CUSTOMER,
            order_id=42,
            action="start_preparation",
            previous_status="Accepted",
            new_status="Preparing",
        )

        assert [e.action for e in activity_log.history(OrderType.CUSTOMER, 42)] == [
            "accept", "start_preparation",
        ]

    def test_update_allowed_when_disabled(self, session, entry):
        with disabled_immutability():
            entry.note = "maintenance"
            session.flush()

        session.refresh(entry)
        assert entry.note == "maintenance"


class TestLogEntriesFollowTransaction:

    def test_rolled_back_service_call_leaves_no_entry(
        self, session, customer_orders, create_product, create_customer, test_actor_id,
    ):
        from stockflow_modules.customer_orders import OrderLineRequest

        customer = create_customer()
        product = create_product(quantity=10)
        order = customer_orders.create_order(customer.id, [OrderLineRequest(product.id, 2)], test_actor_id)
        session.commit()

        nested = session.begin_nested()
        customer_orders.accept_order(order.id, test_actor_id)
        assert [e.action for e in customer_orders.activity.history(OrderType.CUSTOMER, order.id)][-1] == "accept"
        nested.rollback()

        actions = [
            e.action
            for e in session.query(OrderActivityLog).filter(OrderActivityLog.order_id == order.id)
        ]
        assert "accept" not in actions


class TestListenerRegistration:

    def test_register_is_idempotent(self):
        register_immutability_listeners()
        register_immutability_listeners()

        assert event.contains(OrderActivityLog, "before_update", _check_activity_log_immutability)
        assert event.contains(OrderActivityLog, "before_delete", _check_activity_log_delete)

    def test_unregister_twice_is_harmless(self):
        with disabled_immutability():
            unregister_immutability_listeners()
            assert not event.contains(OrderActivityLog, "before_update", _check_activity_log_immutability)

        assert event.contains(OrderActivityLog, "before_update", _check_activity_log_immutability)
