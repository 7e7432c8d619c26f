"""
Tests for BatchMutator: applying and reversing allocations.
"""

from datetime import date

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from stockflow_engines.fifo import AllocationLine
from stockflow_kernel.exceptions import (
    BatchNotFoundError,
    InsufficientStockError,
    InvalidBatchError,
    ValidationError,
)
from stockflow_kernel.models import BatchStatus


class TestApply:

    def test_deducts_lot_and_product(self, create_product, create_batch, batch_mutator):
        product = create_product()
        lot = create_batch(product, 10)

        moved = batch_mutator.apply([AllocationLine(lot.id, 4)], product.id)

        assert moved == 4
        assert lot.quantity == 6
        assert product.quantity == 6
        assert lot.status == BatchStatus.ACTIVE.value

    def test_lot_reaching_zero_is_depleted(self, create_product, create_batch, batch_mutator):
        product = create_product()
        lot = create_batch(product, 3)

        batch_mutator.apply([AllocationLine(lot.id, 3)], product.id)

        assert lot.quantity == 0
        assert lot.status == BatchStatus.DEPLETED.value

    def test_duplicate_lines_are_merged(self, create_product, create_batch, batch_mutator):
        product = create_product()
        lot = create_batch(product, 5)

        batch_mutator.apply([AllocationLine(lot.id, 2), AllocationLine(lot.id, 3)], product.id)

        assert lot.status == BatchStatus.DEPLETED.value

    def test_empty_allocation_is_noop(self, create_product, batch_mutator):
        product = create_product(quantity=2)

        assert batch_mutator.apply([], product.id) == 0
        assert product.quantity == 2

    def test_over_draw_rejected_before_any_write(self, create_product, create_batch, batch_mutator):
        product = create_product()
        a = create_batch(product, 5)
        b = create_batch(product, 1)

        with pytest.raises(InvalidBatchError, match="exceeds remaining"):
            batch_mutator.apply([AllocationLine(a.id, 2), AllocationLine(b.id, 2)], product.id)

        assert a.quantity == 5
        assert product.quantity == 6

    def test_missing_batch(self, create_product, batch_mutator):
        product = create_product()

        with pytest.raises(BatchNotFoundError):
            batch_mutator.apply([AllocationLine(987_654, 1)], product.id)

    def test_other_products_batch(self, create_product, create_batch, batch_mutator):
        milk = create_product(name="Milk")
        bread = create_product(name="Bread")
        lot = create_batch(bread, 5)

        with pytest.raises(InvalidBatchError, match="belongs to product"):
            batch_mutator.apply([AllocationLine(lot.id, 1)], milk.id)

    def test_expired_batch(self, create_product, create_batch, batch_ledger, batch_mutator):
        product = create_product()
        lot = create_batch(product, 5, exp_date=date(2023, 6, 1))
        batch_ledger.mark_expired()

        with pytest.raises(InvalidBatchError, match="Expired"):
            batch_mutator.apply([AllocationLine(lot.id, 1)], product.id)


class TestReverse:

    def test_depleted_lot_reactivated(self, create_product, create_batch, batch_mutator):
        product = create_product()
        lot = create_batch(product, 3)
        batch_mutator.apply([AllocationLine(lot.id, 3)], product.id)

        batch_mutator.reverse([AllocationLine(lot.id, 3)], product.id)

        assert lot.quantity == 3
        assert lot.status == BatchStatus.ACTIVE.value
        assert product.quantity == 3

    def test_expired_lot_stays_expired(
        self, create_product, create_batch, batch_ledger, batch_mutator, deterministic_clock,
    ):
        product = create_product()
        lot = create_batch(product, 5, exp_date=date(2024, 1, 2))
        batch_mutator.apply([AllocationLine(lot.id, 2)], product.id)
        deterministic_clock.advance_days(5)
        batch_ledger.mark_expired()
        assert product.quantity == 0

        batch_mutator.reverse([AllocationLine(lot.id, 2)], product.id)

        assert lot.quantity == 5
        assert lot.status == BatchStatus.EXPIRED.value
        assert product.quantity == 0


class TestSimpleQuantity:

    def test_deduct_and_restore(self, create_product, batch_mutator):
        product = create_product(quantity=10)

        assert batch_mutator.deduct_simple(product.id, 4) == 6
        assert batch_mutator.restore_simple(product.id, 4) == 10

    def test_over_deduction(self, create_product, batch_mutator):
        product = create_product(quantity=1)

        with pytest.raises(InsufficientStockError) as exc_info:
            batch_mutator.deduct_simple(product.id, 2)
        assert exc_info.value.available == 1
        assert product.quantity == 1

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_non_positive(self, create_product, batch_mutator, quantity):
        product = create_product(quantity=5)

        with pytest.raises(ValidationError):
            batch_mutator.deduct_simple(product.id, quantity)
        with pytest.raises(ValidationError):
            batch_mutator.restore_simple(product.id, quantity)


class TestRoundTrip:
    """reverse(apply(allocation)) leaves every lot and the product unchanged."""

    @given(
        sizes=st.lists(st.integers(min_value=1, max_value=20), min_size=1, max_size=5),
        required=st.integers(min_value=1, max_value=100),
    )
    @settings(
        max_examples=25,
        deadline=None,
        suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
    )
    def test_apply_then_reverse_restores_state(
        self, create_product, create_batch, batch_ledger, batch_mutator, sizes, required,
    ):
        product = create_product()
        lots = [create_batch(product, size) for size in sizes]
        before = {lot.id: (lot.quantity, lot.status) for lot in lots}
        product_before = product.quantity

        result = batch_ledger.allocate_fifo(product.id, required)
        batch_mutator.apply(result.allocation, product.id)
        assert product.quantity == product_before - result.allocated_quantity

        batch_mutator.reverse(result.allocation, product.id)

        assert {lot.id: (lot.quantity, lot.status) for lot in lots} == before
        assert product.quantity == product_before
