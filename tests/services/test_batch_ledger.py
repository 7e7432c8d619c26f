"""
Tests for BatchLedger.

Covers lot creation, the product quantity aggregate, expiry, date-conflict
detection and the FIFO read path over persisted lots.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from stockflow_engines.fifo import AlertType, AllocationLine
from stockflow_kernel.exceptions import ProductNotFoundError, ValidationError
from stockflow_kernel.models import BatchStatus
from stockflow_kernel.services.batch_ledger import OPENING_BALANCE_NOTE


class TestCreateBatch:

    def test_creates_active_lot_and_updates_product(self, create_product, batch_ledger):
        product = create_product()

        batch = batch_ledger.create_batch(
            product.id, 12, date(2023, 12, 1), date(2024, 6, 1),
            cost_price=Decimal("1.20"), batch_number="L-1",
        )

        assert batch.status == BatchStatus.ACTIVE.value
        assert batch.quantity == batch.original_quantity == 12
        assert batch.batch_number == "L-1"
        assert product.quantity == 12

    def test_received_date_comes_from_clock(self, create_product, batch_ledger, deterministic_clock):
        product = create_product()

        batch = batch_ledger.create_batch(product.id, 1)

        assert batch.received_date == deterministic_clock.now()

    @pytest.mark.parametrize("quantity", [0, -3])
    def test_non_positive_quantity_rejected(self, create_product, batch_ledger, quantity):
        product = create_product()

        with pytest.raises(ValidationError, match="must be positive"):
            batch_ledger.create_batch(product.id, quantity)

    def test_expiry_before_production_rejected(self, create_product, batch_ledger):
        product = create_product()

        with pytest.raises(ValidationError) as exc_info:
            batch_ledger.create_batch(product.id, 5, date(2024, 2, 1), date(2024, 1, 1))
        assert exc_info.value.field == "exp_date"

    def test_unknown_product(self, batch_ledger):
        with pytest.raises(ProductNotFoundError):
            batch_ledger.create_batch(999_999, 5)

    def test_first_lot_absorbs_untracked_stock(self, create_product, batch_ledger):
        product = create_product(quantity=7)

        batch_ledger.create_batch(product.id, 5)

        lots = batch_ledger.get_batches(product.id)
        assert [b.quantity for b in lots] == [7, 5]
        assert lots[0].notes == OPENING_BALANCE_NOTE
        assert product.quantity == 12

    def test_later_lots_do_not_open_balance_again(self, create_product, create_batch, batch_ledger):
        product = create_product(quantity=3)
        create_batch(product, 4)
        create_batch(product, 6)

        assert len(batch_ledger.get_batches(product.id)) == 3
        assert product.quantity == 13

    def test_logs_creation(self, create_product, batch_ledger, captured_logs):
        product = create_product()

        batch = batch_ledger.create_batch(product.id, 2)

        created = [r for r in captured_logs() if r["message"] == "batch_created"]
        assert created and created[-1]["batch_id"] == batch.id


class TestRecompute:

    def test_sums_active_lots_only(self, create_product, create_batch, batch_ledger, batch_mutator):
        product = create_product()
        a = create_batch(product, 5)
        create_batch(product, 4)
        batch_mutator.apply([AllocationLine(a.id, 5)], product.id)

        product.quantity = 100  # drift
        assert batch_ledger.recompute_product_quantity(product.id) == 4

    def test_simple_product_untouched(self, create_product, batch_ledger):
        product = create_product(quantity=9)

        assert batch_ledger.recompute_product_quantity(product.id) == 9
        assert not batch_ledger.has_batches(product.id)


class TestExpiry:

    def test_mark_expired_excludes_lot_from_stock(self, create_product, create_batch, batch_ledger):
        product = create_product()
        stale = create_batch(product, 5, exp_date=date(2023, 12, 31))
        fresh = create_batch(product, 3, exp_date=date(2024, 5, 1))

        expired = batch_ledger.mark_expired()

        assert expired == [stale.id]
        assert stale.status == BatchStatus.EXPIRED.value
        assert fresh.status == BatchStatus.ACTIVE.value
        assert product.quantity == 3

    def test_expiring_today_is_not_expired(self, create_product, create_batch, batch_ledger, deterministic_clock):
        product = create_product()
        create_batch(product, 5, exp_date=deterministic_clock.today())

        assert batch_ledger.mark_expired() == []

    def test_expiring_batches_window(self, create_product, create_batch, batch_ledger, deterministic_clock):
        product = create_product(name="Yogurt")
        today = deterministic_clock.today()
        soon = create_batch(product, 5, exp_date=today + timedelta(days=3))
        create_batch(product, 5, exp_date=today + timedelta(days=90))
        create_batch(product, 5)

        report = batch_ledger.get_expiring_batches()

        assert [r.batch_id for r in report] == [soon.id]
        assert report[0].days_until_expiry == 3
        assert report[0].product_name == "Yogurt"

    def test_expiring_batches_rejects_negative_window(self, batch_ledger):
        with pytest.raises(ValidationError):
            batch_ledger.get_expiring_batches(-1)


class TestDateConflicts:

    def test_differing_dates_flagged(self, create_product, create_batch, batch_ledger):
        product = create_product()
        existing = create_batch(product, 5, date(2023, 11, 1), date(2024, 3, 1))

        alert = batch_ledger.check_date_conflicts(product.id, date(2023, 12, 1), date(2024, 4, 1))

        assert alert is not None
        assert alert.alert_type == AlertType.DATE_CONFLICT
        assert [c.batch_id for c in alert.conflicting_batches] == [existing.id]
        assert "1 active batch" in alert.message

    def test_matching_dates_not_flagged(self, create_product, create_batch, batch_ledger):
        product = create_product()
        create_batch(product, 5, date(2023, 11, 1), date(2024, 3, 1))

        assert batch_ledger.check_date_conflicts(product.id, date(2023, 11, 1), date(2024, 3, 1)) is None

    def test_no_dates_supplied_never_conflicts(self, create_product, create_batch, batch_ledger):
        product = create_product()
        create_batch(product, 5, date(2023, 11, 1), date(2024, 3, 1))

        assert batch_ledger.check_date_conflicts(product.id) is None

    def test_depleted_lots_ignored(self, create_product, create_batch, batch_ledger, batch_mutator):
        product = create_product()
        old = create_batch(product, 5, date(2023, 11, 1))
        batch_mutator.apply([AllocationLine(old.id, 5)], product.id)

        assert batch_ledger.check_date_conflicts(product.id, date(2023, 12, 1)) is None


class TestAllocateFifo:

    def test_reads_persisted_lots_in_fifo_order(self, create_product, create_batch, batch_ledger):
        product = create_product()
        newer = create_batch(product, 5, date(2023, 12, 1))
        older = create_batch(product, 5, date(2023, 11, 1))

        result = batch_ledger.allocate_fifo(product.id, 7)

        assert result.allocation == (
            AllocationLine(older.id, 5),
            AllocationLine(newer.id, 2),
        )

    def test_simple_product(self, create_product, batch_ledger):
        product = create_product(quantity=4)

        result = batch_ledger.allocate_fifo(product.id, 3)

        assert result.simple_quantity
        assert result.can_fulfill

    @pytest.mark.parametrize("quantity", [0, -3])
    def test_non_positive_demand_rejected(self, create_product, create_batch, batch_ledger, quantity):
        product = create_product()
        create_batch(product, 5)

        with pytest.raises(ValidationError, match="must be positive"):
            batch_ledger.allocate_fifo(product.id, quantity)

    def test_fully_depleted_product_stays_lot_tracked(
        self, create_product, create_batch, batch_ledger, batch_mutator,
    ):
        product = create_product()
        lot = create_batch(product, 2)
        batch_mutator.apply([AllocationLine(lot.id, 2)], product.id)

        result = batch_ledger.allocate_fifo(product.id, 1)

        assert not result.simple_quantity
        assert result.has_alert(AlertType.NO_STOCK)

    def test_allocatable_batches_in_fifo_order(self, create_product, create_batch, batch_ledger):
        product = create_product()
        undated = create_batch(product, 1)
        dated = create_batch(product, 1, date(2023, 10, 1))

        assert [b.id for b in batch_ledger.get_allocatable_batches(product.id)] == [dated.id, undated.id]
