"""
BatchMutator -- applies and reverses allocations against the lot ledger.

Responsibility:
    Decrements lots for an allocation and restores them on reversal, keeping
    ``Product.quantity`` in step within the same transaction.  Simple-quantity
    products (no lot rows) are adjusted on ``Product.quantity`` alone.

Invariants enforced:
    - No lot goes below 0; an over-draw raises before any write.
    - Active lots reaching 0 become Depleted; Depleted lots receiving stock
      become Active again; Expired lots stay Expired.
    - ``Product.quantity`` changes by exactly the quantity moved on Active
      or Depleted lots, so it keeps matching the Active lot total.
    - reverse(apply(A)) restores every touched lot and product.

Failure modes:
    - BatchNotFoundError if a line names a missing lot.
    - InvalidBatchError if a line names another product's lot, a
      non-Active lot on apply, or would over-draw a lot.
    - InsufficientStockError if a simple-quantity deduction exceeds the
      product's quantity.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Iterable

from sqlalchemy import select

from stockflow_engines.fifo import AllocationLine
from stockflow_kernel.exceptions import (
    BatchNotFoundError,
    InsufficientStockError,
    InvalidBatchError,
    ProductNotFoundError,
    ValidationError,
)
from stockflow_kernel.logging_config import get_logger
from stockflow_kernel.models.batch import Batch, BatchStatus
from stockflow_kernel.models.product import Product
from stockflow_kernel.services.base import BaseService

logger = get_logger("services.batch_mutator")


def _merge_lines(allocation: Iterable[AllocationLine]) -> "OrderedDict[int, int]":
    merged: OrderedDict[int, int] = OrderedDict()
    for line in allocation:
        merged[line.batch_id] = merged.get(line.batch_id, 0) + line.quantity
    return merged


class BatchMutator(BaseService[Batch]):
    """Lot quantity writes.  Flush-only."""

    def _lock_batches(self, product_id: int, batch_ids: Iterable[int]) -> dict[int, Batch]:
        # Lock in id order so concurrent writers queue rather than deadlock
        ids = sorted(set(batch_ids))
        rows = self.session.execute(
            select(Batch)
            .where(Batch.id.in_(ids))
            .order_by(Batch.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars()
        found = {b.id: b for b in rows}
        for batch_id in ids:
            batch = found.get(batch_id)
            if batch is None:
                raise BatchNotFoundError(batch_id)
            if batch.product_id != product_id:
                raise InvalidBatchError(
                    batch_id, product_id, f"batch belongs to product {batch.product_id}"
                )
        return found

    def apply(self, allocation: Iterable[AllocationLine], product_id: int) -> int:
        """
        Deduct ``allocation`` from the product's lots.

        Returns:
            Total quantity deducted.  An empty allocation is a no-op.
        """
        merged = _merge_lines(allocation)
        if not merged:
            return 0

        product = self._get_or_raise(Product, product_id, ProductNotFoundError, lock=True)
        batches = self._lock_batches(product_id, merged)

        for batch_id, quantity in merged.items():
            batch = batches[batch_id]
            if batch.status != BatchStatus.ACTIVE.value:
                raise InvalidBatchError(batch_id, product_id, f"batch is {batch.status}")
            if quantity > batch.quantity:
                raise InvalidBatchError(
                    batch_id,
                    product_id,
                    f"requested {quantity} exceeds remaining {batch.quantity}",
                )

        total = 0
        for batch_id, quantity in merged.items():
            batch = batches[batch_id]
            batch.quantity -= quantity
            if batch.quantity == 0:
                batch.status = BatchStatus.DEPLETED.value
            total += quantity

        if total > product.quantity:
            raise InsufficientStockError(product_id, total, product.quantity)
        product.quantity -= total
        self.session.flush()

        logger.info(
            "allocation_applied",
            extra={
                "product_id": product_id,
                "quantity": total,
                "batch_ids": list(merged),
                "product_quantity": product.quantity,
            },
        )
        return total

    def reverse(self, allocation: Iterable[AllocationLine], product_id: int) -> int:
        """
        Return ``allocation`` to the lots it was taken from.

        Returns:
            Total quantity returned to lots.
        """
        merged = _merge_lines(allocation)
        if not merged:
            return 0

        product = self._get_or_raise(Product, product_id, ProductNotFoundError, lock=True)
        batches = self._lock_batches(product_id, merged)

        total = 0
        for batch_id, quantity in merged.items():
            batch = batches[batch_id]
            batch.quantity += quantity
            total += quantity
            if batch.status == BatchStatus.EXPIRED.value:
                continue
            batch.status = BatchStatus.ACTIVE.value
            product.quantity += quantity

        self.session.flush()

        logger.info(
            "allocation_reversed",
            extra={
                "product_id": product_id,
                "quantity": total,
                "batch_ids": list(merged),
                "product_quantity": product.quantity,
            },
        )
        return total

    def deduct_simple(self, product_id: int, quantity: int) -> int:
        """Deduct from a product that has no lot rows."""
        if quantity <= 0:
            raise ValidationError("quantity must be positive", field="quantity")
        product = self._get_or_raise(Product, product_id, ProductNotFoundError, lock=True)
        if quantity > product.quantity:
            raise InsufficientStockError(product_id, quantity, product.quantity)
        product.quantity -= quantity
        self.session.flush()
        logger.info(
            "simple_quantity_deducted",
            extra={"product_id": product_id, "quantity": quantity, "product_quantity": product.quantity},
        )
        return product.quantity

    def restore_simple(self, product_id: int, quantity: int) -> int:
        if quantity <= 0:
            raise ValidationError("quantity must be positive", field="quantity")
        product = self._get_or_raise(Product, product_id, ProductNotFoundError, lock=True)
        product.quantity += quantity
        self.session.flush()
        logger.info(
            "simple_quantity_restored",
            extra={"product_id": product_id, "quantity": quantity, "product_quantity": product.quantity},
        )
        return product.quantity
