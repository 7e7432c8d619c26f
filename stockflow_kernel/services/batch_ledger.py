"""
BatchLedger -- the set of dated inventory lots per product.

Responsibility:
    Creates lots, answers FIFO and expiry queries over them, flags date
    conflicts for incoming stock, and keeps ``Product.quantity`` equal to
    the sum of Active lot quantities.

Architecture position:
    Kernel > Services.  Reads and writes ``Batch`` and ``Product.quantity``.
    Delegates lot selection to the pure ``FIFOAllocator`` engine.

Invariants enforced:
    - Whenever a product has batch rows, ``Product.quantity`` equals the
      sum of its Active batch quantities after every ledger write.
    - A product's first batch absorbs any untracked aggregate quantity as
      an opening-balance lot, so the switch to lot tracking loses no stock.
    - Expired is terminal for a lot.

Failure modes:
    - ProductNotFoundError for an unknown product.
    - ValidationError for non-positive quantities or expiry before
      production.

Audit relevance:
    Every created lot records its supplier and supplier order.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Sequence

from sqlalchemy import exists, func, select
from sqlalchemy.orm import Session

from stockflow_config.settings import StockflowConfig
from stockflow_engines.fifo import (
    AlertType,
    AllocationResult,
    BatchView,
    FIFOAllocator,
    order_fifo,
)
from stockflow_kernel.domain.clock import Clock
from stockflow_kernel.exceptions import ProductNotFoundError, ValidationError
from stockflow_kernel.logging_config import get_logger
from stockflow_kernel.models.batch import Batch, BatchStatus
from stockflow_kernel.models.product import Product
from stockflow_kernel.services.base import BaseService

logger = get_logger("services.batch_ledger")

OPENING_BALANCE_NOTE = "Opening balance carried over from untracked stock"


@dataclass(frozen=True)
class ConflictingBatch:
    batch_id: int
    quantity: int
    prod_date: date | None
    exp_date: date | None


@dataclass(frozen=True)
class DateConflictAlert:
    """
    Advisory raised when incoming stock carries dates that differ from lots
    already on hand.  Never blocks the delivery.
    """

    product_id: int
    new_prod_date: date | None
    new_exp_date: date | None
    conflicting_batches: tuple[ConflictingBatch, ...]
    alert_type: AlertType = AlertType.DATE_CONFLICT

    @property
    def message(self) -> str:
        return (
            f"Product {self.product_id} has {len(self.conflicting_batches)} "
            f"active batch(es) with different production or expiry dates"
        )


@dataclass(frozen=True)
class ExpiringBatch:
    batch_id: int
    product_id: int
    product_name: str
    quantity: int
    exp_date: date
    days_until_expiry: int


def batch_view(batch: Batch) -> BatchView:
    """Frozen engine snapshot of an ORM lot."""
    return BatchView(
        batch_id=batch.id,
        product_id=batch.product_id,
        quantity=batch.quantity,
        received_date=batch.received_date,
        prod_date=batch.prod_date,
        exp_date=batch.exp_date,
        status=batch.status,
        batch_number=batch.batch_number,
    )


class BatchLedger(BaseService[Batch]):
    """
    Lot storage and queries.

    Contract:
        Flush-only.  Quantity writes on existing lots belong to
        ``BatchMutator``; this service creates lots, expires them and
        recomputes the product aggregate.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: StockflowConfig | None = None,
    ):
        super().__init__(session, clock)
        self.config = config or StockflowConfig.with_defaults()
        self._allocator = FIFOAllocator()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_batch(
        self,
        product_id: int,
        quantity: int,
        prod_date: date | None = None,
        exp_date: date | None = None,
        *,
        supplier_id: int | None = None,
        supplier_order_id: int | None = None,
        cost_price: Decimal | None = None,
        batch_number: str | None = None,
        notes: str | None = None,
    ) -> Batch:
        """
        Record a new Active lot and fold it into ``Product.quantity``.

        Raises:
            ValidationError: quantity <= 0, or exp_date before prod_date.
            ProductNotFoundError: unknown product.
        """
        if quantity <= 0:
            raise ValidationError("Batch quantity must be positive", field="quantity")
        if prod_date and exp_date and exp_date < prod_date:
            raise ValidationError(
                "Expiry date cannot be earlier than production date", field="exp_date"
            )

        product = self._get_or_raise(Product, product_id, ProductNotFoundError, lock=True)

        if not self.has_batches(product_id) and product.quantity > 0:
            self._open_untracked_balance(product)

        batch = Batch(
            product_id=product_id,
            quantity=quantity,
            original_quantity=quantity,
            prod_date=prod_date,
            exp_date=exp_date,
            batch_number=batch_number,
            received_date=self.clock.now(),
            cost_price=cost_price,
            status=BatchStatus.ACTIVE.value,
            supplier_id=supplier_id,
            supplier_order_id=supplier_order_id,
            notes=notes,
        )
        self.session.add(batch)
        self.session.flush()

        self.recompute_product_quantity(product_id)

        logger.info(
            "batch_created",
            extra={
                "batch_id": batch.id,
                "product_id": product_id,
                "quantity": quantity,
                "prod_date": prod_date,
                "exp_date": exp_date,
                "supplier_order_id": supplier_order_id,
            },
        )
        return batch

    def _open_untracked_balance(self, product: Product) -> Batch:
        opening = Batch(
            product_id=product.id,
            quantity=product.quantity,
            original_quantity=product.quantity,
            prod_date=product.prod_date,
            exp_date=product.exp_date,
            received_date=self.clock.now(),
            cost_price=product.cost_price,
            status=BatchStatus.ACTIVE.value,
            notes=OPENING_BALANCE_NOTE,
        )
        self.session.add(opening)
        self.session.flush()
        logger.info(
            "batch_opening_balance_created",
            extra={"batch_id": opening.id, "product_id": product.id, "quantity": opening.quantity},
        )
        return opening

    def recompute_product_quantity(self, product_id: int) -> int:
        """
        Set ``Product.quantity`` to the sum of its Active lots.

        Products with no batch rows are simple-quantity products and are
        left untouched.  Returns the product's quantity afterwards.
        """
        product = self._get_or_raise(Product, product_id, ProductNotFoundError)
        if not self.has_batches(product_id):
            return product.quantity

        total = self.session.execute(
            select(func.coalesce(func.sum(Batch.quantity), 0)).where(
                Batch.product_id == product_id,
                Batch.status == BatchStatus.ACTIVE.value,
            )
        ).scalar_one()

        if product.quantity != total:
            logger.debug(
                "product_quantity_recomputed",
                extra={"product_id": product_id, "previous": product.quantity, "quantity": int(total)},
            )
        product.quantity = int(total)
        self.session.flush()
        return product.quantity

    def mark_expired(self) -> list[int]:
        """
        Expire Active lots whose expiry date is before today.

        Returns:
            Ids of the lots that were expired.
        """
        today = self.clock.today()
        batches = list(
            self.session.execute(
                select(Batch)
                .where(
                    Batch.status == BatchStatus.ACTIVE.value,
                    Batch.exp_date.is_not(None),
                    Batch.exp_date < today,
                )
                .order_by(Batch.id)
                .with_for_update()
            ).scalars()
        )
        for batch in batches:
            batch.status = BatchStatus.EXPIRED.value
        self.session.flush()

        for product_id in sorted({b.product_id for b in batches}):
            self.recompute_product_quantity(product_id)

        if batches:
            logger.info(
                "batches_expired",
                extra={"batch_ids": [b.id for b in batches], "as_of": today},
            )
        return [b.id for b in batches]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_batches(self, product_id: int) -> bool:
        """Whether any lot row, in any status, exists for the product."""
        return bool(
            self.session.execute(
                select(exists().where(Batch.product_id == product_id))
            ).scalar()
        )

    def get_batches(self, product_id: int, *, lock: bool = False) -> list[Batch]:
        stmt = select(Batch).where(Batch.product_id == product_id).order_by(Batch.id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return list(self.session.execute(stmt).scalars())

    def get_allocatable_batches(self, product_id: int, *, lock: bool = False) -> list[Batch]:
        """Active lots with quantity > 0, oldest first."""
        stmt = select(Batch).where(
            Batch.product_id == product_id,
            Batch.status == BatchStatus.ACTIVE.value,
            Batch.quantity > 0,
        ).order_by(Batch.id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        rows = list(self.session.execute(stmt).scalars())
        by_id = {b.id: b for b in rows}
        return [by_id[v.batch_id] for v in order_fifo([batch_view(b) for b in rows])]

    def get_expiring_batches(self, days_ahead: int | None = None) -> list[ExpiringBatch]:
        """Active lots with stock expiring between today and today + days_ahead."""
        if days_ahead is None:
            days_ahead = self.config.inventory.near_expiry_days
        if days_ahead < 0:
            raise ValidationError("days_ahead cannot be negative", field="days_ahead")

        today = self.clock.today()
        rows = self.session.execute(
            select(Batch, Product.name)
            .join(Product, Product.id == Batch.product_id)
            .where(
                Batch.status == BatchStatus.ACTIVE.value,
                Batch.quantity > 0,
                Batch.exp_date.is_not(None),
                Batch.exp_date >= today,
                Batch.exp_date <= today + timedelta(days=days_ahead),
            )
            .order_by(Batch.exp_date, Batch.id)
        ).all()
        return [
            ExpiringBatch(
                batch_id=batch.id,
                product_id=batch.product_id,
                product_name=name,
                quantity=batch.quantity,
                exp_date=batch.exp_date,
                days_until_expiry=(batch.exp_date - today).days,
            )
            for batch, name in rows
        ]

    def check_date_conflicts(
        self,
        product_id: int,
        prod_date: date | None = None,
        exp_date: date | None = None,
    ) -> DateConflictAlert | None:
        """
        Compare incoming dates with the product's Active lots.

        Only dates that are supplied are compared; a supplied date against a
        lot with no date counts as a difference.
        """
        if prod_date is None and exp_date is None:
            return None

        conflicts = []
        for batch in self.get_allocatable_batches(product_id):
            differs = (prod_date is not None and batch.prod_date != prod_date) or (
                exp_date is not None and batch.exp_date != exp_date
            )
            if differs:
                conflicts.append(ConflictingBatch(
                    batch_id=batch.id,
                    quantity=batch.quantity,
                    prod_date=batch.prod_date,
                    exp_date=batch.exp_date,
                ))

        if not conflicts:
            return None

        alert = DateConflictAlert(
            product_id=product_id,
            new_prod_date=prod_date,
            new_exp_date=exp_date,
            conflicting_batches=tuple(conflicts),
        )
        logger.warning(
            "batch_date_conflict_detected",
            extra={
                "product_id": product_id,
                "conflicting_batch_ids": [c.batch_id for c in conflicts],
                "new_prod_date": prod_date,
                "new_exp_date": exp_date,
            },
        )
        return alert

    def allocate_fifo(
        self,
        product_id: int,
        quantity: int,
        *,
        lock: bool = False,
    ) -> AllocationResult:
        """
        Read the product's lots and run the FIFO allocator over them.

        Raises:
            ProductNotFoundError: unknown product.
            ValidationError: quantity <= 0.
        """
        if quantity <= 0:
            raise ValidationError("Allocation quantity must be positive", field="quantity")
        product = self._get_or_raise(Product, product_id, ProductNotFoundError, lock=lock)
        batches: Sequence[Batch] = self.get_batches(product_id, lock=lock)
        return self._allocator.allocate(
            product_id=product_id,
            required_quantity=quantity,
            batches=[batch_view(b) for b in batches],
            as_of=self.clock.today(),
            product_quantity=product.quantity,
            lot_tracked=bool(batches),
            near_expiry_days=self.config.inventory.near_expiry_days,
        )
