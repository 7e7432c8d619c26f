"""
Module: stockflow_engines.fifo
Responsibility:
    Select inventory lots oldest-first to cover a required quantity and
    report feasibility plus advisory alerts.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Lots arrive as frozen
    ``BatchView`` snapshots; the caller supplies ``as_of`` instead of the
    engine reading a clock.

Invariants enforced:
    - Ordering: (prod_date ascending with unknown dates last,
      received_date ascending, batch_id ascending).
    - Conservation: sum(allocation) == min(required, total_available) and
      no line exceeds its lot's quantity.
    - Only Active lots with quantity > 0 are eligible.
    - A product with no lot records at all is reported in simple-quantity
      mode: feasibility comes from the product's aggregate quantity and
      the allocation is empty.

Failure modes:
    - ValueError if required_quantity <= 0.
    - ValueError from BatchView on negative quantity.

Usage:
    from stockflow_engines.fifo import BatchView, FIFOAllocator

    result = FIFOAllocator().allocate(
        product_id=7,
        required_quantity=8,
        batches=[b1, b2],
        as_of=date(2024, 3, 1),
    )
    if result.can_fulfill:
        mutator.apply(result.allocation, product_id=7)
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum

from stockflow_engines.tracer import traced_engine
from stockflow_kernel.logging_config import get_logger

logger = get_logger("engines.fifo")

DEFAULT_NEAR_EXPIRY_DAYS = 30


class AlertType(str, Enum):
    """Advisory conditions returned alongside a successful result."""

    MULTIPLE_BATCHES = "MULTIPLE_BATCHES"
    NEAR_EXPIRY = "NEAR_EXPIRY"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    NO_STOCK = "NO_STOCK"
    SIMPLE_QUANTITY = "SIMPLE_QUANTITY"
    DATE_CONFLICT = "DATE_CONFLICT"


@dataclass(frozen=True)
class BatchView:
    """
    Read-only snapshot of one lot.

    Guarantees:
        - ``quantity`` is non-negative.
    """

    batch_id: int
    product_id: int
    quantity: int
    received_date: datetime
    prod_date: date | None = None
    exp_date: date | None = None
    status: str = "Active"
    batch_number: str | None = None

    def __post_init__(self) -> None:
        if self.quantity < 0:
            logger.error("batch_view_negative_quantity", extra={
                "batch_id": self.batch_id,
                "quantity": self.quantity,
            })
            raise ValueError(f"Batch {self.batch_id} quantity cannot be negative")

    @property
    def is_allocatable(self) -> bool:
        return self.status == "Active" and self.quantity > 0

    def days_until_expiry(self, as_of: date) -> int | None:
        if self.exp_date is None:
            return None
        return (self.exp_date - as_of).days

    def fifo_key(self) -> tuple:
        received = self.received_date
        if received.tzinfo is None:
            received = received.replace(tzinfo=timezone.utc)
        return (
            self.prod_date is None,
            self.prod_date or date.min,
            received,
            self.batch_id,
        )


@dataclass(frozen=True)
class AllocationLine:
    """Take ``quantity`` units from lot ``batch_id``."""

    batch_id: int
    quantity: int

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError(
                f"Allocation quantity for batch {self.batch_id} must be positive"
            )


@dataclass(frozen=True)
class AllocationAlert:
    alert_type: AlertType
    message: str
    batch_ids: tuple[int, ...] = ()
    days_until_expiry: int | None = None


@dataclass(frozen=True)
class AllocationResult:
    """
    Outcome of one FIFO walk.

    Guarantees:
        - ``allocated_quantity == min(required_quantity, total_available)``
          in lot-tracked mode.
        - ``can_fulfill`` is True exactly when
          ``total_available >= required_quantity``.
        - In simple-quantity mode ``allocation`` is empty.
    """

    product_id: int
    required_quantity: int
    can_fulfill: bool
    allocation: tuple[AllocationLine, ...]
    total_available: int
    alerts: tuple[AllocationAlert, ...] = field(default_factory=tuple)
    simple_quantity: bool = False

    @property
    def allocated_quantity(self) -> int:
        return sum(line.quantity for line in self.allocation)

    @property
    def alert_types(self) -> frozenset[AlertType]:
        return frozenset(a.alert_type for a in self.alerts)

    def has_alert(self, alert_type: AlertType) -> bool:
        return alert_type in self.alert_types

    @property
    def batch_count(self) -> int:
        return len(self.allocation)


def order_fifo(batches: Sequence[BatchView]) -> list[BatchView]:
    """Allocatable lots in FIFO order."""
    return sorted((b for b in batches if b.is_allocatable), key=BatchView.fifo_key)


def _trace_summary(result: AllocationResult) -> dict:
    return {
        "can_fulfill": result.can_fulfill,
        "allocated_quantity": result.allocated_quantity,
        "batch_count": result.batch_count,
        "alerts": sorted(a.value for a in result.alert_types),
        "simple_quantity": result.simple_quantity,
    }


class FIFOAllocator:
    """
    Oldest-first lot selection.

    Contract:
        Pure function of its inputs.  No I/O, no clock access.
    Non-goals:
        - Does not mutate lots; BatchMutator applies the result.
        - Does not validate caller-supplied manual allocations.
    """

    @traced_engine(
        "fifo_allocator", "1.0",
        fingerprint_fields=(
            "product_id", "required_quantity", "batches", "as_of",
            "product_quantity", "lot_tracked", "near_expiry_days",
        ),
        summarize=_trace_summary,
    )
    def allocate(
        self,
        *,
        product_id: int,
        required_quantity: int,
        batches: Sequence[BatchView],
        as_of: date,
        product_quantity: int = 0,
        lot_tracked: bool | None = None,
        near_expiry_days: int = DEFAULT_NEAR_EXPIRY_DAYS,
    ) -> AllocationResult:
        """
        Allocate ``required_quantity`` units of ``product_id``.

        Args:
            product_id: Product being allocated.
            required_quantity: Positive number of units needed.
            batches: The product's lots.  Non-allocatable lots are ignored.
            as_of: Date used for the near-expiry horizon.
            product_quantity: Aggregate product quantity, used only in
                simple-quantity mode.
            lot_tracked: Whether any lot record exists for the product,
                in any status.  Defaults to ``bool(batches)``.
            near_expiry_days: Horizon for NEAR_EXPIRY.

        Returns:
            AllocationResult.
        """
        if required_quantity <= 0:
            raise ValueError("required_quantity must be positive")

        if lot_tracked is None:
            lot_tracked = bool(batches)

        if not lot_tracked:
            return self._simple_quantity(product_id, required_quantity, product_quantity)

        ordered = order_fifo(batches)
        total_available = sum(b.quantity for b in ordered)

        lines: list[AllocationLine] = []
        used: list[BatchView] = []
        remaining = required_quantity
        for batch in ordered:
            if remaining <= 0:
                break
            take = min(remaining, batch.quantity)
            lines.append(AllocationLine(batch_id=batch.batch_id, quantity=take))
            used.append(batch)
            remaining -= take

        can_fulfill = total_available >= required_quantity
        alerts = self._stock_alerts(required_quantity, total_available)

        if len(lines) > 1:
            alerts.append(AllocationAlert(
                alert_type=AlertType.MULTIPLE_BATCHES,
                message=f"Allocation spans {len(lines)} batches",
                batch_ids=tuple(line.batch_id for line in lines),
            ))

        near = [
            (b.batch_id, b.days_until_expiry(as_of))
            for b in used
            if b.exp_date is not None and b.days_until_expiry(as_of) <= near_expiry_days
        ]
        if near:
            soonest = min(days for _, days in near)
            alerts.append(AllocationAlert(
                alert_type=AlertType.NEAR_EXPIRY,
                message=f"{len(near)} allocated batch(es) expire within {near_expiry_days} days",
                batch_ids=tuple(batch_id for batch_id, _ in near),
                days_until_expiry=soonest,
            ))

        result = AllocationResult(
            product_id=product_id,
            required_quantity=required_quantity,
            can_fulfill=can_fulfill,
            allocation=tuple(lines),
            total_available=total_available,
            alerts=tuple(alerts),
        )

        logger.info("fifo_allocation_computed", extra={
            "product_id": product_id,
            "required_quantity": required_quantity,
            "total_available": total_available,
            "can_fulfill": can_fulfill,
            "batch_count": len(lines),
            "alerts": sorted(a.value for a in result.alert_types),
        })
        return result

    def _simple_quantity(
        self, product_id: int, required_quantity: int, product_quantity: int,
    ) -> AllocationResult:
        available = max(product_quantity, 0)
        alerts = [AllocationAlert(
            alert_type=AlertType.SIMPLE_QUANTITY,
            message="Product has no batch records; using aggregate quantity",
        )]
        alerts.extend(self._stock_alerts(required_quantity, available))
        logger.info("fifo_allocation_simple_quantity", extra={
            "product_id": product_id,
            "required_quantity": required_quantity,
            "product_quantity": available,
        })
        return AllocationResult(
            product_id=product_id,
            required_quantity=required_quantity,
            can_fulfill=available >= required_quantity,
            allocation=(),
            total_available=available,
            alerts=tuple(alerts),
            simple_quantity=True,
        )

    @staticmethod
    def _stock_alerts(required: int, available: int) -> list[AllocationAlert]:
        alerts: list[AllocationAlert] = []
        if available == 0:
            alerts.append(AllocationAlert(
                alert_type=AlertType.NO_STOCK,
                message="No stock available",
            ))
        if available < required:
            alerts.append(AllocationAlert(
                alert_type=AlertType.INSUFFICIENT_STOCK,
                message=f"Required {required}, available {available}",
            ))
        return alerts
