"""
Module: stockflow_engines.snapshot
Responsibility:
    Typed codec for the batch allocation recorded on a customer order when
    preparation completes.

Wire shape (persisted in ``customer_orders.batch_allocation``)::

    [
      {"productId": 3, "productName": "Milk", "requiredQuantity": 8,
       "method": "auto_fifo",
       "allocation": [{"batchId": 11, "quantity": 5},
                      {"batchId": 12, "quantity": 3}]},
      ...
    ]

``productId`` and ``allocation[].batchId/quantity`` are the fields that
restoration reads; the others are descriptive.  The schema version lives in
the sibling column ``batch_allocation_version``.

Invariants enforced:
    - Every entry of a lot-tracked method allocates exactly its
      requiredQuantity when that key is present.
    - simple_quantity entries carry an empty allocation list.

Failure modes:
    - InvalidAllocationSnapshotError on unknown version, wrong types,
      missing keys, or non-positive quantities.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from stockflow_engines.fifo import AllocationLine
from stockflow_kernel.exceptions import InvalidAllocationSnapshotError

SNAPSHOT_VERSION = 1
SUPPORTED_VERSIONS = frozenset({1})


class AllocationMethodTag(str, Enum):
    AUTO_FIFO = "auto_fifo"
    MANUAL_BATCHES = "manual_batches"
    SIMPLE_QUANTITY = "simple_quantity"


@dataclass(frozen=True)
class SnapshotEntry:
    product_id: int
    allocation: tuple[AllocationLine, ...]
    method: AllocationMethodTag
    required_quantity: int
    product_name: str | None = None

    @property
    def allocated_quantity(self) -> int:
        return sum(line.quantity for line in self.allocation)

    @property
    def is_simple(self) -> bool:
        return self.method is AllocationMethodTag.SIMPLE_QUANTITY

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "productId": self.product_id,
            "allocation": [
                {"batchId": line.batch_id, "quantity": line.quantity}
                for line in self.allocation
            ],
            "method": self.method.value,
            "requiredQuantity": self.required_quantity,
        }
        if self.product_name is not None:
            data["productName"] = self.product_name
        return data


@dataclass(frozen=True)
class BatchAllocationSnapshot:
    """The full set of allocations applied when an order was prepared."""

    entries: tuple[SnapshotEntry, ...]
    version: int = SNAPSHOT_VERSION

    @classmethod
    def of(cls, entries: Iterable[SnapshotEntry]) -> BatchAllocationSnapshot:
        return cls(entries=tuple(entries))

    def to_json(self) -> list[dict[str, Any]]:
        return [entry.to_json() for entry in self.entries]

    @property
    def total_quantity(self) -> int:
        return sum(e.required_quantity for e in self.entries)

    @classmethod
    def from_json(cls, data: Any, version: int | None) -> BatchAllocationSnapshot:
        """
        Parse a persisted snapshot.

        Raises:
            InvalidAllocationSnapshotError: If the payload does not match
                the version's schema.
        """
        if version not in SUPPORTED_VERSIONS:
            raise InvalidAllocationSnapshotError(f"unsupported version {version!r}", version)
        if not isinstance(data, list):
            raise InvalidAllocationSnapshotError("payload is not a list", version)
        return cls(entries=tuple(_parse_entry(raw, version) for raw in data), version=version)


def _int_field(raw: dict, key: str, version: int) -> int:
    value = raw.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAllocationSnapshotError(f"{key} must be an integer, got {value!r}", version)
    return value


def _parse_entry(raw: Any, version: int) -> SnapshotEntry:
    if not isinstance(raw, dict):
        raise InvalidAllocationSnapshotError("entry is not an object", version)

    product_id = _int_field(raw, "productId", version)
    lines_raw = raw.get("allocation")
    if not isinstance(lines_raw, list):
        raise InvalidAllocationSnapshotError(
            f"allocation for product {product_id} is not a list", version
        )

    lines = []
    for line in lines_raw:
        if not isinstance(line, dict):
            raise InvalidAllocationSnapshotError("allocation line is not an object", version)
        quantity = _int_field(line, "quantity", version)
        if quantity <= 0:
            raise InvalidAllocationSnapshotError(
                f"non-positive quantity for product {product_id}", version
            )
        lines.append(AllocationLine(batch_id=_int_field(line, "batchId", version), quantity=quantity))

    try:
        method = AllocationMethodTag(raw.get("method", AllocationMethodTag.AUTO_FIFO.value))
    except ValueError:
        raise InvalidAllocationSnapshotError(f"unknown method {raw.get('method')!r}", version)

    allocated = sum(line.quantity for line in lines)
    required = raw.get("requiredQuantity", allocated)
    if isinstance(required, bool) or not isinstance(required, int):
        raise InvalidAllocationSnapshotError("requiredQuantity must be an integer", version)

    if method is AllocationMethodTag.SIMPLE_QUANTITY:
        if lines:
            raise InvalidAllocationSnapshotError(
                f"simple_quantity entry for product {product_id} has batch lines", version
            )
    elif allocated != required:
        raise InvalidAllocationSnapshotError(
            f"product {product_id} allocates {allocated} of {required}", version
        )

    return SnapshotEntry(
        product_id=product_id,
        allocation=tuple(lines),
        method=method,
        required_quantity=required,
        product_name=raw.get("productName"),
    )
