"""
Module: stockflow_engines
Responsibility:
    Re-exports the pure calculation engines.

Architecture position:
    Engines -- zero I/O.  May import stockflow_kernel.domain, logging and
    exceptions.  MUST NOT import stockflow_kernel.db, models, services or
    stockflow_modules.

Invariants enforced:
    - Engines never read the clock; callers pass ``as_of``.
    - Identical inputs produce identical outputs.
"""

from stockflow_engines.fifo import (
    AlertType,
    AllocationAlert,
    AllocationLine,
    AllocationResult,
    BatchView,
    FIFOAllocator,
    order_fifo,
)
from stockflow_engines.snapshot import (
    SNAPSHOT_VERSION,
    AllocationMethodTag,
    BatchAllocationSnapshot,
    SnapshotEntry,
)
from stockflow_engines.tracer import traced_engine

__all__ = [
    "AlertType",
    "AllocationAlert",
    "AllocationLine",
    "AllocationResult",
    "BatchView",
    "FIFOAllocator",
    "order_fifo",
    "SNAPSHOT_VERSION",
    "AllocationMethodTag",
    "BatchAllocationSnapshot",
    "SnapshotEntry",
    "traced_engine",
]
