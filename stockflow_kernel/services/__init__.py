"""Kernel services -- flush-only writers over the inventory ledger and audit log."""

from stockflow_kernel.services.activity_log_service import ActivityLogService
from stockflow_kernel.services.base import BaseService
from stockflow_kernel.services.batch_ledger import (
    BatchLedger,
    ConflictingBatch,
    DateConflictAlert,
    ExpiringBatch,
    batch_view,
)
from stockflow_kernel.services.batch_mutator import BatchMutator

__all__ = [
    "ActivityLogService",
    "BaseService",
    "BatchLedger",
    "BatchMutator",
    "ConflictingBatch",
    "DateConflictAlert",
    "ExpiringBatch",
    "batch_view",
]
