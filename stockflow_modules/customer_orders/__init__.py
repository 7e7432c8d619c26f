"""Customer orders module -- placement, preparation, cancellation and debt."""

from stockflow_modules.customer_orders.models import (
    AllocationMethod,
    CancellationReason,
    CancelRole,
    ItemPreview,
    ManualAllocation,
    OrderLineRequest,
    PreparationStart,
)
from stockflow_modules.customer_orders.service import CustomerOrderService
from stockflow_modules.customer_orders.workflows import CUSTOMER_ORDER_WORKFLOW

__all__ = [
    "AllocationMethod",
    "CancellationReason",
    "CancelRole",
    "ItemPreview",
    "ManualAllocation",
    "OrderLineRequest",
    "PreparationStart",
    "CustomerOrderService",
    "CUSTOMER_ORDER_WORKFLOW",
]
