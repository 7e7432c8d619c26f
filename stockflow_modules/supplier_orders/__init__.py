"""Supplier orders module -- restock placement, supplier response and receipt."""

from stockflow_modules.supplier_orders.models import (
    DeliveryReceipt,
    ItemDecision,
    ReceivedItem,
    SupplierLineRequest,
)
from stockflow_modules.supplier_orders.service import SupplierOrderService
from stockflow_modules.supplier_orders.workflows import SUPPLIER_ORDER_WORKFLOW

__all__ = [
    "DeliveryReceipt",
    "ItemDecision",
    "ReceivedItem",
    "SupplierLineRequest",
    "SupplierOrderService",
    "SUPPLIER_ORDER_WORKFLOW",
]
