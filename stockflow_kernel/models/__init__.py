"""ORM models.  Importing this package registers every table on Base.metadata."""

from stockflow_kernel.models.activity_log import OrderActivityLog, OrderType
from stockflow_kernel.models.batch import Batch, BatchStatus
from stockflow_kernel.models.courier import Courier, DeliveryRecord, DeliveryStatus
from stockflow_kernel.models.customer import Customer
from stockflow_kernel.models.customer_order import (
    INVENTORY_COMMITTED_STATUSES,
    CustomerOrder,
    CustomerOrderItem,
    CustomerOrderStatus,
    OrderPreparer,
    PaymentMethod,
    PreparerStatus,
)
from stockflow_kernel.models.product import Product
from stockflow_kernel.models.supplier import (
    PriceListStatus,
    Supplier,
    SupplierItemStatus,
    SupplierOrder,
    SupplierOrderItem,
    SupplierOrderStatus,
    SupplierProductPrice,
)

__all__ = [
    "Product",
    "Batch",
    "BatchStatus",
    "Customer",
    "CustomerOrder",
    "CustomerOrderItem",
    "CustomerOrderStatus",
    "OrderPreparer",
    "PaymentMethod",
    "PreparerStatus",
    "INVENTORY_COMMITTED_STATUSES",
    "Supplier",
    "SupplierProductPrice",
    "SupplierOrder",
    "SupplierOrderItem",
    "SupplierOrderStatus",
    "SupplierItemStatus",
    "PriceListStatus",
    "Courier",
    "DeliveryRecord",
    "DeliveryStatus",
    "OrderActivityLog",
    "OrderType",
]
