"""
Customer Order Domain Models.

Request and result value objects exchanged with CustomerOrderService.
ORM entities live in ``stockflow_kernel.models.customer_order``.
"""

from dataclasses import dataclass, field
from enum import Enum

from stockflow_engines.fifo import AlertType, AllocationAlert, AllocationLine
from stockflow_kernel.exceptions import ValidationError


class AllocationMethod(str, Enum):
    AUTO_FIFO = "auto_fifo"
    MANUAL_BATCHES = "manual_batches"


class CancelRole(str, Enum):
    ADMIN = "admin"
    CUSTOMER = "customer"
    COURIER = "courier"


class CancellationReason(str, Enum):
    CUSTOMER_REQUEST = "customer_request"
    OUT_OF_STOCK = "out_of_stock"
    PAYMENT_ISSUE = "payment_issue"
    ADDRESS_ISSUE = "address_issue"
    CUSTOMER_UNAVAILABLE = "customer_unavailable"
    ADMINISTRATIVE_DECISION = "administrative_decision"
    QUALITY_ISSUE = "quality_issue"
    DELIVERY_EMERGENCY = "delivery_emergency"
    VEHICLE_BREAKDOWN = "vehicle_breakdown"
    SAFETY_CONCERN = "safety_concern"
    OTHER = "other"


CRITICAL_ALERTS = frozenset({AlertType.INSUFFICIENT_STOCK, AlertType.NO_STOCK})


@dataclass(frozen=True)
class OrderLineRequest:
    """A requested order line."""
    product_id: int
    quantity: int

    def __post_init__(self):
        if self.quantity <= 0:
            raise ValidationError(
                f"Quantity for product {self.product_id} must be positive",
                field="quantity",
            )


@dataclass(frozen=True)
class ManualAllocation:
    """A worker-chosen slice of one batch for one order item."""
    product_id: int
    batch_id: int
    quantity: int

    def __post_init__(self):
        if self.quantity <= 0:
            raise ValidationError(
                f"Manual allocation for batch {self.batch_id} must be positive",
                field="manual_allocations",
            )

    def to_line(self) -> AllocationLine:
        return AllocationLine(batch_id=self.batch_id, quantity=self.quantity)


@dataclass(frozen=True)
class ItemPreview:
    """FIFO recommendation for one order item, computed without writing."""
    product_id: int
    product_name: str
    required_quantity: int
    available_quantity: int
    can_fulfill: bool
    allocation: tuple[AllocationLine, ...]
    alerts: tuple[AllocationAlert, ...] = ()
    simple_quantity: bool = False
    active_batch_count: int = 0

    @property
    def has_critical_alerts(self) -> bool:
        return any(a.alert_type in CRITICAL_ALERTS for a in self.alerts)


@dataclass(frozen=True)
class PreparationStart:
    """Result of a worker starting (or joining) an order's preparation."""
    order_id: int
    worker_id: object
    joined_existing: bool
    items: tuple[ItemPreview, ...] = field(default_factory=tuple)

    @property
    def can_auto_complete(self) -> bool:
        return all(item.can_fulfill for item in self.items)

    @property
    def has_critical_alerts(self) -> bool:
        return any(item.has_critical_alerts for item in self.items)
