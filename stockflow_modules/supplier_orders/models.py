"""
Supplier Order Domain Models.

Request and result value objects exchanged with SupplierOrderService.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from stockflow_kernel.exceptions import ValidationError
from stockflow_kernel.models.batch import Batch
from stockflow_kernel.models.supplier import SupplierItemStatus, SupplierOrder
from stockflow_kernel.services.batch_ledger import DateConflictAlert


@dataclass(frozen=True)
class SupplierLineRequest:
    """A product to restock, optionally at a negotiated cost."""
    product_id: int
    quantity: int
    cost_price: Decimal | None = None

    def __post_init__(self):
        if self.quantity <= 0:
            raise ValidationError(
                f"Quantity for product {self.product_id} must be positive", field="quantity"
            )
        if self.cost_price is not None and self.cost_price < 0:
            raise ValidationError("cost_price cannot be negative", field="cost_price")


@dataclass(frozen=True)
class ItemDecision:
    """The supplier's answer for one order item."""
    item_id: int
    status: SupplierItemStatus
    cost_price: Decimal | None = None
    quantity: int | None = None
    prod_date: date | None = None
    exp_date: date | None = None
    batch_number: str | None = None

    def __post_init__(self):
        try:
            object.__setattr__(self, "status", SupplierItemStatus(self.status))
        except ValueError:
            raise ValidationError(f"Unknown item status {self.status!r}", field="status")
        if self.quantity is not None and self.quantity <= 0:
            raise ValidationError("quantity must be positive", field="quantity")
        if self.cost_price is not None and self.cost_price < 0:
            raise ValidationError("cost_price cannot be negative", field="cost_price")
        if self.prod_date and self.exp_date and self.exp_date < self.prod_date:
            raise ValidationError(
                "Expiry date cannot be earlier than production date", field="exp_date"
            )


@dataclass(frozen=True)
class ReceivedItem:
    """What actually arrived for one accepted item."""
    item_id: int
    received_quantity: int | None = None
    batch_number: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class DeliveryReceipt:
    order: SupplierOrder
    batches: tuple[Batch, ...] = ()
    date_conflicts: tuple[DateConflictAlert, ...] = field(default_factory=tuple)

    @property
    def has_date_conflicts(self) -> bool:
        return bool(self.date_conflicts)
