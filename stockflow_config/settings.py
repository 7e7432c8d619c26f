"""
Stockflow Configuration Schema.

Defines the structure and sensible defaults for inventory and delivery
settings.  Values are loaded from YAML at startup (see ``loader.py``) or
built directly in tests:

    config = StockflowConfig(
        inventory=InventoryConfig(near_expiry_days=14),
    )
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from stockflow_kernel.logging_config import get_logger

logger = get_logger("config.settings")


@dataclass(frozen=True)
class InventoryConfig:
    """
    Inventory settings.

    ``deduct_on_shipment`` enables a second stock deduction when a courier
    completes a delivery.  Preparation already deducts, so enabling it
    breaks ``Product.quantity == sum(Active batch quantity)`` for shipped
    orders; it exists for deployments that reconcile stock by hand.
    """

    near_expiry_days: int = 30
    # off: legacy deployments deducted again at shipment, double-counting stock
    deduct_on_shipment: bool = False
    allow_manual_allocation: bool = True

    def __post_init__(self):
        if self.near_expiry_days < 0:
            raise ValueError("near_expiry_days cannot be negative")


@dataclass(frozen=True)
class DeliveryConfig:
    """Courier and cancellation settings."""

    default_estimated_minutes: int = 30
    max_estimated_minutes: int = 24 * 60
    max_cancellation_note_length: int = 500

    def __post_init__(self):
        if self.default_estimated_minutes <= 0:
            raise ValueError("default_estimated_minutes must be positive")
        if self.max_estimated_minutes < self.default_estimated_minutes:
            raise ValueError(
                "max_estimated_minutes cannot be less than default_estimated_minutes"
            )
        if self.max_cancellation_note_length <= 0:
            raise ValueError("max_cancellation_note_length must be positive")


@dataclass(frozen=True)
class StockflowConfig:
    inventory: InventoryConfig = field(default_factory=InventoryConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)

    @classmethod
    def with_defaults(cls) -> StockflowConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> StockflowConfig:
        """
        Build a config from a parsed mapping.

        Unknown top-level sections or keys raise ``ValueError`` so that a
        misspelled setting is not silently ignored.
        """
        data = data or {}
        unknown = set(data) - {"inventory", "delivery"}
        if unknown:
            raise ValueError(f"Unknown configuration sections: {sorted(unknown)}")

        config = cls(
            inventory=_build(InventoryConfig, data.get("inventory") or {}),
            delivery=_build(DeliveryConfig, data.get("delivery") or {}),
        )
        logger.info(
            "stockflow_config_loaded",
            extra={
                "near_expiry_days": config.inventory.near_expiry_days,
                "deduct_on_shipment": config.inventory.deduct_on_shipment,
                "default_estimated_minutes": config.delivery.default_estimated_minutes,
            },
        )
        return config


def _build(cls, values: dict[str, Any]):
    allowed = set(cls.__dataclass_fields__)
    unknown = set(values) - allowed
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} keys: {sorted(unknown)}")
    return cls(**values)
