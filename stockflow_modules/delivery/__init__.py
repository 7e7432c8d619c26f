"""Delivery module -- courier assignment, transit and hand-over."""

from stockflow_modules.delivery.service import DeliveryService
from stockflow_modules.delivery.workflows import DELIVERY_WORKFLOW

__all__ = ["DeliveryService", "DELIVERY_WORKFLOW"]
