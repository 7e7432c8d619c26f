"""
stockflow_config -- typed runtime settings.

Responsibility:
    Holds the inventory and delivery settings the services read, and the
    YAML loader that builds them.  Services receive a ``StockflowConfig``
    by injection and fall back to ``StockflowConfig.with_defaults()``.

Architecture position:
    Config -- depends only on the kernel logging module.  The kernel never
    imports this package except through service constructors.
"""

from stockflow_config.loader import DEFAULTS_PATH, load_config, load_yaml_file
from stockflow_config.settings import DeliveryConfig, InventoryConfig, StockflowConfig

__all__ = [
    "DEFAULTS_PATH",
    "load_config",
    "load_yaml_file",
    "DeliveryConfig",
    "InventoryConfig",
    "StockflowConfig",
]
