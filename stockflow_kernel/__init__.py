"""
Stockflow Kernel

Dated inventory lots and the order workflows that consume them, with:
- FIFO lot allocation at preparation time
- Atomic transactions per operation
- Compare-and-set completion of concurrent preparation
- Append-only order activity log
"""

__version__ = "0.1.0"
