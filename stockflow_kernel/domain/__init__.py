"""Kernel domain: pure values shared by engines and services."""

from stockflow_kernel.domain.clock import (
    Clock,
    DeterministicClock,
    SequentialClock,
    SystemClock,
)

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "SequentialClock",
]
