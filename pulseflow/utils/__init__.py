"""Utility functions and classes for PulseFlow."""

from pulseflow.utils.exceptions import (
    PulseFlowError,
    BinningError,
    IncompatibleBinningError,
    LoadError,
    OrderingViolation,
    UsageError,
    WriteError,
)

__all__ = [
    "PulseFlowError",
    "BinningError",
    "IncompatibleBinningError",
    "LoadError",
    "OrderingViolation",
    "UsageError",
    "WriteError",
]
