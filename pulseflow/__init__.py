"""
PulseFlow: time-windowed aggregation of pulsed-source detector events.
"""

from pulseflow.core.binning import BinEdges
from pulseflow.core.histogram import Histogram, DetectorHistograms
from pulseflow.core.window import Window, Pulse
from pulseflow.core.event_store import EventStore
from pulseflow.core.slices import Slice, SliceSet
from pulseflow.core.processing import Processor, ProcessingReport
from pulseflow.config import ProcessingConfig, ProcessingMode, PostProcessingMode, load_config
from pulseflow.io.nexus import NeXusFile
from pulseflow.utils.exceptions import (
    PulseFlowError,
    BinningError,
    IncompatibleBinningError,
    LoadError,
    OrderingViolation,
    UsageError,
    WriteError,
)

__version__ = "0.1.0"
__all__ = [
    "BinEdges",
    "Histogram",
    "DetectorHistograms",
    "Window",
    "Pulse",
    "EventStore",
    "Slice",
    "SliceSet",
    "Processor",
    "ProcessingReport",
    "ProcessingConfig",
    "ProcessingMode",
    "PostProcessingMode",
    "load_config",
    "NeXusFile",
    "PulseFlowError",
    "BinningError",
    "IncompatibleBinningError",
    "LoadError",
    "OrderingViolation",
    "UsageError",
    "WriteError",
]
