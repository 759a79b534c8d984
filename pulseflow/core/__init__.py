"""Core classes for PulseFlow."""

from pulseflow.core.binning import BinEdges
from pulseflow.core.histogram import Histogram, DetectorHistograms
from pulseflow.core.window import Window, Pulse
from pulseflow.core.event_store import EventStore, TemplateLayout
from pulseflow.core.slices import Slice, SliceSet
from pulseflow.core.processing import Processor, ProcessingReport

__all__ = [
    "BinEdges",
    "Histogram",
    "DetectorHistograms",
    "Window",
    "Pulse",
    "EventStore",
    "TemplateLayout",
    "Slice",
    "SliceSet",
    "Processor",
    "ProcessingReport",
]
