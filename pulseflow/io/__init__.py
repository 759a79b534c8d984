"""Reading and writing of ISIS NeXus event files."""

from pulseflow.io.nexus import NeXusFile
from pulseflow.io.timestamps import parse_epoch

__all__ = ["NeXusFile", "parse_epoch"]
