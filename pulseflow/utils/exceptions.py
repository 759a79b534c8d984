"""
Custom exceptions for PulseFlow.
"""

from typing import Optional


class PulseFlowError(Exception):
    """Base exception for all PulseFlow errors."""
    pass


class BinningError(PulseFlowError):
    """Exception raised for invalid histogram bin edges."""
    pass


class IncompatibleBinningError(BinningError):
    """Exception raised when trying to combine histograms with incompatible binning."""
    pass


class LoadError(PulseFlowError):
    """
    Exception raised when a required table is missing or malformed in a source file.
    
    Parameters
    ----------
    message : str
        Description of the failure.
    path : str or None, optional
        File that failed to load.
    table : str or None, optional
        Name of the offending table inside the file.
    """
    
    def __init__(self, message: str, path: Optional[str] = None, table: Optional[str] = None):
        self.path = path
        self.table = table
        if path is not None:
            message = f"{path}: {message}"
        super().__init__(message)


class OrderingViolation(PulseFlowError):
    """Exception raised when frame times go backwards relative to the active slices."""
    pass


class UsageError(PulseFlowError, ValueError):
    """Exception raised for invalid caller parameters, before any I/O is done."""
    pass


class WriteError(PulseFlowError):
    """
    Exception raised when writing results back to an output file fails.
    
    Parameters
    ----------
    message : str
        Description of the failure.
    path : str
        Destination file that could not be written.
    """
    
    def __init__(self, message: str, path: str):
        self.path = path
        super().__init__(f"{path}: {message}")
