"""
Time intervals used to bucket frames.

This module provides the Window class (a named, shiftable interval used to
slice a run into output files) and the Pulse class (an externally supplied
absolute interval, e.g. derived from instrument timing metadata).
"""

from typing import Optional


class Window:
    """
    A named time interval ``[start_time, start_time + duration)``.

    Parameters
    ----------
    window_id : str
        Name of the window, used to label output files.
    start_time : float
        Start of the window (seconds, usually since the Unix epoch).
    duration : float
        Length of the window in seconds. Must be positive.

    Examples
    --------
    >>> w = Window('cycle', 100.0, 30.0)
    >>> w.end_time
    130.0
    >>> w.shift_start_time(30.0)
    >>> (w.start_time, w.end_time)
    (130.0, 160.0)
    """

    def __init__(self, window_id: str, start_time: float, duration: float):
        if duration <= 0:
            raise ValueError(f"Window duration must be positive, got {duration}")
        self._id = window_id
        self._start_time = float(start_time)
        self._duration = float(duration)

    @property
    def id(self) -> str:
        """Get window name."""
        return self._id

    @property
    def start_time(self) -> float:
        """Get window start time."""
        return self._start_time

    @property
    def duration(self) -> float:
        """Get window duration."""
        return self._duration

    @property
    def end_time(self) -> float:
        """Get window end time (start_time + duration)."""
        return self._start_time + self._duration

    @property
    def start(self) -> float:
        return self._start_time

    @property
    def end(self) -> float:
        return self.end_time

    def shift_start_time(self, delta: float) -> None:
        """Move the window forward (or back, for negative ``delta``) in time."""
        self._start_time += delta

    def contains(self, t: float) -> bool:
        """Check whether ``t`` lies inside the half-open window."""
        return self._start_time <= t < self.end_time

    def copy(self) -> 'Window':
        return Window(self._id, self._start_time, self._duration)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Window):
            return NotImplemented
        return (
            self._id == other._id
            and self._start_time == other._start_time
            and self._duration == other._duration
        )

    __hash__ = None

    def __repr__(self) -> str:
        return (
            f"Window(id={self._id!r}, start={self._start_time:.2f}, "
            f"end={self.end_time:.2f})"
        )


class Pulse:
    """
    An absolute time interval ``[start, end)`` supplied from outside.

    Pulses play the same role as windows during accumulation; they are
    usually derived from instrument timing metadata and may span several
    runs.

    Parameters
    ----------
    label : str
        Name of the pulse, used to label the output file.
    start : float
        Start time (seconds since the Unix epoch).
    end : float
        End time (seconds since the Unix epoch).
    start_run : str or None, optional
        Run in which the pulse starts.
    end_run : str or None, optional
        Run in which the pulse ends.
    """

    def __init__(
        self,
        label: str,
        start: float,
        end: float,
        start_run: Optional[str] = None,
        end_run: Optional[str] = None,
    ):
        if end < start:
            raise ValueError(f"Pulse end ({end}) must not precede its start ({start})")
        self.label = label
        self.start = float(start)
        self.end = float(end)
        self.start_run = start_run
        self.end_run = end_run

    @property
    def duration(self) -> float:
        return self.end - self.start

    def overlap(self, start: float, end: float) -> float:
        """Length of the overlap between this pulse and ``[start, end]``."""
        return max(0.0, min(self.end, end) - max(self.start, start))

    def __repr__(self) -> str:
        return f"Pulse(label={self.label!r}, start={self.start:.2f}, end={self.end:.2f})"
