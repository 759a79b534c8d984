"""
Output slices and the sliding slice set.

A Slice pairs a Window with the destination EventStore its frames are
accumulated into. The SliceSet keeps an ordered, cyclic collection of
contiguous slices and a cursor; when frame times run past the last slice
the whole set is propagated forward by a fixed delta.
"""

from typing import Optional, List, Callable, Iterator
import logging
import math

from pulseflow.core.window import Window
from pulseflow.core.event_store import EventStore
from pulseflow.utils.exceptions import OrderingViolation, UsageError

logger = logging.getLogger(__name__)


class Slice:
    """
    A Window paired with its destination EventStore.

    Parameters
    ----------
    window : Window
        Time interval covered by this slice.
    destination : EventStore
        Accumulator for the frames falling in the window.
    """

    def __init__(self, window: Window, destination: EventStore):
        self.window = window
        self.destination = destination

    @property
    def id(self) -> str:
        return self.window.id

    def __iter__(self):
        # Allows ``window, destination = slice_``
        return iter((self.window, self.destination))

    def __repr__(self) -> str:
        return f"Slice({self.window!r}, frames={self.destination.processed_good_frames})"


class SliceSet:
    """
    Ordered, cyclic set of contiguous slices with forward propagation.

    Parameters
    ----------
    slices : list of Slice
        Slices in time order.
    delta : float
        Amount by which every window is shifted when the set is exhausted.
        Must be positive.
    on_propagate : callable or None, optional
        Called with the SliceSet just before the windows are shifted.

    Attributes
    ----------
    cursor : int
        Index of the current slice.
    epoch : int
        Number of times the set has been propagated.

    Examples
    --------
    >>> slice_set = SliceSet.from_window(
    ...     Window('w', 0.0, 30.0), n_slices=3, delta=30.0,
    ...     destination_factory=lambda i, window: EventStore([], 0, 0),
    ... )
    >>> s = slice_set.resolve(35.0)
    >>> (slice_set.cursor, slice_set.epoch, s.window.start_time)
    (0, 1, 30.0)
    """

    def __init__(
        self,
        slices: List[Slice],
        delta: float,
        on_propagate: Optional[Callable[['SliceSet'], None]] = None,
    ):
        if len(slices) == 0:
            raise UsageError("A slice set needs at least one slice")
        if delta <= 0:
            raise UsageError(f"Propagation delta must be positive, got {delta}")

        self._slices = list(slices)
        self._delta = float(delta)
        self._on_propagate = on_propagate
        self._cursor = 0
        self._epoch = 0
        self._last_frame_zero: Optional[float] = None

        span = self._slices[-1].window.end_time - self._slices[0].window.start_time
        if self._delta < span:
            logger.warning(
                "Propagation delta (%.2f) is smaller than the window span (%.2f); "
                "slice coverage will overlap between cycles", self._delta, span
            )

    @classmethod
    def from_window(
        cls,
        window: Window,
        n_slices: int,
        delta: float,
        destination_factory: Callable[[int, Window], EventStore],
        on_propagate: Optional[Callable[['SliceSet'], None]] = None,
    ) -> 'SliceSet':
        """
        Split a window into ``n_slices`` contiguous slices.

        Slice ``i`` starts at ``window.start_time + i * window.duration / n_slices``
        and is named ``<window id><i + 1>``.

        Parameters
        ----------
        window : Window
            Full window to split.
        n_slices : int
            Number of slices. Must be >= 1.
        delta : float
            Propagation delta.
        destination_factory : callable
            ``factory(i, slice_window) -> EventStore`` creating each destination.
        on_propagate : callable or None, optional
            See class docstring.
        """
        if n_slices < 1:
            raise UsageError(f"n_slices must be >= 1, got {n_slices}")

        slice_duration = window.duration / n_slices
        slices = []
        for i in range(n_slices):
            slice_window = Window(
                f"{window.id}{i + 1}",
                window.start_time + i * slice_duration,
                slice_duration,
            )
            slices.append(Slice(slice_window, destination_factory(i, slice_window)))
        return cls(slices, delta, on_propagate=on_propagate)

    # ========================================
    # Properties
    # ========================================

    @property
    def slices(self) -> List[Slice]:
        return self._slices

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def current(self) -> Slice:
        """Get the slice under the cursor."""
        return self._slices[self._cursor]

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def delta(self) -> float:
        return self._delta

    @property
    def start_time(self) -> float:
        """Start of the first slice in the current cycle."""
        return self._slices[0].window.start_time

    def __len__(self) -> int:
        return len(self._slices)

    def __iter__(self) -> Iterator[Slice]:
        return iter(self._slices)

    def __getitem__(self, index: int) -> Slice:
        return self._slices[index]

    # ========================================
    # Propagation
    # ========================================

    def propagate(self, cycles: int = 1) -> None:
        """
        Shift every window forward by ``cycles * delta`` and return the cursor
        to the first slice.

        The ``on_propagate`` callback is called once, before the shift.

        Parameters
        ----------
        cycles : int, optional
            Number of propagation steps to apply in one batch. Default is 1.
        """
        if cycles < 1:
            raise UsageError(f"cycles must be >= 1, got {cycles}")
        if self._on_propagate is not None:
            self._on_propagate(self)
        shift = cycles * self._delta
        for slice_ in self._slices:
            slice_.window.shift_start_time(shift)
        self._cursor = 0
        self._epoch += cycles
        logger.info(
            "Propagated window forwards by %d cycle(s)... new start time is %16.2f",
            cycles, self.start_time
        )

    def advance(self) -> None:
        """Move the cursor to the next slice, propagating when past the last one."""
        self._cursor += 1
        if self._cursor == len(self._slices):
            self.propagate()

    def resolve(self, frame_zero: float) -> Optional[Slice]:
        """
        Find the slice a frame belongs to.

        The cursor moves forward while ``frame_zero`` is at or beyond the
        current slice's end. A frame past the last slice propagates the set
        in a single batch by as many cycles as needed to reach it.

        Parameters
        ----------
        frame_zero : float
            Frame start time, in the same time base as the windows.

        Returns
        -------
        Slice or None
            The slice containing ``frame_zero``, or None if the frame falls
            in a gap before the current slice.

        Raises
        ------
        OrderingViolation
            If ``frame_zero`` precedes a previously resolved frame, or the
            cursor cannot be placed on a slice containing it.
        """
        if not math.isfinite(frame_zero):
            raise OrderingViolation(f"Frame time {frame_zero} is not a finite number")
        if self._last_frame_zero is not None and frame_zero < self._last_frame_zero:
            raise OrderingViolation(
                f"Frame time {frame_zero:.6f} precedes previously processed frame time "
                f"{self._last_frame_zero:.6f}; input must be in time order"
            )
        self._last_frame_zero = frame_zero

        last_end = self._slices[-1].window.end_time
        if frame_zero >= last_end:
            # Cycles between the current one and the frame hold no frames
            self.propagate(math.floor((frame_zero - last_end) / self._delta) + 1)

        while frame_zero >= self.current.window.end_time:
            self.advance()

        window = self.current.window
        if frame_zero < window.start_time:
            return None

        if frame_zero >= window.end_time:
            raise OrderingViolation(
                f"Frame time {frame_zero:.6f} could not be placed in slice {window!r}"
            )
        return self.current
