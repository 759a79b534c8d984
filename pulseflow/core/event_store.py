"""
EventStore class for frame-structured detector event data.

This module provides the EventStore class, an in-memory view of one source
file's event stream (frames, per-event detector ids and time-of-flight
offsets, monitor spectra), and the TemplateLayout describing the histogram
layout used when an EventStore acts as an output accumulator.
"""

from typing import Optional, Dict, Any, Iterable, Iterator, Tuple, Union, NamedTuple
import logging
import numpy as np
import numpy.typing as npt

from pulseflow.core.binning import BinEdges
from pulseflow.core.histogram import DetectorHistograms, COUNT_DTYPE
from pulseflow.utils.exceptions import (
    IncompatibleBinningError,
    LoadError,
    UsageError,
)

logger = logging.getLogger(__name__)


class TemplateLayout(NamedTuple):
    """Histogram layout of a file: spectra, bin edges and monitor sizes."""

    spectrum_ids: np.ndarray
    bin_edges: BinEdges
    monitor_layout: Dict[int, int]


def _interval_bounds(interval: Any) -> Tuple[float, float]:
    """Extract (start, end) from a Window, Pulse or 2-tuple."""
    if isinstance(interval, tuple):
        start, end = interval
        return float(start), float(end)
    return float(interval.start), float(interval.end)


class EventStore:
    """
    Container for the frame-structured event data of one source file.

    Events are stored flat: ``events_per_frame[i]`` consecutive entries of
    ``event_indices`` / ``event_times`` belong to frame ``i``, whose start
    lies ``frame_offsets[i]`` seconds after ``start_epoch``.

    An EventStore built with :meth:`from_layout` acts as a destination:
    it owns detector histograms, zeroed monitor spectra and a counter of
    the good frames folded into it.

    Parameters
    ----------
    spectrum_ids : array-like of int
        Detector spectrum ids. Shape: (n_spectra,)
    start_epoch : int
        Run start as a Unix timestamp (seconds).
    end_epoch : int
        Run end as a Unix timestamp (seconds). Must be >= start_epoch.
    raw_frames : int, optional
        Raw frame count from file metadata. Default is 0.
    good_frames : int, optional
        Good frame count from file metadata. Default is 0.
    frame_offsets : array-like or None, optional
        Per-frame offset from ``start_epoch`` in seconds. Shape: (n_frames,)
    events_per_frame : array-like or None, optional
        Number of events in each frame. Shape: (n_frames,)
    event_indices : array-like or None, optional
        Detector spectrum id per event (0 = no detector). Shape: (n_events,)
    event_times : array-like or None, optional
        Time-of-flight offset per event within its frame. Shape: (n_events,)
    bin_edges : BinEdges or array-like or None, optional
        Time-of-flight histogram bin edges.
    monitor_counts : dict or None, optional
        Monitor number (1-based) -> per-bin counts.
    path : str or None, optional
        File this store was loaded from (or will be written to).
    metadata : dict or None, optional
        Additional metadata. Default is empty dict.

    Attributes
    ----------
    n_frames : int
        Number of frames with event data.
    n_events : int
        Number of events.
    has_events : bool
        Whether event-level arrays are loaded (advanced load).
    histograms : DetectorHistograms or None
        Accumulated histograms when acting as a destination.
    processed_good_frames : int
        Frames accumulated into this destination.

    Examples
    --------
    >>> store = EventStore(
    ...     spectrum_ids=[1, 2], start_epoch=0, end_epoch=20,
    ...     frame_offsets=[0.0, 10.0], events_per_frame=[2, 1],
    ...     event_indices=[1, 2, 1], event_times=[1.5, 2.5, 0.5],
    ...     bin_edges=[0.0, 1.0, 2.0, 3.0],
    ... )
    >>> hists, n_frames = store.create_histogram((0.0, 10.0))
    >>> hists.read_counts(1)
    array([0, 1, 0])
    """

    def __init__(
        self,
        spectrum_ids: npt.ArrayLike,
        start_epoch: int,
        end_epoch: int,
        raw_frames: int = 0,
        good_frames: int = 0,
        frame_offsets: Optional[npt.ArrayLike] = None,
        events_per_frame: Optional[npt.ArrayLike] = None,
        event_indices: Optional[npt.ArrayLike] = None,
        event_times: Optional[npt.ArrayLike] = None,
        bin_edges: Optional[Union[BinEdges, npt.ArrayLike]] = None,
        monitor_counts: Optional[Dict[int, npt.ArrayLike]] = None,
        path: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        self._path = path
        self._spectrum_ids = np.asarray(spectrum_ids, dtype=np.int64)
        self._start_epoch = int(start_epoch)
        self._end_epoch = int(end_epoch)
        self._raw_frames = int(raw_frames)
        self._good_frames = int(good_frames)

        self._has_events = frame_offsets is not None
        self._frame_offsets = np.asarray(
            frame_offsets if frame_offsets is not None else [], dtype=float
        )
        self._events_per_frame = np.asarray(
            events_per_frame if events_per_frame is not None else [], dtype=np.int64
        )
        self._event_indices = np.asarray(
            event_indices if event_indices is not None else [], dtype=np.int64
        )
        self._event_times = np.asarray(
            event_times if event_times is not None else [], dtype=float
        )

        if bin_edges is None or isinstance(bin_edges, BinEdges):
            self._bin_edges = bin_edges
        else:
            self._bin_edges = BinEdges(bin_edges)

        self._monitor_counts = {
            int(number): np.asarray(counts, dtype=COUNT_DTYPE).ravel()
            for number, counts in (monitor_counts or {}).items()
        }

        self._metadata = metadata.copy() if metadata is not None else {}

        # Destination role
        self._histograms: Optional[DetectorHistograms] = None
        self.processed_good_frames = 0

        self._validate()

    def _validate(self):
        """Validate array lengths and times."""
        if self._end_epoch < self._start_epoch:
            raise LoadError(
                f"End time ({self._end_epoch}) precedes start time ({self._start_epoch})",
                path=self._path,
            )

        if len(self._frame_offsets) != len(self._events_per_frame):
            raise LoadError(
                f"frame_offsets ({len(self._frame_offsets)}) and events_per_frame "
                f"({len(self._events_per_frame)}) must have same length",
                path=self._path,
            )

        if len(self._event_indices) != len(self._event_times):
            raise LoadError(
                f"event_indices ({len(self._event_indices)}) and event_times "
                f"({len(self._event_times)}) must have same length",
                path=self._path,
            )

        n_expected = int(self._events_per_frame.sum())
        if n_expected != len(self._event_indices):
            raise LoadError(
                f"events_per_frame sums to {n_expected} but there are "
                f"{len(self._event_indices)} events",
                path=self._path,
            )

        if np.any(self._events_per_frame < 0):
            raise LoadError("events_per_frame must be non-negative", path=self._path)

        if len(self._frame_offsets) > 1 and np.any(np.diff(self._frame_offsets) < 0):
            raise LoadError("frame_offsets must be non-decreasing", path=self._path)

    # ========================================
    # Factory Methods
    # ========================================

    @classmethod
    def load(cls, path: str, advanced: bool = False) -> 'EventStore':
        """
        Load an EventStore from a NeXus file.

        Parameters
        ----------
        path : str
            Path to the file.
        advanced : bool, optional
            Also load event data, bin edges and monitors. Default is False.

        Raises
        ------
        LoadError
            If a required table is missing or malformed.
        """
        # Import here to avoid circular import
        from pulseflow.io.nexus import NeXusFile

        return NeXusFile(path).load(advanced=advanced)

    @classmethod
    def from_layout(
        cls,
        layout: TemplateLayout,
        path: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> 'EventStore':
        """
        Create an empty destination store from a template layout.

        Histograms are allocated for every spectrum, monitors are zeroed and
        the processed good frame count starts at zero.

        Parameters
        ----------
        layout : TemplateLayout
            Spectra, bin edges and monitor sizes to use.
        path : str or None, optional
            Output file the destination will be written to.
        metadata : dict or None, optional
            Additional metadata.

        Returns
        -------
        EventStore
            Destination store.
        """
        store = cls(
            spectrum_ids=layout.spectrum_ids,
            start_epoch=0,
            end_epoch=0,
            bin_edges=layout.bin_edges,
            monitor_counts={
                number: np.zeros(n_bins, dtype=COUNT_DTYPE)
                for number, n_bins in layout.monitor_layout.items()
            },
            path=path,
            metadata=metadata,
        )
        store._histograms = DetectorHistograms(layout.spectrum_ids, layout.bin_edges)
        return store

    # ========================================
    # Properties
    # ========================================

    @property
    def path(self) -> Optional[str]:
        return self._path

    @path.setter
    def path(self, value: Optional[str]):
        self._path = value

    @property
    def spectrum_ids(self) -> np.ndarray:
        """Get detector spectrum ids."""
        return self._spectrum_ids

    @property
    def bin_edges(self) -> Optional[BinEdges]:
        """Get time-of-flight bin edges."""
        return self._bin_edges

    @property
    def raw_frames(self) -> int:
        return self._raw_frames

    @property
    def good_frames(self) -> int:
        return self._good_frames

    @property
    def start_epoch(self) -> int:
        """Get run start (Unix time)."""
        return self._start_epoch

    @property
    def end_epoch(self) -> int:
        """Get run end (Unix time)."""
        return self._end_epoch

    @property
    def duration(self) -> int:
        """Get run duration in seconds."""
        return self._end_epoch - self._start_epoch

    @property
    def frame_offsets(self) -> np.ndarray:
        """Get per-frame offsets from the run start (seconds)."""
        return self._frame_offsets

    @property
    def events_per_frame(self) -> np.ndarray:
        return self._events_per_frame

    @property
    def event_indices(self) -> np.ndarray:
        """Get detector spectrum id per event."""
        return self._event_indices

    @property
    def event_times(self) -> np.ndarray:
        """Get time-of-flight offset per event."""
        return self._event_times

    @property
    def monitor_counts(self) -> Dict[int, np.ndarray]:
        """Get monitor spectra keyed by monitor number."""
        return self._monitor_counts

    @property
    def metadata(self) -> Dict[str, Any]:
        """Get metadata dictionary."""
        return self._metadata

    @property
    def n_frames(self) -> int:
        return len(self._events_per_frame)

    @property
    def n_events(self) -> int:
        return len(self._event_indices)

    @property
    def has_events(self) -> bool:
        """Check if event-level data was loaded."""
        return self._has_events

    @property
    def histograms(self) -> Optional[DetectorHistograms]:
        """Get accumulated detector histograms (destination role only)."""
        return self._histograms

    @property
    def is_destination(self) -> bool:
        return self._histograms is not None

    @property
    def layout(self) -> TemplateLayout:
        """Get the histogram layout of this store."""
        self._require_edges()
        return TemplateLayout(
            spectrum_ids=self._spectrum_ids.copy(),
            bin_edges=self._bin_edges,
            monitor_layout={n: len(c) for n, c in self._monitor_counts.items()},
        )

    def __repr__(self) -> str:
        role = "destination" if self.is_destination else "source"
        return (
            f"EventStore({role}, path={self._path!r}, n_spectra={len(self._spectrum_ids)}, "
            f"n_frames={self.n_frames}, n_events={self.n_events})"
        )

    def _require_events(self):
        if not self._has_events:
            raise UsageError(
                f"Event data not loaded for {self._path or 'store'}; load with advanced=True"
            )

    def _require_edges(self):
        if self._bin_edges is None:
            raise UsageError(
                f"Bin edges not loaded for {self._path or 'store'}; load with advanced=True"
            )

    def _require_destination(self, destination: 'EventStore'):
        if not destination.is_destination:
            raise UsageError("Destination store has no histograms; create it with from_layout()")

    # ========================================
    # Frame Access
    # ========================================

    def frame_zeros(self, absolute: bool = False, epoch_offset: float = 0.0) -> np.ndarray:
        """
        Get the zero time of every frame.

        Parameters
        ----------
        absolute : bool, optional
            Add ``start_epoch`` to convert to Unix time. Default is False.
        epoch_offset : float, optional
            Value subtracted from every frame zero. Default is 0.0.

        Returns
        -------
        np.ndarray
            ``frame_offsets (+ start_epoch) - epoch_offset``.
        """
        zeros = self._frame_offsets
        if absolute:
            zeros = zeros + self._start_epoch
        return zeros - epoch_offset

    def frame_boundaries(self) -> np.ndarray:
        """Event index boundaries: frame ``i`` owns events ``[b[i], b[i+1])``."""
        boundaries = np.zeros(self.n_frames + 1, dtype=np.int64)
        np.cumsum(self._events_per_frame, out=boundaries[1:])
        return boundaries

    def iter_frames(
        self,
        absolute: bool = False,
        epoch_offset: float = 0.0,
    ) -> Iterator[Tuple[int, float, int, int]]:
        """
        Walk frames in order.

        Yields
        ------
        tuple
            ``(frame_index, frame_zero, event_start, event_end)``.
        """
        self._require_events()
        zeros = self.frame_zeros(absolute=absolute, epoch_offset=epoch_offset)
        event_start = 0
        for i, n_events in enumerate(self._events_per_frame):
            event_end = event_start + int(n_events)
            yield i, float(zeros[i]), event_start, event_end
            event_start = event_end

    def frame_events(self, event_start: int, event_end: int) -> Tuple[np.ndarray, np.ndarray]:
        """Get (detector ids, event times) of an event index range."""
        return (
            self._event_indices[event_start:event_end],
            self._event_times[event_start:event_end],
        )

    def _interval_masks(
        self,
        interval: Any,
        epoch_offset: float,
        absolute: bool,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Frame and event masks for frames whose zero lies in ``[start, end)``."""
        self._require_events()
        start, end = _interval_bounds(interval)
        zeros = self.frame_zeros(absolute=absolute, epoch_offset=epoch_offset)
        frame_mask = (zeros >= start) & (zeros < end)
        event_mask = np.repeat(frame_mask, self._events_per_frame)
        event_mask &= self._event_indices != 0
        return frame_mask, event_mask

    # ========================================
    # Accumulation
    # ========================================

    def accumulate_frame(self, detector_ids: np.ndarray, event_times: np.ndarray) -> int:
        """
        Fold one frame's events into this destination.

        Events with detector id 0 are discarded. The processed good frame
        count is incremented by one.

        Returns
        -------
        int
            Number of events binned.
        """
        self._require_destination(self)
        valid = detector_ids != 0
        n_binned = self._histograms.increment_many(detector_ids[valid], event_times[valid])
        self.processed_good_frames += 1
        return n_binned

    def bin_interval(
        self,
        interval: Any,
        destination: 'EventStore',
        epoch_offset: float = 0.0,
        absolute: bool = False,
    ) -> int:
        """
        Bin the events of every frame inside an interval into a destination.

        A frame is inside when ``start <= frame_zero < end`` with
        ``frame_zero = frame_offset (+ start_epoch if absolute) - epoch_offset``.

        Parameters
        ----------
        interval : Window or Pulse or tuple
            Interval with ``start`` / ``end`` (or a ``(start, end)`` tuple).
        destination : EventStore
            Destination store (see :meth:`from_layout`).
        epoch_offset : float, optional
            Offset subtracted from frame zeros. Default is 0.0.
        absolute : bool, optional
            Compare in Unix time rather than run-relative time. Default is False.

        Returns
        -------
        int
            Number of frames binned. Also added to
            ``destination.processed_good_frames``.
        """
        self._require_destination(destination)
        frame_mask, event_mask = self._interval_masks(interval, epoch_offset, absolute)
        destination.histograms.increment_many(
            self._event_indices[event_mask], self._event_times[event_mask]
        )
        n_frames = int(np.count_nonzero(frame_mask))
        destination.processed_good_frames += n_frames
        logger.debug(
            "Binned %d frames from %s into %s", n_frames, self._path, destination.path
        )
        return n_frames

    def create_histogram(
        self,
        interval: Any,
        epoch_offset: float = 0.0,
        mask: Optional[Union[DetectorHistograms, Iterable[int]]] = None,
        absolute: bool = False,
    ) -> Tuple[DetectorHistograms, int]:
        """
        Histogram the frames of an interval using this store's own layout.

        Parameters
        ----------
        interval : Window or Pulse or tuple
            Interval with ``start`` / ``end`` (or a ``(start, end)`` tuple).
        epoch_offset : float, optional
            Offset subtracted from frame zeros. Default is 0.0.
        mask : DetectorHistograms or iterable of int or None, optional
            Restrict accumulation to these spectra. Histograms passed in a
            DetectorHistograms mask are re-allocated (emptied) on this
            store's bin edges. Default is None (all spectra).
        absolute : bool, optional
            Compare in Unix time rather than run-relative time. Default is False.

        Returns
        -------
        histograms : DetectorHistograms
            Accumulated histograms.
        n_frames : int
            Number of frames binned.
        """
        self._require_edges()
        if mask is None:
            histograms = DetectorHistograms(self._spectrum_ids, self._bin_edges)
        elif isinstance(mask, DetectorHistograms):
            histograms = mask
            histograms.allocate(mask.spectrum_ids, self._bin_edges)
        else:
            histograms = DetectorHistograms(mask, self._bin_edges)

        frame_mask, event_mask = self._interval_masks(interval, epoch_offset, absolute)
        histograms.increment_many(self._event_indices[event_mask], self._event_times[event_mask])
        n_frames = int(np.count_nonzero(frame_mask))
        logger.info("There are %d good frames in %s", n_frames, self._path or "store")
        return histograms, n_frames

    def full_histogram(self) -> DetectorHistograms:
        """Histogram every frame of the store."""
        histograms, _ = self.create_histogram((-np.inf, np.inf))
        return histograms

    # ========================================
    # Partitioning
    # ========================================

    def partitions_with_relative_times(
        self,
        lower_spectrum: int,
        higher_spectrum: int,
        unit_scale: float = 1e-6,
        absolute: bool = False,
    ) -> Dict[int, np.ndarray]:
        """
        Collect the event times of each spectrum in a range.

        Each event time is ``event_time * unit_scale + frame_zero``, so with
        microsecond time-of-flight and second frame offsets the result is in
        seconds.

        Parameters
        ----------
        lower_spectrum : int
            First spectrum id (inclusive).
        higher_spectrum : int
            Last spectrum id (inclusive).
        unit_scale : float, optional
            Conversion of event times to frame offset units. Default is 1e-6.
        absolute : bool, optional
            Use Unix-time frame zeros instead of run-relative. Default is False.

        Returns
        -------
        dict
            Spectrum id -> event times in frame order.

        Raises
        ------
        UsageError
            If ``lower_spectrum > higher_spectrum``.
        """
        if lower_spectrum > higher_spectrum:
            raise UsageError(
                f"Lower spectrum ({lower_spectrum}) > higher spectrum ({higher_spectrum}); "
                f"did you get them the wrong way round?"
            )
        self._require_events()

        event_zeros = np.repeat(self.frame_zeros(absolute=absolute), self._events_per_frame)
        ids = self._event_indices
        in_range = (ids != 0) & (ids >= lower_spectrum) & (ids <= higher_spectrum)
        ids = ids[in_range]
        times = self._event_times[in_range] * unit_scale + event_zeros[in_range]

        order = np.argsort(ids, kind='stable')
        ids = ids[order]
        times = times[order]
        unique_ids, starts = np.unique(ids, return_index=True)
        stops = np.append(starts[1:], len(ids))
        return {
            int(spec): times[start:stop]
            for spec, start, stop in zip(unique_ids, starts, stops)
        }

    # ========================================
    # Monitors and Scaling
    # ========================================

    def add_monitors(self, scale: float, destination: 'EventStore') -> None:
        """
        Add a fraction of this store's monitor counts to a destination.

        Monitors are matched by number; ``round(counts * scale)`` is added.

        Raises
        ------
        IncompatibleBinningError
            If a matched monitor has a different number of bins.
        """
        logger.info(
            " ... adding fractional monitors (%f) from %s", scale, self._path or "store"
        )
        for number, counts in self._monitor_counts.items():
            dest = destination.monitor_counts.get(number)
            if dest is None:
                continue
            if len(dest) != len(counts):
                raise IncompatibleBinningError(
                    f"Monitor {number} has {len(counts)} bins but destination has {len(dest)}"
                )
            if scale == 1.0:
                dest += counts
            else:
                dest += np.rint(counts * scale).astype(COUNT_DTYPE)

    def scale_monitors(self, factor: float) -> None:
        """Scale every monitor spectrum in place, rounding to whole counts."""
        for counts in self._monitor_counts.values():
            counts[:] = np.rint(counts * factor).astype(COUNT_DTYPE)

    def scale_detectors(self, factor: float) -> None:
        """Scale every detector histogram in place (destination role only)."""
        self._require_destination(self)
        self._histograms.scale(factor)

    def reset_accumulators(self) -> None:
        """Zero histograms, monitors and the processed good frame count."""
        if self._histograms is not None:
            self._histograms.reset()
        for counts in self._monitor_counts.values():
            counts[:] = 0
        self.processed_good_frames = 0
