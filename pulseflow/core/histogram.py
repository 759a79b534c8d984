"""
Per-detector histograms.

This module provides:
- Histogram: the binned counts of one detector spectrum
- DetectorHistograms: a bank of histograms keyed by spectrum id that share
  one set of bin edges and one contiguous counts array
"""

from typing import Optional, Union, Dict, Iterable, Iterator, List
import weakref
import numpy as np
import numpy.typing as npt

from pulseflow.core.binning import BinEdges
from pulseflow.utils.exceptions import BinningError, IncompatibleBinningError


COUNT_DTYPE = np.int64


def _as_edges(edges: Union[BinEdges, npt.ArrayLike]) -> BinEdges:
    """Wrap raw edges in a BinEdges object (no copy if already wrapped)."""
    if isinstance(edges, BinEdges):
        return edges
    return BinEdges(edges)


def _scaled(counts: np.ndarray, scale: float) -> np.ndarray:
    """Scale integer counts, rounding to the nearest integer."""
    if scale == 1.0:
        return counts.astype(COUNT_DTYPE, copy=False)
    return np.rint(counts * scale).astype(COUNT_DTYPE)


class Histogram:
    """
    Binned counts of a single detector spectrum.

    Parameters
    ----------
    counts : array-like
        Counts per bin. Shape: (n_bins,)
    edges : BinEdges or array-like
        Bin boundaries. Shape: (n_bins + 1,)
    spectrum_id : int or None, optional
        Detector spectrum this histogram belongs to.

    Attributes
    ----------
    counts : np.ndarray
        Counts per bin.
    edges : np.ndarray
        Bin boundaries.
    centers : np.ndarray
        Bin centers (computed property).
    uncertainty : np.ndarray
        Poisson uncertainty per bin.
    is_view : bool
        Whether counts array is a view into a DetectorHistograms bank.

    Examples
    --------
    >>> hist = Histogram([3, 0, 1], edges=[0.0, 1.0, 2.0, 3.0], spectrum_id=7)
    >>> hist.total
    4
    """

    def __init__(
        self,
        counts: npt.ArrayLike,
        edges: Union[BinEdges, npt.ArrayLike],
        spectrum_id: Optional[int] = None,
        _is_view: bool = False,
    ):
        if _is_view:
            assert isinstance(counts, np.ndarray), "View must be numpy array"
            self._counts = counts
        else:
            self._counts = np.array(counts, dtype=COUNT_DTYPE)
        self._is_view = _is_view
        self._edges = _as_edges(edges)
        self._spectrum_id = spectrum_id

        if len(self._counts) != self._edges.n_bins:
            raise BinningError(
                f"Bin edges length ({len(self._edges)}) must be "
                f"counts length + 1 ({len(self._counts) + 1})"
            )

    # ========================================
    # Properties
    # ========================================

    @property
    def counts(self) -> np.ndarray:
        """Get counts array."""
        return self._counts

    @property
    def edges(self) -> np.ndarray:
        """Get bin boundaries."""
        return self._edges.edges

    @property
    def bin_edges(self) -> BinEdges:
        """Get the BinEdges object backing this histogram."""
        return self._edges

    @property
    def centers(self) -> np.ndarray:
        """Get bin centers."""
        return self._edges.centers

    @property
    def widths(self) -> np.ndarray:
        """Get bin widths."""
        return self._edges.widths

    @property
    def uncertainty(self) -> np.ndarray:
        """Get Poisson uncertainty per bin (sqrt(counts))."""
        return np.sqrt(np.maximum(self._counts, 0))

    @property
    def spectrum_id(self) -> Optional[int]:
        """Get detector spectrum id."""
        return self._spectrum_id

    @property
    def n_bins(self) -> int:
        """Get number of bins."""
        return len(self._counts)

    @property
    def total(self) -> int:
        """Get total counts over all bins."""
        return int(self._counts.sum())

    @property
    def is_view(self) -> bool:
        """Check if counts array is a view into a larger array."""
        return self._is_view

    def copy(self) -> 'Histogram':
        """Create an independent copy of this histogram."""
        return Histogram(self._counts.copy(), self._edges, spectrum_id=self._spectrum_id)

    # ========================================
    # Arithmetic Operations
    # ========================================

    def __add__(self, other: 'Histogram') -> 'Histogram':
        """Add two histograms with identical binning."""
        if not isinstance(other, Histogram):
            return NotImplemented
        if not self._edges.matches(other._edges):
            raise IncompatibleBinningError(
                "Histograms must have identical binning to be added"
            )
        spectrum_id = self._spectrum_id if self._spectrum_id == other._spectrum_id else None
        return Histogram(self._counts + other._counts, self._edges, spectrum_id=spectrum_id)

    # ========================================
    # Numpy Interface
    # ========================================

    def __array__(self, dtype=None, copy=None) -> np.ndarray:
        """Numpy array interface - returns counts."""
        return np.asarray(self._counts, dtype=dtype)

    def __len__(self) -> int:
        """Length is number of bins."""
        return len(self._counts)

    def __getitem__(self, key: int):
        """Get counts of a single bin."""
        return self._counts[key]

    def __repr__(self) -> str:
        return (
            f"Histogram(spectrum_id={self._spectrum_id}, n_bins={self.n_bins}, "
            f"total={self.total})"
        )


class DetectorHistograms:
    """
    Bank of per-detector histograms keyed by spectrum id.

    All histograms share one set of bin edges and are stored as rows of a
    single 2D integer counts array. Individual Histogram objects handed out
    by the bank are views into that array, so they always reflect the
    current accumulated counts.

    Parameters
    ----------
    spectrum_ids : iterable of int or None, optional
        Spectrum ids to allocate immediately. Requires ``edges``.
    edges : BinEdges or array-like or None, optional
        Bin boundaries shared by every histogram.

    Attributes
    ----------
    spectrum_ids : list of int
        Allocated spectrum ids, in allocation order.
    counts : np.ndarray
        2D counts array with shape (n_spectra, n_bins).
    edges : np.ndarray
        Shared bin boundaries.
    is_view : bool
        Whether this bank is a masked view sharing another bank's counts.

    Examples
    --------
    >>> bank = DetectorHistograms([1, 2, 3], edges=[0.0, 1.0, 2.0, 3.0])
    >>> bank.increment(2, 1.5)
    >>> bank.read_counts(2)
    array([0, 1, 0])
    >>> bank.increment(99, 1.5)  # unallocated id: ignored

    >>> # Masked accumulation into a subset of detectors
    >>> mask = bank.subset([1, 3])
    >>> mask.increment_many([1, 2, 3], [0.5, 0.5, 0.5])
    2
    """

    def __init__(
        self,
        spectrum_ids: Optional[Iterable[int]] = None,
        edges: Optional[Union[BinEdges, npt.ArrayLike]] = None,
    ):
        self._edges: Optional[BinEdges] = None
        self._counts = np.zeros((0, 0), dtype=COUNT_DTYPE)
        self._rows: Dict[int, int] = {}
        self._is_view = False
        self._lookup = None
        self._owner: Optional['DetectorHistograms'] = None
        self._views: List[weakref.ref] = []

        if spectrum_ids is not None:
            if edges is None:
                raise BinningError("Bin edges are required to allocate histograms")
            self.allocate(spectrum_ids, edges)
        elif edges is not None:
            self._edges = _as_edges(edges)
            self._counts = np.zeros((0, self._edges.n_bins), dtype=COUNT_DTYPE)

    # ========================================
    # Properties
    # ========================================

    @property
    def spectrum_ids(self) -> List[int]:
        """Allocated spectrum ids."""
        return list(self._rows)

    @property
    def counts(self) -> np.ndarray:
        """
        2D counts array.

        For a masked view this returns only the rows of the masked ids
        (as a copy); increments must go through the bank.
        """
        if self._is_view:
            return self._counts[list(self._rows.values())]
        return self._counts

    @property
    def edges(self) -> Optional[np.ndarray]:
        """Shared bin boundaries (None before the first allocation)."""
        return self._edges.edges if self._edges is not None else None

    @property
    def bin_edges(self) -> Optional[BinEdges]:
        """Shared BinEdges object."""
        return self._edges

    @property
    def n_bins(self) -> int:
        """Number of bins per histogram."""
        return self._edges.n_bins if self._edges is not None else 0

    @property
    def n_spectra(self) -> int:
        """Number of allocated histograms."""
        return len(self._rows)

    @property
    def is_view(self) -> bool:
        """Whether this bank shares its counts with a parent bank."""
        return self._is_view

    # ========================================
    # Allocation
    # ========================================

    def _ensure_independent_data(self):
        """Copy the shared counts rows (copy-on-write for masked views)."""
        if self._is_view:
            rows = list(self._rows.values())
            self._counts = self._counts[rows].copy()
            self._rows = {spec: i for i, spec in enumerate(self._rows)}
            self._is_view = False
            self._owner = None
            self._lookup = None

    def allocate(
        self,
        spectrum_ids: Iterable[int],
        edges: Union[BinEdges, npt.ArrayLike],
    ) -> None:
        """
        Allocate an empty histogram for each spectrum id.

        Parameters
        ----------
        spectrum_ids : iterable of int
            Spectrum ids to allocate. An id that is already allocated is
            replaced by an empty histogram.
        edges : BinEdges or array-like
            Bin boundaries. Must have the same number of bins as any
            histograms already in the bank, unless every allocated id is
            in ``spectrum_ids`` (re-binning the whole bank).

        Raises
        ------
        IncompatibleBinningError
            If ``edges`` has a different bin count than histograms that are
            not being replaced.

        Notes
        -----
        On a masked view this first detaches the view, so the parent's
        counts are never zeroed. Views taken from this bank keep sharing
        its counts when new ids are added; re-binning detaches them.
        """
        edges = _as_edges(edges)
        spectrum_ids = [int(spec) for spec in spectrum_ids]
        # Re-allocating a masked view detaches it from its parent
        self._ensure_independent_data()

        rebinned = False
        if self._edges is not None and self._rows and edges.n_bins != self._edges.n_bins:
            # Re-binning is allowed only when every existing histogram is replaced
            if not set(self._rows) <= set(spectrum_ids):
                raise IncompatibleBinningError(
                    f"Cannot allocate {edges.n_bins} bins in a bank of "
                    f"{self._edges.n_bins}-bin histograms"
                )
            self._rows = {}
            rebinned = True

        new_ids = []
        for spec in spectrum_ids:
            if spec in self._rows:
                self._counts[self._rows[spec]] = 0
            elif spec not in new_ids:
                new_ids.append(spec)

        if self._edges is None or not self._rows:
            self._counts = np.zeros((0, edges.n_bins), dtype=COUNT_DTYPE)
        self._edges = edges

        if new_ids:
            first_row = self._counts.shape[0]
            self._counts = np.vstack([
                self._counts,
                np.zeros((len(new_ids), edges.n_bins), dtype=COUNT_DTYPE)
            ])
            for i, spec in enumerate(new_ids):
                self._rows[spec] = first_row + i
        self._lookup = None
        self._sync_views(detach=rebinned)

    def _sync_views(self, detach: bool = False) -> None:
        """Point masked views at the current counts array, or detach them."""
        live = [ref for ref in self._views if ref() is not None]
        self._views = live
        for ref in live:
            view = ref()
            if view is None or not view._is_view or view._owner is not self:
                continue
            if detach:
                # Keeps the view's counts on the old bin edges
                view._ensure_independent_data()
            else:
                view._counts = self._counts
                view._edges = self._edges

    def subset(self, spectrum_ids: Iterable[int]) -> 'DetectorHistograms':
        """
        Create a masked view over some of the allocated spectra.

        The view shares counts memory with this bank: events incremented
        through the view are visible here. Ids that are not allocated in
        this bank are left out of the view.

        Parameters
        ----------
        spectrum_ids : iterable of int
            Spectrum ids to include.

        Returns
        -------
        DetectorHistograms
            Masked view.
        """
        view = DetectorHistograms()
        view._edges = self._edges
        view._counts = self._counts
        view._rows = {
            int(spec): self._rows[int(spec)]
            for spec in spectrum_ids if int(spec) in self._rows
        }
        view._is_view = True
        view._owner = self._owner if self._is_view else self
        view._owner._views.append(weakref.ref(view))
        return view

    def reset(self) -> None:
        """Zero every allocated histogram."""
        for row in self._rows.values():
            self._counts[row] = 0

    # ========================================
    # Accumulation
    # ========================================

    def _row_lookup(self):
        """Sorted (ids, rows) arrays used for vectorised id lookup."""
        if self._lookup is None:
            ids = np.array(sorted(self._rows), dtype=np.int64)
            rows = np.array([self._rows[spec] for spec in ids], dtype=np.int64)
            self._lookup = (ids, rows)
        return self._lookup

    def increment(self, spectrum_id: int, value: float) -> None:
        """
        Increment the bin containing ``value`` in the histogram of ``spectrum_id``.

        No-op if the id has no allocated histogram or if the value lies
        outside the binned range.
        """
        row = self._rows.get(int(spectrum_id))
        if row is None:
            return
        k = self._edges.find_bin(value)
        if k is not None:
            self._counts[row, k] += 1

    def increment_many(self, spectrum_ids: npt.ArrayLike, values: npt.ArrayLike) -> int:
        """
        Vectorised version of :meth:`increment`.

        Parameters
        ----------
        spectrum_ids : array-like of int
            Spectrum id per event.
        values : array-like of float
            Value to bin per event.

        Returns
        -------
        int
            Number of events that landed in a bin.
        """
        spectrum_ids = np.asarray(spectrum_ids, dtype=np.int64)
        values = np.asarray(values, dtype=float)
        if len(spectrum_ids) != len(values):
            raise ValueError(
                f"spectrum_ids and values must have same length. "
                f"Got {len(spectrum_ids)} and {len(values)}"
            )
        if not self._rows or len(spectrum_ids) == 0:
            return 0

        ids, rows = self._row_lookup()
        pos = np.clip(np.searchsorted(ids, spectrum_ids), 0, len(ids) - 1)
        bins = self._edges.find_bins(values)
        valid = (ids[pos] == spectrum_ids) & (bins >= 0)
        np.add.at(self._counts, (rows[pos[valid]], bins[valid]), 1)
        return int(np.count_nonzero(valid))

    def merge_add(self, source: 'DetectorHistograms', scale: float = 1.0) -> None:
        """
        Add another bank's counts into this one.

        For every spectrum id present in both banks, ``round(source * scale)``
        is added bin by bin. Histograms only present in this bank are left
        untouched; histograms only present in ``source`` are ignored.

        Parameters
        ----------
        source : DetectorHistograms
            Bank to add from.
        scale : float, optional
            Multiplier applied to the source counts before rounding.
            Default is 1.0.

        Raises
        ------
        IncompatibleBinningError
            If the two banks have different bin counts.
        """
        if not source._rows or not self._rows:
            return
        if source.n_bins != self.n_bins:
            raise IncompatibleBinningError(
                f"Cannot merge {source.n_bins}-bin histograms into {self.n_bins}-bin histograms"
            )
        for spec, src_row in source._rows.items():
            row = self._rows.get(spec)
            if row is not None:
                self._counts[row] += _scaled(source._counts[src_row], scale)

    def scale(self, factor: float) -> None:
        """Scale every histogram in place, rounding to whole counts."""
        for row in self._rows.values():
            self._counts[row] = _scaled(self._counts[row], factor)

    # ========================================
    # Read-back
    # ========================================

    def read_counts(self, spectrum_id: int) -> np.ndarray:
        """
        Get a copy of the bin counts for one spectrum.

        Raises
        ------
        KeyError
            If ``spectrum_id`` has no allocated histogram.
        """
        row = self._rows.get(int(spectrum_id))
        if row is None:
            raise KeyError(f"No histogram allocated for spectrum {spectrum_id}")
        return self._counts[row].copy()

    def counts_for(self, spectrum_ids: Iterable[int]) -> np.ndarray:
        """
        Stack the counts of several spectra into a 2D array.

        Ids without an allocated histogram give a row of zeros.
        """
        spectrum_ids = list(spectrum_ids)
        out = np.zeros((len(spectrum_ids), self.n_bins), dtype=COUNT_DTYPE)
        for i, spec in enumerate(spectrum_ids):
            row = self._rows.get(int(spec))
            if row is not None:
                out[i] = self._counts[row]
        return out

    def total_counts(self) -> int:
        """Total counts over every histogram."""
        return int(sum(self._counts[row].sum() for row in self._rows.values()))

    def sum_spectrum(self) -> Histogram:
        """Sum of all histograms as a single Histogram."""
        if self._edges is None:
            raise BinningError("No histograms allocated")
        return Histogram(self.counts.sum(axis=0), self._edges)

    def copy(self) -> 'DetectorHistograms':
        """Create an independent deep copy of this bank."""
        new = DetectorHistograms()
        new._edges = self._edges
        new._rows = {spec: i for i, spec in enumerate(self._rows)}
        if self._edges is not None:
            new._counts = self.counts_for(self._rows)
        return new

    # ========================================
    # Container Interface
    # ========================================

    def __contains__(self, spectrum_id: int) -> bool:
        return int(spectrum_id) in self._rows

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self) -> Iterator[int]:
        return iter(self._rows)

    def __getitem__(self, spectrum_id: int) -> Histogram:
        """Get a Histogram view of one spectrum's counts."""
        row = self._rows.get(int(spectrum_id))
        if row is None:
            raise KeyError(f"No histogram allocated for spectrum {spectrum_id}")
        return Histogram(self._counts[row], self._edges, spectrum_id=int(spectrum_id), _is_view=True)

    def __eq__(self, other) -> bool:
        if not isinstance(other, DetectorHistograms):
            return NotImplemented
        if set(self._rows) != set(other._rows) or self.n_bins != other.n_bins:
            return False
        return all(
            np.array_equal(self._counts[row], other._counts[other._rows[spec]])
            for spec, row in self._rows.items()
        )

    __hash__ = None

    def __repr__(self) -> str:
        return (
            f"DetectorHistograms(n_spectra={self.n_spectra}, n_bins={self.n_bins}, "
            f"total={self.total_counts()}, view={self._is_view})"
        )
