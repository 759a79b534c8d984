"""
Histogram bin edge handling.

This module provides the BinEdges class which holds the time-of-flight bin
boundaries shared by every detector histogram of a file, and performs the
value-to-bin lookup used when accumulating events.
"""

from typing import Optional
import numpy as np
import numpy.typing as npt

from pulseflow.utils.exceptions import BinningError


class BinEdges:
    """
    Bin boundary container shared across the histograms of a detector bank.

    Bins are half-open: a value ``v`` belongs to bin ``k`` when
    ``edges[k] <= v < edges[k + 1]``. Values below the first edge or at/above
    the last edge fall outside the histogram.

    Parameters
    ----------
    edges : array-like
        Ascending bin boundaries. Shape: (n_bins + 1,)

    Attributes
    ----------
    edges : np.ndarray
        The bin boundaries array (read-only).
    n_bins : int
        Number of bins.

    Examples
    --------
    >>> edges = BinEdges([0.0, 1.0, 2.0, 3.0])
    >>> edges.n_bins
    3
    >>> edges.find_bins([0.5, 1.0, 3.0])
    array([ 0,  1, -1])
    """

    def __init__(self, edges: npt.ArrayLike):
        self._edges = np.array(edges, dtype=float)
        self._validate_edges()
        self._edges.setflags(write=False)

    def _validate_edges(self):
        """Validate that bin edges are one-dimensional and strictly increasing."""
        if self._edges.ndim != 1:
            raise BinningError(f"Bin edges must be one-dimensional, got shape {self._edges.shape}")

        if len(self._edges) < 2:
            raise BinningError("Bin edges must have at least 2 elements")

        if not np.all(np.diff(self._edges) > 0):
            raise BinningError("Bin edges must be strictly increasing")

    @property
    def edges(self) -> np.ndarray:
        """Get bin boundaries."""
        return self._edges

    @property
    def n_bins(self) -> int:
        """Get number of bins."""
        return len(self._edges) - 1

    @property
    def centers(self) -> np.ndarray:
        """Get bin centers."""
        return (self._edges[:-1] + self._edges[1:]) / 2

    @property
    def widths(self) -> np.ndarray:
        """Get bin widths."""
        return np.diff(self._edges)

    @property
    def range(self):
        """Get (low, high) limits of the binned region."""
        return (float(self._edges[0]), float(self._edges[-1]))

    def find_bins(self, values: npt.ArrayLike) -> np.ndarray:
        """
        Locate the bin index of each value.

        Parameters
        ----------
        values : array-like
            Values to look up.

        Returns
        -------
        np.ndarray
            Integer bin index per value, or -1 for values outside
            ``[edges[0], edges[-1])``.
        """
        values = np.asarray(values, dtype=float)
        idx = np.searchsorted(self._edges, values, side='right') - 1
        outside = (idx < 0) | (idx >= self.n_bins) | np.isnan(values)
        return np.where(outside, -1, idx)

    def find_bin(self, value: float) -> Optional[int]:
        """Locate the bin index of a single value (None if outside)."""
        idx = int(self.find_bins([value])[0])
        return idx if idx >= 0 else None

    def matches(self, other: 'BinEdges') -> bool:
        """Check whether another set of edges describes the same bins."""
        if other is self:
            return True
        return (
            other.n_bins == self.n_bins
            and np.allclose(other.edges, self._edges, rtol=1e-9)
        )

    def copy(self) -> 'BinEdges':
        """
        Create an independent copy of these edges.

        Returns
        -------
        BinEdges
            New BinEdges with copied boundaries.
        """
        return BinEdges(self._edges.copy())

    @staticmethod
    def from_width(start: float, stop: float, width: float) -> 'BinEdges':
        """
        Create uniformly spaced edges.

        Parameters
        ----------
        start : float
            First edge.
        stop : float
            Last edge. Rounded up to a whole number of bins.
        width : float
            Bin width.

        Returns
        -------
        BinEdges
            New edges covering ``[start, stop]``.

        Examples
        --------
        >>> # 20 us time-of-flight bins from 0 to 20 ms
        >>> edges = BinEdges.from_width(0.0, 20000.0, 20.0)
        """
        if width <= 0:
            raise BinningError(f"Bin width must be positive, got {width}")
        n_bins = int(np.ceil((stop - start) / width))
        return BinEdges(start + width * np.arange(n_bins + 1))

    def __len__(self) -> int:
        return len(self._edges)

    def __repr__(self) -> str:
        return (
            f"BinEdges(n_bins={self.n_bins}, "
            f"range=[{self._edges[0]:.2f}, {self._edges[-1]:.2f}])"
        )
