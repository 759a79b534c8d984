"""
Tests for Histogram and DetectorHistograms classes.
"""

import numpy as np
import pytest
from pulseflow.core.histogram import Histogram, DetectorHistograms
from pulseflow.utils.exceptions import BinningError, IncompatibleBinningError


class TestHistogram:
    """Test the single-spectrum Histogram."""

    def test_create(self, simple_edges):
        """Test creating a histogram."""
        hist = Histogram([3, 0, 1], simple_edges, spectrum_id=7)
        assert hist.n_bins == 3
        assert hist.total == 4
        assert hist.spectrum_id == 7
        assert not hist.is_view

    def test_length_mismatch(self, simple_edges):
        """Test validation catches edge count mismatch."""
        with pytest.raises(BinningError, match="counts length"):
            Histogram([1, 2], simple_edges)

    def test_uncertainty(self, simple_edges):
        """Test Poisson uncertainty."""
        hist = Histogram([4, 9, 0], simple_edges)
        np.testing.assert_allclose(hist.uncertainty, [2.0, 3.0, 0.0])

    def test_add(self, simple_edges):
        """Test adding histograms with identical binning."""
        total = Histogram([1, 2, 3], simple_edges, 1) + Histogram([1, 1, 1], simple_edges, 1)
        np.testing.assert_array_equal(total.counts, [2, 3, 4])
        assert total.spectrum_id == 1

    def test_add_incompatible(self, simple_edges):
        """Test adding histograms with different binning."""
        with pytest.raises(IncompatibleBinningError):
            Histogram([1, 2, 3], simple_edges) + Histogram([1, 2], [0.0, 1.0, 2.0])

    def test_numpy_interface(self, simple_edges):
        """Test histograms behave like their counts array."""
        hist = Histogram([1, 2, 3], simple_edges)
        assert np.sum(hist) == 6
        assert hist[1] == 2
        assert len(hist) == 3


class TestDetectorHistogramsAllocation:
    """Test allocation and re-allocation."""

    def test_allocate(self, simple_edges):
        bank = DetectorHistograms([1, 2, 3], simple_edges)
        assert bank.n_spectra == 3
        assert bank.n_bins == 3
        assert bank.counts.shape == (3, 3)
        assert bank.total_counts() == 0

    def test_allocate_requires_edges(self):
        with pytest.raises(BinningError, match="required"):
            DetectorHistograms([1, 2])

    def test_reallocate_zeroes(self, simple_edges):
        """Re-allocating an existing id replaces it with an empty histogram."""
        bank = DetectorHistograms([1, 2], simple_edges)
        bank.increment(1, 0.5)
        bank.increment(2, 0.5)
        bank.allocate([1], simple_edges)
        np.testing.assert_array_equal(bank.read_counts(1), [0, 0, 0])
        np.testing.assert_array_equal(bank.read_counts(2), [1, 0, 0])

    def test_rebin_whole_bank(self, simple_edges):
        """Changing the bin count is allowed when every histogram is replaced."""
        bank = DetectorHistograms([1, 2], simple_edges)
        bank.allocate([1, 2], [0.0, 10.0, 20.0, 30.0, 40.0])
        assert bank.n_bins == 4
        np.testing.assert_array_equal(bank.read_counts(2), [0, 0, 0, 0])

    def test_rebin_partial_rejected(self, simple_edges):
        """Changing the bin count of only some histograms is rejected."""
        bank = DetectorHistograms([1, 2], simple_edges)
        with pytest.raises(IncompatibleBinningError):
            bank.allocate([1], [0.0, 10.0])

    def test_allocate_new_ids(self, simple_edges):
        bank = DetectorHistograms([1], simple_edges)
        bank.allocate([2, 3], simple_edges)
        assert bank.spectrum_ids == [1, 2, 3]
        assert 3 in bank
        assert 4 not in bank


class TestDetectorHistogramsAccumulation:
    """Test incrementing and read-back."""

    def test_increment(self, simple_edges):
        bank = DetectorHistograms([1, 2], simple_edges)
        bank.increment(2, 1.0)
        np.testing.assert_array_equal(bank.read_counts(2), [0, 1, 0])

    def test_increment_unknown_id_ignored(self, simple_edges):
        bank = DetectorHistograms([1, 2], simple_edges)
        bank.increment(99, 1.0)
        assert bank.total_counts() == 0

    def test_increment_out_of_range_ignored(self, simple_edges):
        bank = DetectorHistograms([1], simple_edges)
        bank.increment(1, 3.0)
        bank.increment(1, -1.0)
        assert bank.total_counts() == 0

    def test_increment_many(self, simple_edges):
        """Test vectorised increments, including repeated bins."""
        bank = DetectorHistograms([1, 2], simple_edges)
        n = bank.increment_many([1, 1, 2, 7, 1], [0.5, 0.5, 2.5, 0.5, 3.5])
        assert n == 3
        np.testing.assert_array_equal(bank.read_counts(1), [2, 0, 0])
        np.testing.assert_array_equal(bank.read_counts(2), [0, 0, 1])

    def test_increment_many_length_mismatch(self, simple_edges):
        bank = DetectorHistograms([1], simple_edges)
        with pytest.raises(ValueError, match="same length"):
            bank.increment_many([1, 1], [0.5])

    def test_read_unknown_id(self, simple_edges):
        bank = DetectorHistograms([1], simple_edges)
        with pytest.raises(KeyError):
            bank.read_counts(5)

    def test_read_returns_copy(self, simple_edges):
        bank = DetectorHistograms([1], simple_edges)
        counts = bank.read_counts(1)
        counts[0] = 100
        assert bank.total_counts() == 0

    def test_counts_for_missing_rows(self, simple_edges):
        bank = DetectorHistograms([1], simple_edges)
        bank.increment(1, 0.5)
        np.testing.assert_array_equal(bank.counts_for([5, 1]), [[0, 0, 0], [1, 0, 0]])

    def test_getitem_is_view(self, simple_edges):
        """Histograms from the bank reflect later increments."""
        bank = DetectorHistograms([1], simple_edges)
        hist = bank[1]
        bank.increment(1, 1.5)
        assert hist.is_view
        np.testing.assert_array_equal(hist.counts, [0, 1, 0])

    def test_reset(self, simple_edges):
        bank = DetectorHistograms([1, 2], simple_edges)
        bank.increment_many([1, 2], [0.5, 0.5])
        bank.reset()
        assert bank.total_counts() == 0

    def test_sum_spectrum(self, simple_edges):
        bank = DetectorHistograms([1, 2], simple_edges)
        bank.increment_many([1, 2, 2], [0.5, 0.5, 2.5])
        np.testing.assert_array_equal(bank.sum_spectrum().counts, [2, 0, 1])

    def test_scale(self, simple_edges):
        bank = DetectorHistograms([1], simple_edges)
        bank.increment_many([1, 1, 1, 1], [0.5, 0.5, 1.5, 2.5])
        bank.scale(1.5)
        np.testing.assert_array_equal(bank.read_counts(1), [3, 2, 2])


class TestDetectorHistogramsMasking:
    """Test masked views."""

    def test_subset_shares_counts(self, simple_edges):
        """Increments through a masked view land in the parent bank."""
        bank = DetectorHistograms([1, 2, 3], simple_edges)
        mask = bank.subset([1, 3])
        assert mask.is_view
        n = mask.increment_many([1, 2, 3], [0.5, 0.5, 0.5])
        assert n == 2
        np.testing.assert_array_equal(bank.read_counts(1), [1, 0, 0])
        np.testing.assert_array_equal(bank.read_counts(2), [0, 0, 0])
        np.testing.assert_array_equal(bank.read_counts(3), [1, 0, 0])

    def test_subset_copy_on_write(self, simple_edges):
        """Adding ids to a view detaches it from the parent."""
        bank = DetectorHistograms([1, 2], simple_edges)
        mask = bank.subset([1])
        mask.allocate([5], simple_edges)
        assert not mask.is_view
        mask.increment(1, 0.5)
        assert bank.total_counts() == 0

    def test_subset_survives_parent_growth(self, simple_edges):
        """A view keeps sharing counts after the parent allocates new ids."""
        bank = DetectorHistograms([1, 2], simple_edges)
        mask = bank.subset([1])
        bank.allocate([3], simple_edges)
        assert mask.is_view
        mask.increment(1, 0.5)
        np.testing.assert_array_equal(bank.read_counts(1), [1, 0, 0])
        bank.increment(1, 1.5)
        np.testing.assert_array_equal(mask.read_counts(1), [1, 1, 0])

    def test_subset_of_subset_follows_parent(self, simple_edges):
        bank = DetectorHistograms([1, 2, 3], simple_edges)
        inner = bank.subset([1, 2]).subset([2])
        bank.allocate([4], simple_edges)
        inner.increment(2, 2.5)
        np.testing.assert_array_equal(bank.read_counts(2), [0, 0, 1])

    def test_parent_rebin_detaches_view(self, simple_edges):
        bank = DetectorHistograms([1, 2], simple_edges)
        bank.increment(1, 0.5)
        mask = bank.subset([1])
        bank.allocate([1, 2], [0.0, 10.0])
        assert not mask.is_view
        assert mask.n_bins == 3
        np.testing.assert_array_equal(mask.read_counts(1), [1, 0, 0])
        mask.increment(1, 0.5)
        np.testing.assert_array_equal(bank.read_counts(1), [0])

    def test_reallocating_view_keeps_parent_counts(self, simple_edges):
        """Re-allocating existing ids in a view does not zero the parent's rows."""
        bank = DetectorHistograms([1, 2], simple_edges)
        bank.increment(1, 2.5)
        mask = bank.subset([1])
        mask.allocate([1], simple_edges)
        assert not mask.is_view
        np.testing.assert_array_equal(mask.read_counts(1), [0, 0, 0])
        np.testing.assert_array_equal(bank.read_counts(1), [0, 0, 1])


class TestDetectorHistogramsMerge:
    """Test merge_add."""

    @pytest.fixture
    def banks(self, simple_edges):
        np.random.seed(42)
        banks = []
        for _ in range(3):
            bank = DetectorHistograms([1, 2, 3], simple_edges)
            bank.increment_many(np.random.randint(1, 4, 50), np.random.uniform(0, 3, 50))
            banks.append(bank)
        return banks

    def test_merge(self, banks):
        dest = DetectorHistograms([1, 2, 3], banks[0].edges)
        dest.merge_add(banks[0])
        assert dest == banks[0]

    def test_merge_associative(self, banks, simple_edges):
        """(a + b) + c equals a + (b + c)."""
        a, b, c = banks
        left = a.copy()
        left.merge_add(b)
        left.merge_add(c)

        bc = b.copy()
        bc.merge_add(c)
        right = a.copy()
        right.merge_add(bc)

        assert left == right
        assert left.total_counts() == 150

    def test_merge_zero_scale(self, banks):
        """A zero-scale merge leaves the destination unchanged."""
        before = banks[0].copy()
        banks[0].merge_add(banks[1], scale=0.0)
        assert banks[0] == before

    def test_merge_scale_rounds(self, simple_edges):
        src = DetectorHistograms([1], simple_edges)
        src.increment_many([1, 1, 1], [0.5, 0.5, 1.5])
        dest = DetectorHistograms([1], simple_edges)
        dest.merge_add(src, scale=0.75)
        np.testing.assert_array_equal(dest.read_counts(1), [2, 1, 0])

    def test_merge_ignores_unshared_ids(self, simple_edges):
        src = DetectorHistograms([1, 9], simple_edges)
        src.increment_many([1, 9], [0.5, 0.5])
        dest = DetectorHistograms([1, 2], simple_edges)
        dest.merge_add(src)
        assert dest.total_counts() == 1

    def test_merge_incompatible(self, simple_edges):
        src = DetectorHistograms([1], [0.0, 1.0])
        dest = DetectorHistograms([1], simple_edges)
        with pytest.raises(IncompatibleBinningError):
            dest.merge_add(src)
