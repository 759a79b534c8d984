"""
Tests for Window and Pulse classes.
"""

import pytest
from pulseflow.core.window import Window, Pulse


class TestWindow:
    """Test Window intervals."""

    def test_create(self):
        w = Window('cycle', 100.0, 30.0)
        assert w.id == 'cycle'
        assert w.start_time == 100.0
        assert w.end_time == 130.0
        assert (w.start, w.end) == (100.0, 130.0)

    def test_non_positive_duration(self):
        with pytest.raises(ValueError, match="positive"):
            Window('w', 0.0, 0.0)

    def test_shift(self):
        w = Window('w', 0.0, 10.0)
        w.shift_start_time(30.0)
        assert w.start_time == 30.0
        assert w.end_time == 40.0
        assert w.duration == 10.0

    def test_contains_half_open(self):
        """The start is inside the window, the end is not."""
        w = Window('w', 10.0, 10.0)
        assert w.contains(10.0)
        assert w.contains(19.999)
        assert not w.contains(20.0)
        assert not w.contains(9.999)

    def test_copy_independent(self):
        w = Window('w', 0.0, 10.0)
        copy = w.copy()
        copy.shift_start_time(5.0)
        assert w.start_time == 0.0
        assert copy != w
        assert w == Window('w', 0.0, 10.0)


class TestPulse:
    """Test Pulse intervals."""

    def test_create(self):
        p = Pulse('p1', 100.0, 160.0, start_run='1234', end_run='1235')
        assert p.duration == 60.0
        assert p.start_run == '1234'

    def test_end_before_start(self):
        with pytest.raises(ValueError, match="must not precede"):
            Pulse('p', 10.0, 5.0)

    @pytest.mark.parametrize("start,end,expected", [
        (0.0, 50.0, 0.0),
        (90.0, 130.0, 30.0),
        (110.0, 120.0, 10.0),
        (150.0, 200.0, 10.0),
        (160.0, 200.0, 0.0),
    ])
    def test_overlap(self, start, end, expected):
        p = Pulse('p', 100.0, 160.0)
        assert p.overlap(start, end) == pytest.approx(expected)
