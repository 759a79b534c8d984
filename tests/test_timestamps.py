"""
Tests for run timestamp parsing.
"""

import time

import pytest
from pulseflow.io.timestamps import parse_epoch


class TestParseEpoch:
    """Test parse_epoch."""

    def test_unix_epoch(self):
        assert parse_epoch('1970-01-01T00:01:40') == 100

    def test_utc(self):
        assert parse_epoch('2023-05-04T10:00:00') == 1683194400

    def test_bytes(self):
        assert parse_epoch(b'2023-05-04T10:00:00') == 1683194400

    @pytest.mark.parametrize("text", [
        '2023-05-04T10:00:00.123',
        '2023-05-04T10:00:00Z',
        '2023-05-04T10:00:00+01:00',
        '  2023-05-04T10:00:00',
    ])
    def test_suffix_ignored(self, text):
        assert parse_epoch(text) == 1683194400

    def test_single_digit_fields(self):
        assert parse_epoch('2023-5-4T9:0:0') == 1683190800

    @pytest.mark.parametrize("text", [
        '',
        'not a time',
        '2023-05-04 10:00:00',
        '04/05/2023T10:00:00',
    ])
    def test_malformed(self, text):
        with pytest.raises(ValueError, match="Malformed"):
            parse_epoch(text)

    def test_invalid_date(self):
        with pytest.raises(ValueError, match="Invalid"):
            parse_epoch('2023-02-30T10:00:00')

    @pytest.mark.skipif(not hasattr(time, "tzset"), reason="time.tzset is not available")
    def test_independent_of_local_zone(self, monkeypatch):
        monkeypatch.setenv("TZ", "America/New_York")
        time.tzset()
        try:
            assert parse_epoch('2023-05-04T10:00:00') == 1683194400
        finally:
            monkeypatch.undo()
            time.tzset()
