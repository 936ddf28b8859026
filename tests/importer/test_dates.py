# SPDX-License-Identifier: MIT
"""Tests for date recognition and timestamp parsing."""

from datetime import date, datetime, timezone

import pytest

from importer.normalizers.dates import is_date_string, is_unix_timestamp, parse_timestamp


class TestParseTimestamp:
    """Test timestamp parsing."""

    def test_iso_date(self):
        assert parse_timestamp("2024-06-01") == datetime(2024, 6, 1, tzinfo=timezone.utc)

    def test_iso_datetime_with_zulu(self):
        assert parse_timestamp("2024-06-01T18:30:00Z") == datetime(2024, 6, 1, 18, 30, tzinfo=timezone.utc)

    def test_iso_datetime_with_offset(self):
        """Offsets are normalised to UTC."""
        assert parse_timestamp("2024-06-01T20:30:00+02:00") == datetime(2024, 6, 1, 18, 30, tzinfo=timezone.utc)

    def test_naive_datetime_is_utc(self):
        parsed = parse_timestamp(datetime(2024, 6, 1, 12, 0))
        assert parsed.tzinfo == timezone.utc

    def test_date_object(self):
        assert parse_timestamp(date(2024, 6, 1)) == datetime(2024, 6, 1, tzinfo=timezone.utc)

    def test_text_formats(self):
        assert parse_timestamp("15/06/2024") == datetime(2024, 6, 15, tzinfo=timezone.utc)
        assert parse_timestamp("01.07.2024") == datetime(2024, 7, 1, tzinfo=timezone.utc)
        assert parse_timestamp("June 21, 2024") == datetime(2024, 6, 21, tzinfo=timezone.utc)

    def test_unix_seconds_and_millis(self):
        assert parse_timestamp(1_700_000_000) == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)
        assert parse_timestamp(1_700_000_000_000) == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "tomorrow", "2024-13-45", 42, True, ["2024-06-01"]])
    def test_unparseable(self, value):
        assert parse_timestamp(value) is None


class TestDateRecognition:
    """Test date shape checks used by type inference."""

    def test_iso_strings(self):
        assert is_date_string("2024-06-01")
        assert is_date_string("2024-06-01 18:30")
        assert not is_date_string("2024-02-30")

    def test_slash_dates(self):
        """Slash dates are accepted on shape alone."""
        assert is_date_string("6/1/24")
        assert not is_date_string("6/1")

    def test_unix_ranges(self):
        assert is_unix_timestamp(1_700_000_000)
        assert is_unix_timestamp(1_700_000_000_000.0)
        assert not is_unix_timestamp(2024)
        assert not is_unix_timestamp(True)
        assert not is_unix_timestamp("1700000000")
