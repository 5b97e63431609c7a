"""Unit tests for UTC time helpers."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from pulp_economy.timeutils import as_utc, get_week_iso, rank_suffix, seconds_until


class TestSecondsUntil:

    def test_rounds_up_partial_seconds(self):
        now = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
        assert seconds_until(now + timedelta(seconds=10, milliseconds=1), now) == 11

    def test_never_negative(self):
        now = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
        assert seconds_until(now - timedelta(minutes=5), now) == 0

    def test_naive_deadline_treated_as_utc(self):
        now = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
        assert seconds_until(datetime(2026, 3, 1, 12, 5, 0), now) == 300


class TestAsUtc:

    def test_none_passes_through(self):
        assert as_utc(None) is None

    def test_naive_gets_utc(self):
        assert as_utc(datetime(2026, 1, 1)).tzinfo == timezone.utc

    def test_offset_converted(self):
        plus_two = timezone(timedelta(hours=2))
        assert as_utc(datetime(2026, 1, 1, 14, tzinfo=plus_two)).hour == 12


class TestWeekIso:

    def test_iso_week_format(self):
        assert get_week_iso(date(2026, 2, 25)) == "2026-W09"

    def test_year_boundary_uses_iso_year(self):
        # 2027-01-01 is a Friday, still in ISO week 53 of 2026
        assert get_week_iso(date(2027, 1, 1)) == "2026-W53"


class TestRankSuffix:

    def test_suffixes(self):
        assert [f"{n}{rank_suffix(n)}" for n in (1, 2, 3, 4, 11, 12, 13, 21, 22, 23, 101)] == [
            "1st", "2nd", "3rd", "4th", "11th", "12th", "13th", "21st", "22nd", "23rd", "101st",
        ]
