"""Tests for the natural-language date/time resolver."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from calendar_engine.services.calendar.date_parser import parse_date_time, resolve_time

# 2024-01-01 is a Monday
MONDAY_MIDNIGHT = datetime(2024, 1, 1, 0, 0)


class TestDates:
    def test_tomorrow_3pm(self):
        assert parse_date_time("tomorrow", "3pm", MONDAY_MIDNIGHT) == datetime(2024, 1, 2, 15, 0)

    def test_bare_weekday_is_upcoming_not_today(self):
        assert parse_date_time("friday", "9", MONDAY_MIDNIGHT) == datetime(2024, 1, 5, 9, 0)

    def test_same_weekday_resolves_a_week_ahead(self):
        assert parse_date_time("monday", None, MONDAY_MIDNIGHT) == datetime(2024, 1, 8, 9, 0)

    def test_next_weekday(self):
        assert parse_date_time("next wednesday", "afternoon", MONDAY_MIDNIGHT) == datetime(2024, 1, 3, 14, 0)

    def test_today_defaults_to_nine(self):
        assert parse_date_time("today", None, MONDAY_MIDNIGHT) == datetime(2024, 1, 1, 9, 0)

    def test_iso_date(self):
        assert parse_date_time("2024-03-15", "14:30", MONDAY_MIDNIGHT) == datetime(2024, 3, 15, 14, 30)

    def test_case_and_whitespace_insensitive(self):
        assert parse_date_time("  Tomorrow ", " MORNING", MONDAY_MIDNIGHT) == datetime(2024, 1, 2, 9, 0)

    def test_unrecognized_date_falls_back_to_today(self):
        assert parse_date_time("someday", "10am", MONDAY_MIDNIGHT) == datetime(2024, 1, 1, 10, 0)

    def test_invalid_iso_date_falls_back_to_today(self):
        assert parse_date_time("2024-02-30", None, MONDAY_MIDNIGHT) == datetime(2024, 1, 1, 9, 0)

    def test_keeps_timezone_of_now(self):
        tz = ZoneInfo("America/New_York")
        now = datetime(2024, 1, 1, 8, 0, tzinfo=tz)
        result = parse_date_time("tomorrow", "3pm", now)
        assert result == datetime(2024, 1, 2, 15, 0, tzinfo=tz)
        assert result.tzinfo is tz

    def test_does_not_mutate_input(self):
        now = datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)
        parse_date_time("tomorrow", "3pm", now)
        assert now == datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)


class TestTimes:
    @pytest.mark.parametrize("expr,expected", [
        ("morning", (9, 0)),
        ("afternoon", (14, 0)),
        ("evening", (17, 0)),
        ("3pm", (15, 0)),
        ("3 PM", (15, 0)),
        ("9:45 pm", (21, 45)),
        ("12am", (0, 0)),
        ("12pm", (12, 0)),
        ("11:15am", (11, 15)),
        ("14:30", (14, 30)),
        ("9", (9, 0)),
        (None, (9, 0)),
        ("", (9, 0)),
        ("lunchtime", (9, 0)),
        ("25:00", (9, 0)),
    ])
    def test_resolve_time(self, expr, expected):
        assert resolve_time(expr) == expected
