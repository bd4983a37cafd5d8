"""Tests for business-hours slot generation shared by Google and Outlook."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest
from pydantic import ValidationError

from calendar_engine.config.settings import Settings
from calendar_engine.schemas.calendar_events import BusinessHours
from calendar_engine.services.calendar.base import format_time_slot, generate_time_slots

NY = ZoneInfo("America/New_York")
MONDAY = date(2024, 1, 8)
SATURDAY = date(2024, 1, 6)
HOURS = BusinessHours(start=9, end=17, days=[0, 1, 2, 3, 4], timezone="America/New_York")


def _local(hour: int, minute: int = 0, day: date = MONDAY) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=NY)


class TestGenerateTimeSlots:
    def test_non_business_day_returns_nothing(self):
        assert generate_time_slots(SATURDAY, 30, [], HOURS) == []

    def test_custom_business_days(self):
        weekend_hours = BusinessHours(start=10, end=12, days=[5], timezone="America/New_York")
        slots = generate_time_slots(SATURDAY, 30, [], weekend_hours)
        assert len(slots) == 4
        assert generate_time_slots(MONDAY, 30, [], weekend_hours) == []

    def test_full_day_without_busy_time(self):
        slots = generate_time_slots(MONDAY, 30, [], HOURS)

        assert len(slots) == 16
        assert slots[0].start == _local(9)
        assert slots[0].formatted == "9:00 AM - 9:30 AM"
        assert slots[-1].end == _local(17)
        assert slots[-1].formatted == "4:30 PM - 5:00 PM"

    def test_longer_duration_still_steps_every_30_minutes(self):
        slots = generate_time_slots(MONDAY, 60, [], HOURS)

        assert len(slots) == 15
        assert slots[1].start == _local(9, 30)
        # Last slot must end at closing time, not past it
        assert slots[-1].start == _local(16)
        assert all(slot.end <= _local(17) for slot in slots)

    def test_busy_interval_is_excluded_half_open(self):
        busy = [(_local(10), _local(11))]
        slots = generate_time_slots(MONDAY, 30, busy, HOURS)
        starts = [slot.start for slot in slots]

        assert _local(9, 30) in starts  # ends exactly when busy starts
        assert _local(10) not in starts
        assert _local(10, 30) not in starts
        assert _local(11) in starts  # starts exactly when busy ends
        assert len(slots) == 14

    def test_busy_interval_given_in_utc(self):
        # 10:00-11:00 New York == 15:00-16:00 UTC in January
        busy = [(datetime(2024, 1, 8, 15, 0, tzinfo=timezone.utc), datetime(2024, 1, 8, 16, 0, tzinfo=timezone.utc))]
        starts = [slot.start for slot in generate_time_slots(MONDAY, 30, busy, HOURS)]

        assert _local(10) not in starts
        assert _local(11) in starts

    def test_no_slot_overlaps_any_busy_interval(self):
        busy = [
            (_local(8, 15), _local(9, 10)),
            (_local(11, 45), _local(12, 5)),
            (_local(13), _local(14, 30)),
            (_local(16, 50), _local(18)),
        ]
        for duration in (15, 30, 45, 60, 90):
            for slot in generate_time_slots(MONDAY, duration, busy, HOURS):
                for busy_start, busy_end in busy:
                    assert not (slot.start < busy_end and slot.end > busy_start)

    def test_fully_booked_day(self):
        busy = [(_local(8), _local(18))]
        assert generate_time_slots(MONDAY, 30, busy, HOURS) == []


class TestFormatTimeSlot:
    def test_noon_and_midnight(self):
        assert format_time_slot(_local(12), _local(12, 30)) == "12:00 PM - 12:30 PM"
        assert format_time_slot(_local(0), _local(0, 45)) == "12:00 AM - 12:45 AM"

    def test_afternoon(self):
        assert format_time_slot(_local(14, 5), _local(15, 35)) == "2:05 PM - 3:35 PM"


class TestBusinessHours:
    def test_defaults_are_weekdays(self):
        hours = BusinessHours()
        assert hours.is_business_day(MONDAY)
        assert not hours.is_business_day(SATURDAY)

    def test_rejects_inverted_window(self):
        with pytest.raises(ValidationError):
            BusinessHours(start=17, end=9)


class TestDefaultBusinessHoursSettings:
    def test_unknown_default_timezone(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, DEFAULT_TIMEZONE="Mars/Olympus_Mons")

    def test_business_days_out_of_range(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, DEFAULT_BUSINESS_DAYS=[0, 7])

    def test_business_days_normalized(self):
        assert Settings(_env_file=None, DEFAULT_BUSINESS_DAYS=[4, 0, 4]).DEFAULT_BUSINESS_DAYS == [0, 4]
