# calendar_engine/services/calendar/date_parser.py
"""Natural-language date/time resolution for spoken booking requests"""
import re
from datetime import date, datetime, timedelta
from typing import Optional, Tuple

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

NAMED_TIMES = {
    "morning": (9, 0),
    "afternoon": (14, 0),
    "evening": (17, 0),
}

DEFAULT_TIME = (9, 0)

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
CLOCK_TIME_RE = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*(am|pm)?$", re.IGNORECASE)


def _next_weekday(today: date, name: str) -> Optional[date]:
    """Next occurrence of `name` strictly after today"""
    if name not in WEEKDAYS:
        return None
    days_until = (WEEKDAYS.index(name) - today.weekday()) % 7 or 7
    return today + timedelta(days=days_until)


def resolve_date(date_expr: Optional[str], today: date) -> date:
    expr = (date_expr or "").lower().strip()

    if expr in ("", "today"):
        return today
    if expr == "tomorrow":
        return today + timedelta(days=1)
    if expr.startswith("next "):
        return _next_weekday(today, expr[5:].strip()) or today
    if ISO_DATE_RE.match(expr):
        try:
            return date.fromisoformat(expr)
        except ValueError:
            return today
    return _next_weekday(today, expr) or today


def resolve_time(time_expr: Optional[str]) -> Tuple[int, int]:
    expr = (time_expr or "").lower().strip()

    if expr in NAMED_TIMES:
        return NAMED_TIMES[expr]

    match = CLOCK_TIME_RE.match(expr)
    if not match:
        return DEFAULT_TIME

    hours = int(match.group(1))
    minutes = int(match.group(2) or 0)
    meridiem = match.group(3)
    if meridiem == "pm" and hours < 12:
        hours += 12
    elif meridiem == "am" and hours == 12:
        hours = 0

    if hours > 23 or minutes > 59:
        return DEFAULT_TIME
    return hours, minutes


def parse_date_time(date_expr: Optional[str], time_expr: Optional[str], now: datetime) -> datetime:
    """Resolve e.g. ("tomorrow", "3pm") against `now`.

    Dates: today, tomorrow, next <weekday>, <weekday> (always after today), yyyy-mm-dd.
    Times: morning, afternoon, evening, H[:MM] am/pm, HH:MM; 09:00 when absent.
    Unrecognized expressions fall back to today / 09:00. The result carries now's tzinfo.
    """
    target = resolve_date(date_expr, now.date())
    hours, minutes = resolve_time(time_expr)
    return datetime(target.year, target.month, target.day, hours, minutes, tzinfo=now.tzinfo)
