"""
Date and time helpers for appointment reminders.

Appointment times are stored as entered ("14:00", "2:00 PM", "'09:30 am'"), so
every computation goes through one normalization step: strip quotes, convert
to 24-hour "HH:MM", then combine with the calendar date.
"""
from datetime import date, datetime, timedelta
from typing import Union
import re

from dateutil import parser

from ..core.exceptions import ValidationError

DateLike = Union[date, datetime, str]

_TIME_FORMATS = ("%H:%M", "%H:%M:%S", "%I:%M %p", "%I:%M:%S %p", "%I %p")
_MERIDIEM = re.compile(r"\s*([AaPp])\.?\s*[Mm]\.?$")


def _strip_quotes(value: str) -> str:
    return str(value).strip().strip("'\"").strip()


def parse_appointment_date(value: DateLike) -> date:
    """Return the calendar date for a date, datetime or date string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if value is None:
        raise ValidationError("missing appointment date")

    text = _strip_quotes(value)
    if not text:
        raise ValidationError("empty appointment date")
    try:
        return parser.isoparse(text).date()
    except ValueError:
        pass
    try:
        return parser.parse(text).date()
    except (ValueError, OverflowError) as e:
        raise ValidationError(f"Invalid appointment date: {value!r}") from e


def to_24_hour(value: str) -> str:
    """Normalize a time-of-day string to 24-hour "HH:MM"."""
    if value is None:
        raise ValidationError("missing appointment time")
    text = _strip_quotes(value)
    if not text:
        raise ValidationError("empty appointment time")

    # "2pm", "2:00p.m." -> "2 PM", "2:00 PM"
    text = _MERIDIEM.sub(lambda m: f" {m.group(1).upper()}M", text)

    for fmt in _TIME_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        return parsed.strftime("%H:%M")
    raise ValidationError(f"Invalid appointment time: {value!r}")


def combine_date_and_time(appointment_date: DateLike, appointment_time: str) -> datetime:
    """Return the (naive) instant of an appointment."""
    day = parse_appointment_date(appointment_date)
    hours, minutes = (int(part) for part in to_24_hour(appointment_time).split(":"))
    return datetime(day.year, day.month, day.day, hours, minutes)


def compute_fire_time(appointment_date: DateLike, appointment_time: str, lead: timedelta) -> datetime:
    """Appointment instant minus the reminder lead time."""
    return combine_date_and_time(appointment_date, appointment_time) - lead


def format_appointment_datetime(appointment_date: DateLike, appointment_time: str) -> str:
    """Format for messages, e.g. "Wednesday, January 1, 2025 at 02:00 PM"."""
    try:
        day = parse_appointment_date(appointment_date)
    except ValidationError:
        return f"{appointment_date} at {appointment_time}"
    return f"{day:%A}, {day:%B} {day.day}, {day.year} at {_strip_quotes(appointment_time)}"
