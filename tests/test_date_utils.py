import pytest
from datetime import date, datetime, timedelta

from hospital.core.exceptions import ValidationError
from hospital.utils.date_utils import (
    combine_date_and_time, compute_fire_time, format_appointment_datetime,
    parse_appointment_date, to_24_hour
)


@pytest.mark.parametrize("raw, expected", [
    ("14:00", "14:00"),
    ("9:05", "09:05"),
    ("14:00:30", "14:00"),
    ("02:00 PM", "14:00"),
    ("2:00pm", "14:00"),
    ("12:00 PM", "12:00"),
    ("12:30 AM", "00:30"),
    ("11 am", "11:00"),
    ("3 p.m.", "15:00"),
    ("'09:00 AM'", "09:00"),
    ('"18:45"', "18:45"),
])
def test_to_24_hour(raw, expected):
    assert to_24_hour(raw) == expected


@pytest.mark.parametrize("raw", ["", "   ", "noon", "25:00", "13:00 PM", "half past two", None])
def test_to_24_hour_rejects_garbage(raw):
    with pytest.raises(ValidationError):
        to_24_hour(raw)


def test_parse_appointment_date_accepts_several_notations():
    assert parse_appointment_date(date(2025, 1, 1)) == date(2025, 1, 1)
    assert parse_appointment_date(datetime(2025, 1, 1, 18, 30)) == date(2025, 1, 1)
    assert parse_appointment_date("2025-01-01") == date(2025, 1, 1)
    assert parse_appointment_date("'2025-01-01'") == date(2025, 1, 1)
    assert parse_appointment_date("2025-01-01T00:00:00Z") == date(2025, 1, 1)
    assert parse_appointment_date("January 1, 2025") == date(2025, 1, 1)


@pytest.mark.parametrize("raw", ["", "not a date", None])
def test_parse_appointment_date_rejects_garbage(raw):
    with pytest.raises(ValidationError):
        parse_appointment_date(raw)


def test_fire_time_is_one_hour_before_appointment():
    fire_time = compute_fire_time("2025-01-01", "02:00 PM", timedelta(hours=1))
    assert fire_time == datetime(2025, 1, 1, 13, 0)


def test_fire_time_can_fall_on_previous_day():
    fire_time = compute_fire_time(date(2025, 1, 1), "00:30", timedelta(hours=1))
    assert fire_time == datetime(2024, 12, 31, 23, 30)


def test_combine_date_and_time():
    assert combine_date_and_time(date(2025, 1, 2), "09:00 AM") == datetime(2025, 1, 2, 9, 0)


def test_format_appointment_datetime():
    assert format_appointment_datetime(date(2025, 1, 1), "02:00 PM") == "Wednesday, January 1, 2025 at 02:00 PM"


def test_format_appointment_datetime_falls_back_on_bad_date():
    assert format_appointment_datetime("someday", "10:00") == "someday at 10:00"
