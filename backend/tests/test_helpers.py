import datetime as dt

import pytest

from receipt_ledger.utils.helpers import clamp_confidence, normalize_date, parse_iso_datetime, to_minor_units


def test_parse_iso_datetime_lowercase_z():
    value = "2023-05-06T12:00:00z"
    result = parse_iso_datetime(value)
    assert result == dt.datetime(2023, 5, 6, 12, 0, 0, tzinfo=dt.timezone.utc)


def test_parse_iso_datetime_invalid_returns_none():
    assert parse_iso_datetime("not-a-date") is None


@pytest.mark.parametrize(
    "value,expected",
    [
        ("2024-01-01", "2024-01-01"),
        ("2024-01-01T10:30:00Z", "2024-01-01"),
        ("2024/03/09", "2024-03-09"),
        ("09.03.2024", "2024-03-09"),
        ("2024-02-30", None),
        ("yesterday", None),
        (None, None),
        (20240101, None),
    ],
)
def test_normalize_date(value, expected):
    assert normalize_date(value) == expected


@pytest.mark.parametrize(
    "value,expected",
    [(1200, 1200), (12.6, 13), (-450, 450), ("1,234", 1234), ("$15", 15), ("abc", None), (None, None), (True, None)],
)
def test_to_minor_units(value, expected):
    assert to_minor_units(value) == expected


def test_clamp_confidence():
    assert clamp_confidence(1.4) == 1.0
    assert clamp_confidence(-0.2) == 0.0
    assert clamp_confidence(0) == 0.0
    assert clamp_confidence("0.7") == 0.7
    assert clamp_confidence(None) == 0.5
    assert clamp_confidence("high", default=0.3) == 0.3


@pytest.mark.parametrize(
    "value,expected",
    [
        ("2024-1-5", "2024-01-05"),
        ("2024/03/09", "2024-03-09"),
        ("9/3/2024", "2024-03-09"),
        ("Date: 09.03.2024 14:32", "2024-03-09"),
        ("5 Jan 2024", "2024-01-05"),
    ],
)
def test_normalize_date_printed_formats(value, expected):
    assert normalize_date(value) == expected


def test_huge_numbers_fall_back_instead_of_overflowing():
    huge = 10 ** 400
    assert to_minor_units(huge) is None
    assert to_minor_units(-huge) is None
    assert clamp_confidence(huge) == 0.5
    assert clamp_confidence(huge, default=0.2) == 0.2
