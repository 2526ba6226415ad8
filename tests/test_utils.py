from datetime import date, datetime, timedelta, timezone

import pytest

from circulation.exceptions import ValidationError
from circulation.utils.dates import parse_timestamp, to_iso
from circulation.utils.validators import ISBNValidator, StockValidator, TextValidator


def test_to_iso_is_utc_with_milliseconds():
    assert to_iso(datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)) == "2026-10-19T09:00:00.000Z"
    assert to_iso(datetime(2026, 10, 19, 9, 0, 1, 123456)) == "2026-10-19T09:00:01.123Z"
    plus_two = timezone(timedelta(hours=2))
    assert to_iso(datetime(2026, 10, 19, 11, 0, tzinfo=plus_two)) == "2026-10-19T09:00:00.000Z"


@pytest.mark.parametrize("value, expected", [
    ("2026-10-25", datetime(2026, 10, 25, tzinfo=timezone.utc)),
    ("2026-10-25T12:30:00Z", datetime(2026, 10, 25, 12, 30, tzinfo=timezone.utc)),
    ("2026-10-25T14:30:00+02:00", datetime(2026, 10, 25, 12, 30, tzinfo=timezone.utc)),
    ("2026-10-25T12:30:00", datetime(2026, 10, 25, 12, 30, tzinfo=timezone.utc)),
    (date(2026, 10, 25), datetime(2026, 10, 25, tzinfo=timezone.utc)),
    (datetime(2026, 10, 25, 12, 30), datetime(2026, 10, 25, 12, 30, tzinfo=timezone.utc)),
])
def test_parse_timestamp(value, expected):
    assert parse_timestamp(value) == expected


@pytest.mark.parametrize("value", ["", "   ", "tomorrow", "2026-13-01", 20261025, None])
def test_parse_timestamp_rejects_garbage(value):
    with pytest.raises(ValidationError):
        parse_timestamp(value)


def test_iso_strings_sort_chronologically():
    earlier = to_iso(datetime(2026, 10, 19, 9, 0, 0, 999000, tzinfo=timezone.utc))
    later = to_iso(datetime(2026, 10, 19, 9, 0, 1, tzinfo=timezone.utc))
    assert earlier < later


def test_normalize_isbn():
    assert ISBNValidator.normalize_isbn(" 0-306-40615-x ") == "030640615X"
    assert ISBNValidator.normalize_isbn("978 0 441 17271 9") == "9780441172719"
    assert ISBNValidator.normalize_isbn(None) == ""


def test_text_validator():
    assert TextValidator.require_text("  Alice ", "Borrower name") == "Alice"
    with pytest.raises(ValidationError, match="Borrower name is required."):
        TextValidator.require_text("  ", "Borrower name")
    assert TextValidator.optional_text(None) == ""


def test_stock_validator():
    assert StockValidator.require_count(3, "qty", minimum=1) == 3
    for bad in (0, -1, 2.0, "2", True, None):
        with pytest.raises(ValidationError):
            StockValidator.require_count(bad, "qty", minimum=1)

    StockValidator.validate_counts(5, 3, 2)
    with pytest.raises(ValidationError, match="damaged_stock cannot exceed"):
        StockValidator.validate_counts(2, 0, 3)
    with pytest.raises(ValidationError, match="available_stock cannot exceed"):
        StockValidator.validate_counts(5, 4, 2)
