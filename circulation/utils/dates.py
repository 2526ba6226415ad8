from datetime import date, datetime, timezone
from typing import Union

from circulation.exceptions import ValidationError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Format a datetime as a UTC ISO 8601 string with millisecond precision.

    The fixed width keeps lexical order equal to chronological order, which the
    stores rely on when sorting by timestamp columns. Naive datetimes are taken
    to be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Union[str, datetime, date]) -> datetime:
    """Accept a datetime, a date or an ISO 8601 string and return an aware datetime.

    Date-only values mean midnight UTC.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Timestamp must be a non-empty ISO 8601 string.")
    raw = value.strip()
    if raw.endswith("Z") or raw.endswith("z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError as e:
        raise ValidationError(f"Invalid timestamp: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
