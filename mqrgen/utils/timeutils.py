import datetime

UTC = datetime.timezone.utc


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(UTC)


def as_utc(value: datetime.datetime | None) -> datetime.datetime | None:
    """Return ``value`` as an aware UTC datetime.

    SQLite hands back naive datetimes, those are already UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def utc_date(value: datetime.datetime) -> datetime.date:
    return as_utc(value).date()


def isoformat(value: datetime.datetime | None) -> str | None:
    if value is None:
        return None
    return as_utc(value).isoformat()


def parse_datetime(value) -> datetime.datetime:
    """Parse an ISO-8601 string (``Z`` suffix allowed) into aware UTC."""
    if isinstance(value, datetime.datetime):
        return as_utc(value)
    if not isinstance(value, str):
        raise ValueError(f"Expected an ISO-8601 datetime string, got {type(value).__name__}")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return as_utc(datetime.datetime.fromisoformat(text))
