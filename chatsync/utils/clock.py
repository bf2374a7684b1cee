from datetime import datetime, timedelta, timezone
from typing import Optional


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def truncate_to_millis(value: datetime) -> datetime:
    """Drop sub-millisecond precision; BSON datetimes only keep milliseconds."""
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from Mongo (tz_aware=False clients)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return truncate_to_millis(datetime.now(timezone.utc))


def to_millis(value: datetime) -> int:
    return (as_utc(value) - _EPOCH) // timedelta(milliseconds=1)


def from_millis(ms: int) -> datetime:
    return datetime.fromtimestamp(ms // 1000, tz=timezone.utc) + timedelta(milliseconds=ms % 1000)
