"""UTC time helpers. All expiry arithmetic goes through utcnow() so tests can pin the clock."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_epoch_ms(value: datetime | None) -> int | None:
    value = as_utc(value)
    if value is None:
        return None
    return int(value.timestamp() * 1000)
