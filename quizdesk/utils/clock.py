"""
Time helpers shared by models and services
"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp; all stored datetimes use this convention"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Normalise incoming (possibly tz-aware) datetimes to naive UTC"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
