"""Instants are stored as naive UTC and handed to clients as aware UTC."""

from datetime import datetime, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def floor_to_minute(value: datetime) -> datetime:
    return value.replace(second=0, microsecond=0)


def ceil_to_minute(value: datetime) -> datetime:
    floored = floor_to_minute(value)
    if floored == value:
        return value
    return floored + timedelta(minutes=1)


@lru_cache(maxsize=32)
def get_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f'Unknown timezone: {name}') from exc
