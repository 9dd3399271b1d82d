"""Stored timestamps are naive UTC; naive input is display-timezone wall-clock time."""

from datetime import datetime, timezone, tzinfo

from .config import get_settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_storage(value: datetime, zone: tzinfo | None = None) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=zone or get_settings().display_zone)
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_display(value: datetime, zone: tzinfo | None = None) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(zone or get_settings().display_zone)


def format_display(value: datetime, fmt: str = "%Y-%m-%d %H:%M") -> str:
    return to_display(value).strftime(fmt)
