from __future__ import annotations

import os
from datetime import date, datetime, time, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

API_TIMEZONE = ZoneInfo("Europe/Zurich")


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def to_utc(value: datetime) -> datetime:
    """Normalize to an aware UTC datetime truncated to whole seconds.

    Naive values are interpreted as UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(microsecond=0)


def from_timestamp(value: int | float) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def to_timestamp(value: datetime) -> int:
    return int(to_utc(value).timestamp())


def resolve_timezone(name: str | None = None) -> tzinfo:
    for candidate in (name, os.environ.get("TZ")):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            continue
    local = datetime.now().astimezone().tzinfo
    return local if local is not None else timezone.utc


def to_local(value: datetime, zone: tzinfo | None = None) -> datetime:
    return to_utc(value).astimezone(zone or resolve_timezone())


def api_date(value: datetime) -> date:
    return to_utc(value).astimezone(API_TIMEZONE).date()


def parse_local(value: str, zone: tzinfo | None = None) -> datetime:
    """Parse an ISO date/datetime or ``HH:MM`` (today) in the local zone and return UTC."""
    zone = zone or resolve_timezone()
    text = value.strip()
    if len(text) in (4, 5) and ":" in text:
        hours, minutes = text.split(":", 1)
        today = datetime.now(zone).date()
        parsed = datetime.combine(today, time(int(hours), int(minutes)))
    else:
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=zone)
    return to_utc(parsed)


def parse_api_datetime(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.strip().replace(" ", "T", 1))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=API_TIMEZONE)
    return to_utc(parsed)


def day_bounds(day: date, zone: tzinfo) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min).replace(tzinfo=zone)
    end = datetime.combine(day, time(23, 59, 59)).replace(tzinfo=zone)
    return to_utc(start), to_utc(end)
