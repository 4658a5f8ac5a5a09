"""Centralized datetime utilities for consistent timezone handling.

All functions accept and return naive UTC datetimes unless stated otherwise,
matching how the models store timestamps. Local (subscription) time is only
used transiently, for due-checks and "published today" cutoffs.

Usage:
    from alert_relay.core.datetime_utils import utc_now, to_local, next_local_occurrence

    now = utc_now()
    local = to_local(now, subscription.timezone)
    if local.hour == subscription.send_hour:
        ...

    next_due = next_local_occurrence(now, "Asia/Dubai", hour=9, weekday=0)
"""

from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Get current UTC time as naive datetime.

    Returns naive datetime for database compatibility.
    """
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    """Convert a datetime to naive UTC.

    Args:
        dt: Datetime to convert (can be aware or naive)

    Returns:
        Naive UTC datetime for database compatibility
    """
    if dt.tzinfo is None:
        # Already naive, assume it's UTC
        return dt
    return dt.astimezone(UTC).replace(tzinfo=None)


def is_valid_timezone(tz_name: str) -> bool:
    """Check if a timezone name is a valid IANA identifier."""
    try:
        ZoneInfo(tz_name)
        return True
    except (KeyError, ValueError):
        return False


def resolve_timezone(tz_name: str | None) -> ZoneInfo:
    """Get a ZoneInfo for a timezone name, falling back to UTC when invalid."""
    if tz_name and is_valid_timezone(tz_name):
        return ZoneInfo(tz_name)
    return ZoneInfo("UTC")


def to_local(now: datetime, timezone: str | None) -> datetime:
    """Convert a naive UTC datetime to an aware datetime in the given timezone.

    Args:
        now: Naive UTC datetime
        timezone: IANA timezone string (e.g., "America/New_York")

    Returns:
        Aware datetime in the local timezone
    """
    return now.replace(tzinfo=UTC).astimezone(resolve_timezone(timezone))


def start_of_local_day(now: datetime, timezone: str | None) -> datetime:
    """Get local midnight of the current day in a timezone, as naive UTC.

    Used as the "published today" cutoff for immediate alerts.
    """
    local = to_local(now, timezone)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return to_naive_utc(midnight)


def local_send_hour(now: datetime, timezone: str | None, hour: int) -> int:
    """Wall-clock hour at which today's local HH:00 actually occurs.

    Equal to `hour` except when HH:00 falls in a spring-forward gap, where
    it resolves to the first hour after the gap (02:00 becomes 03:00 in
    America/New_York on the changeover day).
    """
    local = to_local(now, timezone)
    nominal = local.replace(hour=hour, minute=0, second=0, microsecond=0)
    return to_local(to_naive_utc(nominal), timezone).hour


def next_local_occurrence(
    now: datetime,
    timezone: str | None,
    hour: int,
    weekday: int | None = None,
) -> datetime:
    """Get the next local HH:00 (optionally on a weekday) strictly after now.

    Wall-clock arithmetic is done in the local zone so DST shifts move the
    UTC result, not the local send hour.

    Args:
        now: Naive UTC reference time
        timezone: IANA timezone of the subscription
        hour: Local hour (0-23)
        weekday: Local weekday (0=Monday ... 6=Sunday), None for daily

    Returns:
        Naive UTC datetime of the next occurrence
    """
    local = to_local(now, timezone)
    candidate = local.replace(hour=hour, minute=0, second=0, microsecond=0)

    if weekday is not None:
        candidate += timedelta(days=(weekday - candidate.weekday()) % 7)
        if candidate <= local:
            candidate += timedelta(days=7)
    elif candidate <= local:
        candidate += timedelta(days=1)

    return to_naive_utc(candidate)


def next_hour(now: datetime) -> datetime:
    """Get the top of the next UTC hour."""
    return now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
