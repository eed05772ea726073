from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.utils.datetime_utils import to_utc, utc_now
from app.utils.logging import get_logger

logger = get_logger()

DEFAULT_TIMEZONE = "UTC"


def resolve_timezone(timezone_name: Optional[str]) -> ZoneInfo:
    """
    Resolve an IANA zone name, falling back to UTC.

    A bad timezone string must never block sending, so unknown or malformed
    names are logged and evaluated as UTC.
    """
    if not timezone_name:
        return ZoneInfo(DEFAULT_TIMEZONE)
    try:
        return ZoneInfo(timezone_name)
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        logger.warning(f"Unknown timezone '{timezone_name}', evaluating quiet hours as UTC")
        return ZoneInfo(DEFAULT_TIMEZONE)


def local_hour(timezone_name: Optional[str], now: Optional[datetime] = None) -> int:
    """Hour of day (0-23) in the given zone. Naive `now` values are taken as UTC."""
    current = to_utc(now) if now is not None else utc_now()
    return current.astimezone(resolve_timezone(timezone_name)).hour


def is_hour_in_window(hour: int, quiet_start: int, quiet_end: int) -> bool:
    # Window spans midnight, e.g. 23 -> 7
    if quiet_start > quiet_end:
        return hour >= quiet_start or hour < quiet_end
    return quiet_start <= hour < quiet_end


def is_quiet_now(
    quiet_start: Optional[int],
    quiet_end: Optional[int],
    timezone_name: Optional[str],
    now: Optional[datetime] = None,
) -> bool:
    """
    Check whether a user is inside the quiet hours window right now.

    Args:
        quiet_start: First suppressed hour (0-23), or None
        quiet_end: First hour sending resumes (0-23), or None
        timezone_name: The user's IANA timezone; invalid values count as UTC
        now: Reference instant, defaults to the current time

    Returns:
        bool: True when sending is suppressed. Quiet hours are disabled unless
        both bounds are set.
    """
    if quiet_start is None or quiet_end is None:
        return False

    return is_hour_in_window(local_hour(timezone_name, now), quiet_start, quiet_end)
