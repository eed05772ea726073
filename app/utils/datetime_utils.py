from datetime import datetime, timezone
from typing import Optional

# Schedule columns are naive datetimes that always hold UTC wall-clock values.


def utc_now() -> datetime:
    """Current instant as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def naive_utc_now() -> datetime:
    """Current instant in the naive-UTC form used by the schedule columns."""
    return to_naive_utc(utc_now())


def to_utc(dt: datetime) -> datetime:
    """
    Attach or convert to UTC.

    Naive values are taken to already be UTC, aware values are converted.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_naive_utc(dt: datetime) -> datetime:
    """Inverse of to_utc: strip the offset after converting to UTC."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def isoformat_utc(dt: Optional[datetime]) -> Optional[str]:
    """Render a stored datetime as ISO-8601 with an explicit +00:00 offset."""
    if dt is None:
        return None
    return to_utc(dt).isoformat()
