"""
Business day and clock helpers.

Order timestamps are stored as naive UTC. Analytics group them by the
restaurant's "business day", which starts at 4 AM local time so late-night
sales are attributed to the evening they belong to.

Example: an order at 2:00 AM on Jan 2nd belongs to the Jan 1st business day.
"""
from datetime import datetime, date, timedelta, timezone
from typing import Optional
import pytz


# Restaurant business day starts at 4:00 AM
BUSINESS_DAY_START_HOUR = 4


def utc_now() -> datetime:
    """Current time as naive UTC, matching how timestamps are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_local(dt: datetime, restaurant_timezone: Optional[str] = None) -> datetime:
    """
    Convert a stored timestamp to restaurant local time.

    Naive datetimes are assumed to be UTC. Without a timezone the value is
    returned unchanged (already local, or the restaurant runs on UTC).
    """
    if not restaurant_timezone:
        return dt
    if dt.tzinfo is None:
        dt = pytz.UTC.localize(dt)
    return dt.astimezone(pytz.timezone(restaurant_timezone))


def get_business_date(dt: datetime, restaurant_timezone: Optional[str] = None) -> date:
    """
    Convert a datetime to its business date, respecting the 4 AM cutoff.

    Examples:
        >>> get_business_date(datetime(2024, 1, 2, 2, 0))
        datetime.date(2024, 1, 1)
        >>> get_business_date(datetime(2024, 1, 2, 5, 0))
        datetime.date(2024, 1, 2)
    """
    dt_local = to_local(dt, restaurant_timezone)

    # If before 4 AM, attribute to previous day
    if dt_local.hour < BUSINESS_DAY_START_HOUR:
        return dt_local.date() - timedelta(days=1)
    return dt_local.date()


def local_hour(dt: datetime, restaurant_timezone: Optional[str] = None) -> int:
    """Hour of day (0-23) in restaurant local time."""
    return to_local(dt, restaurant_timezone).hour
