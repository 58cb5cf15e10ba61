"""Time helpers shared by the circle managers.

Every timestamp written to the store is an ISO-8601 string in UTC.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from dateutil.relativedelta import relativedelta


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Union[datetime, str]) -> datetime:
    """Parse ISO strings and treat naive datetimes as UTC."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: Optional[datetime] = None) -> str:
    return as_utc(value or utcnow()).isoformat()


def start_of_tomorrow(now: datetime) -> datetime:
    tomorrow = as_utc(now) + timedelta(days=1)
    return tomorrow.replace(hour=0, minute=0, second=0, microsecond=0)


def add_years(now: datetime, years: int) -> datetime:
    # relativedelta clamps Feb 29 to Feb 28 on non-leap years
    return as_utc(now) + relativedelta(years=years)
