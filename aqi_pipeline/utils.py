#file: aqi_pipeline/utils.py

from datetime import datetime, date, timedelta
import pytz
from typing import Iterator, Tuple


def get_current_time() -> datetime:
    """Get current UTC time as an aware datetime."""
    return datetime.now(pytz.utc)


def to_utc(value: datetime) -> datetime:
    """Convert a datetime to UTC; naive values are taken to already be UTC."""
    if value.tzinfo is None:
        return pytz.utc.localize(value)
    return value.astimezone(pytz.utc)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp (with or without offset, 'Z' allowed) into UTC."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return to_utc(datetime.fromisoformat(value))


def truncate_to_hour(value: datetime) -> datetime:
    return to_utc(value).replace(minute=0, second=0, microsecond=0)


def start_of_day(day: date) -> datetime:
    return pytz.utc.localize(datetime(day.year, day.month, day.day))


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    """Half-open UTC interval [00:00, next day 00:00) for a calendar date."""
    start = start_of_day(day)
    return start, start + timedelta(days=1)


def parse_date(value: str) -> date:
    """Parse YYYY-MM-DD, raising ValueError on anything else."""
    return datetime.strptime(value, "%Y-%m-%d").date()


def date_range(start: date, end: date) -> Iterator[date]:
    """Every date from start to end, inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def format_flux_time(value: datetime) -> str:
    return to_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")
