from datetime import date, datetime, timedelta, timezone
from typing import List, Union

DateLike = Union[date, datetime]


def format_date_to_mmddyyyy(value: DateLike) -> str:
    return value.strftime("%m-%d-%Y")


def generate_date_range(start: DateLike, end: DateLike) -> List[DateLike]:
    """Every day from ``start`` to ``end``, both inclusive."""
    days = []
    current = start
    while current <= end:
        days.append(current)
        current = current + timedelta(days=1)
    return days


def calculate_days_between(start: DateLike, end: DateLike) -> int:
    """Number of days between two dates, counting both ends."""
    return (end - start).days + 1


def date_to_epoch(value: datetime) -> int:
    """Unix timestamp of a naive UTC datetime."""
    return int(value.replace(tzinfo=timezone.utc).timestamp())


def epoch_to_date(epoch: int) -> datetime:
    """Naive UTC datetime of a unix timestamp."""
    return datetime.fromtimestamp(epoch, tz=timezone.utc).replace(tzinfo=None)


def start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def utc_today() -> datetime:
    return start_of_day(datetime.utcnow())
