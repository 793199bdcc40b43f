"""Month bucketing and date helpers shared by the pipeline and synthesizers."""

from __future__ import annotations

import calendar
import random
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta


@dataclass(frozen=True)
class MonthBucket:
    """One calendar month of a timeline, clipped to the timeline's ends."""

    key: str  # YYYY-MM
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


def month_key(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def parse_month_key(key: str) -> tuple[int, int]:
    """Parse ``YYYY-MM``; raises ValueError on anything else."""
    year_s, sep, month_s = key.partition("-")
    if not sep or len(year_s) != 4 or len(month_s) != 2:
        raise ValueError(f"Invalid month key {key!r}, expected YYYY-MM")
    year, month = int(year_s), int(month_s)
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month in {key!r}")
    return year, month


def months_between(start: date, end: date) -> list[MonthBucket]:
    """Calendar months from *start* to *end* inclusive; first and last are clipped."""
    if end < start:
        raise ValueError(f"end {end} is before start {start}")

    buckets: list[MonthBucket] = []
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        last_day = calendar.monthrange(year, month)[1]
        bucket_start = max(start, date(year, month, 1))
        bucket_end = min(end, date(year, month, last_day))
        buckets.append(MonthBucket(f"{year:04d}-{month:02d}", bucket_start, bucket_end))
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return buckets


def random_date(rng: random.Random, start: date, end: date) -> date:
    """Uniform date in [start, end]."""
    span = (end - start).days
    if span <= 0:
        return start
    return start + timedelta(days=rng.randint(0, span))


def business_hours_timestamp(rng: random.Random, day: date, *, start_hour: int = 8, end_hour: int = 18) -> datetime:
    """A timestamp on *day* during working hours."""
    return datetime.combine(
        day,
        time(rng.randint(start_hour, end_hour - 1), rng.randint(0, 59), rng.randint(0, 59)),
    )


def clamp_date(day: date, start: date, end: date) -> date:
    return min(max(day, start), end)
