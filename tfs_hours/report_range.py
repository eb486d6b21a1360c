"""
Report timezone, date ranges and bucket alignment.

The report timezone is a fixed UTC offset plus a display label. It is not an
IANA zone: there are no daylight-saving transitions, so every bucket boundary
can be reproduced from the configured offset alone.

Timestamps are persisted as fixed-width UTC ISO-8601 text so that string
comparison in SQL is chronological comparison.
"""

import re
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from enum import StrEnum

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

DB_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


class BucketUnit(StrEnum):
    """Aggregation granularity."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"

    @classmethod
    def parse(cls, raw: str | None) -> "BucketUnit":
        """Parse a bucket name; unknown or empty values fall back to DAY."""
        value = (raw or "").strip().lower()
        try:
            return cls(value)
        except ValueError:
            return cls.DAY


@dataclass(frozen=True)
class ReportTimezone:
    """Fixed offset (minutes east of UTC) used to align buckets to local days."""

    offset_minutes: int = 0
    label: str = "UTC"

    @property
    def offset(self) -> timedelta:
        return timedelta(minutes=self.offset_minutes)


@dataclass(frozen=True)
class DateRange:
    """Half-open UTC interval [start, end_exclusive)."""

    start: datetime
    end_exclusive: datetime
    from_date: date
    to_date: date

    @property
    def start_db(self) -> str:
        return to_db_timestamp(self.start)

    @property
    def end_db(self) -> str:
        return to_db_timestamp(self.end_exclusive)

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end_exclusive


@dataclass(frozen=True)
class Bucket:
    """A bucket: its local calendar date and the UTC instant it starts at."""

    local_date: date
    start: datetime


# =============================================================================
# Timestamp helpers
# =============================================================================


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_db_timestamp(value: datetime) -> str:
    """Format a datetime as the fixed-width UTC text stored in the DB."""
    return to_utc(value).strftime(DB_TS_FORMAT)


def from_db_timestamp(value: str | None) -> datetime | None:
    """Parse a stored timestamp back to an aware UTC datetime."""
    if not value:
        return None
    return datetime.strptime(value, DB_TS_FORMAT).replace(tzinfo=UTC)


def parse_instant(value) -> datetime | None:
    """
    Parse an ISO-8601 timestamp as sent by the poller.

    Accepts datetimes, a trailing ``Z`` and naive strings (taken as UTC).
    Returns None for empty values; raises ValueError for garbage.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    text = str(value).strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return to_utc(datetime.fromisoformat(text))


def isoformat_utc(value: datetime | None) -> str | None:
    """Render an instant for JSON responses (millisecond precision, ``Z``)."""
    if value is None:
        return None
    value = to_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


# =============================================================================
# Range resolution
# =============================================================================


def parse_calendar_date(value: str | None) -> date | None:
    """Parse a strict YYYY-MM-DD string. Returns None if it is not a real date."""
    text = (value or "").strip()
    if not _DATE_RE.match(text):
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        return None


def local_midnight_utc(day: date, tz: ReportTimezone) -> datetime:
    """UTC instant of local midnight for ``day`` in the report timezone."""
    return datetime(day.year, day.month, day.day, tzinfo=UTC) - tz.offset


def resolve_date_range(from_str: str | None, to_str: str | None, tz: ReportTimezone) -> DateRange | None:
    """
    Convert two local calendar dates into a UTC half-open range.

    ``to`` is inclusive as a calendar date, so the exclusive bound is local
    midnight of the following day. Returns None when either string does not
    parse as a calendar date, or when a bound falls outside the representable
    datetime range (e.g. ``to=9999-12-31``).
    """
    from_date = parse_calendar_date(from_str)
    to_date = parse_calendar_date(to_str)
    if from_date is None or to_date is None:
        return None
    try:
        start = local_midnight_utc(from_date, tz)
        end_exclusive = local_midnight_utc(to_date + timedelta(days=1), tz)
    except OverflowError:
        return None
    return DateRange(
        start=start,
        end_exclusive=end_exclusive,
        from_date=from_date,
        to_date=to_date,
    )


# =============================================================================
# Bucketing
# =============================================================================


def truncate_date(day: date, unit: BucketUnit) -> date:
    """Truncate a local date to the start of its day, ISO week (Monday) or month."""
    if unit is BucketUnit.WEEK:
        return day - timedelta(days=day.weekday())
    if unit is BucketUnit.MONTH:
        return day.replace(day=1)
    return day


def local_date(instant: datetime, tz: ReportTimezone) -> date:
    """Calendar date of ``instant`` in the report timezone."""
    return (to_utc(instant) + tz.offset).date()


def bucket_start(instant: datetime, unit: BucketUnit, tz: ReportTimezone) -> Bucket:
    """Shift into the report timezone, truncate, and shift back to UTC."""
    day = truncate_date(local_date(instant, tz), unit)
    return Bucket(local_date=day, start=local_midnight_utc(day, tz))
