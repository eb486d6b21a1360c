"""
Tests for date-range resolution and bucket alignment in the report timezone.
"""

from datetime import UTC, date, datetime

import pytest

from tfs_hours.report_range import (
    BucketUnit,
    ReportTimezone,
    bucket_start,
    from_db_timestamp,
    isoformat_utc,
    local_date,
    parse_calendar_date,
    parse_instant,
    resolve_date_range,
    to_db_timestamp,
    truncate_date,
)


def at(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


# =============================================================================
# Range resolution
# =============================================================================


class TestResolveDateRange:
    def test_single_day_at_negative_offset(self, pacific):
        """from=to=2024-01-01 at UTC-8 is [08:00Z Jan 1, 08:00Z Jan 2)."""
        r = resolve_date_range("2024-01-01", "2024-01-01", pacific)

        assert r.start == at(2024, 1, 1, 8, 0)
        assert r.end_exclusive == at(2024, 1, 2, 8, 0)
        assert r.contains(at(2024, 1, 2, 7, 59, 59))
        assert not r.contains(at(2024, 1, 2, 8, 0))
        assert not r.contains(at(2024, 1, 1, 7, 59, 59))

    def test_positive_offset(self):
        tz = ReportTimezone(offset_minutes=120, label="UTC+02:00")
        r = resolve_date_range("2024-03-10", "2024-03-11", tz)

        assert r.start == at(2024, 3, 9, 22, 0)
        assert r.end_exclusive == at(2024, 3, 11, 22, 0)

    def test_to_is_inclusive(self, utc):
        r = resolve_date_range("2024-02-28", "2024-02-29", utc)
        assert r.end_exclusive == datetime(2024, 3, 1, tzinfo=UTC)
        assert r.from_date == date(2024, 2, 28)
        assert r.to_date == date(2024, 2, 29)

    @pytest.mark.parametrize(
        "from_str,to_str",
        [
            ("2024-13-01", "2024-12-31"),
            ("2024-01-01", "2024-02-30"),
            ("", "2024-01-01"),
            (None, "2024-01-01"),
            ("2024-1-1", "2024-01-02"),
            ("yesterday", "2024-01-02"),
        ],
    )
    def test_malformed_dates_give_no_range(self, utc, from_str, to_str):
        assert resolve_date_range(from_str, to_str, utc) is None

    def test_last_representable_day_gives_no_range(self, utc):
        assert resolve_date_range("2024-01-01", "9999-12-31", utc) is None

    def test_first_representable_day_at_positive_offset_gives_no_range(self):
        tz = ReportTimezone(offset_minutes=60, label="UTC+01:00")
        assert resolve_date_range("0001-01-01", "2024-01-01", tz) is None

    def test_first_representable_day_at_utc(self, utc):
        r = resolve_date_range("0001-01-01", "0001-01-01", utc)
        assert r.start == datetime(1, 1, 1, tzinfo=UTC)

    def test_db_bounds_compare_as_text(self, pacific):
        r = resolve_date_range("2024-01-01", "2024-01-01", pacific)
        assert r.start_db == "2024-01-01T08:00:00.000000Z"
        assert r.end_db == "2024-01-02T08:00:00.000000Z"


class TestParseCalendarDate:
    def test_valid(self):
        assert parse_calendar_date(" 2024-07-04 ") == date(2024, 7, 4)

    def test_rejects_datetime_text(self):
        assert parse_calendar_date("2024-07-04T00:00:00") is None


# =============================================================================
# Bucketing
# =============================================================================


class TestBucketing:
    def test_day_boundary_at_negative_offset(self, pacific):
        """07:59Z on Jan 2 is still Jan 1 locally; 08:00Z is Jan 2."""
        before = bucket_start(at(2024, 1, 2, 7, 59), BucketUnit.DAY, pacific)
        after = bucket_start(at(2024, 1, 2, 8, 0), BucketUnit.DAY, pacific)

        assert before.local_date == date(2024, 1, 1)
        assert before.start == at(2024, 1, 1, 8, 0)
        assert after.local_date == date(2024, 1, 2)
        assert after.start == at(2024, 1, 2, 8, 0)

    def test_week_starts_monday(self, utc):
        # 2024-01-07 is a Sunday
        b = bucket_start(datetime(2024, 1, 7, 23, 0, tzinfo=UTC), BucketUnit.WEEK, utc)
        assert b.local_date == date(2024, 1, 1)

    def test_week_across_year_boundary(self, utc):
        b = bucket_start(datetime(2025, 1, 2, 12, 0, tzinfo=UTC), BucketUnit.WEEK, utc)
        assert b.local_date == date(2024, 12, 30)

    def test_month(self, pacific):
        # Feb 1 05:00Z is still Jan 31 at UTC-8
        b = bucket_start(at(2024, 2, 1, 5, 0), BucketUnit.MONTH, pacific)
        assert b.local_date == date(2024, 1, 1)
        assert b.start == at(2024, 1, 1, 8, 0)

    def test_truncate_day_is_identity(self):
        assert truncate_date(date(2024, 5, 17), BucketUnit.DAY) == date(2024, 5, 17)

    def test_local_date(self, pacific):
        assert local_date(at(2024, 6, 1, 3, 0), pacific) == date(2024, 5, 31)


class TestBucketUnitParse:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("day", BucketUnit.DAY),
            ("WEEK", BucketUnit.WEEK),
            (" month ", BucketUnit.MONTH),
            ("quarter", BucketUnit.DAY),
            (None, BucketUnit.DAY),
            ("", BucketUnit.DAY),
        ],
    )
    def test_parse(self, raw, expected):
        assert BucketUnit.parse(raw) is expected


# =============================================================================
# Timestamps
# =============================================================================


class TestTimestamps:
    def test_parse_instant_z_suffix(self):
        assert parse_instant("2024-01-01T10:00:00Z") == at(2024, 1, 1, 10, 0)

    def test_parse_instant_offset_normalized(self):
        assert parse_instant("2024-01-01T02:00:00-08:00") == at(2024, 1, 1, 10, 0)

    def test_parse_instant_naive_is_utc(self):
        assert parse_instant("2024-01-01T10:00:00") == at(2024, 1, 1, 10, 0)

    def test_parse_instant_empty(self):
        assert parse_instant("") is None
        assert parse_instant(None) is None

    def test_parse_instant_garbage(self):
        with pytest.raises(ValueError):
            parse_instant("not-a-date")

    def test_db_format_is_fixed_width(self):
        stored = to_db_timestamp(at(2024, 1, 1, 10, 0))
        assert stored == "2024-01-01T10:00:00.000000Z"
        assert from_db_timestamp(stored) == at(2024, 1, 1, 10, 0)

    def test_isoformat_utc_milliseconds(self):
        value = datetime(2024, 1, 1, 10, 0, 0, 123456, tzinfo=UTC)
        assert isoformat_utc(value) == "2024-01-01T10:00:00.123Z"
        assert isoformat_utc(None) is None
