import os
import time
import unittest
from datetime import datetime, timedelta, timezone

from tokenviz.models import UsageRecord
from tokenviz.time_buckets import bucket_usage, date_range, filter_by_range

UTC = timezone.utc
JST = timezone(timedelta(hours=9))
CENTRAL_EUROPE = "CET-1CEST,M3.5.0,M10.5.0/3"

# Tuesday
NOW = datetime(2026, 2, 17, 15, 30, tzinfo=UTC)


def _record(ordinal: int, timestamp: str, **fields) -> UsageRecord:
    return UsageRecord(recordId=f"s:{ordinal}", sessionId="s", timestamp=timestamp, **fields)


class DateRangeTests(unittest.TestCase):
    def test_week_starts_monday(self) -> None:
        start, end = date_range("week", NOW)

        self.assertEqual(start, datetime(2026, 2, 16, tzinfo=UTC))
        self.assertEqual(end, datetime(2026, 2, 22, 23, 59, 59, 999999, tzinfo=UTC))

    def test_day_month_year(self) -> None:
        self.assertEqual(date_range("day", NOW)[0], datetime(2026, 2, 17, tzinfo=UTC))
        self.assertEqual(date_range("month", NOW)[1].date().isoformat(), "2026-02-28")
        start, end = date_range("year", NOW)
        self.assertEqual(start, datetime(2026, 1, 1, tzinfo=UTC))
        self.assertEqual(end.date().isoformat(), "2026-12-31")

    def test_december_month_end(self) -> None:
        _, end = date_range("month", datetime(2025, 12, 5, tzinfo=UTC))

        self.assertEqual(end.date().isoformat(), "2025-12-31")

    def test_unknown_range_rejected(self) -> None:
        with self.assertRaises(ValueError):
            date_range("decade", NOW)


class FilterTests(unittest.TestCase):
    def test_filter_is_inclusive_and_drops_unparsable(self) -> None:
        records = [
            _record(0, "2026-02-16T00:00:00Z"),
            _record(1, "2026-02-22T23:59:59Z"),
            _record(2, "2026-02-15T23:59:59Z"),
            _record(3, "not a date"),
            _record(4, ""),
        ]

        kept = filter_by_range(records, "week", NOW)

        self.assertEqual([r.recordId for r in kept], ["s:0", "s:1"])


class BucketTests(unittest.TestCase):
    def test_week_on_tuesday_has_seven_daily_buckets(self) -> None:
        buckets = bucket_usage([], "week", NOW)

        self.assertEqual(len(buckets), 7)
        self.assertEqual(buckets[0].label, "02/16")
        self.assertEqual(buckets[-1].label, "02/22")
        self.assertTrue(all(b.totalTokens == 0 for b in buckets))

    def test_bucket_counts_match_record_counts(self) -> None:
        records = [
            _record(0, "2026-02-16T08:00:00Z", inputTokens=10, outputTokens=5),
            _record(1, "2026-02-16T20:00:00Z", inputTokens=1, cacheReadTokens=4),
            _record(2, "2026-02-18T12:00:00Z", outputTokens=7),
        ]

        buckets = {b.label: b for b in bucket_usage(records, "week", NOW)}

        self.assertEqual(buckets["02/16"].inputTokens, 11)
        self.assertEqual(buckets["02/16"].outputTokens, 5)
        self.assertEqual(buckets["02/16"].totalTokens, 20)
        self.assertEqual(buckets["02/18"].totalTokens, 7)
        self.assertEqual(sum(b.totalTokens for b in buckets.values()), sum(r.totalTokens for r in records))

    def test_bucketing_uses_now_timezone(self) -> None:
        now = datetime(2026, 2, 17, 12, 0, tzinfo=JST)
        records = [_record(0, "2026-02-16T20:00:00Z", inputTokens=3)]

        buckets = {b.label: b for b in bucket_usage(records, "week", now)}

        self.assertEqual(buckets["02/17"].inputTokens, 3)
        self.assertEqual(buckets["02/16"].inputTokens, 0)

    def test_year_buckets_are_monthly(self) -> None:
        records = [_record(0, "2026-03-10T00:00:00Z", inputTokens=2)]

        buckets = bucket_usage(records, "year", NOW)

        self.assertEqual(len(buckets), 12)
        self.assertEqual(buckets[0].label, "2026/01")
        self.assertEqual(buckets[2].inputTokens, 2)

    def test_month_and_day_ranges(self) -> None:
        self.assertEqual(len(bucket_usage([], "month", NOW)), 28)
        day = bucket_usage([_record(0, "2026-02-17T01:00:00Z", inputTokens=1)], "day", NOW)
        self.assertEqual(len(day), 1)
        self.assertEqual(day[0].label, "02/17")
        self.assertEqual(day[0].inputTokens, 1)


@unittest.skipUnless(hasattr(time, "tzset"), "requires time.tzset")
class LocalZoneDaylightSavingTests(unittest.TestCase):
    """Without an explicit zone, records use the local offset in effect at their own instant."""

    def setUp(self) -> None:
        previous = os.environ.get("TZ")
        os.environ["TZ"] = CENTRAL_EUROPE
        time.tzset()
        self.addCleanup(self._restore_tz, previous)

    @staticmethod
    def _restore_tz(previous: str | None) -> None:
        if previous is None:
            os.environ.pop("TZ", None)
        else:
            os.environ["TZ"] = previous
        time.tzset()

    def test_year_buckets_follow_winter_and_summer_offsets(self) -> None:
        records = [
            # 23:30 CET on Jan 31
            _record(0, "2026-01-31T22:30:00Z", inputTokens=7),
            # 00:30 CEST on Aug 1
            _record(1, "2026-07-31T22:30:00Z", inputTokens=5),
        ]

        buckets = {b.label: b for b in bucket_usage(records, "year", datetime(2026, 6, 15, 12, 0))}

        self.assertEqual(buckets["2026/01"].inputTokens, 7)
        self.assertEqual(buckets["2026/02"].inputTokens, 0)
        self.assertEqual(buckets["2026/07"].inputTokens, 0)
        self.assertEqual(buckets["2026/08"].inputTokens, 5)

    def test_default_now_uses_local_zone(self) -> None:
        year = datetime.now().year
        records = [
            _record(0, f"{year}-01-31T22:30:00Z", inputTokens=7),
            _record(1, f"{year}-07-31T22:30:00Z", inputTokens=5),
        ]

        buckets = {b.label: b for b in bucket_usage(records, "year")}

        self.assertEqual(buckets[f"{year}/01"].inputTokens, 7)
        self.assertEqual(buckets[f"{year}/08"].inputTokens, 5)

    def test_day_range_spanning_the_spring_change(self) -> None:
        # Clocks go forward on 2026-03-29; that local day is 23 hours long.
        now = datetime(2026, 3, 29, 12, 0)
        records = [
            _record(0, "2026-03-28T22:30:00Z"),
            _record(1, "2026-03-28T23:30:00Z"),
            _record(2, "2026-03-29T21:30:00Z"),
            _record(3, "2026-03-29T22:30:00Z"),
        ]

        start, end = date_range("day", now)
        kept = filter_by_range(records, "day", now)

        self.assertEqual(start, datetime(2026, 3, 28, 23, 0, tzinfo=UTC))
        self.assertEqual(end, datetime(2026, 3, 29, 21, 59, 59, 999999, tzinfo=UTC))
        self.assertEqual([r.recordId for r in kept], ["s:1", "s:2"])


if __name__ == "__main__":
    unittest.main()
