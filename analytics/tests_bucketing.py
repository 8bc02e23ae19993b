from datetime import date, datetime, timezone as dt_timezone

from django.test import SimpleTestCase

from analytics.bucketing import (
    Granularity,
    TrendRange,
    bucket_counts,
    bucket_labels,
)


def utc(*args):
    return datetime(*args, tzinfo=dt_timezone.utc)


class BucketCountsTest(SimpleTestCase):
    def setUp(self):
        self.now = utc(2024, 3, 10, 15, 30)

    def test_length_always_matches_horizon(self):
        cases = [
            (Granularity.HOUR, 24, []),
            (Granularity.HOUR, 24, [(5, 2)]),
            (Granularity.DAY, 7, [("2024-03-10", 1)]),
            (Granularity.DAY, 30, [("2020-01-01", 9)]),
            (Granularity.MONTH, 12, [("2024-03", 5), ("2019-01", 1)]),
        ]
        for granularity, horizon, rows in cases:
            with self.subTest(granularity=granularity, horizon=horizon, rows=rows):
                series = bucket_counts(granularity, horizon, rows, self.now)
                self.assertEqual(len(series.values), horizon)
                self.assertEqual(series.length, horizon)

    def test_empty_rows_zero_fill(self):
        series = bucket_counts("day", 30, [], self.now)
        self.assertEqual(series.values, [0] * 30)
        self.assertEqual(series.granularity, Granularity.DAY)

    def test_month_alignment(self):
        rows = [("2024-03", 5), ("2023-04", 3), ("2022-01", 9)]
        series = bucket_counts("month", 12, rows, self.now)

        self.assertEqual(series.values[11], 5)
        self.assertEqual(series.values[0], 3)
        self.assertNotIn(9, series.values)
        self.assertEqual(sum(series.values), 8)

    def test_month_across_year_boundary(self):
        now = utc(2024, 1, 5)
        series = bucket_counts("month", 12, [("2023-12", 4), ("2023-02", 2)], now)
        self.assertEqual(series.values[10], 4)
        self.assertEqual(series.values[0], 2)

    def test_future_month_is_dropped(self):
        series = bucket_counts("month", 12, [("2024-04", 7)], self.now)
        self.assertEqual(series.values, [0] * 12)

    def test_day_alignment(self):
        now = utc(2024, 3, 10, 0, 5)
        rows = [("2024-03-10", 4), ("2024-03-04", 2), ("2024-03-03", 8)]
        series = bucket_counts("day", 7, rows, now)

        self.assertEqual(series.values[6], 4)
        self.assertEqual(series.values[0], 2)
        self.assertEqual(sum(series.values), 6)

    def test_day_uses_calendar_dates_not_elapsed_hours(self):
        # 00:05 on the 10th is only minutes after the 9th ended
        now = utc(2024, 3, 10, 0, 5)
        series = bucket_counts("day", 7, [("2024-03-09", 3)], now)
        self.assertEqual(series.values[5], 3)

    def test_day_across_month_boundary(self):
        now = utc(2024, 3, 1, 12)
        series = bucket_counts("day", 7, [("2024-02-29", 1), ("2024-02-24", 2)], now)
        self.assertEqual(series.values[5], 1)
        self.assertEqual(series.values[0], 2)

    def test_day_accepts_date_objects(self):
        series = bucket_counts("day", 7, [(date(2024, 3, 8), 6)], self.now)
        self.assertEqual(series.values[4], 6)

    def test_hour_maps_to_hour_of_day(self):
        series = bucket_counts("hour", 24, [(0, 1), (13, 4), ("23", 2)], self.now)
        self.assertEqual(series.values[0], 1)
        self.assertEqual(series.values[13], 4)
        self.assertEqual(series.values[23], 2)

    def test_hour_out_of_range_ignored(self):
        series = bucket_counts("hour", 24, [(24, 5), (-1, 5)], self.now)
        self.assertEqual(series.values, [0] * 24)

    def test_malformed_rows_are_skipped(self):
        rows = [
            ("not-a-date", 5),
            ("2024-13-01", 5),
            (None, 5),
            ("2024-03-09", "x"),
            ("2024-03-10", 2),
        ]
        series = bucket_counts("day", 7, rows, self.now)
        self.assertEqual(series.values, [0, 0, 0, 0, 0, 0, 2])

        series = bucket_counts("month", 12, [("2024", 1), ("2024-00", 1), ("abc-de", 1)], self.now)
        self.assertEqual(series.values, [0] * 12)

        series = bucket_counts("hour", 24, [("noon", 1), (None, 1)], self.now)
        self.assertEqual(series.values, [0] * 24)

    def test_duplicate_bucket_last_write_wins(self):
        series = bucket_counts("day", 7, [("2024-03-10", 1), ("2024-03-10", 9)], self.now)
        self.assertEqual(series.values[6], 9)

    def test_invalid_horizon_rejected(self):
        for horizon in (0, -3):
            with self.subTest(horizon=horizon):
                with self.assertRaises(ValueError):
                    bucket_counts("day", horizon, [], self.now)

    def test_unknown_granularity_rejected(self):
        with self.assertRaises(ValueError):
            bucket_counts("week", 7, [], self.now)


class BucketLabelsTest(SimpleTestCase):
    def test_day_labels_end_today(self):
        labels = bucket_labels("day", 3, utc(2024, 3, 1, 9))
        self.assertEqual(labels, ["2024-02-28", "2024-02-29", "2024-03-01"])

    def test_month_labels_cross_year(self):
        labels = bucket_labels("month", 3, utc(2024, 2, 10))
        self.assertEqual(labels, ["2023-12", "2024-01", "2024-02"])

    def test_hour_labels(self):
        labels = bucket_labels("hour", 24, utc(2024, 2, 10))
        self.assertEqual(labels[0], "00:00")
        self.assertEqual(labels[-1], "23:00")


class TrendRangeTest(SimpleTestCase):
    def test_shapes(self):
        self.assertEqual((TrendRange.DAY.granularity, TrendRange.DAY.horizon), (Granularity.HOUR, 24))
        self.assertEqual((TrendRange.WEEK.granularity, TrendRange.WEEK.horizon), (Granularity.DAY, 7))
        self.assertEqual((TrendRange.MONTH.granularity, TrendRange.MONTH.horizon), (Granularity.DAY, 30))
        self.assertEqual((TrendRange.YEAR.granularity, TrendRange.YEAR.horizon), (Granularity.MONTH, 12))

    def test_all_behaves_like_year(self):
        self.assertEqual(TrendRange.ALL.granularity, TrendRange.YEAR.granularity)
        self.assertEqual(TrendRange.ALL.horizon, TrendRange.YEAR.horizon)
        self.assertEqual(TrendRange.ALL.label, "last 12 months")

    def test_unknown_range_falls_back_to_week(self):
        self.assertIs(TrendRange.from_string("decade"), TrendRange.WEEK)
        self.assertIs(TrendRange.from_string(None), TrendRange.WEEK)
        self.assertIs(TrendRange.from_string("YEAR"), TrendRange.YEAR)
