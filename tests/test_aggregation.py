from datetime import datetime, timedelta, timezone

import pytest

from costwatch.aggregation import anomalies, bucketize, percentiles, quantile, truncate
from costwatch.models import MetricBucket

HOUR = timedelta(hours=1)
T0 = datetime(2025, 8, 22, 10, 0, tzinfo=timezone.utc)


class TestTruncate:
    def test_aligns_to_bucket_start(self) -> "None":
        ts = datetime(2025, 8, 22, 10, 42, 17, tzinfo=timezone.utc)
        assert truncate(ts, HOUR) == T0
        assert truncate(ts, timedelta(minutes=15)) == T0 + timedelta(minutes=30)

    def test_bucket_start_is_a_fixed_point(self) -> "None":
        assert truncate(T0, HOUR) == T0

    def test_rejects_non_positive_width(self) -> "None":
        with pytest.raises(ValueError):
            truncate(T0, timedelta(0))


class TestBucketize:
    def test_sums_per_bucket_and_orders_rows(self) -> "None":
        rows = [
            ("b", "m", T0 + timedelta(minutes=5), 1.0),
            ("a", "m", T0 + timedelta(hours=1, minutes=1), 4.0),
            ("a", "m", T0 + timedelta(minutes=10), 2.0),
            ("a", "m", T0 + timedelta(minutes=50), 3.0),
        ]
        out = bucketize(rows, T0, T0 + timedelta(hours=2), HOUR)

        assert out == [
            MetricBucket("a", "m", T0, 5.0),
            MetricBucket("a", "m", T0 + HOUR, 4.0),
            MetricBucket("b", "m", T0, 1.0),
        ]

    def test_range_is_half_open(self) -> "None":
        rows = [
            ("a", "m", T0 - timedelta(seconds=1), 1.0),
            ("a", "m", T0, 2.0),
            ("a", "m", T0 + HOUR, 4.0),
        ]
        out = bucketize(rows, T0, T0 + HOUR, HOUR)
        assert out == [MetricBucket("a", "m", T0, 2.0)]


class TestPercentiles:
    def test_quantile_interpolates_between_ranks(self) -> "None":
        values = [1.0, 2.0, 3.0, 4.0]
        assert quantile(values, 0.0) == 1.0
        assert quantile(values, 0.5) == 2.5
        assert quantile(values, 1.0) == 4.0

    def test_quantile_rejects_empty_series(self) -> "None":
        with pytest.raises(ValueError):
            quantile([], 0.5)

    def test_percentiles_per_series(self) -> "None":
        buckets = [
            MetricBucket("a", "m", T0 + i * HOUR, float(v))
            for i, v in enumerate([10, 0, 30, 20, 40, 50, 60, 70, 80, 90, 100])
        ]
        buckets.append(MetricBucket("b", "m", T0, 7.0))

        out = percentiles(buckets)

        assert [(p.service, p.metric) for p in out] == [("a", "m"), ("b", "m")]
        a, b = out
        assert a.p50 == 50.0
        assert a.p90 == 90.0
        assert a.p95 == pytest.approx(95.0)
        assert a.pmax == 100.0
        assert (b.p50, b.p90, b.p95, b.pmax) == (7.0, 7.0, 7.0, 7.0)


def _hourly(values: "list[float]", metric: "str" = "m") -> "list[MetricBucket]":
    return [MetricBucket("svc", metric, T0 + i * HOUR, float(v)) for i, v in enumerate(values)]


# oscillates by 2 for twelve hours, jumps to 40, then drops back to 10
SPIKE = [10, 12] * 6 + [40, 10]


class TestAnomalies:
    def test_flags_spike_and_drop(self) -> "None":
        out = anomalies(_hourly(SPIKE), T0, T0 + 16 * HOUR, HOUR)

        assert [(a.timestamp, a.units, a.diff) for a in out] == [
            (T0 + 13 * HOUR, 10.0, -30.0),
            (T0 + 12 * HOUR, 40.0, 28.0),
        ]
        assert out[0].z_score == pytest.approx(-4.1028, abs=1e-3)
        assert out[1].z_score == pytest.approx(13.9669, abs=1e-3)

    def test_incomplete_bucket_is_not_flagged(self) -> "None":
        end = T0 + 13 * HOUR + timedelta(minutes=20)
        out = anomalies(_hourly(SPIKE), T0, end, HOUR)
        assert [a.timestamp for a in out] == [T0 + 12 * HOUR]

    def test_history_before_start_still_counts(self) -> "None":
        out = anomalies(_hourly(SPIKE), T0 + 13 * HOUR, T0 + 14 * HOUR, HOUR)
        assert [(a.timestamp, a.diff) for a in out] == [(T0 + 13 * HOUR, -30.0)]

    def test_constant_changes_have_no_anomalies(self) -> "None":
        # every diff is +5, so the deviation is zero
        out = anomalies(_hourly([5 * i for i in range(30)]), T0, T0 + 40 * HOUR, HOUR)
        assert out == []

    def test_single_diff_window_never_scores(self) -> "None":
        out = anomalies(_hourly(SPIKE), T0, T0 + 16 * HOUR, HOUR, window=1)
        assert out == []

    def test_series_are_scored_separately(self) -> "None":
        buckets = _hourly(SPIKE, metric="a") + _hourly([10, 12] * 7, metric="b")
        out = anomalies(buckets, T0, T0 + 16 * HOUR, HOUR)
        assert {a.metric for a in out} == {"a"}
