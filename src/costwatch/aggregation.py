"""
In-process replacements for the aggregate queries of a columnar
analytics store: fixed-width bucketing, per-series percentiles and
z-score anomalies on bucket-to-bucket changes.
"""

import math
import statistics
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Iterable

from costwatch.models import MetricAnomaly, MetricBucket, MetricPercentiles

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def truncate(ts: "datetime", bucket: "timedelta") -> "datetime":
    """
    returns the start of the bucket containing ts. Buckets are
    aligned on the unix epoch.
    """
    if bucket <= timedelta(0):
        raise ValueError("bucket width must be positive")

    return EPOCH + ((ts - EPOCH) // bucket) * bucket


def bucketize(
    rows: "Iterable[tuple[str, str, datetime, float]]",
    start: "datetime",
    end: "datetime",
    bucket: "timedelta",
) -> "list[MetricBucket]":
    """
    sums raw (service, metric, timestamp, value) rows that fall in
    [start, end) into buckets, ordered by service, metric and
    bucket start.
    """
    sums: "dict[tuple[str, str, datetime], float]" = defaultdict(float)

    for service, metric, ts, value in rows:
        if ts < start or ts >= end:
            continue

        sums[(service, metric, truncate(ts, bucket))] += value

    return [
        MetricBucket(service=s, metric=m, timestamp=ts, units=units)
        for (s, m, ts), units in sorted(sums.items())
    ]


def quantile(values: "list[float]", q: "float") -> "float":
    """
    linear interpolation between closest ranks. values must be
    sorted and non-empty.
    """
    if not values:
        raise ValueError("quantile of empty series")

    if not 0.0 <= q <= 1.0:
        raise ValueError("q must be within [0, 1]")

    rank = q * (len(values) - 1)
    lo = math.floor(rank)
    hi = math.ceil(rank)
    if lo == hi:
        return values[lo]

    return values[lo] + (values[hi] - values[lo]) * (rank - lo)


def percentiles(buckets: "Iterable[MetricBucket]") -> "list[MetricPercentiles]":
    """
    computes p50/p90/p95/max of the bucketed units of every series.
    """
    series: "dict[tuple[str, str], list[float]]" = defaultdict(list)
    for b in buckets:
        series[(b.service, b.metric)].append(b.units)

    out: "list[MetricPercentiles]" = []
    for (service, metric), values in sorted(series.items()):
        values.sort()
        out.append(
            MetricPercentiles(
                service=service,
                metric=metric,
                p50=quantile(values, 0.50),
                p90=quantile(values, 0.90),
                p95=quantile(values, 0.95),
                pmax=values[-1],
            )
        )

    return out


ANOMALY_WINDOW = 20
ANOMALY_THRESHOLD = 3.0


def anomalies(
    buckets: "Iterable[MetricBucket]",
    start: "datetime",
    end: "datetime",
    bucket: "timedelta",
    window: "int" = ANOMALY_WINDOW,
    threshold: "float" = ANOMALY_THRESHOLD,
) -> "list[MetricAnomaly]":
    """
    flags buckets whose change from the previous bucket of the same
    series is an outlier.

    For every bucket after the first of its series, diff is its units
    minus the units of the previous bucket. The diff is scored against
    the population mean and standard deviation of the diffs of up to
    `window` preceding buckets:

        z = (diff - mean) / stddev

    A bucket is kept when |z| > threshold, stddev is not zero, and it
    starts within [start, truncate(end, bucket)), so the incomplete
    last bucket is never flagged. Buckets before start still count
    as history. Results are ordered most recent first.
    """
    last_complete = truncate(end, bucket)

    series: "dict[tuple[str, str], list[MetricBucket]]" = defaultdict(list)
    for b in buckets:
        series[(b.service, b.metric)].append(b)

    out: "list[MetricAnomaly]" = []
    for rows in series.values():
        rows.sort(key=lambda r: r.timestamp)
        # diffs[i] belongs to rows[i + 1]
        diffs = [cur.units - prev.units for prev, cur in zip(rows, rows[1:])]

        for i, diff in enumerate(diffs):
            row = rows[i + 1]
            history = diffs[max(0, i - window) : i]
            if not history:
                continue

            mu = statistics.fmean(history)
            sigma = statistics.pstdev(history, mu)
            if sigma == 0:
                continue

            z = (diff - mu) / sigma
            if abs(z) <= threshold:
                continue

            if start <= row.timestamp < last_complete:
                out.append(
                    MetricAnomaly(
                        service=row.service,
                        metric=row.metric,
                        timestamp=row.timestamp,
                        units=row.units,
                        diff=diff,
                        z_score=z,
                    )
                )

    out.sort(key=lambda a: (a.timestamp, a.service, a.metric), reverse=True)
    return out
