from datetime import datetime, timedelta
from typing import Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncEngine

from costwatch import aggregation
from costwatch.models import Datapoint, MetricAnomaly, MetricBucket, MetricPercentiles
from costwatch.store.schema import from_db, metrics, to_db

logger = structlog.get_logger()


class SQLMetricsStore:
    """
    SQLMetricsStore keeps raw usage datapoints and answers the
    bucketed aggregate, percentile and anomaly queries over them.

    Writes are idempotent: a datapoint already stored for the same
    (service, metric, timestamp) is replaced by the newly fetched
    value, so re-fetching an overlapping range never double counts
    and a value the provider revised since the last fetch wins.
    """

    def __init__(self, engine: "AsyncEngine") -> "None":
        self._engine = engine

    async def write_batch(
        self,
        service: "str",
        metric: "str",
        datapoints: "Sequence[Datapoint]",
    ) -> "int":
        """
        inserts all datapoints in a single transaction. Returns the
        number of datapoints submitted.
        """
        if not datapoints:
            return 0

        rows = [
            {
                "service": service,
                "metric": metric,
                "timestamp": to_db(dp.timestamp),
                "value": dp.value,
            }
            for dp in datapoints
        ]
        stmt = sqlite_insert(metrics)
        stmt = stmt.on_conflict_do_update(
            index_elements=[metrics.c.service, metrics.c.metric, metrics.c.timestamp],
            set_={"value": stmt.excluded.value},
        )

        async with self._engine.begin() as conn:
            await conn.execute(stmt, rows)

        logger.debug(
            "usage_batch_written",
            service=service,
            metric=metric,
            count=len(rows),
        )
        return len(rows)

    async def _rows(
        self,
        start: "datetime | None",
        end: "datetime",
    ) -> "list[tuple[str, str, datetime, float]]":
        stmt = (
            select(metrics.c.service, metrics.c.metric, metrics.c.timestamp, metrics.c.value)
            .where(metrics.c.timestamp < to_db(end))
            .order_by(metrics.c.service, metrics.c.metric, metrics.c.timestamp)
        )
        if start is not None:
            stmt = stmt.where(metrics.c.timestamp >= to_db(start))

        async with self._engine.connect() as conn:
            result = await conn.execute(stmt)
            return [(s, m, from_db(ts), v) for s, m, ts, v in result.all()]

    async def aggregate(
        self,
        start: "datetime",
        end: "datetime",
        bucket: "timedelta",
    ) -> "list[MetricBucket]":
        rows = await self._rows(start, end)
        return aggregation.bucketize(rows, start, end, bucket)

    async def percentiles(
        self,
        start: "datetime",
        end: "datetime",
        bucket: "timedelta",
    ) -> "list[MetricPercentiles]":
        buckets = await self.aggregate(start, end, bucket)
        return aggregation.percentiles(buckets)

    async def anomalies(
        self,
        start: "datetime",
        end: "datetime",
        bucket: "timedelta",
    ) -> "list[MetricAnomaly]":
        """
        z-score anomalies of buckets starting in [start, end). The
        whole stored history before end feeds the trailing statistics.
        """
        rows = await self._rows(None, end)
        buckets = aggregation.bucketize(rows, aggregation.EPOCH, end, bucket)
        return aggregation.anomalies(buckets, start, end, bucket)
