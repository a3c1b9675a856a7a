from datetime import datetime, timedelta

from costwatch.models import AnomalyRecord, PercentileCost, UsageItem
from costwatch.ports import CostCatalog, MetricsRepository


class UsageService:
    """
    UsageService exposes bucketed usage, usage percentiles and
    usage anomalies, converted to cost through the catalog. Metrics
    missing from the catalog are reported with a cost of zero.
    """

    def __init__(self, metrics: "MetricsRepository", catalog: "CostCatalog") -> "None":
        self._metrics = metrics
        self._catalog = catalog

    async def usage(
        self,
        start: "datetime",
        end: "datetime",
        bucket: "timedelta",
    ) -> "list[UsageItem]":
        rows = await self._metrics.aggregate(start, end, bucket)

        items: "list[UsageItem]" = []
        for r in rows:
            cost, _ = self._catalog.compute_cost(r.service, r.metric, r.units)
            items.append(
                UsageItem(
                    service=r.service,
                    metric=r.metric,
                    timestamp=r.timestamp,
                    units=r.units,
                    cost=cost,
                )
            )

        return items

    async def usage_percentiles(
        self,
        start: "datetime",
        end: "datetime",
        bucket: "timedelta",
    ) -> "list[PercentileCost]":
        rows = await self._metrics.percentiles(start, end, bucket)

        out: "list[PercentileCost]" = []
        for r in rows:
            costs = [
                self._catalog.compute_cost(r.service, r.metric, units)[0]
                for units in (r.p50, r.p90, r.p95, r.pmax)
            ]
            out.append(PercentileCost(r.service, r.metric, *costs))

        return out

    async def anomalies(
        self,
        start: "datetime",
        end: "datetime",
        bucket: "timedelta",
    ) -> "list[AnomalyRecord]":
        rows = await self._metrics.anomalies(start, end, bucket)

        return [
            AnomalyRecord(
                service=r.service,
                metric=r.metric,
                timestamp=r.timestamp,
                units=r.units,
                diff=r.diff,
                z_score=r.z_score,
                cost=self._catalog.compute_cost(r.service, r.metric, r.units)[0],
            )
            for r in rows
        ]
