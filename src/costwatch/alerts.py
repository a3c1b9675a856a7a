from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable

import structlog

from costwatch.aggregation import truncate
from costwatch.models import AlertRule, AlertWindow, AlertWindowView, MetricBucket
from costwatch.ports import AlertsRepository, CostCatalog, MetricsRepository

logger = structlog.get_logger()


@dataclass(slots=True)
class _OpenWindow:
    service: "str"
    metric: "str"
    start: "datetime"
    end: "datetime"
    last: "datetime"
    hours: "int"
    real_cost: "Decimal"
    threshold: "float"

    @classmethod
    def begin(
        cls,
        row: "MetricBucket",
        cost: "float",
        threshold: "float",
        bucket: "timedelta",
    ) -> "_OpenWindow":
        return cls(
            service=row.service,
            metric=row.metric,
            start=row.timestamp,
            end=row.timestamp + bucket,
            last=row.timestamp,
            hours=1,
            real_cost=Decimal(repr(cost)),
            threshold=threshold,
        )

    def extend(self, row: "MetricBucket", cost: "float", bucket: "timedelta") -> "None":
        self.end = row.timestamp + bucket
        self.last = row.timestamp
        self.hours += 1
        self.real_cost += Decimal(repr(cost))

    def close(self) -> "AlertWindow":
        return AlertWindow(
            service=self.service,
            metric=self.metric,
            start=self.start,
            end=self.end,
            hours=self.hours,
            real_cost=float(self.real_cost),
            threshold=self.threshold,
        )


def compute_windows(
    buckets: "Iterable[MetricBucket]",
    rules: "Iterable[AlertRule]",
    catalog: "CostCatalog",
    bucket: "timedelta",
) -> "list[AlertWindow]":
    """
    turns bucketed usage into alert windows in a single pass.

    buckets must be ordered by (service, metric, timestamp), which
    keeps every series contiguous in the input. A window opens on the
    first bucket whose cost exceeds the pair's threshold, grows while
    the following buckets are exactly one bucket apart and still
    exceed it, and closes on a non-exceeding bucket, a gap or a change
    of series. Series without a rule never produce windows.

    Windows are returned most recent first.
    """
    thresholds = {(r.service, r.metric): r.threshold for r in rules}
    if not thresholds:
        return []

    windows: "list[AlertWindow]" = []
    cur: "_OpenWindow | None" = None
    cur_key: "tuple[str, str] | None" = None

    for row in buckets:
        key = (row.service, row.metric)
        threshold = thresholds.get(key)

        if threshold is None:
            # an open window can only belong to a previous series here
            if cur is not None:
                windows.append(cur.close())
                cur = None
            cur_key = key
            continue

        if key != cur_key:
            if cur is not None:
                windows.append(cur.close())
                cur = None
            cur_key = key

        cost, ok = catalog.compute_cost(row.service, row.metric, row.units)
        if not ok:
            logger.debug(
                "alert_cost_unavailable",
                service=row.service,
                metric=row.metric,
                timestamp=row.timestamp.isoformat(),
            )
            if cur is not None:
                windows.append(cur.close())
                cur = None
            continue

        if cost > threshold:
            if cur is None:
                cur = _OpenWindow.begin(row, cost, threshold, bucket)
            elif row.timestamp - cur.last == bucket:
                cur.extend(row, cost, bucket)
            else:
                windows.append(cur.close())
                cur = _OpenWindow.begin(row, cost, threshold, bucket)

        elif cur is not None:
            windows.append(cur.close())
            cur = None

    if cur is not None:
        windows.append(cur.close())

    windows.sort(key=lambda w: w.start, reverse=True)
    return windows


class AlertService:
    """
    AlertService owns alert rules and the read side of alert
    windows. It never sends notifications; that is left to the
    NotificationDispatcher running after each sync.
    """

    def __init__(
        self,
        metrics: "MetricsRepository",
        alerts: "AlertsRepository",
        catalog: "CostCatalog",
    ) -> "None":
        self._metrics = metrics
        self._alerts = alerts
        self._catalog = catalog

    async def list_rules(self) -> "list[AlertRule]":
        return await self._alerts.list_rules()

    async def upsert_rule(self, rule: "AlertRule") -> "None":
        rule.validate()
        await self._alerts.upsert_rule(rule)
        logger.info(
            "alert_rule_upserted",
            service=rule.service,
            metric=rule.metric,
            threshold=rule.threshold,
        )

    async def compute_windows(
        self,
        start: "datetime",
        end: "datetime",
        bucket: "timedelta",
    ) -> "list[AlertWindow]":
        rules = await self._alerts.list_rules()
        # nothing to evaluate, skip the usage query entirely
        if not rules:
            return []

        buckets = await self._metrics.aggregate(start, end, bucket)
        return compute_windows(buckets, rules, self._catalog, bucket)

    async def alert_windows(
        self,
        start: "datetime",
        end: "datetime",
        bucket: "timedelta",
    ) -> "list[AlertWindowView]":
        """
        windows for display. Those still open at the last complete
        bucket boundary of the range are flagged as ongoing.
        """
        windows = await self.compute_windows(start, end, bucket)
        boundary = truncate(end, bucket)
        return [AlertWindowView(window=w, ongoing=w.is_ongoing(boundary)) for w in windows]
