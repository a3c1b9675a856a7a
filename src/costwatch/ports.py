from datetime import datetime, timedelta
from typing import Protocol, Sequence

from costwatch.models import (
    AlertRule,
    Datapoint,
    MetricAnomaly,
    MetricBucket,
    MetricPercentiles,
)


class MetricsRepository(Protocol):
    """
    MetricsRepository answers aggregate queries over stored usage.
    Rows come back already summed per bucket and ordered by
    (service, metric, timestamp).
    """

    async def aggregate(
        self,
        start: "datetime",
        end: "datetime",
        bucket: "timedelta",
    ) -> "list[MetricBucket]": ...

    async def percentiles(
        self,
        start: "datetime",
        end: "datetime",
        bucket: "timedelta",
    ) -> "list[MetricPercentiles]": ...

    async def anomalies(
        self,
        start: "datetime",
        end: "datetime",
        bucket: "timedelta",
    ) -> "list[MetricAnomaly]": ...


class UsageSink(Protocol):
    async def write_batch(
        self,
        service: "str",
        metric: "str",
        datapoints: "Sequence[Datapoint]",
    ) -> "int": ...


class WatermarkStore(Protocol):
    """
    WatermarkStore persists, per service/metric pair, the instant
    through which usage has been ingested.
    """

    async def get(self, service: "str", metric: "str") -> "datetime | None": ...

    async def set(self, service: "str", metric: "str", ts: "datetime") -> "None": ...


class AlertsRepository(Protocol):
    async def list_rules(self) -> "list[AlertRule]": ...

    async def upsert_rule(self, rule: "AlertRule") -> "None": ...

    async def get_last_notified(
        self,
        service: "str",
        metric: "str",
    ) -> "datetime | None": ...

    async def set_last_notified(
        self,
        service: "str",
        metric: "str",
        ts: "datetime",
    ) -> "None": ...


class Notifier(Protocol):
    async def send(self, text: "str") -> "None": ...


class CostCatalog(Protocol):
    def compute_cost(
        self,
        service: "str",
        metric: "str",
        units: "float",
    ) -> "tuple[float, bool]": ...
