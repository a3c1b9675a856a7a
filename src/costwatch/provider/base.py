from datetime import datetime
from typing import Protocol, Sequence

from costwatch.models import Datapoint


class Metric(Protocol):
    """
    Metric stands as the common protocol every billable metric
    must satisfy.

    A metric knows its own pricing (price per units_per_price
    units) and fetches its usage datapoints for a [start, end)
    range. Fetching has no side effects, so calling it again with
    the same range yields the same datapoints.
    """

    @property
    def label(self) -> "str": ...

    @property
    def price(self) -> "float": ...

    @property
    def units_per_price(self) -> "float": ...

    async def datapoints(
        self,
        label: "str",
        start: "datetime",
        end: "datetime",
    ) -> "Sequence[Datapoint]": ...


class Service(Protocol):
    """
    Service groups the metrics billed by one external service.
    """

    @property
    def label(self) -> "str": ...

    def metrics(self) -> "Sequence[Metric]": ...


class MetricGroup:
    """
    MetricGroup is a plain Service holding the metrics added to
    it, in insertion order.
    """

    def __init__(self, label: "str") -> "None":
        self._label = label
        self._metrics: "list[Metric]" = []

    @property
    def label(self) -> "str":
        return self._label

    def add_metric(self, metric: "Metric") -> "None":
        self._metrics.append(metric)

    def metrics(self) -> "list[Metric]":
        return list(self._metrics)
