import math
from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class Datapoint:
    """
    Datapoint is a single usage sample returned by a
    metric provider. The value is the usage accumulated over
    the provider's own sampling period.
    """

    timestamp: "datetime"
    value: "float"


@dataclass(frozen=True, slots=True)
class MetricBucket:
    """
    MetricBucket is the summed usage of one service/metric
    pair over a single bucket.
    """

    service: "str"
    metric: "str"
    # start of the bucket, UTC
    timestamp: "datetime"
    units: "float"


@dataclass(frozen=True, slots=True)
class MetricPercentiles:
    """
    MetricPercentiles holds usage percentiles (in units) of the
    bucketed series of a service/metric pair.
    """

    service: "str"
    metric: "str"
    p50: "float"
    p90: "float"
    p95: "float"
    pmax: "float"


@dataclass(frozen=True, slots=True)
class MetricAnomaly:
    """
    MetricAnomaly is a bucket whose change from the previous bucket
    of its series is an outlier against recent changes.
    """

    service: "str"
    metric: "str"
    timestamp: "datetime"
    units: "float"
    # units minus the units of the previous bucket
    diff: "float"
    z_score: "float"


@dataclass(frozen=True, slots=True)
class AlertRule:
    """
    AlertRule defines a per-bucket cost threshold for a
    service/metric pair.
    """

    service: "str"
    metric: "str"
    threshold: "float"

    def validate(self) -> "None":
        if not self.service or not self.metric:
            raise ValueError("service and metric are required")

        if not math.isfinite(self.threshold) or self.threshold < 0:
            raise ValueError("threshold must be a finite, non-negative number")


@dataclass(frozen=True, slots=True)
class AlertWindow:
    """
    AlertWindow is a maximal run of contiguous buckets whose
    cost exceeded the threshold of the pair's rule.
    """

    service: "str"
    metric: "str"
    start: "datetime"
    # start of the last exceeding bucket plus the bucket width
    end: "datetime"
    hours: "int"
    real_cost: "float"
    threshold: "float"

    @property
    def expected_cost(self) -> "float":
        return self.threshold * self.hours

    def is_ongoing(self, boundary: "datetime") -> "bool":
        """
        a window reaching past the last complete bucket boundary
        has not been closed yet.
        """
        return self.end > boundary


@dataclass(frozen=True, slots=True)
class AlertWindowView:
    window: "AlertWindow"
    ongoing: "bool"

    @property
    def end(self) -> "datetime | None":
        return None if self.ongoing else self.window.end


@dataclass(frozen=True, slots=True)
class UsageItem:
    service: "str"
    metric: "str"
    timestamp: "datetime"
    units: "float"
    cost: "float"


@dataclass(frozen=True, slots=True)
class PercentileCost:
    """
    PercentileCost is a MetricPercentiles row converted to cost.
    """

    service: "str"
    metric: "str"
    p50: "float"
    p90: "float"
    p95: "float"
    pmax: "float"


@dataclass(frozen=True, slots=True)
class AnomalyRecord:
    service: "str"
    metric: "str"
    timestamp: "datetime"
    units: "float"
    diff: "float"
    z_score: "float"
    # cost of the bucket's units
    cost: "float"
