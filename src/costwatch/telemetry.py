from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram


class Telemetry:
    """
    exposes the worker's own health as Prometheus metrics: sync
    durations, failures per pair and stage, watermarks and
    notification outcomes.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._sync_duration: "Histogram" = Histogram(
            "costwatch_sync_duration_seconds",
            "Duration of full sync ticks",
            registry=registry,
        )
        self._datapoints: "Counter" = Counter(
            "costwatch_datapoints_ingested_total",
            "Datapoints written to the usage store",
            ["service", "metric"],
            registry=registry,
        )
        self._sync_errors: "Counter" = Counter(
            "costwatch_sync_errors_total",
            "Total number of sync errors by service, metric and stage",
            ["service", "metric", "stage"],
            registry=registry,
        )
        self._watermark: "Gauge" = Gauge(
            "costwatch_sync_watermark_timestamp_seconds",
            "Unix timestamp through which a pair has been ingested",
            ["service", "metric"],
            registry=registry,
        )
        self._notifications: "Counter" = Counter(
            "costwatch_notifications_total",
            "Alert notifications by outcome",
            ["service", "metric", "outcome"],
            registry=registry,
        )

    def observe_sync_duration(self, duration_seconds: "float") -> "None":
        self._sync_duration.observe(duration_seconds)

    def inc_datapoints(self, service: "str", metric: "str", count: "int") -> "None":
        self._datapoints.labels(service=service, metric=metric).inc(count)

    def inc_sync_error(self, service: "str", metric: "str", stage: "str") -> "None":
        self._sync_errors.labels(service=service, metric=metric, stage=stage).inc()

    def set_watermark(self, service: "str", metric: "str", timestamp: "float") -> "None":
        self._watermark.labels(service=service, metric=metric).set(timestamp)

    def inc_notification(self, service: "str", metric: "str", outcome: "str") -> "None":
        """
        outcome is one of "sent", "skipped" or "failed".
        """
        self._notifications.labels(
            service=service, metric=metric, outcome=outcome
        ).inc()
