import asyncio
from datetime import datetime
from typing import Any

import boto3
import structlog
from botocore.config import Config

from costwatch.models import Datapoint
from costwatch.provider.base import MetricGroup

logger = structlog.get_logger()

SERVICE_LABEL = "aws.CloudWatch"

# CloudWatch Logs ingestion, priced per GB
INCOMING_BYTES_PRICE = 50
INCOMING_BYTES_UNITS_PER_PRICE = 1e9

# sampling period of GetMetricStatistics, in seconds
PERIOD_SECONDS = 900


def new_client(region: "str | None" = None) -> "Any":
    config = Config(
        retries={"max_attempts": 3, "mode": "adaptive"},
        read_timeout=30,
        connect_timeout=10,
    )
    return boto3.client("cloudwatch", region_name=region, config=config)


class CloudWatchMetric:
    """
    CloudWatchMetric reads the Sum statistic of a CloudWatch metric
    in fixed periods. boto3 is blocking, so calls run in a worker
    thread to keep the event loop free.
    """

    def __init__(
        self,
        client: "Any",
        metric_name: "str" = "IncomingBytes",
        namespace: "str" = "AWS/Logs",
        price: "float" = INCOMING_BYTES_PRICE,
        units_per_price: "float" = INCOMING_BYTES_UNITS_PER_PRICE,
    ) -> "None":
        self._client = client
        self._metric_name = metric_name
        self._namespace = namespace
        self._price = price
        self._units_per_price = units_per_price

    @property
    def label(self) -> "str":
        return self._metric_name

    @property
    def price(self) -> "float":
        return self._price

    @property
    def units_per_price(self) -> "float":
        return self._units_per_price

    async def datapoints(
        self,
        label: "str",
        start: "datetime",
        end: "datetime",
    ) -> "list[Datapoint]":
        data = await asyncio.to_thread(
            self._client.get_metric_statistics,
            Namespace=self._namespace,
            MetricName=label,
            StartTime=start,
            EndTime=end,
            Period=PERIOD_SECONDS,
            Statistics=["Sum"],
        )

        points = [
            Datapoint(timestamp=dp["Timestamp"], value=float(dp["Sum"]))
            for dp in data.get("Datapoints", [])
        ]
        points.sort(key=lambda p: p.timestamp)

        logger.debug("cloudwatch_fetch_done", metric=label, points=len(points))
        return points


def new_service(client: "Any") -> "MetricGroup":
    svc = MetricGroup(SERVICE_LABEL)
    svc.add_metric(CloudWatchMetric(client))
    return svc
