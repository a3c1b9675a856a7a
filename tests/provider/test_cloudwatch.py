from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from costwatch.catalog import Catalog, Registry
from costwatch.models import Datapoint
from costwatch.provider.cloudwatch import (
    PERIOD_SECONDS,
    SERVICE_LABEL,
    CloudWatchMetric,
    new_service,
)

T0 = datetime(2025, 8, 22, 0, 0, tzinfo=timezone.utc)
QUARTER = timedelta(minutes=15)


class TestCloudWatchMetric:
    @pytest.mark.asyncio
    async def test_reads_sum_statistic(self) -> "None":
        client = MagicMock()
        client.get_metric_statistics.return_value = {
            "Label": "IncomingBytes",
            "Datapoints": [
                {"Timestamp": T0 + QUARTER, "Sum": 2048.0, "Unit": "Bytes"},
                {"Timestamp": T0, "Sum": 1024.0, "Unit": "Bytes"},
            ],
        }

        metric = CloudWatchMetric(client)
        points = await metric.datapoints("IncomingBytes", T0, T0 + 2 * QUARTER)

        client.get_metric_statistics.assert_called_once_with(
            Namespace="AWS/Logs",
            MetricName="IncomingBytes",
            StartTime=T0,
            EndTime=T0 + 2 * QUARTER,
            Period=PERIOD_SECONDS,
            Statistics=["Sum"],
        )
        assert points == [
            Datapoint(T0, 1024.0),
            Datapoint(T0 + QUARTER, 2048.0),
        ]

    @pytest.mark.asyncio
    async def test_no_datapoints(self) -> "None":
        client = MagicMock()
        client.get_metric_statistics.return_value = {"Label": "IncomingBytes"}

        points = await CloudWatchMetric(client).datapoints("IncomingBytes", T0, T0 + QUARTER)
        assert points == []

    @pytest.mark.asyncio
    async def test_client_errors_propagate(self) -> "None":
        client = MagicMock()
        client.get_metric_statistics.side_effect = RuntimeError("throttled")

        with pytest.raises(RuntimeError):
            await CloudWatchMetric(client).datapoints("IncomingBytes", T0, T0 + QUARTER)

    def test_incoming_bytes_pricing(self) -> "None":
        reg = Registry()
        reg.register(new_service(MagicMock()))

        # three GB at 50 per GB
        assert Catalog(reg).compute_cost(SERVICE_LABEL, "IncomingBytes", 3e9) == (
            150.0,
            True,
        )
