import math
from datetime import datetime, timedelta, timezone
from typing import Any, Sequence

import httpx
import structlog

from costwatch.aggregation import truncate
from costwatch.models import Datapoint
from costwatch.provider.base import MetricGroup

logger = structlog.get_logger()

COINGECKO_BASE_URL = "https://api.coingecko.com/api/v3"
SERVICE_LABEL = "coingecko"

# demo pricing, 100 per price unit
PRICE = 100
UNITS_PER_PRICE = 1


def prices_to_datapoints(
    prices: "Sequence[Any]",
    start: "datetime",
    end: "datetime",
    bucket: "timedelta" = timedelta(hours=1),
) -> "list[Datapoint]":
    """
    converts market chart [millis, price] pairs into datapoints
    truncated to the bucket, keeping those strictly inside
    (start, end). The first price seen for a bucket wins.
    """
    points: "dict[datetime, Datapoint]" = {}

    for pair in prices:
        if not isinstance(pair, (list, tuple)) or len(pair) != 2:
            continue

        millis, value = pair
        ts = datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
        ts = truncate(ts, bucket)
        if start < ts < end and ts not in points:
            points[ts] = Datapoint(timestamp=ts, value=float(value))

    return list(points.values())


class CoinGeckoPriceMetric:
    """
    CoinGeckoPriceMetric turns the bitcoin market price into a
    billable metric, handy to demo the pipeline without a cloud
    account.
    """

    def __init__(
        self,
        vs_currency: "str" = "eur",
        client: "httpx.AsyncClient | None" = None,
        timeout: "float" = 10.0,
    ) -> "None":
        self._vs_currency = vs_currency
        self._client: "httpx.AsyncClient" = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"Accept": "application/json"},
        )

    @property
    def label(self) -> "str":
        return f"btc_{self._vs_currency}"

    @property
    def price(self) -> "float":
        return PRICE

    @property
    def units_per_price(self) -> "float":
        return UNITS_PER_PRICE

    async def close(self) -> "None":
        await self._client.aclose()

    async def datapoints(
        self,
        label: "str",
        start: "datetime",
        end: "datetime",
    ) -> "list[Datapoint]":
        if start >= end:
            return []

        # the API only takes whole days
        days = math.ceil((end - start) / timedelta(days=1))

        url = f"{COINGECKO_BASE_URL}/coins/bitcoin/market_chart"
        logger.debug("coingecko_fetch_market_chart", url=url, days=days)
        resp = await self._client.get(
            url,
            params={"vs_currency": self._vs_currency, "days": str(days)},
        )
        resp.raise_for_status()

        points = prices_to_datapoints(resp.json().get("prices", []), start, end)
        logger.debug("coingecko_fetch_done", metric=label, points=len(points))
        return points


def new_service(metric: "CoinGeckoPriceMetric | None" = None) -> "MetricGroup":
    svc = MetricGroup(SERVICE_LABEL)
    svc.add_metric(metric or CoinGeckoPriceMetric())
    return svc
