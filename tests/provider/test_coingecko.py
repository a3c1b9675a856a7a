from datetime import datetime, timedelta, timezone

import httpx
import pytest
import respx

from costwatch.models import Datapoint
from costwatch.provider.coingecko import (
    COINGECKO_BASE_URL,
    SERVICE_LABEL,
    CoinGeckoPriceMetric,
    new_service,
    prices_to_datapoints,
)

HOUR = timedelta(hours=1)
T0 = datetime(2025, 8, 22, 0, 0, tzinfo=timezone.utc)
MARKET_CHART = f"{COINGECKO_BASE_URL}/coins/bitcoin/market_chart"


def _millis(ts: "datetime") -> "int":
    return int(ts.timestamp() * 1000)


class TestPricesToDatapoints:
    def test_truncates_and_keeps_first_per_bucket(self) -> "None":
        prices = [
            [_millis(T0 + timedelta(hours=1, minutes=5)), 100.0],
            [_millis(T0 + timedelta(hours=1, minutes=55)), 101.0],
            [_millis(T0 + timedelta(hours=2, minutes=3)), 102.0],
        ]
        out = prices_to_datapoints(prices, T0, T0 + 3 * HOUR)
        assert out == [
            Datapoint(T0 + HOUR, 100.0),
            Datapoint(T0 + 2 * HOUR, 102.0),
        ]

    def test_range_bounds_are_exclusive(self) -> "None":
        prices = [
            [_millis(T0), 1.0],
            [_millis(T0 + HOUR), 2.0],
            [_millis(T0 + 2 * HOUR), 3.0],
        ]
        out = prices_to_datapoints(prices, T0, T0 + 2 * HOUR)
        assert out == [Datapoint(T0 + HOUR, 2.0)]

    def test_skips_malformed_pairs(self) -> "None":
        prices = [[_millis(T0 + HOUR)], "oops", [_millis(T0 + HOUR), 5.0]]
        out = prices_to_datapoints(prices, T0, T0 + 2 * HOUR)
        assert out == [Datapoint(T0 + HOUR, 5.0)]


class TestCoinGeckoPriceMetric:
    def test_pricing_and_label(self) -> "None":
        svc = new_service()
        (metric,) = svc.metrics()
        assert svc.label == SERVICE_LABEL
        assert metric.label == "btc_eur"
        assert (metric.price, metric.units_per_price) == (100, 1)

    @pytest.mark.asyncio
    @respx.mock
    async def test_fetches_market_chart(self) -> "None":
        route = respx.get(MARKET_CHART).mock(
            return_value=httpx.Response(
                200,
                json={
                    "prices": [
                        [_millis(T0 + timedelta(hours=1, minutes=2)), 51234.5],
                        [_millis(T0 + timedelta(hours=2, minutes=2)), 51300.0],
                    ]
                },
            )
        )

        metric = CoinGeckoPriceMetric()
        points = await metric.datapoints("btc_eur", T0, T0 + 30 * HOUR)
        await metric.close()

        params = route.calls.last.request.url.params
        assert params["vs_currency"] == "eur"
        # 30 hours round up to two days
        assert params["days"] == "2"
        assert points == [
            Datapoint(T0 + HOUR, 51234.5),
            Datapoint(T0 + 2 * HOUR, 51300.0),
        ]

    @pytest.mark.asyncio
    @respx.mock
    async def test_empty_range_does_not_call_api(self) -> "None":
        metric = CoinGeckoPriceMetric()
        assert await metric.datapoints("btc_eur", T0, T0) == []
        await metric.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_raises_on_error_status(self) -> "None":
        respx.get(MARKET_CHART).mock(return_value=httpx.Response(429))

        metric = CoinGeckoPriceMetric()
        with pytest.raises(httpx.HTTPStatusError):
            await metric.datapoints("btc_eur", T0, T0 + HOUR)
        await metric.close()
