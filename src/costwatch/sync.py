import asyncio
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import structlog

from costwatch.aggregation import EPOCH
from costwatch.catalog import Registry
from costwatch.dispatcher import NotificationDispatcher
from costwatch.ports import UsageSink, WatermarkStore
from costwatch.provider.base import Metric, Service
from costwatch.telemetry import Telemetry

logger = structlog.get_logger()

DEFAULT_COLD_START_LOOKBACK = timedelta(hours=48)
DEFAULT_REFETCH_SLACK = timedelta(minutes=15)

SYNCED = "synced"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass(frozen=True, slots=True)
class PairResult:
    service: "str"
    metric: "str"
    status: "str"
    start: "datetime | None" = None
    end: "datetime | None" = None
    datapoints: "int" = 0
    # stage at which a failed pair stopped
    stage: "str | None" = None


@dataclass(slots=True)
class SyncReport:
    now: "datetime"
    results: "list[PairResult]" = field(default_factory=list)

    def by_status(self, status: "str") -> "list[PairResult]":
        return [r for r in self.results if r.status == status]


class SyncEngine:
    """
    SyncEngine ingests the usage of every registered service/metric
    pair incrementally.

    Each pair keeps a watermark: the instant through which its usage
    has been written. A sync fetches [start, now) where start is the
    watermark, or now minus the cold-start lookback when the pair has
    never synced. Ranges always reach back at least refetch_slack to
    pick up datapoints the provider publishes late; the usage store
    drops the duplicates this produces.

    The watermark only moves after both the fetch and the batch write
    succeeded. Any failure leaves it untouched and the same range is
    requested again on the next sync.
    """

    def __init__(
        self,
        registry: "Registry",
        watermarks: "WatermarkStore",
        sink: "UsageSink",
        dispatcher: "NotificationDispatcher | None" = None,
        telemetry: "Telemetry | None" = None,
        cold_start_lookback: "timedelta" = DEFAULT_COLD_START_LOOKBACK,
        refetch_slack: "timedelta" = DEFAULT_REFETCH_SLACK,
        call_timeout: "float" = 30.0,
    ) -> "None":
        self._registry = registry
        self._watermarks = watermarks
        self._sink = sink
        self._dispatcher = dispatcher
        self._telemetry = telemetry
        self._cold_start_lookback = cold_start_lookback
        self._refetch_slack = refetch_slack
        self._call_timeout = call_timeout
        # serializes watermark read-modify-write per pair
        self._locks: "defaultdict[tuple[str, str], asyncio.Lock]" = defaultdict(
            asyncio.Lock
        )

    def fetch_range(
        self,
        last: "datetime | None",
        now: "datetime",
    ) -> "tuple[datetime, datetime] | None":
        """
        returns the [start, end) range to fetch given the stored
        watermark, or None when there is nothing to fetch.
        """
        if last is None or last <= EPOCH:
            start = now - self._cold_start_lookback
        else:
            start = min(last, now - self._refetch_slack)

        if start >= now:
            return None

        return start, now

    async def sync(self, now: "datetime | None" = None) -> "SyncReport":
        now = now or datetime.now(timezone.utc)
        report = SyncReport(now=now)
        cycle_start = time.monotonic()

        logger.info("sync_cycle_start", now=now.isoformat())

        tasks = [self._sync_pair(svc, m, now) for svc, m in self._registry.pairs()]
        report.results = list(await asyncio.gather(*tasks))

        logger.info(
            "sync_cycle_end",
            synced=len(report.by_status(SYNCED)),
            skipped=len(report.by_status(SKIPPED)),
            failed=len(report.by_status(FAILED)),
        )

        # best effort, watermarks committed above stay committed
        if self._dispatcher is not None:
            try:
                await self._dispatcher.dispatch(now)
            except Exception:
                logger.exception("alerts_dispatch_failed")

        if self._telemetry is not None:
            self._telemetry.observe_sync_duration(time.monotonic() - cycle_start)

        return report

    async def _sync_pair(
        self,
        service: "Service",
        metric: "Metric",
        now: "datetime",
    ) -> "PairResult":
        s, m = service.label, metric.label

        async with self._locks[(s, m)]:
            try:
                last = await asyncio.wait_for(
                    self._watermarks.get(s, m), timeout=self._call_timeout
                )
            except Exception:
                logger.exception("watermark_read_error", service=s, metric=m)
                return self._failed(s, m, "watermark_read")

            rng = self.fetch_range(last, now)
            if rng is None:
                logger.debug("sync_nothing_to_fetch", service=s, metric=m)
                return PairResult(service=s, metric=m, status=SKIPPED)

            start, end = rng
            logger.info(
                "fetching_metric",
                service=s,
                metric=m,
                start=start.isoformat(),
                end=end.isoformat(),
            )

            try:
                datapoints = await asyncio.wait_for(
                    metric.datapoints(m, start, end), timeout=self._call_timeout
                )
            except Exception:
                logger.exception("datapoints_fetch_error", service=s, metric=m)
                return self._failed(s, m, "fetch", start, end)

            try:
                written = await asyncio.wait_for(
                    self._sink.write_batch(s, m, datapoints),
                    timeout=self._call_timeout,
                )
            except Exception:
                logger.exception("usage_write_error", service=s, metric=m)
                return self._failed(s, m, "write", start, end)

            watermark = end if last is None else max(end, last)
            try:
                await asyncio.wait_for(
                    self._watermarks.set(s, m, watermark), timeout=self._call_timeout
                )
            except Exception:
                logger.exception("watermark_write_error", service=s, metric=m)
                return self._failed(s, m, "watermark_write", start, end)

        if self._telemetry is not None:
            self._telemetry.inc_datapoints(s, m, written)
            self._telemetry.set_watermark(s, m, watermark.timestamp())

        return PairResult(
            service=s,
            metric=m,
            status=SYNCED,
            start=start,
            end=end,
            datapoints=written,
        )

    def _failed(
        self,
        service: "str",
        metric: "str",
        stage: "str",
        start: "datetime | None" = None,
        end: "datetime | None" = None,
    ) -> "PairResult":
        if self._telemetry is not None:
            self._telemetry.inc_sync_error(service, metric, stage)

        return PairResult(
            service=service,
            metric=metric,
            status=FAILED,
            start=start,
            end=end,
            stage=stage,
        )
