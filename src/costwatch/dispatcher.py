import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog

from costwatch.aggregation import truncate
from costwatch.alerts import AlertService
from costwatch.models import AlertWindow
from costwatch.ports import AlertsRepository, Notifier
from costwatch.telemetry import Telemetry

logger = structlog.get_logger()

DEFAULT_LOOKBACK = timedelta(hours=48)
DEFAULT_RECENT = timedelta(hours=2)
DEFAULT_DEDUPE_INTERVAL = timedelta(hours=1)
DEFAULT_BUCKET = timedelta(hours=1)


def _fmt(ts: "datetime") -> "str":
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def format_alert(window: "AlertWindow", ongoing: "bool") -> "str":
    head = (
        f"[CostWatch] Alert: {window.service}/{window.metric} exceeded threshold "
        f"for {window.hours}h (expected ${window.expected_cost:.2f}, "
        f"actual ${window.real_cost:.2f})"
    )
    if ongoing:
        return f"{head} since {_fmt(window.start)} UTC (ongoing)"

    return f"{head} from {_fmt(window.start)} to {_fmt(window.end)} UTC"


@dataclass(slots=True)
class DispatchReport:
    windows: "int" = 0
    sent: "int" = 0
    skipped: "int" = 0
    failed: "int" = 0


class NotificationDispatcher:
    """
    NotificationDispatcher sends one alert per service/metric pair
    for windows that ended recently, at most once per dedupe
    interval. The last-notified instant is only persisted after a
    successful delivery, so a failed send is retried on the next
    tick.
    """

    def __init__(
        self,
        alert_service: "AlertService",
        alerts: "AlertsRepository",
        notifier: "Notifier",
        telemetry: "Telemetry | None" = None,
        lookback: "timedelta" = DEFAULT_LOOKBACK,
        recent: "timedelta" = DEFAULT_RECENT,
        dedupe_interval: "timedelta" = DEFAULT_DEDUPE_INTERVAL,
        bucket: "timedelta" = DEFAULT_BUCKET,
        call_timeout: "float" = 30.0,
    ) -> "None":
        self._alert_service = alert_service
        self._alerts = alerts
        self._notifier = notifier
        self._telemetry = telemetry
        self._lookback = lookback
        self._recent = recent
        self._dedupe_interval = dedupe_interval
        self._bucket = bucket
        self._call_timeout = call_timeout

    async def dispatch(self, now: "datetime | None" = None) -> "DispatchReport":
        now = now or datetime.now(timezone.utc)
        report = DispatchReport()

        windows = await self._alert_service.compute_windows(
            now - self._lookback, now, self._bucket
        )
        cutoff = now - self._recent
        recent = [w for w in windows if w.end > cutoff]
        report.windows = len(recent)
        if not recent:
            logger.debug("alerts_no_recent_windows")
            return report

        boundary = truncate(now, self._bucket)
        notified: "set[tuple[str, str]]" = set()

        for w in recent:
            key = (w.service, w.metric)
            if key in notified:
                report.skipped += 1
                self._count(w, "skipped")
                continue

            try:
                last = await asyncio.wait_for(
                    self._alerts.get_last_notified(w.service, w.metric),
                    timeout=self._call_timeout,
                )
            except Exception:
                logger.exception(
                    "alerts_last_notified_error", service=w.service, metric=w.metric
                )
                report.failed += 1
                self._count(w, "failed")
                continue

            if last is not None and now - last < self._dedupe_interval:
                logger.debug(
                    "alerts_skip_recent",
                    service=w.service,
                    metric=w.metric,
                    last_sent=last.isoformat(),
                )
                report.skipped += 1
                self._count(w, "skipped")
                continue

            text = format_alert(w, ongoing=w.is_ongoing(boundary))
            try:
                await asyncio.wait_for(
                    self._notifier.send(text), timeout=self._call_timeout
                )
            except Exception:
                logger.exception(
                    "alerts_send_failed", service=w.service, metric=w.metric
                )
                report.failed += 1
                self._count(w, "failed")
                continue

            # delivered: never send again for this pair in this pass,
            # even when persisting the timestamp fails below
            notified.add(key)
            report.sent += 1
            self._count(w, "sent")
            logger.info(
                "alerts_posted",
                service=w.service,
                metric=w.metric,
                hours=w.hours,
                expected=w.expected_cost,
                actual=w.real_cost,
            )

            try:
                await asyncio.wait_for(
                    self._alerts.set_last_notified(w.service, w.metric, now),
                    timeout=self._call_timeout,
                )
            except Exception:
                logger.exception(
                    "alerts_persist_last_sent_failed",
                    service=w.service,
                    metric=w.metric,
                )

        logger.info(
            "alerts_summary",
            windows=report.windows,
            posted=report.sent,
            skipped=report.skipped,
            failed=report.failed,
        )
        return report

    def _count(self, window: "AlertWindow", outcome: "str") -> "None":
        if self._telemetry is not None:
            self._telemetry.inc_notification(window.service, window.metric, outcome)
