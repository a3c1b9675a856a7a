import argparse
import asyncio
import signal
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

import structlog
from prometheus_client import start_http_server
from sqlalchemy.ext.asyncio import AsyncEngine

from costwatch.alerts import AlertService
from costwatch.catalog import Catalog, Registry
from costwatch.cli import parse_args
from costwatch.config import Config
from costwatch.dispatcher import NotificationDispatcher
from costwatch.errors import ConfigurationError, CostwatchError
from costwatch.logging import setup_logging
from costwatch.models import AlertRule
from costwatch.notifier import WebhookNotifier
from costwatch.ports import AlertsRepository
from costwatch.provider import cloudwatch, coingecko
from costwatch.scheduler import Scheduler
from costwatch.store.database import open_database
from costwatch.store.env import EnvAlertsRepository
from costwatch.store.metrics import SQLMetricsStore
from costwatch.store.state import SQLAlertsRepository, SQLWatermarkStore
from costwatch.sync import SyncEngine
from costwatch.telemetry import Telemetry
from costwatch.usage import UsageService

logger = structlog.get_logger()

Closer = Callable[[], Awaitable[Any]]


def _parse_listen_address(addr: "str") -> "tuple[str, int]":
    """
    parses listen address in format ':4001' or '0.0.0.0:4001'.
    """
    if addr.startswith(":"):
        return ("0.0.0.0", int(addr[1:]))

    host, port = addr.rsplit(":", 1)
    return (host, int(port))


def build_registry(config: "Config") -> "tuple[Registry, list[Closer]]":
    registry = Registry()
    closers: "list[Closer]" = []

    if config.demo:
        metric = coingecko.CoinGeckoPriceMetric(timeout=config.call_timeout)
        registry.register(coingecko.new_service(metric))
        closers.append(metric.close)
        logger.info("service_enabled", service=coingecko.SERVICE_LABEL)

    if config.aws_cloudwatch_enabled:
        client = cloudwatch.new_client(config.aws_region or None)
        registry.register(cloudwatch.new_service(client))
        logger.info("service_enabled", service=cloudwatch.SERVICE_LABEL)

    return registry, closers


def build_alerts_repository(config: "Config", engine: "AsyncEngine") -> "AlertsRepository":
    if config.rules_from_env:
        logger.info("alert_rules_from_env")
        return EnvAlertsRepository(config.alert_rules)

    return SQLAlertsRepository(engine)


async def _close_all(closers: "list[Closer]") -> "None":
    for close in closers:
        try:
            await close()
        except Exception:
            logger.exception("close_failed")


async def run_worker(config: "Config", engine: "AsyncEngine") -> "None":
    registry, closers = build_registry(config)
    if not list(registry.pairs()):
        raise ConfigurationError(
            "No services configured. Set DEMO=true or AWS_CLOUDWATCH_ENABLED=true."
        )

    telemetry = Telemetry()
    catalog = Catalog(registry)
    metrics_store = SQLMetricsStore(engine)
    alerts = build_alerts_repository(config, engine)

    dispatcher: "NotificationDispatcher | None" = None
    if config.alerting_enabled:
        notifier = WebhookNotifier(config.webhook_url, timeout=config.call_timeout)
        closers.append(notifier.close)
        dispatcher = NotificationDispatcher(
            AlertService(metrics_store, alerts, catalog),
            alerts,
            notifier,
            telemetry=telemetry,
            call_timeout=config.call_timeout,
        )
    else:
        logger.info("alerting_disabled", reason="ALERT_WEBHOOK_URL not set")

    sync_engine = SyncEngine(
        registry,
        SQLWatermarkStore(engine),
        metrics_store,
        dispatcher=dispatcher,
        telemetry=telemetry,
        call_timeout=config.call_timeout,
    )

    host, port = _parse_listen_address(config.listen_address)
    start_http_server(port, addr=host)
    logger.info("metrics_server_started", host=host, port=port)

    scheduler = Scheduler(sync_engine.sync, config.sync_interval)

    loop = asyncio.get_running_loop()
    # for SIGINT and SIGTERM, let the in-flight sync finish
    # and stop the scheduler
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, scheduler.stop)

    try:
        await scheduler.run()
    finally:
        logger.info("shutting_down")
        await _close_all(closers)
        logger.info("shutdown_complete")


async def list_rules(config: "Config", engine: "AsyncEngine") -> "None":
    alerts = build_alerts_repository(config, engine)
    for rule in await alerts.list_rules():
        print(f"{rule.service}\t{rule.metric}\t{rule.threshold:.2f}")


async def set_rule(config: "Config", engine: "AsyncEngine", args: "argparse.Namespace") -> "None":
    registry, closers = build_registry(config)
    alerts = build_alerts_repository(config, engine)
    service = AlertService(SQLMetricsStore(engine), alerts, Catalog(registry))
    try:
        await service.upsert_rule(
            AlertRule(service=args.service, metric=args.metric, threshold=args.threshold)
        )
    finally:
        await _close_all(closers)


async def print_windows(config: "Config", engine: "AsyncEngine", args: "argparse.Namespace") -> "None":
    registry, closers = build_registry(config)
    alerts = build_alerts_repository(config, engine)
    service = AlertService(SQLMetricsStore(engine), alerts, Catalog(registry))

    end = datetime.now(timezone.utc)
    start = end - timedelta(days=args.days)
    try:
        views = await service.alert_windows(start, end, timedelta(hours=1))
    finally:
        await _close_all(closers)

    for v in views:
        w = v.window
        until = "ongoing" if v.end is None else v.end.isoformat()
        print(
            f"{w.service}\t{w.metric}\t{w.start.isoformat()}\t{until}\t"
            f"{w.hours}h\texpected={w.expected_cost:.2f}\tactual={w.real_cost:.2f}"
        )


async def print_usage(config: "Config", engine: "AsyncEngine", args: "argparse.Namespace") -> "None":
    registry, closers = build_registry(config)
    service = UsageService(SQLMetricsStore(engine), Catalog(registry))

    end = datetime.now(timezone.utc)
    start = end - timedelta(days=args.days)
    try:
        items = await service.usage(start, end, timedelta(hours=1))
    finally:
        await _close_all(closers)

    for i in items:
        print(
            f"{i.service}\t{i.metric}\t{i.timestamp.isoformat()}\t"
            f"units={i.units:g}\tcost={i.cost:.2f}"
        )


async def print_percentiles(
    config: "Config",
    engine: "AsyncEngine",
    args: "argparse.Namespace",
) -> "None":
    registry, closers = build_registry(config)
    service = UsageService(SQLMetricsStore(engine), Catalog(registry))

    end = datetime.now(timezone.utc)
    start = end - timedelta(days=args.days)
    try:
        rows = await service.usage_percentiles(start, end, timedelta(hours=1))
    finally:
        await _close_all(closers)

    for r in rows:
        print(
            f"{r.service}\t{r.metric}\tp50={r.p50:.2f}\tp90={r.p90:.2f}\t"
            f"p95={r.p95:.2f}\tmax={r.pmax:.2f}"
        )


async def print_anomalies(
    config: "Config",
    engine: "AsyncEngine",
    args: "argparse.Namespace",
) -> "None":
    registry, closers = build_registry(config)
    service = UsageService(SQLMetricsStore(engine), Catalog(registry))

    end = datetime.now(timezone.utc)
    start = end - timedelta(days=args.days)
    try:
        rows = await service.anomalies(start, end, timedelta(hours=1))
    finally:
        await _close_all(closers)

    for r in rows:
        print(
            f"{r.service}\t{r.metric}\t{r.timestamp.isoformat()}\t"
            f"units={r.units:g}\tdiff={r.diff:+g}\tz={r.z_score:.2f}\tcost={r.cost:.2f}"
        )


async def _run(config: "Config", args: "argparse.Namespace") -> "None":
    engine = await open_database(config.database_url)
    try:
        if args.command == "rules" and args.rules_command == "list":
            await list_rules(config, engine)
        elif args.command == "rules" and args.rules_command == "set":
            await set_rule(config, engine, args)
        elif args.command == "windows":
            await print_windows(config, engine, args)
        elif args.command == "usage":
            await print_usage(config, engine, args)
        elif args.command == "percentiles":
            await print_percentiles(config, engine, args)
        elif args.command == "anomalies":
            await print_anomalies(config, engine, args)
        else:
            await run_worker(config, engine)
    finally:
        await engine.dispose()


def main() -> "None":
    config, args = parse_args()
    setup_logging(config.log_level, config.log_format)

    try:
        asyncio.run(_run(config, args))
    except ConfigurationError as exc:
        logger.error("startup_failed", **exc.to_dict())
        raise SystemExit(1) from exc
    except CostwatchError as exc:
        logger.error("command_failed", **exc.to_dict())
        raise SystemExit(1) from exc
    except ValueError as exc:
        logger.error("command_failed", error=str(exc))
        raise SystemExit(2) from exc


if __name__ == "__main__":
    main()
