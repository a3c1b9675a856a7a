import argparse

from costwatch.config import Config


def _build_parser() -> "argparse.ArgumentParser":
    parser = argparse.ArgumentParser(
        prog="costwatch",
        description="Usage ingestion and cost alerting worker",
    )
    parser.add_argument(
        "--web.listen-address",
        dest="listen_address",
        default=":4001",
        help="Address to expose worker metrics on (default: :4001)",
    )
    parser.add_argument(
        "--sync.interval",
        dest="sync_interval",
        type=int,
        default=30,
        help="Sync interval in seconds (default: 30)",
    )
    parser.add_argument(
        "--sync.timeout",
        dest="call_timeout",
        type=float,
        default=30.0,
        help="Timeout of a single provider, store or webhook call in seconds (default: 30)",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("run", help="Run the sync worker (default)")

    rules = sub.add_parser("rules", help="Manage alert rules")
    rules_sub = rules.add_subparsers(dest="rules_command", required=True)
    rules_sub.add_parser("list", help="List alert rules")
    set_rule = rules_sub.add_parser("set", help="Create or replace an alert rule")
    set_rule.add_argument("service")
    set_rule.add_argument("metric")
    set_rule.add_argument("threshold", type=float, help="Cost limit per hour")

    for name, days, help_text in (
        ("windows", 28, "Print alert windows"),
        ("usage", 28, "Print hourly usage and cost"),
        ("percentiles", 7, "Print hourly cost percentiles"),
        ("anomalies", 28, "Print hours with anomalous usage changes"),
    ):
        report = sub.add_parser(name, help=help_text)
        report.add_argument(
            "--days",
            type=int,
            default=days,
            help=f"Lookback in days (default: {days})",
        )

    return parser


def parse_args(
    argv: "list[str] | None" = None,
) -> "tuple[Config, argparse.Namespace]":
    args = _build_parser().parse_args(argv)
    if args.command is None:
        args.command = "run"

    config = Config.from_env()
    config.listen_address = args.listen_address
    config.sync_interval = args.sync_interval
    config.call_timeout = args.call_timeout
    config.log_level = args.log_level
    return config, args
