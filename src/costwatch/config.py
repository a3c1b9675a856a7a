import os
from dataclasses import dataclass

from costwatch.store.database import DEFAULT_DATABASE_URL

_FALSY = ("false", "0", "no", "off")
_TRUTHY = ("true", "1", "yes", "on")


def _database_url() -> "str":
    url = os.environ.get("COSTWATCH_DATABASE_URL", "")
    if url:
        return url

    path = os.environ.get("COSTWATCH_STATE_PATH", "")
    if path:
        return f"sqlite+aiosqlite:///{path}"

    return DEFAULT_DATABASE_URL


@dataclass
class Config:
    # listen_address: format ":4001" or
    # "0.0.0.0:4001"
    listen_address: "str" = ":4001"
    # sync interval in seconds
    sync_interval: "int" = 30
    # upper bound for any single external call, in seconds
    call_timeout: "float" = 30.0
    log_level: "str" = "info"
    # "console" or "json"
    log_format: "str" = "console"

    database_url: "str" = DEFAULT_DATABASE_URL
    webhook_url: "str" = ""
    # JSON array of rules; when set it replaces the rules table
    alert_rules: "str" = ""

    demo: "bool" = True
    aws_cloudwatch_enabled: "bool" = False
    aws_region: "str" = ""

    @classmethod
    def from_env(cls) -> "Config":
        demo = os.environ.get("DEMO", "").strip().lower()
        aws = os.environ.get("AWS_CLOUDWATCH_ENABLED", "").strip().lower()
        return cls(
            log_format=os.environ.get("LOG_FORMAT", "console").strip().lower(),
            database_url=_database_url(),
            webhook_url=(
                os.environ.get("ALERT_WEBHOOK_URL", "")
                or os.environ.get("WEBHOOK_URL", "")
            ),
            alert_rules=os.environ.get("ALERT_RULES", ""),
            demo=demo not in _FALSY,
            aws_cloudwatch_enabled=aws in _TRUTHY,
            aws_region=os.environ.get("AWS_REGION", ""),
        )

    @property
    def rules_from_env(self) -> "bool":
        return bool(self.alert_rules.strip())

    @property
    def alerting_enabled(self) -> "bool":
        return bool(self.webhook_url)
