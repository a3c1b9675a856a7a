import json
import threading
from datetime import datetime

import structlog

from costwatch.errors import ConfigurationError, ReadOnlyRepositoryError
from costwatch.models import AlertRule

logger = structlog.get_logger()


class EnvAlertsRepository:
    """
    EnvAlertsRepository serves alert rules parsed from the
    ALERT_RULES environment variable, a JSON array such as:

        [{"service": "aws.CloudWatch", "metric": "IncomingBytes", "threshold": 0.47}]

    Rules are read-only. Notification state lives in memory only,
    so dedupe resets on restart.
    """

    def __init__(self, raw: "str") -> "None":
        self._rules: "list[AlertRule]" = self._parse(raw)
        self._lock: "threading.Lock" = threading.Lock()
        self._last_notified: "dict[tuple[str, str], datetime]" = {}

    @staticmethod
    def _parse(raw: "str") -> "list[AlertRule]":
        if not raw.strip():
            return []

        try:
            entries = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigurationError("ALERT_RULES is not valid JSON") from exc

        if not isinstance(entries, list):
            raise ConfigurationError("ALERT_RULES must be a JSON array")

        rules: "dict[tuple[str, str], AlertRule]" = {}
        for entry in entries:
            try:
                rule = AlertRule(
                    service=str(entry["service"]),
                    metric=str(entry["metric"]),
                    threshold=float(entry["threshold"]),
                )
                rule.validate()
            except (KeyError, TypeError, ValueError):
                logger.warning("alert_rule_malformed", entry=entry)
                continue

            # later entries replace earlier ones for the same pair
            rules[(rule.service, rule.metric)] = rule

        return list(rules.values())

    async def list_rules(self) -> "list[AlertRule]":
        return list(self._rules)

    async def upsert_rule(self, rule: "AlertRule") -> "None":
        raise ReadOnlyRepositoryError(
            "alert rules from ALERT_RULES are read-only",
            context={"service": rule.service, "metric": rule.metric},
        )

    async def get_last_notified(
        self,
        service: "str",
        metric: "str",
    ) -> "datetime | None":
        with self._lock:
            return self._last_notified.get((service, metric))

    async def set_last_notified(
        self,
        service: "str",
        metric: "str",
        ts: "datetime",
    ) -> "None":
        with self._lock:
            self._last_notified[(service, metric)] = ts
