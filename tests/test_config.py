import pytest

from costwatch.cli import parse_args
from costwatch.config import Config
from costwatch.store.database import DEFAULT_DATABASE_URL

ENV_VARS = [
    "LOG_FORMAT",
    "COSTWATCH_DATABASE_URL",
    "COSTWATCH_STATE_PATH",
    "ALERT_WEBHOOK_URL",
    "WEBHOOK_URL",
    "ALERT_RULES",
    "DEMO",
    "AWS_CLOUDWATCH_ENABLED",
    "AWS_REGION",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: "object") -> "None":
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestConfigFromEnv:
    def test_defaults(self) -> "None":
        config = Config.from_env()
        assert config.database_url == DEFAULT_DATABASE_URL
        assert config.webhook_url == ""
        assert config.log_format == "console"
        assert config.demo is True
        assert config.aws_cloudwatch_enabled is False
        assert config.alerting_enabled is False
        assert config.rules_from_env is False

    def test_database_url_takes_precedence(self, monkeypatch: "object") -> "None":
        monkeypatch.setenv("COSTWATCH_STATE_PATH", "/var/lib/costwatch/state.db")
        assert Config.from_env().database_url == (
            "sqlite+aiosqlite:////var/lib/costwatch/state.db"
        )

        monkeypatch.setenv("COSTWATCH_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
        assert Config.from_env().database_url == "sqlite+aiosqlite:///:memory:"

    def test_webhook_url_fallback(self, monkeypatch: "object") -> "None":
        monkeypatch.setenv("WEBHOOK_URL", "https://hooks.example.com/legacy")
        assert Config.from_env().webhook_url == "https://hooks.example.com/legacy"

        monkeypatch.setenv("ALERT_WEBHOOK_URL", "https://hooks.example.com/alerts")
        config = Config.from_env()
        assert config.webhook_url == "https://hooks.example.com/alerts"
        assert config.alerting_enabled is True

    @pytest.mark.parametrize(
        "value, expected",
        [("false", False), ("0", False), ("OFF", False), ("true", True), ("", True)],
    )
    def test_demo_flag(
        self,
        monkeypatch: "object",
        value: "str",
        expected: "bool",
    ) -> "None":
        monkeypatch.setenv("DEMO", value)
        assert Config.from_env().demo is expected

    def test_cloudwatch_settings(self, monkeypatch: "object") -> "None":
        monkeypatch.setenv("AWS_CLOUDWATCH_ENABLED", "yes")
        monkeypatch.setenv("AWS_REGION", "eu-west-1")
        config = Config.from_env()
        assert config.aws_cloudwatch_enabled is True
        assert config.aws_region == "eu-west-1"

    def test_rules_from_env(self, monkeypatch: "object") -> "None":
        monkeypatch.setenv("ALERT_RULES", "[]")
        assert Config.from_env().rules_from_env is True


class TestParseArgs:
    def test_defaults_to_run(self) -> "None":
        config, args = parse_args([])
        assert args.command == "run"
        assert config.listen_address == ":4001"
        assert config.sync_interval == 30
        assert config.call_timeout == 30.0
        assert config.log_level == "info"

    def test_flags_override_config(self) -> "None":
        config, _ = parse_args(
            [
                "--web.listen-address",
                "127.0.0.1:9100",
                "--sync.interval",
                "60",
                "--sync.timeout",
                "5",
                "--log.level",
                "debug",
            ]
        )
        assert config.listen_address == "127.0.0.1:9100"
        assert config.sync_interval == 60
        assert config.call_timeout == 5.0
        assert config.log_level == "debug"

    def test_rules_set(self) -> "None":
        _, args = parse_args(["rules", "set", "aws.CloudWatch", "IncomingBytes", "0.47"])
        assert args.command == "rules"
        assert args.rules_command == "set"
        assert (args.service, args.metric, args.threshold) == (
            "aws.CloudWatch",
            "IncomingBytes",
            0.47,
        )

    def test_windows_lookback(self) -> "None":
        _, args = parse_args(["windows", "--days", "7"])
        assert args.command == "windows"
        assert args.days == 7

    def test_report_default_lookbacks(self) -> "None":
        assert parse_args(["usage"])[1].days == 28
        assert parse_args(["percentiles"])[1].days == 7
        assert parse_args(["anomalies", "--days", "3"])[1].days == 3
