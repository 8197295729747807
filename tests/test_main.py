"""
Tests for command-line configuration.
"""

import sys

import pytest

from watch_tower.__main__ import build_config, build_parser, main
from watch_tower.exceptions import ConfigError
from watch_tower.models import ReconcilerConfig, ResourceKind


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("AAP_NAMESPACE", raising=False)


def parse(*argv: str):
    return build_parser().parse_args(list(argv))


class TestBuildConfig:
    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://awx:pw@db.example/awx")
        monkeypatch.setenv("AAP_NAMESPACE", "aap")

        config, credentials = build_config(parse("run"))

        assert config.namespace == "aap"
        assert config.kind == ResourceKind()
        assert config.annotation_key == "watch-tower/replicas"
        assert config.interval_seconds == 30
        assert config.retry_interval_seconds == 10
        assert credentials.host == "db.example"
        assert credentials.port == 5432

    def test_flags_override_environment(self, monkeypatch):
        monkeypatch.setenv("AAP_NAMESPACE", "ignored")

        config, credentials = build_config(
            parse(
                "once",
                "--postgres-url",
                "postgresql://u@other:6000/db",
                "--namespace",
                "tower",
                "--group",
                "example.com",
                "--version",
                "v1",
                "--plural",
                "widgets",
                "--annotation-key",
                "example.com/replicas",
                "--interval",
                "60",
                "--retry-interval",
                "5",
            )
        )

        assert config.namespace == "tower"
        assert config.kind == ResourceKind("example.com", "v1", "widgets")
        assert config.annotation_key == "example.com/replicas"
        assert config.interval_seconds == 60
        assert config.retry_interval_seconds == 5
        assert credentials.address == ("other", 6000)

    def test_missing_database_url(self, monkeypatch):
        monkeypatch.setenv("AAP_NAMESPACE", "aap")

        with pytest.raises(ConfigError, match="DATABASE_URL"):
            build_config(parse("run"))

    def test_missing_namespace(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://awx@db.example/awx")

        with pytest.raises(ConfigError, match="AAP_NAMESPACE"):
            build_config(parse("run"))

    def test_negative_interval(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://awx@db.example/awx")
        monkeypatch.setenv("AAP_NAMESPACE", "aap")

        with pytest.raises(ConfigError, match="interval_seconds"):
            build_config(parse("run", "--interval", "-1"))


class TestReconcilerConfig:
    def test_empty_namespace(self):
        with pytest.raises(ConfigError, match="namespace"):
            ReconcilerConfig(namespace="")

    def test_zero_timeout(self):
        with pytest.raises(ConfigError, match="api_timeout_seconds"):
            ReconcilerConfig(namespace="aap", api_timeout_seconds=0)

    def test_zero_intervals_allowed(self):
        config = ReconcilerConfig(
            namespace="aap", interval_seconds=0, retry_interval_seconds=0
        )
        assert config.interval_seconds == 0

    def test_immutable(self):
        config = ReconcilerConfig(namespace="aap")
        with pytest.raises(AttributeError):
            config.namespace = "other"


class TestMain:
    def test_no_command_prints_help(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["watch-tower"])
        monkeypatch.setattr("watch_tower.__main__.load_dotenv", lambda: None)

        with pytest.raises(SystemExit) as exc_info:
            main()

        assert exc_info.value.code == 1
        assert "usage: watch-tower" in capsys.readouterr().out
