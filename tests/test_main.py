"""Unit tests for the command-line entry point.

Tests cover:
- Argument parsing for every subcommand
- Log level priority (CLI > environment > config file)
- One-shot commands against a real SQLite database and the log provider
- Serve mode start/stop
- Exit codes for invalid input and configuration errors
"""

import json
import logging
import signal
from unittest.mock import Mock, patch

import pytest

from notifier.config.environment import EnvironmentConfig
from notifier.config.models import AppConfig, LoggingConfig
from notifier.main import build_parser, load_runtime_config, main

ENV_VARS = (
    "DATABASE_URL",
    "REDIS_URL",
    "EMAIL_PROVIDER",
    "SMTP_HOST",
    "SMTP_PORT",
    "SMTP_USER",
    "SMTP_PASS",
    "RESEND_API_KEY",
    "RESEND_FROM_EMAIL",
    "LOG_LEVEL",
    "ENVIRONMENT",
)


@pytest.fixture(autouse=True)
def reset_root_logger():
    yield
    logging.getLogger().handlers.clear()


@pytest.fixture
def cli(tmp_path, monkeypatch, capsys):
    """Run main() against a fresh database, returning (exit_code, parsed stdout)."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("EMAIL_PROVIDER", "log")

    config_file = tmp_path / "config.yaml"
    config_file.write_text("logging:\n  level: WARNING\n")

    def run(*args):
        code = main(["--config", str(config_file), *args])
        out = capsys.readouterr().out
        return code, json.loads(out) if out.strip() else None

    return run


class TestParser:
    def test_submit_defaults(self):
        args = build_parser().parse_args(
            ["submit", "--recipient", "ada@example.com", "--kind", "welcome"]
        )

        assert args.priority == "normal"
        assert args.payload == "{}"
        assert args.inline is None

    def test_submit_rejects_unknown_kind(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["submit", "--recipient", "a@b.c", "--kind", "sms"])

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_history_limit(self):
        args = build_parser().parse_args(["--log-level", "DEBUG", "history", "ada@example.com", "--limit", "3"])

        assert args.log_level == "DEBUG"
        assert args.limit == 3

    def test_history_limit_defaults_to_twenty(self):
        args = build_parser().parse_args(["history", "ada@example.com"])

        assert args.limit == 20


class TestLoadRuntimeConfig:
    """Log level priority: CLI > LOG_LEVEL > config file."""

    def _load(self, cli_level, env_level):
        app_config = AppConfig(logging=LoggingConfig(level="ERROR"))
        env_config = EnvironmentConfig(log_level=env_level)
        with patch("notifier.main.load_config", return_value=(app_config, env_config)):
            return load_runtime_config(None, cli_level)[1].log_level

    def test_cli_wins(self):
        assert self._load("DEBUG", "WARNING") == "DEBUG"

    def test_environment_beats_config(self):
        assert self._load(None, "WARNING") == "WARNING"

    def test_config_is_fallback(self):
        assert self._load(None, None) == "ERROR"


class TestCommands:
    """One-shot commands end to end."""

    def test_submit_process_status_history_stats(self, cli):
        code, urgent = cli(
            "submit",
            "--recipient", "ada@example.com",
            "--kind", "verification-code",
            "--priority", "urgent",
            "--payload", '{"otpCode": "482913"}',
        )
        assert code == 0
        assert urgent["status"] == "sent"
        assert urgent["provider_message_id"].startswith("log-")

        code, queued = cli("submit", "--recipient", "ada@example.com", "--kind", "welcome")
        assert code == 0
        assert queued["status"] == "pending"

        code, dispatch = cli("process-queue")
        assert code == 0
        assert dispatch["sent"] == 1
        assert dispatch["aborted"] is False

        code, status = cli("status", queued["id"])
        assert status["status"] == "sent"

        code, history = cli("history", "ada@example.com", "--limit", "1")
        assert [r["id"] for r in history] == [queued["id"]]

        code, stats = cli("stats")
        assert stats["total"] == 2
        assert stats["sent"] == 2
        assert stats["success_rate"] == 100.0

        code, reconciliation = cli("retry-failed")
        assert code == 0
        assert reconciliation["promoted"] == 0

    def test_submit_invalid_payload_json(self, cli, capsys):
        code, _ = cli("submit", "--recipient", "ada@example.com", "--kind", "welcome", "--payload", "{oops")

        assert code == 2

    def test_submit_rejected_payload(self, cli):
        code, _ = cli("submit", "--recipient", "ada@example.com", "--kind", "credential-issue")

        assert code == 2

    def test_status_unknown_id(self, cli):
        code, _ = cli("status", "does-not-exist")

        assert code == 1

    def test_ingest_file(self, cli, tmp_path):
        events = tmp_path / "events.jsonl"
        events.write_text(
            "\n".join(
                [
                    json.dumps({"eventType": "user.registered", "data": {"email": "ada@example.com"}}),
                    "",
                    json.dumps({"eventType": "user.deleted", "data": {"email": "ada@example.com"}}),
                ]
            )
        )

        code, summary = cli("ingest", str(events))

        assert code == 0
        assert summary == {"submitted": 1, "ignored": 1, "rejected": 0}

    def test_ingest_reports_rejections(self, cli, tmp_path):
        events = tmp_path / "events.jsonl"
        events.write_text("not json\n")

        code, summary = cli("ingest", str(events))

        assert code == 1
        assert summary["rejected"] == 1


class TestServe:
    def test_serve_runs_until_shutdown(self, cli):
        schedulers = []

        def fake_scheduler(*args, **kwargs):
            scheduler = Mock()
            scheduler.start.side_effect = kwargs["shutdown_event"].set
            schedulers.append(scheduler)
            return scheduler

        with patch("notifier.main.DeliveryScheduler", side_effect=fake_scheduler) as scheduler_cls, patch(
            "notifier.main.signal.signal"
        ):
            code, _ = cli("serve")

        assert code == 0
        assert scheduler_cls.call_args.kwargs["dispatch_interval_seconds"] == 30
        assert scheduler_cls.call_args.kwargs["reconciliation_interval_seconds"] == 300
        # Running passes finish before the engine and database are closed
        schedulers[0].shutdown.assert_called_once_with(wait=True)

    def test_signal_stops_serve_and_waits_for_passes(self, cli):
        schedulers = []
        handlers = {}

        def fake_scheduler(*args, **kwargs):
            scheduler = Mock()
            scheduler.start.side_effect = lambda: handlers[signal.SIGTERM](signal.SIGTERM, None)
            schedulers.append(scheduler)
            return scheduler

        with patch("notifier.main.DeliveryScheduler", side_effect=fake_scheduler), patch(
            "notifier.main.signal.signal", side_effect=lambda signum, handler: handlers.update({signum: handler})
        ):
            code, _ = cli("serve")

        assert code == 0
        schedulers[0].shutdown.assert_called_once_with(wait=True)


class TestConfigErrors:
    def test_missing_config_file(self, tmp_path, capsys):
        code = main(["--config", str(tmp_path / "missing.yaml"), "stats"])

        assert code == 1
        assert "Configuration Error" in capsys.readouterr().err

    def test_invalid_environment(self, tmp_path, monkeypatch):
        for name in ENV_VARS:
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("EMAIL_PROVIDER", "smtp")
        config_file = tmp_path / "config.yaml"
        config_file.write_text("{}\n")

        assert main(["--config", str(config_file), "stats"]) == 1

    def test_check_config(self, tmp_path, capsys):
        good = tmp_path / "good.yaml"
        good.write_text("delivery:\n  max_attempts: 4\n")
        bad = tmp_path / "bad.yaml"
        bad.write_text("delivery:\n  max_attempts: zero\n")

        assert main(["--config", str(good), "check-config"]) == 0
        assert main(["--config", str(bad), "check-config"]) == 1
