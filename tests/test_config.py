"""Tests for YAML + environment configuration loading."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from gitrouter.config import AppConfig, load_config

SECRET_ENV = (
    "GITHUB_TOKEN",
    "GITHUB_TOKEN_FILE",
    "GITHUB_WEBHOOK_SECRET",
    "GITHUB_WEBHOOK_SECRET_FILE",
    "SLACK_BOT_TOKEN",
    "SLACK_BOT_TOKEN_FILE",
    "CRON_SECRET",
    "CRON_SECRET_FILE",
    "WEBHOOK_PORT",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for key in SECRET_ENV:
        monkeypatch.delenv(key, raising=False)


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(text)
    return path


def test_missing_file_gives_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "absent.yaml")

    assert isinstance(config, AppConfig)
    assert config.database.url == "sqlite:///gitrouter.db"
    assert config.webhook.port == 8000
    assert config.github.webhook_path == "/webhook/github"
    assert config.escalation.reminder_hours == 24
    assert config.escalation.escalation_hours == 48
    assert config.notifications.max_attempts == 3
    assert config.routing.rule_cache_ttl_seconds == 60
    assert config.webhook_secret_resolved == ""
    assert config.github_token_resolved is None


def test_yaml_values(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
webhook:
  port: 9000
database:
  url: sqlite:///data/router.db
escalation:
  reminder_hours: 12
  escalation_hours: 36
  interval_seconds: 600
notifications:
  async_new_pr: false
logging:
  level: DEBUG
""",
    )
    config = load_config(path)

    assert config.webhook.port == 9000
    assert config.database.url == "sqlite:///data/router.db"
    assert config.escalation.reminder_hours == 12
    assert config.escalation.escalation_hours == 36
    assert config.escalation.interval_seconds == 600
    assert config.notifications.async_new_pr is False
    assert config.logging.level == "DEBUG"


def test_env_placeholders_substituted(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("HOOK_SECRET", "abc123")
    monkeypatch.setenv("SLACK_BOT_TOKEN", "xoxb-env")
    path = _write(
        tmp_path,
        """
github:
  webhook_secret: ${HOOK_SECRET}
slack:
  bot_token: ${SLACK_BOT_TOKEN}
""",
    )
    config = load_config(path)

    assert config.webhook_secret_resolved == "abc123"
    assert config.slack_token_resolved == "xoxb-env"


def test_unset_placeholder_falls_back_to_secret_file(tmp_path: Path, monkeypatch) -> None:
    secret_file = tmp_path / "github_token"
    secret_file.write_text("ghp_from_file\n")
    monkeypatch.setenv("GITHUB_TOKEN_FILE", str(secret_file))
    path = _write(tmp_path, "github:\n  token: ${GITHUB_TOKEN}\n")

    config = load_config(path)

    assert config.github_token_resolved == "ghp_from_file"


def test_cron_secret_from_env(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("CRON_SECRET", "cron-env")
    path = _write(tmp_path, "escalation:\n  cron_secret: ${CRON_SECRET}\n")

    assert load_config(path).cron_secret_resolved == "cron-env"


def test_env_fills_keys_missing_from_yaml(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("WEBHOOK_PORT", "8123")
    path = _write(tmp_path, "webhook:\n  host: 127.0.0.1\n")

    config = load_config(path)

    assert config.webhook.host == "127.0.0.1"
    assert config.webhook.port == 8123


def test_invalid_values_rejected(tmp_path: Path) -> None:
    path = _write(tmp_path, "notifications:\n  max_attempts: 0\n")
    with pytest.raises(ValidationError):
        load_config(path)
