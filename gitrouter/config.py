"""Configuration loading from YAML and environment.

Secrets (tokens, webhook secret) are taken from environment variables or
from files (Docker secrets). Never put real tokens in config files committed
to the repo.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _read_secret(env_key: str, file_env_key: str) -> str | None:
    """Read secret from env var or from file path in env (e.g. Docker
    secrets)."""
    value = _current_env.get(env_key)
    if value:
        return value.strip()
    file_path = _current_env.get(file_env_key)
    if file_path:
        return Path(file_path).read_text().strip()
    return None


# Injected by load_config so secret resolution can read env/file
_current_env: dict[str, str] = {}


def _is_placeholder(value: str | None) -> bool:
    return not value or value.startswith("${") or value.startswith("your-")


class GitHubConfig(BaseSettings):
    """GitHub API and webhook settings."""

    model_config = SettingsConfigDict(env_prefix="GITHUB_", extra="ignore")

    token: str | None = Field(default=None, description="PAT or installation token; use env or secret file")
    api_url: str = Field(default="https://api.github.com", description="API base URL")
    webhook_path: str = Field(default="/webhook/github", description="Webhook URL path")
    webhook_secret: str = Field(default="", description="Shared secret for X-Hub-Signature-256")


class SlackConfig(BaseSettings):
    """Slack Web API settings."""

    model_config = SettingsConfigDict(env_prefix="SLACK_", extra="ignore")

    bot_token: str | None = Field(default=None, description="Bot token (xoxb-...); use env or secret file")
    api_url: str = Field(default="https://slack.com/api", description="Web API base URL")


class WebhookConfig(BaseSettings):
    """Webhook server settings."""

    model_config = SettingsConfigDict(env_prefix="WEBHOOK_", extra="ignore")

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8000, ge=0, le=65535, description="Bind port (0 picks a free port)")
    enabled: bool = Field(default=True, description="Enable webhook server")


class DatabaseConfig(BaseSettings):
    """Persistence store settings."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_", extra="ignore")

    url: str = Field(default="sqlite:///gitrouter.db", description="SQLAlchemy database URL")
    echo: bool = Field(default=False, description="Log SQL statements")


class RoutingConfig(BaseSettings):
    """Routing engine settings."""

    model_config = SettingsConfigDict(env_prefix="ROUTING_", extra="ignore")

    rule_cache_ttl_seconds: float = Field(default=60.0, ge=0, description="Per-organization rule cache TTL")


class EscalationConfig(BaseSettings):
    """Escalation sweep settings."""

    model_config = SettingsConfigDict(env_prefix="ESCALATION_", extra="ignore")

    enabled: bool = Field(default=True, description="Run the periodic escalation sweep")
    interval_seconds: int = Field(default=3600, ge=30, description="Sweep interval in seconds")
    reminder_hours: float = Field(default=24, gt=0, description="Hours pending before a reminder")
    escalation_hours: float = Field(default=48, gt=0, description="Hours pending before escalation to the lead")
    cron_secret: str = Field(default="", description="Bearer secret for POST /cron/escalations")
    claim_ttl_seconds: int = Field(default=600, ge=1, description="Delivery lease per assignment")
    verify_open: bool = Field(default=True, description="Confirm a PR is still open upstream before reminding")


class NotificationConfig(BaseSettings):
    """Notification delivery and retry settings."""

    model_config = SettingsConfigDict(env_prefix="NOTIFICATIONS_", extra="ignore")

    max_attempts: int = Field(default=3, ge=1, le=10, description="Delivery attempts per notification")
    base_delay_seconds: float = Field(default=1.0, ge=0, description="First retry delay")
    max_delay_seconds: float = Field(default=30.0, ge=0, description="Retry delay cap")
    async_new_pr: bool = Field(default=True, description="Send new PR notifications on a worker pool")


class LoggingConfig(BaseSettings):
    """Logging settings."""

    model_config = SettingsConfigDict(env_prefix="LOGGING_", extra="ignore")

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )


class AppConfig(BaseSettings):
    """Root application config from YAML + env."""

    model_config = SettingsConfigDict(extra="ignore")

    github: GitHubConfig = Field(default_factory=GitHubConfig)
    slack: SlackConfig = Field(default_factory=SlackConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    escalation: EscalationConfig = Field(default_factory=EscalationConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def github_token_resolved(self) -> str | None:
        """Resolve GitHub token from config, env or Docker secret file."""
        t = self.github.token
        if not _is_placeholder(t):
            return t
        return _read_secret("GITHUB_TOKEN", "GITHUB_TOKEN_FILE")

    @property
    def webhook_secret_resolved(self) -> str:
        """Resolve webhook secret from config, env or Docker secret file."""
        s = self.github.webhook_secret
        if not _is_placeholder(s):
            return s
        return _read_secret("GITHUB_WEBHOOK_SECRET", "GITHUB_WEBHOOK_SECRET_FILE") or ""

    @property
    def slack_token_resolved(self) -> str | None:
        """Resolve Slack bot token from config, env or Docker secret file."""
        t = self.slack.bot_token
        if not _is_placeholder(t):
            return t
        return _read_secret("SLACK_BOT_TOKEN", "SLACK_BOT_TOKEN_FILE")

    @property
    def cron_secret_resolved(self) -> str:
        """Resolve the manual escalation trigger secret."""
        s = self.escalation.cron_secret
        if not _is_placeholder(s):
            return s
        return _read_secret("CRON_SECRET", "CRON_SECRET_FILE") or ""


def _substitute_env(value: Any) -> Any:
    """Replace ${VAR} and $VAR in strings with os.environ."""
    if isinstance(value, str):
        if value.startswith("${") and value.endswith("}"):
            key = value[2:-1].strip()
            return _current_env.get(key, value)
        # Simple $VAR
        if value.startswith("$") and not value.startswith("${"):
            key = value[1:].strip()
            return _current_env.get(key, value)
        return value
    if isinstance(value, dict):
        return {k: _substitute_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_substitute_env(v) for v in value]
    return value


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load config from YAML file and environment.

    Secrets: GITHUB_TOKEN(_FILE), GITHUB_WEBHOOK_SECRET(_FILE),
    SLACK_BOT_TOKEN(_FILE), CRON_SECRET(_FILE).
    """
    global _current_env
    import os

    _current_env = dict(os.environ)

    path = config_path or Path("config.yaml")
    if not path.is_file():
        return AppConfig()

    raw = yaml.safe_load(path.read_text()) or {}
    raw = _substitute_env(raw)

    # Build nested models from raw dict; keys missing from YAML fall back to env
    return AppConfig(
        github=GitHubConfig(**(raw.get("github") or {})),
        slack=SlackConfig(**(raw.get("slack") or {})),
        webhook=WebhookConfig(**(raw.get("webhook") or {})),
        database=DatabaseConfig(**(raw.get("database") or {})),
        routing=RoutingConfig(**(raw.get("routing") or {})),
        escalation=EscalationConfig(**(raw.get("escalation") or {})),
        notifications=NotificationConfig(**(raw.get("notifications") or {})),
        logging=LoggingConfig(**(raw.get("logging") or {})),
    )
