"""Logging from config and env.

Levels (inclusive):
- ERROR: critical errors only
- WARNING: non-critical issues (no reviewers, no team lead, failed deliveries) and ERROR
- INFO: webhook outcomes, assignments, sweep summaries, WARNING, and ERROR
- DEBUG: claim races, ledger short-circuits, SQL and HTTP client chatter

Below DEBUG the SQLAlchemy engine and urllib3 loggers are held at WARNING so
INFO output stays about reviews. Provider tokens (Slack xox*, GitHub gh*_,
Bearer headers) are masked in every record that reaches the root handler.

Configure via config.yaml (logging.level, logging.format) or env (LOGGING_LEVEL, LOGGING_FORMAT).
"""

import logging
import re

from gitrouter.config import LoggingConfig

# Supported levels only (DEBUG, INFO, WARNING, ERROR)
LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}

DEFAULT_LEVEL = "INFO"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

NOISY_LOGGERS = ("sqlalchemy.engine", "urllib3")

_SECRET_PATTERNS = (
    re.compile(r"xox[abprs]-[A-Za-z0-9-]+"),
    re.compile(r"gh[pousr]_[A-Za-z0-9]{16,}"),
    re.compile(r"(?i)(bearer\s+)[^\s'\"]+"),
)
REDACTED = "[redacted]"


def _resolve_level(level: str) -> int:
    """Map level name to logging constant.

    Falls back to INFO if unknown.
    """
    return LEVELS.get(level.upper().strip(), logging.INFO)


def redact(text: str) -> str:
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(lambda m: (m.group(1) if m.groups() else "") + REDACTED, text)
    return text


class SecretFilter(logging.Filter):
    """Masks API tokens in the formatted message; args are folded into msg first."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


class GitRouterLogging:
    """Configures root logger from LoggingConfig (YAML + env LOGGING_*)."""

    def __init__(self, config: LoggingConfig) -> None:
        self._level = _resolve_level(config.level)
        self._format = config.format or DEFAULT_FORMAT

    def setup(self) -> None:
        """Apply level and format to the root logger, quiet library loggers, attach the token filter."""
        logging.basicConfig(
            level=self._level,
            format=self._format,
            force=True,
        )
        for handler in logging.root.handlers:
            handler.addFilter(SecretFilter())
        library_level = logging.NOTSET if self._level <= logging.DEBUG else logging.WARNING
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(library_level)
