"""Logging setup for the orchestrator and its CLI.

Importing this module has no side effects; call configure_root_logging()
once at process start (the CLI does this) to install the handler.
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar

NOISY_HTTP_LOGGERS = (
    "httpx",
    "httpcore",
    "httpcore.http11",
    "httpcore.connection",
)

VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Short names accepted in the routing table's global settings
_LEVEL_ALIASES = {
    "WARN": "WARNING",
    "ERR": "ERROR",
    "FATAL": "CRITICAL",
}

logger = logging.getLogger(__name__)


def normalize_log_level(raw_level: str | None) -> str:
    """Parse a level name, tolerating trailing comments and short aliases.

    Unknown values fall back to INFO.
    """
    if not raw_level or not raw_level.split():
        return "INFO"
    level = raw_level.split()[0].upper()
    level = _LEVEL_ALIASES.get(level, level)
    if level not in VALID_LEVELS:
        return "INFO"
    return level


def set_noisy_http_logger_levels(current_log_level: str) -> None:
    """Ensure HTTP client noise only surfaces at DEBUG level."""

    noisy_level = logging.DEBUG if current_log_level == "DEBUG" else logging.WARNING
    for logger_name in NOISY_HTTP_LOGGERS:
        logging.getLogger(logger_name).setLevel(noisy_level)


class CorrelationFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        # Add correlation ID if available
        if hasattr(record, "correlation_id"):
            record.msg = f"[{record.correlation_id[:8]}] {record.msg}"
        return super().format(record)


class HttpRequestLogDowngradeFilter(logging.Filter):
    """Downgrade noisy third-party HTTP logs to DEBUG."""

    def __init__(self, *prefixes: str) -> None:
        super().__init__()
        self.prefixes = prefixes

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno == logging.INFO:
            for prefix in self.prefixes:
                if record.name.startswith(prefix):
                    record.levelno = logging.DEBUG
                    record.levelname = logging.getLevelName(logging.DEBUG)
                    break
        return True


_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


class CorrelationIdFilter(logging.Filter):
    """Copy the active correlation ID onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        correlation_id = _correlation_id.get()
        if correlation_id is not None:
            record.correlation_id = correlation_id
        return True


@contextmanager
def correlation_context(request_id: str) -> Generator[None, None, None]:
    """Tag records logged inside the block (and tasks it spawns) with a correlation ID."""
    token = _correlation_id.set(request_id)
    try:
        yield
    finally:
        _correlation_id.reset(token)


def configure_root_logging(log_level: str | None = None) -> str:
    """Install the orchestrator handler on the root logger.

    Args:
        log_level: Level name (e.g. "DEBUG", "warn"). Defaults to the
            LOG_LEVEL environment setting.

    Returns:
        The normalized level name that was applied.
    """
    if log_level is None:
        from src.core.config.settings import Settings

        log_level = Settings.load().log_level
    level = normalize_log_level(log_level)

    formatter = CorrelationFormatter("%(asctime)s - %(levelname)s - %(message)s", datefmt="%H:%M:%S")
    handler = logging.StreamHandler()
    handler.addFilter(HttpRequestLogDowngradeFilter(*NOISY_HTTP_LOGGERS))
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level))

    set_noisy_http_logger_levels(level)
    logger.debug("Logging configured at %s", level)
    return level
