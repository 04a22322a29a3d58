"""Logging setup for the daemon and the CLI."""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

from hivetrack.config.app import LoggingSettings

TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Extra attributes carried into JSON output when present on the record
_JSON_EXTRA_FIELDS = ("path", "method", "event_type", "session_id", "agent_id", "duration_ms")

_NOISY_LOGGERS = ("uvicorn.access", "websockets", "httpx", "httpcore")


class JSONFormatter(logging.Formatter):
    """Formatter emitting one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger_name": record.name,
            "message": record.getMessage(),
        }
        for key in _JSON_EXTRA_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_data[key] = value
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


def _make_formatter(fmt: str) -> logging.Formatter:
    if fmt == "json":
        return JSONFormatter()
    return logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT)


def _rotating_handler(path: str, settings: LoggingSettings) -> RotatingFileHandler:
    log_file_path = Path(path).expanduser()
    log_file_path.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(
        log_file_path,
        maxBytes=settings.max_size_mb * 1024 * 1024,
        backupCount=settings.backup_count,
    )


def setup_daemon_logging(settings: LoggingSettings, verbose: bool = False) -> None:
    """
    Configure rotating file logging for the daemon.

    Writes the main log, an ERROR-only log, and a dedicated log for the
    ``hivetrack.hooks`` logger tree. Adds a console handler when verbose.
    """
    level = logging.DEBUG if verbose else getattr(logging, settings.level.upper())
    formatter = _make_formatter(settings.format)

    root = logging.getLogger("hivetrack")
    root.setLevel(level)
    # Re-running setup (tests, restarts) must not stack handlers
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    main_handler = _rotating_handler(settings.client, settings)
    main_handler.setFormatter(formatter)
    root.addHandler(main_handler)

    error_handler = _rotating_handler(settings.client_error, settings)
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)
    root.addHandler(error_handler)

    hooks_logger = logging.getLogger("hivetrack.hooks")
    for handler in list(hooks_logger.handlers):
        hooks_logger.removeHandler(handler)
        handler.close()
    hook_handler = _rotating_handler(settings.hook_server, settings)
    hook_handler.setFormatter(formatter)
    hooks_logger.addHandler(hook_handler)

    if verbose:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(formatter)
        root.addHandler(console)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_cli_logging(verbose: bool = False) -> None:
    """
    Configure logging for CLI.

    Args:
        verbose: If True, enable DEBUG level logging
    """
    log_level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt=DATE_FORMAT,
    )

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
