"""
Configuration for the hivetrack daemon and CLI.

Values resolve in three layers: CLI overrides, then the YAML (or JSON)
file at ``~/.hivetrack/config.yaml``, then the model defaults below.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_CONFIG_FILE = "~/.hivetrack/config.yaml"

_CONFIG_SUFFIXES = (".yaml", ".yml", ".json")


def _validate_port(v: int) -> int:
    if not 1024 <= v <= 65535:
        raise ValueError("Port must be between 1024 and 65535")
    return v


def _validate_positive(v: float) -> float:
    if v <= 0:
        raise ValueError("Value must be positive")
    return v


class HookServerSettings(BaseModel):
    """Where hook scripts deliver their events."""

    host: str = Field(
        default="127.0.0.1",
        description="Bind address; keep it on loopback, hooks carry tool inputs",
    )
    port: int = Field(default=23847, description="Port hook scripts POST to")
    cors_origin: str = Field(
        default="http://localhost",
        description="Access-Control-Allow-Origin sent on every response",
    )

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        return _validate_port(v)


class WebSocketSettings(BaseModel):
    """Push channel for UI clients watching agent lifecycle changes."""

    enabled: bool = Field(default=True, description="Serve UI notifications over WebSocket")
    host: str = Field(default="127.0.0.1", description="Bind address for UI clients")
    port: int = Field(default=23848, description="Port UI clients connect to")
    ping_interval: int = Field(default=30, description="Seconds between keepalive pings")
    ping_timeout: int = Field(
        default=10, description="Seconds without a pong before a client is dropped"
    )

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        return _validate_port(v)

    @field_validator("ping_interval", "ping_timeout")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        return int(_validate_positive(v))


class LoggingSettings(BaseModel):
    """Daemon log files. The CLI logs to stderr only."""

    level: Literal["debug", "info", "warning", "error"] = "info"
    format: Literal["text", "json"] = "text"
    client: str = Field(
        default="~/.hivetrack/logs/hivetrack.log",
        description="Everything the daemon logs",
    )
    client_error: str = Field(
        default="~/.hivetrack/logs/hivetrack-error.log",
        description="ERROR and above only",
    )
    hook_server: str = Field(
        default="~/.hivetrack/logs/hook-server.log",
        description="One line per received hook and handler outcome",
    )
    max_size_mb: int = Field(default=10, description="Rotate a log file past this size")
    backup_count: int = Field(default=5, description="Rotated files kept per log")

    @field_validator("max_size_mb", "backup_count")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        return int(_validate_positive(v))


class AgentRegistryConfig(BaseModel):
    """Agent registry maintenance intervals and thresholds (seconds)."""

    cleanup_interval: float = Field(
        default=3600.0,
        description="How often terminal records older than stale_record_max_age are purged",
    )
    activity_check_interval: float = Field(
        default=10.0,
        description="How often active agents are checked for idleness",
    )
    stale_check_interval: float = Field(
        default=60.0,
        description="How often non-terminal agents are checked for staleness",
    )
    garbage_cleanup_interval: float = Field(
        default=300.0,
        description="How often misdetected agent records are swept",
    )
    session_map_validation_interval: float = Field(
        default=60.0,
        description="How often the session -> agent cache is validated",
    )
    idle_threshold: float = Field(
        default=30.0,
        description="Inactivity after which an active agent is demoted to idle",
    )
    stale_agent_threshold: float = Field(
        default=1800.0,
        description="Inactivity after which a non-terminal agent is force-terminated",
    )
    stale_record_max_age: float = Field(
        default=86400.0,
        description="Age of completed_at after which terminal records are deleted",
    )
    orphan_age: float = Field(
        default=3600.0,
        description="Age after which a non-terminal agent without a session is garbage",
    )
    dedup_window: float = Field(
        default=5.0,
        description="Window for suppressing duplicate spawn detections per terminal",
    )
    check_pids: bool = Field(
        default=True,
        description="Terminate agents whose recorded PID no longer exists",
    )

    @field_validator(
        "cleanup_interval",
        "activity_check_interval",
        "stale_check_interval",
        "garbage_cleanup_interval",
        "session_map_validation_interval",
        "idle_threshold",
        "stale_agent_threshold",
        "stale_record_max_age",
        "orphan_age",
        "dedup_window",
    )
    @classmethod
    def validate_positive(cls, v: float) -> float:
        return _validate_positive(v)


class HookEventRetentionConfig(BaseModel):
    """Retention of the hook event audit log."""

    max_age_hours: int = Field(
        default=168,
        description="Hook events older than this are pruned hourly by the daemon and by 'events prune'",
    )

    @field_validator("max_age_hours")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        return int(_validate_positive(v))


class DaemonConfig(BaseModel):
    """Top-level hivetrack configuration."""

    model_config = {"populate_by_name": True}

    database_path: str = Field(
        default="~/.hivetrack/hivetrack.db",
        description="SQLite file shared by the daemon and the CLI",
    )
    hook_server: HookServerSettings = Field(default_factory=HookServerSettings)
    websocket: WebSocketSettings = Field(default_factory=WebSocketSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    agent_registry: AgentRegistryConfig = Field(default_factory=AgentRegistryConfig)
    hook_events: HookEventRetentionConfig = Field(default_factory=HookEventRetentionConfig)


def load_yaml(config_file: str) -> dict[str, Any]:
    """
    Read a config file into a dict.

    A missing or empty file yields ``{}``. JSON is accepted for ``.json``.

    Raises:
        ValueError: On an unsupported extension or unparseable content
    """
    path = Path(config_file).expanduser()
    if not path.exists():
        return {}

    suffix = path.suffix.lower()
    if suffix not in _CONFIG_SUFFIXES:
        raise ValueError(
            f"Config file must have .yaml, .yml, or .json extension, got: {suffix}\n"
            f"File: {path}"
        )

    content = path.read_text()
    if not content.strip():
        return {}

    if suffix == ".json":
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in config file {path}: {e}") from e
    else:
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in config file {path}: {e}") from e

    return data or {}


def apply_cli_overrides(
    config_dict: dict[str, Any],
    cli_overrides: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Merge CLI values into ``config_dict`` in place.

    Keys may be dotted to reach nested sections, e.g. ``"hook_server.port"``.
    """
    for key, value in (cli_overrides or {}).items():
        *sections, leaf = key.split(".")
        target = config_dict
        for section in sections:
            target = target.setdefault(section, {})
        target[leaf] = value
    return config_dict


def _write(config: DaemonConfig, config_file: str) -> None:
    path = Path(config_file).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(
            config.model_dump(mode="python", exclude_none=True),
            f,
            default_flow_style=False,
            sort_keys=False,
        )
    # Paths in here reveal the user's layout; owner-only
    path.chmod(0o600)


def generate_default_config(config_file: str) -> None:
    """Write a config file holding every default value."""
    _write(DaemonConfig(), config_file)


def save_config(config: DaemonConfig, config_file: str | None = None) -> None:
    """
    Persist ``config`` as YAML.

    Raises:
        OSError: If the file cannot be written
    """
    _write(config, config_file or DEFAULT_CONFIG_FILE)


def load_config(
    config_file: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
    create_default: bool = False,
) -> DaemonConfig:
    """
    Resolve the effective configuration.

    Args:
        config_file: Config path, ``~/.hivetrack/config.yaml`` when omitted
        cli_overrides: Dotted-key overrides from the command line
        create_default: Write a default file first when none exists

    Raises:
        ValueError: If the file cannot be parsed or a value fails validation
    """
    config_file = config_file or DEFAULT_CONFIG_FILE

    if create_default and not Path(config_file).expanduser().exists():
        generate_default_config(config_file)

    config_dict = apply_cli_overrides(load_yaml(config_file), cli_overrides)

    try:
        return DaemonConfig(**config_dict)
    except Exception as e:
        raise ValueError(
            f"Configuration validation failed: {e}\n"
            f"Please check your configuration file at {config_file}"
        ) from e
