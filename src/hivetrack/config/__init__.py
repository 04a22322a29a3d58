"""
Configuration package for the hivetrack daemon.

This package provides Pydantic config models for all daemon settings.
"""

from hivetrack.config.app import (
    AgentRegistryConfig,
    DaemonConfig,
    HookEventRetentionConfig,
    HookServerSettings,
    LoggingSettings,
    WebSocketSettings,
    generate_default_config,
    load_config,
    save_config,
)

__all__ = [
    "AgentRegistryConfig",
    "DaemonConfig",
    "HookEventRetentionConfig",
    "HookServerSettings",
    "LoggingSettings",
    "WebSocketSettings",
    "generate_default_config",
    "load_config",
    "save_config",
]
