"""
Configuration package for the OpenCode bridge.

Pydantic config models for server connection and auto-start settings.
"""

from opencode_bridge.config.app import (
    BridgeConfig,
    LoggingSettings,
    get_bridge_home,
    load_config,
)

__all__ = [
    "BridgeConfig",
    "LoggingSettings",
    "get_bridge_home",
    "load_config",
]
