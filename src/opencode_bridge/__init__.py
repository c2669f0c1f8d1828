"""OpenCode bridge - resilient access to an OpenCode headless server.

An httpx transport with retry/backoff, Basic auth, project scoping and
Server-Sent Events, plus a supervisor that finds, spawns and health-checks
``opencode serve`` before any request is issued.
"""

from opencode_bridge.client import OpenCodeClient
from opencode_bridge.errors import (
    BinaryNotFoundError,
    OpenCodeConnectionError,
    OpenCodeError,
    ServerNotRunningError,
    ServerStartError,
    ServerStartupError,
    classify_status,
)
from opencode_bridge.health import HealthStatus, check_health
from opencode_bridge.server_manager import ServerManager, ServerStatus
from opencode_bridge.sse import SSEDecoder, SSEEvent

__version__ = "0.1.0"

__all__ = [
    "BinaryNotFoundError",
    "HealthStatus",
    "OpenCodeClient",
    "OpenCodeConnectionError",
    "OpenCodeError",
    "SSEDecoder",
    "SSEEvent",
    "ServerManager",
    "ServerNotRunningError",
    "ServerStartError",
    "ServerStartupError",
    "ServerStatus",
    "check_health",
    "classify_status",
]
