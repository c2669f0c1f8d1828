"""Health probe for the OpenCode server."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

HEALTH_PATH = "/global/health"
DEFAULT_HEALTH_TIMEOUT = 3.0


@dataclass(frozen=True)
class HealthStatus:
    """Result of a single health probe."""

    healthy: bool
    version: str | None = None


async def check_health(
    base_url: str,
    timeout: float = DEFAULT_HEALTH_TIMEOUT,
    headers: dict[str, str] | None = None,
) -> HealthStatus:
    """
    Check whether the OpenCode server is up via its health endpoint.

    Never raises: connection failures, non-2xx responses, unparseable
    bodies and a missing/false ``healthy`` field all report unhealthy.

    Args:
        base_url: Server base URL
        timeout: Request timeout in seconds
        headers: Extra request headers (e.g. Authorization)

    Returns:
        HealthStatus with the reported version when healthy
    """
    url = f"{base_url.rstrip('/')}{HEALTH_PATH}"
    try:
        async with httpx.AsyncClient() as client:
            resp = await client.get(url, headers=headers, timeout=timeout)
        if not resp.is_success:
            logger.debug(f"Health check returned status {resp.status_code}")
            return HealthStatus(healthy=False)
        body = resp.json()
    except Exception as e:
        logger.debug(f"Health check failed: {e}")
        return HealthStatus(healthy=False)

    if not isinstance(body, dict) or body.get("healthy") is not True:
        return HealthStatus(healthy=False)

    version = body.get("version")
    return HealthStatus(healthy=True, version=version if isinstance(version, str) else None)
