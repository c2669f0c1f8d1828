"""Error types for the OpenCode bridge.

Three families:
- OpenCodeError: the server answered with a non-2xx status
- OpenCodeConnectionError: the request never got an answer (DNS, refused, timeout)
- ServerStartError: the supervisor could not provide a running server
"""

from __future__ import annotations

from dataclasses import dataclass

TRANSIENT_STATUSES = frozenset({429, 502, 503, 504})
AUTH_STATUSES = frozenset({401, 403})


@dataclass(frozen=True)
class StatusClass:
    """Retry/reporting classification of an HTTP status code."""

    transient: bool
    not_found: bool
    auth: bool


def classify_status(status: int) -> StatusClass:
    """
    Classify an HTTP status code.

    Args:
        status: HTTP status code

    Returns:
        StatusClass with transient (429/502/503/504), not_found (404)
        and auth (401/403) flags
    """
    return StatusClass(
        transient=status in TRANSIENT_STATUSES,
        not_found=status == 404,
        auth=status in AUTH_STATUSES,
    )


class OpenCodeError(Exception):
    """Raised when the OpenCode server returns a non-2xx response."""

    def __init__(self, message: str, status: int, method: str, path: str, body: str = ""):
        super().__init__(message)
        self.status = status
        self.method = method
        self.path = path
        self.body = body

    @property
    def is_transient(self) -> bool:
        return classify_status(self.status).transient

    @property
    def is_not_found(self) -> bool:
        return classify_status(self.status).not_found

    @property
    def is_auth(self) -> bool:
        return classify_status(self.status).auth


class OpenCodeConnectionError(Exception):
    """Raised when the OpenCode server could not be reached."""

    def __init__(self, message: str, method: str, path: str):
        super().__init__(message)
        self.method = method
        self.path = path


class ServerStartError(Exception):
    """Base class for supervisor failures. Never retried automatically."""


class ServerNotRunningError(ServerStartError):
    """Server is down and auto-start is disabled."""


class BinaryNotFoundError(ServerStartError):
    """The opencode executable is not on PATH."""


class ServerStartupError(ServerStartError):
    """The spawned server failed to spawn, exited early, or never became healthy."""

    def __init__(
        self,
        message: str,
        elapsed: float = 0.0,
        exit_code: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ):
        super().__init__(message)
        self.elapsed = elapsed
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
