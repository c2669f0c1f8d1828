"""
OpenCode server process supervisor.

Makes sure an OpenCode headless server is reachable before any request is sent:
1. Probe the health endpoint; an already-running server is used as-is
2. Find the ``opencode`` binary on PATH
3. Spawn ``opencode serve`` and race health polling against early process exit
4. Kill the managed child on stop, SIGINT/SIGTERM, or interpreter exit
"""

from __future__ import annotations

import asyncio
import atexit
import contextlib
import logging
import os
import shutil
import signal
import sys
import time
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

from opencode_bridge.client import DEFAULT_BASE_URL, basic_auth_header
from opencode_bridge.config.app import BridgeConfig
from opencode_bridge.errors import (
    BinaryNotFoundError,
    ServerNotRunningError,
    ServerStartupError,
)
from opencode_bridge.health import DEFAULT_HEALTH_TIMEOUT, HealthStatus, check_health

logger = logging.getLogger(__name__)

BINARY_NAME = "opencode"
DEFAULT_PORT = 4096
DEFAULT_STARTUP_TIMEOUT = 30.0
HEALTH_POLL_INTERVAL = 0.5
# Seconds a terminated child gets to exit before it is force-killed
TERMINATE_GRACE = 2.0
LOCAL_HOSTS = frozenset({"127.0.0.1", "localhost"})

# Per-stream cap on captured child output
OUTPUT_LIMIT = 64 * 1024


@dataclass(frozen=True)
class ServerStatus:
    """Snapshot of server availability."""

    running: bool
    managed_by_us: bool
    version: str | None = None


@dataclass
class ManagedProcess:
    """A spawned ``opencode serve`` process and its captured output."""

    process: asyncio.subprocess.Process
    started_at: float = field(default_factory=time.monotonic)
    killed: bool = False
    stdout: bytearray = field(default_factory=bytearray)
    stderr: bytearray = field(default_factory=bytearray)
    _readers: list[asyncio.Task[None]] = field(default_factory=list, repr=False)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def alive(self) -> bool:
        return not self.killed and self.process.returncode is None

    def start_readers(self) -> None:
        """Continuously drain the child's pipes so it never blocks on a full buffer."""
        for stream, buffer in ((self.process.stdout, self.stdout), (self.process.stderr, self.stderr)):
            if stream is not None:
                self._readers.append(asyncio.create_task(_drain(stream, buffer)))

    async def wait_readers(self, timeout: float = 1.0) -> None:
        if self._readers:
            await asyncio.wait(self._readers, timeout=timeout)

    def cancel_readers(self) -> None:
        for task in self._readers:
            task.cancel()

    def kill(self) -> None:
        """Send SIGTERM if the process is still running."""
        if self.killed:
            return
        self.killed = True
        if self.process.returncode is not None:
            return
        try:
            # os.kill rather than Process.terminate: works after the event loop is gone
            os.kill(self.process.pid, signal.SIGTERM)
        except ProcessLookupError:
            pass

    async def reap(self, grace: float) -> None:
        """Wait for the process to exit, force-killing it after ``grace`` seconds."""
        try:
            await asyncio.wait_for(self.process.wait(), timeout=grace)
        except asyncio.TimeoutError:
            logger.warning(f"OpenCode server (PID {self.pid}) ignored SIGTERM, killing")
            with contextlib.suppress(ProcessLookupError):
                self.process.kill()
            await self.process.wait()

    def output(self) -> tuple[str, str]:
        """Return captured (stdout, stderr) text."""
        return (
            self.stdout.decode("utf-8", errors="replace"),
            self.stderr.decode("utf-8", errors="replace"),
        )


async def _drain(stream: asyncio.StreamReader, buffer: bytearray) -> None:
    while True:
        chunk = await stream.read(4096)
        if not chunk:
            return
        buffer.extend(chunk)
        if len(buffer) > OUTPUT_LIMIT:
            del buffer[: len(buffer) - OUTPUT_LIMIT]


def find_binary(name: str = BINARY_NAME) -> str | None:
    """
    Locate the opencode executable on PATH.

    Returns:
        Full path to the first match, or None if not installed
    """
    return shutil.which(name)


async def get_installed_version(binary_path: str, timeout: float = 10.0) -> str | None:
    """Run ``<binary> --version``. Returns None if it fails."""
    try:
        proc = await asyncio.create_subprocess_exec(
            binary_path,
            "--version",
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as e:
        logger.debug(f"Could not run {binary_path} --version: {e}")
        return None

    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return None

    if proc.returncode != 0:
        return None
    return stdout.decode("utf-8", errors="replace").strip() or None


def get_install_instructions() -> str:
    """Build installation instructions for when the binary is not found."""
    return "\n".join(
        [
            "OpenCode is not installed on this system.",
            "",
            "Install it using one of these methods:",
            "  curl -fsSL https://opencode.ai/install | bash",
            "  npm i -g opencode-ai",
            "  brew install sst/tap/opencode",
            "",
            "For more options: https://opencode.ai",
            "",
            "After installing, run this command again.",
            "To disable auto-start: set OPENCODE_AUTO_SERVE=false",
        ]
    )


def parse_base_url(base_url: str) -> tuple[str, int]:
    """
    Extract host and port from a base URL.

    Returns:
        (hostname, port) with port defaulting to 4096
    """
    parts = urlsplit(base_url)
    return parts.hostname or "127.0.0.1", parts.port or DEFAULT_PORT


def build_serve_args(base_url: str) -> list[str]:
    """Arguments for ``opencode serve`` targeting the given base URL."""
    hostname, port = parse_base_url(base_url)
    args = ["serve", "--port", str(port)]
    if hostname not in LOCAL_HOSTS:
        args.extend(["--hostname", hostname])
    return args


class ServerManager:
    """
    Supervisor owning at most one managed ``opencode serve`` process.

    Concurrent ensure_server() calls are serialized: a second caller waits
    for the first to finish and then sees the server it started.

    Args:
        base_url: Server base URL
        auto_serve: Spawn the server when it is not reachable
        startup_timeout: Seconds to wait for a spawned server to become healthy
        health_timeout: Timeout for each health probe
        headers: Extra headers for health probes (e.g. Authorization)
        poll_interval: Seconds between health polls during startup
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        auto_serve: bool = True,
        startup_timeout: float = DEFAULT_STARTUP_TIMEOUT,
        health_timeout: float = DEFAULT_HEALTH_TIMEOUT,
        headers: dict[str, str] | None = None,
        poll_interval: float = HEALTH_POLL_INTERVAL,
    ):
        self.base_url = base_url.removesuffix("/")
        self.auto_serve = auto_serve
        self.startup_timeout = startup_timeout
        self.health_timeout = health_timeout
        self.headers = headers
        self.poll_interval = poll_interval

        self._process: ManagedProcess | None = None
        self._shutdown_registered = False
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: BridgeConfig) -> ServerManager:
        headers = None
        if config.password:
            headers = {"Authorization": basic_auth_header(config.username, config.password)}
        return cls(
            base_url=config.base_url,
            auto_serve=config.auto_serve,
            startup_timeout=config.startup_timeout,
            health_timeout=config.health_timeout,
            headers=headers,
        )

    @property
    def process(self) -> ManagedProcess | None:
        return self._process

    @property
    def is_managing(self) -> bool:
        """True if this supervisor owns a live server process."""
        return self._process is not None and self._process.alive

    async def probe(self, base_url: str | None = None, timeout: float | None = None) -> HealthStatus:
        return await check_health(
            base_url or self.base_url,
            timeout=self.health_timeout if timeout is None else timeout,
            headers=self.headers,
        )

    async def status(self) -> ServerStatus:
        """Fresh availability snapshot."""
        health = await self.probe()
        return ServerStatus(
            running=health.healthy,
            managed_by_us=health.healthy and self.is_managing,
            version=health.version,
        )

    async def ensure_server(
        self,
        base_url: str | None = None,
        auto_serve: bool | None = None,
        startup_timeout: float | None = None,
    ) -> ServerStatus:
        """
        Ensure the OpenCode server is available, starting it if needed.

        Args:
            base_url: Override the configured base URL
            auto_serve: Override the configured auto-start flag
            startup_timeout: Override the configured startup timeout

        Returns:
            ServerStatus describing the running server

        Raises:
            ServerNotRunningError: Server is down and auto-start is disabled
            BinaryNotFoundError: The opencode binary is not installed
            ServerStartupError: The spawned server failed to come up
        """
        base_url = (base_url or self.base_url).removesuffix("/")
        auto_serve = self.auto_serve if auto_serve is None else auto_serve
        timeout = self.startup_timeout if startup_timeout is None else startup_timeout

        async with self._lock:
            existing = await self.probe(base_url)
            if existing.healthy:
                logger.info(
                    f"OpenCode server already running at {base_url} "
                    f"(v{existing.version or 'unknown'})"
                )
                return ServerStatus(
                    running=True,
                    managed_by_us=self.is_managing,
                    version=existing.version,
                )

            if not auto_serve:
                raise ServerNotRunningError(
                    f"OpenCode server is not running at {base_url} and OPENCODE_AUTO_SERVE=false.\n"
                    "Start it manually: opencode serve"
                )

            logger.info("OpenCode server not detected, attempting auto-start...")
            binary_path = find_binary()
            if not binary_path:
                raise BinaryNotFoundError(get_install_instructions())

            installed = await get_installed_version(binary_path)
            logger.info(
                f"Found opencode binary at {binary_path}" + (f" ({installed})" if installed else "")
            )

            if self._process is not None:
                logger.warning(f"Replacing unresponsive managed server (PID {self._process.pid})")
                self.stop_server()

            version = await self.start_server(binary_path, base_url, timeout)
            logger.info(f"OpenCode server started successfully (v{version or 'unknown'})")
            return ServerStatus(running=True, managed_by_us=True, version=version)

    async def start_server(
        self,
        binary_path: str,
        base_url: str | None = None,
        timeout: float | None = None,
    ) -> str | None:
        """
        Spawn ``opencode serve`` and wait for it to become healthy.

        Health polling races against process exit; whichever settles first
        decides the outcome and the other is cancelled. Any exit before the
        server reports healthy is fatal, including exit code 0.

        Args:
            binary_path: Path to the opencode executable
            base_url: Server base URL (host/port are derived from it)
            timeout: Seconds to wait for health

        Returns:
            Server version reported by the health endpoint, if any

        Raises:
            ServerStartupError: Spawn failed, the process exited, or health timed out
        """
        base_url = (base_url or self.base_url).removesuffix("/")
        timeout = self.startup_timeout if timeout is None else timeout
        args = build_serve_args(base_url)

        logger.info(f"Starting: {binary_path} {' '.join(args)}")
        started = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                binary_path,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ServerStartupError(f"Failed to start opencode serve: {e}") from e

        managed = ManagedProcess(process=proc, started_at=started)
        managed.start_readers()
        self._process = managed
        self.register_shutdown_handlers()

        health_task = asyncio.create_task(self._wait_for_healthy(base_url, timeout))
        exit_task = asyncio.create_task(proc.wait())
        try:
            done, _ = await asyncio.wait(
                {health_task, exit_task}, return_when=asyncio.FIRST_COMPLETED
            )
        except BaseException:
            managed.kill()
            self._release(managed)
            raise
        finally:
            health_task.cancel()
            exit_task.cancel()

        elapsed = time.monotonic() - started

        if exit_task in done:
            await managed.wait_readers()
            stdout, stderr = managed.output()
            self._release(managed)
            code = proc.returncode
            raise ServerStartupError(
                f"opencode serve exited with code {code} after {elapsed:.1f}s "
                f"before becoming healthy.\n{stderr or stdout}",
                elapsed=elapsed,
                exit_code=code,
                stdout=stdout,
                stderr=stderr,
            )

        if not health_task.result():
            managed.kill()
            try:
                await managed.reap(TERMINATE_GRACE)
                await managed.wait_readers()
            finally:
                self._release(managed)
            stdout, stderr = managed.output()
            raise ServerStartupError(
                f"opencode serve did not become healthy within {timeout:g}s "
                f"({elapsed:.1f}s elapsed).\nstderr: {stderr}\nstdout: {stdout}",
                elapsed=elapsed,
                stdout=stdout,
                stderr=stderr,
            )

        status = await self.probe(base_url)
        logger.info(f"OpenCode server healthy after {elapsed:.1f}s (PID {managed.pid})")
        return status.version

    async def _wait_for_healthy(self, base_url: str, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            # A single probe never runs past the startup deadline
            health = await self.probe(base_url, timeout=min(self.health_timeout, remaining))
            if health.healthy:
                return True
            await asyncio.sleep(max(0.0, min(self.poll_interval, deadline - time.monotonic())))

    def _release(self, managed: ManagedProcess) -> None:
        managed.cancel_readers()
        if self._process is managed:
            self._process = None

    def stop_server(self) -> bool:
        """
        Stop the managed server, if we started one.

        Returns:
            True if a managed process was signalled
        """
        managed = self._process
        if managed is None:
            return False
        self._process = None
        managed.cancel_readers()
        if not managed.alive:
            return False
        logger.info(f"Stopping managed OpenCode server (PID {managed.pid})")
        managed.kill()
        return True

    async def shutdown(self, grace: float = 5.0) -> None:
        """Stop the managed server and wait for it to exit, force-killing after ``grace``."""
        managed = self._process
        if not self.stop_server() or managed is None:
            return
        await managed.reap(grace)

    def register_shutdown_handlers(self) -> None:
        """Install exit/SIGINT/SIGTERM cleanup. Only registers once per supervisor."""
        if self._shutdown_registered:
            return
        self._shutdown_registered = True

        atexit.register(self._cleanup)
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                previous = signal.getsignal(sig)
                signal.signal(sig, self._make_signal_handler(previous))
            except ValueError:
                logger.warning(f"Cannot install {sig.name} handler outside the main thread")

    def _make_signal_handler(self, previous: Any) -> Any:
        def handler(signum: int, frame: Any) -> None:
            logger.info(f"Received signal {signum}, stopping managed OpenCode server")
            self._cleanup()
            if callable(previous):
                previous(signum, frame)
            else:
                sys.exit(0)

        return handler

    def _cleanup(self) -> None:
        managed = self._process
        if managed is not None and managed.alive:
            managed.kill()
        self._process = None
