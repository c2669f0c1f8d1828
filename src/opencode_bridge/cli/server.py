"""
Server lifecycle commands.
"""

import asyncio
import logging
import sys

import click

from opencode_bridge.config.app import BridgeConfig
from opencode_bridge.errors import ServerStartError
from opencode_bridge.server_manager import ServerManager, ServerStatus
from opencode_bridge.utils.status import format_status_message

logger = logging.getLogger(__name__)


@click.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show OpenCode server status."""
    config: BridgeConfig = ctx.obj["config"]
    manager = ServerManager.from_config(config)

    server_status = asyncio.run(manager.status())

    click.echo(
        format_status_message(
            running=server_status.running,
            base_url=config.base_url,
            version=server_status.version,
            auto_serve=config.auto_serve,
        )
    )
    sys.exit(0 if server_status.running else 1)


@click.command()
@click.option(
    "--no-auto-serve",
    is_flag=True,
    help="Fail instead of starting the server when it is not running",
)
@click.option(
    "--timeout",
    type=float,
    default=None,
    help="Seconds to wait for a spawned server to become healthy",
)
@click.pass_context
def ensure(ctx: click.Context, no_auto_serve: bool, timeout: float | None) -> None:
    """
    Ensure the OpenCode server is running, starting it if needed.

    A server started by this command stays in the foreground until
    interrupted with Ctrl+C, and is stopped on exit.
    """
    config: BridgeConfig = ctx.obj["config"]
    manager = ServerManager.from_config(config)

    try:
        exit_code = asyncio.run(
            _run_ensure(
                manager,
                config,
                auto_serve=False if no_auto_serve else None,
                timeout=timeout,
            )
        )
    except ServerStartError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("OpenCode server stopped")
        sys.exit(0)

    sys.exit(exit_code)


async def _run_ensure(
    manager: ServerManager,
    config: BridgeConfig,
    auto_serve: bool | None,
    timeout: float | None,
) -> int:
    result: ServerStatus = await manager.ensure_server(auto_serve=auto_serve, startup_timeout=timeout)
    managed = manager.process

    click.echo(
        format_status_message(
            running=result.running,
            base_url=config.base_url,
            version=result.version,
            managed_by_us=result.managed_by_us,
            pid=managed.pid if managed else None,
            auto_serve=config.auto_serve,
        )
    )
    if not result.managed_by_us or managed is None:
        return 0

    click.echo("Press Ctrl+C to stop the server.")
    try:
        code = await managed.process.wait()
    finally:
        await manager.shutdown()

    click.echo(f"OpenCode server exited with code {code}", err=True)
    return 1
