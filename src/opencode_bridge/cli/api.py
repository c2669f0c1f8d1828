"""
Commands that talk to the OpenCode server API.
"""

import asyncio
import json
import sys
from typing import Any

import click

from opencode_bridge.client import OpenCodeClient
from opencode_bridge.config.app import BridgeConfig
from opencode_bridge.errors import OpenCodeConnectionError, OpenCodeError
from opencode_bridge.sse import SSEEvent
from opencode_bridge.utils.status import format_event

from .utils import parse_query

HTTP_METHODS = ["GET", "POST", "PATCH", "PUT", "DELETE"]


def _report_error(e: OpenCodeError | OpenCodeConnectionError) -> None:
    click.echo(f"Error: {e}", err=True)
    if isinstance(e, OpenCodeError):
        if e.is_auth:
            click.echo(
                "Check OPENCODE_SERVER_USERNAME / OPENCODE_SERVER_PASSWORD.",
                err=True,
            )
        elif e.is_not_found:
            click.echo(f"Path not found on the server: {e.path}", err=True)
    else:
        click.echo("Is the server running? Try: opencode-bridge ensure", err=True)
    sys.exit(1)


@click.command()
@click.option("--path", default="/event", show_default=True, help="Event stream path")
@click.option(
    "--duration",
    type=float,
    default=3.0,
    show_default=True,
    help="Seconds to collect events for (max 30)",
)
@click.option(
    "--max",
    "max_events",
    type=int,
    default=50,
    show_default=True,
    help="Stop after this many events",
)
@click.pass_context
def events(ctx: click.Context, path: str, duration: float, max_events: int) -> None:
    """Collect events from the OpenCode event stream."""
    config: BridgeConfig = ctx.obj["config"]

    try:
        collected = asyncio.run(_poll_events(config, path, duration, max_events))
    except (OpenCodeError, OpenCodeConnectionError) as e:
        _report_error(e)
        return

    if not collected:
        click.echo("No events received during the polling period.")
        return

    click.echo(f"Collected {len(collected)} event(s):")
    for event in collected:
        click.echo("")
        click.echo(format_event(event))


async def _poll_events(
    config: BridgeConfig, path: str, duration: float, max_events: int
) -> list[SSEEvent]:
    async with OpenCodeClient.from_config(config) as client:
        return await client.poll_events(path, duration=duration, max_events=max_events)


@click.command()
@click.argument("method", type=click.Choice(HTTP_METHODS, case_sensitive=False))
@click.argument("path")
@click.option("--data", "-d", help="JSON request body")
@click.option("--query", "-q", multiple=True, help="Query parameter as key=value (repeatable)")
@click.option("--directory", help="Project directory to scope the request to")
@click.option("--timeout", type=float, default=None, help="Request timeout in seconds")
@click.pass_context
def request(
    ctx: click.Context,
    method: str,
    path: str,
    data: str | None,
    query: tuple[str, ...],
    directory: str | None,
    timeout: float | None,
) -> None:
    """Send a single request to the OpenCode server and print the result."""
    config: BridgeConfig = ctx.obj["config"]

    try:
        body = json.loads(data) if data else None
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"Invalid JSON: {e}", param_hint="--data") from e
    try:
        params = parse_query(query)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--query") from e

    try:
        result = asyncio.run(
            _send(config, method.upper(), path, body, params, directory, timeout)
        )
    except (OpenCodeError, OpenCodeConnectionError) as e:
        _report_error(e)
        return

    if result is None:
        click.echo("(no content)")
    elif isinstance(result, str):
        click.echo(result)
    else:
        click.echo(json.dumps(result, indent=2))


async def _send(
    config: BridgeConfig,
    method: str,
    path: str,
    body: Any,
    query: dict[str, str],
    directory: str | None,
    timeout: float | None,
) -> Any:
    async with OpenCodeClient.from_config(config) as client:
        return await client.request(
            method,
            path,
            body=body,
            query=query or None,
            directory=directory,
            timeout=timeout,
        )
