"""
OpenCode bridge CLI entry point.
"""

import click

from opencode_bridge.config.app import load_config

from .api import events, request
from .server import ensure, status
from .utils import setup_logging


@click.group()
@click.option(
    "--config",
    type=click.Path(exists=True),
    help="Path to custom configuration file",
)
@click.option(
    "--base-url",
    help="OpenCode server URL (overrides OPENCODE_BASE_URL and the config file)",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose debug output",
)
@click.pass_context
def cli(ctx: click.Context, config: str | None, base_url: str | None, verbose: bool) -> None:
    """OpenCode bridge - talk to a healthy OpenCode server."""
    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_config(config, cli_overrides={"base_url": base_url})
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    logging_settings = ctx.obj["config"].logging
    setup_logging(verbose, logging_settings.level, logging_settings.format)


cli.add_command(status)
cli.add_command(ensure)
cli.add_command(events)
cli.add_command(request)
