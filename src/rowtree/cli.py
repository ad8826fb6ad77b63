"""Root CLI group for rowtree with global flags and command registration."""

from __future__ import annotations

import click

from rowtree import __version__
from rowtree.commands import register_commands
from rowtree.commands._context import AppContext
from rowtree.config.settings import RowtreeSettings


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="rowtree")
@click.option("--json", "json_output", is_flag=True, help="Structured JSON output.")
@click.option("-v", "--verbose", is_flag=True, help="Detailed output with debug info.")
@click.option("--log-json", is_flag=True, help="Structured JSON log output to stderr.")
@click.option("-c", "--config", "config_path", default=None, help="Override config file path.")
@click.option("--db", "database_url", default=None, help="Override the database URL.")
@click.pass_context
def cli(
    ctx: click.Context,
    json_output: bool,
    verbose: bool,
    log_json: bool,
    config_path: str | None,
    database_url: str | None,
) -> None:
    """rowtree — save and load nested record trees in a relational store."""
    ctx.ensure_object(dict)
    settings = RowtreeSettings.from_cli(
        config_path=config_path,
        database_url=database_url,
        json_output=json_output,
        verbose=verbose,
        log_json=log_json,
    )
    ctx.obj = AppContext(settings)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


register_commands(cli)
