"""Subcommand modules for rowtree.

Provides register_commands() which uses deferred imports to keep
``rowtree --help`` fast.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import click


def register_commands(cli: click.Group) -> None:
    """Register all standalone commands on the root CLI group."""
    from rowtree.commands.records import get, list_records, save
    from rowtree.commands.schema import schema

    cli.add_command(save)
    cli.add_command(get)
    cli.add_command(list_records)
    cli.add_command(schema)
