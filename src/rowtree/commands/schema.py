"""Schema command: show registered entity schemas."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from rowtree.commands._base import RowtreeCommand

if TYPE_CHECKING:
    from rowtree.commands._context import AppContext


@click.command(
    cls=RowtreeCommand,
    examples="""\
  rowtree schema
  rowtree --json schema Title""",
)
@click.argument("entity_type", required=False)
@click.pass_obj
def schema(app: AppContext, entity_type: str | None) -> None:
    """Show registered entity schemas and relationship problems."""
    app.emit(app.service().describe(entity_type))
