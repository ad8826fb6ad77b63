"""Record commands: save, get, list."""

from __future__ import annotations

import json
from typing import IO, TYPE_CHECKING

import click

from rowtree.commands._base import RowtreeCommand, parse_assignments

if TYPE_CHECKING:
    from rowtree.commands._context import AppContext


def _cascade_default(app: AppContext, cascade: bool | None) -> bool:
    return app.settings.engine.cascade if cascade is None else cascade


@click.command(
    cls=RowtreeCommand,
    examples="""\
  rowtree save Title title.json
  rowtree save Title titles.json --global imported_by=nightly
  cat title.json | rowtree save Title -""",
)
@click.argument("entity_type")
@click.argument("source", type=click.File("r", encoding="utf-8"))
@click.option(
    "--global",
    "global_pairs",
    multiple=True,
    metavar="KEY=VALUE",
    help="Field passed down to every record (repeatable).",
)
@click.pass_obj
def save(app: AppContext, entity_type: str, source: IO[str], global_pairs: tuple[str, ...]) -> None:
    """Save a JSON record tree (or array of trees) as ENTITY_TYPE."""
    try:
        payload = json.load(source)
    except json.JSONDecodeError as exc:
        raise click.BadParameter(f"Invalid JSON: {exc}", param_hint="SOURCE") from exc
    global_fields = parse_assignments(global_pairs, "--global")
    app.emit(app.service().save(entity_type, payload, global_fields=global_fields))


@click.command(
    cls=RowtreeCommand,
    examples="""\
  rowtree get Title --where name=Dune
  rowtree get Title --where id=3 --cascade""",
)
@click.argument("entity_type")
@click.option("--where", "where", multiple=True, metavar="KEY=VALUE", help="Equality filter (repeatable).")
@click.option("--cascade/--no-cascade", default=None, help="Expand related records.")
@click.pass_obj
def get(app: AppContext, entity_type: str, where: tuple[str, ...], cascade: bool | None) -> None:
    """Fetch the first ENTITY_TYPE record matching the filters."""
    filters = parse_assignments(where, "--where")
    app.emit(app.service().get(entity_type, filters, cascade=_cascade_default(app, cascade)))


@click.command(
    "list",
    cls=RowtreeCommand,
    examples="""\
  rowtree list Author --where title_id=1
  rowtree list Title --sort name --limit 10 --cascade
  rowtree list Title --sort published:desc""",
)
@click.argument("entity_type")
@click.option("--where", "where", multiple=True, metavar="KEY=VALUE", help="Equality filter (repeatable).")
@click.option("--cascade/--no-cascade", default=None, help="Expand related records.")
@click.option("--sort", "sort_specs", multiple=True, metavar="FIELD[:asc|desc]", help="Sort order.")
@click.option("--limit", default=None, type=click.IntRange(min=1), help="Max results.")
@click.pass_obj
def list_records(
    app: AppContext,
    entity_type: str,
    where: tuple[str, ...],
    cascade: bool | None,
    sort_specs: tuple[str, ...],
    limit: int | None,
) -> None:
    """List ENTITY_TYPE records matching the filters."""
    filters = parse_assignments(where, "--where")
    sort: dict[str, str] = {}
    for spec in sort_specs:
        name, _, direction = spec.partition(":")
        sort[name] = direction or "asc"
    app.emit(
        app.service().get_all(
            entity_type,
            filters,
            cascade=_cascade_default(app, cascade),
            sort=sort,
            limit=limit,
        )
    )
