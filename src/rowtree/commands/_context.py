"""AppContext — shared Click context for all commands.

Created once by the root CLI group and flows to all subcommands via
``@click.pass_obj``. Provides lazy store/registry initialization and
centralized result emission (stdout/stderr routing + exit codes).
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import click

from rowtree.domain.errors import SchemaError

if TYPE_CHECKING:
    from rowtree.config.settings import RowtreeSettings
    from rowtree.domain.registry import SchemaRegistry
    from rowtree.infrastructure.store import RecordStore
    from rowtree.plugins.manager import PluginManager
    from rowtree.services.records import RecordService
    from rowtree.services.result import ServiceResult


class AppContext:
    """Shared context flowing through Click's command hierarchy.

    The database and schema registry are initialized on first use so
    ``--help`` and ``--version`` never touch the database.
    """

    def __init__(self, settings: RowtreeSettings) -> None:
        self.settings = settings
        self._store: RecordStore | None = None
        self._registry: SchemaRegistry | None = None
        self._plugins: PluginManager | None = None

        from rowtree.config.logging import configure_logging

        configure_logging(
            verbose=settings.verbose,
            log_json=settings.log_json,
            echo_sql=settings.database.echo,
        )

    @property
    def plugins(self) -> PluginManager:
        """Plugin manager with entry-point plugins loaded."""
        if self._plugins is None:
            from rowtree.plugins.manager import PluginManager

            self._plugins = PluginManager()
            self._plugins.discover_and_load()
        return self._plugins

    @property
    def registry(self) -> SchemaRegistry:
        """Schema registry built from ``[entities]`` config plus plugin schemas."""
        if self._registry is None:
            from rowtree.domain.registry import SchemaRegistry

            try:
                registry = SchemaRegistry.from_config(self.settings.entities)
                self.plugins.contribute_schemas(registry)
                if self.settings.engine.validate_schemas:
                    registry.validate()
            except SchemaError as exc:
                raise click.ClickException(exc.message) from exc
            self._registry = registry
        return self._registry

    @property
    def store(self) -> RecordStore:
        """The record store (created lazily on first access)."""
        if self._store is None:
            from rowtree.infrastructure.store import RecordStore

            self._store = RecordStore.from_settings(self.settings)
        return self._store

    def service(self) -> RecordService:
        from rowtree.services.records import RecordService

        return RecordService(self.store, self.registry, self.plugins)

    def emit(self, result: ServiceResult) -> None:
        """Output a ServiceResult with correct exit semantics.

        * Success: payload to stdout (the full result with ``--json``),
          warnings to stderr so they don't pollute piped output.
        * Failure: error to stderr, exit code 1.
        """
        json_output = self.settings.json_output
        if result.ok:
            if json_output:
                click.echo(result.model_dump_json(indent=2))
            else:
                click.echo(json.dumps(result.data, indent=2, default=str))
                for warning in result.warnings:
                    click.echo(f"WARNING: {warning}", err=True)
            return

        if json_output:
            click.echo(result.model_dump_json(indent=2), err=True)
        else:
            error = result.error
            message = f"Error [{error.code}]: {error.message}" if error else "Error"
            click.echo(message, err=True)
        raise SystemExit(1)
