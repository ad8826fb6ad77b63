"""Plugin discovery, schema contribution, and observer dispatch.

Discovery: entry_points (pip-installed) via pluggy setuptools entrypoints
in the ``rowtree.plugins`` group. Plugins may also be registered directly.
"""

from __future__ import annotations

import inspect
import logging
from typing import TYPE_CHECKING, Any

import pluggy

from rowtree.domain.errors import SchemaError
from rowtree.domain.schema import EntitySchema
from rowtree.plugins.hookspecs import RowtreeHookSpec

if TYPE_CHECKING:
    from rowtree.domain.registry import SchemaRegistry

PROJECT_NAME = "rowtree"

logger = logging.getLogger(__name__)


class PluginManager:
    """Manages plugin discovery, loading, and hook dispatch."""

    def __init__(self) -> None:
        self._pm = pluggy.PluginManager(PROJECT_NAME)
        self._pm.add_hookspecs(RowtreeHookSpec)
        self._loaded: bool = False

    def discover_and_load(self) -> list[str]:
        """Load plugins from the ``rowtree.plugins`` entry-point group.

        Returns a list of loaded plugin names.
        """
        self._pm.load_setuptools_entrypoints("rowtree.plugins")
        self._normalize_plugin_instances()
        self._loaded = True
        return self.list_plugin_names()

    def register_plugin(self, plugin: object, name: str | None = None) -> None:
        """Register a plugin instance directly."""
        resolved_name = name or plugin.__class__.__name__
        self._pm.register(plugin, name=resolved_name)
        logger.debug("Registered plugin: %s", resolved_name)

    def unregister(self, plugin: object) -> None:
        """Unregister a plugin instance."""
        self._pm.unregister(plugin)

    @property
    def is_loaded(self) -> bool:
        """Whether discover_and_load() has been called."""
        return self._loaded

    @property
    def hook(self) -> pluggy.HookRelay:
        """Access the hook relay for dispatching events."""
        return self._pm.hook

    def list_plugin_names(self) -> list[str]:
        """Return names of all registered plugins."""
        return [self._pm.get_name(p) or p.__class__.__name__ for p in self._pm.get_plugins()]

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def notify(self, hook_name: str, warnings: list[str] | None = None, **kwargs: Any) -> None:
        """Call an observer hook.

        INVARIANT: Plugin failures are warnings, never errors.
        """
        try:
            getattr(self._pm.hook, hook_name)(**kwargs)
        except Exception:
            logger.warning("Plugin hook %s failed", hook_name, exc_info=True)
            if warnings is not None:
                warnings.append(f"Plugin hook {hook_name} failed")

    def contribute_schemas(self, registry: SchemaRegistry) -> list[str]:
        """Register every plugin-provided entity schema into *registry*.

        Bad contributions are skipped with a warning. Returns the names of
        the entity types added.
        """
        added: list[str] = []
        for plugin in self._pm.get_plugins():
            plugin_name = self._pm.get_name(plugin) or plugin.__class__.__name__
            hook = getattr(plugin, "register_entity_schemas", None)
            if hook is None:
                continue
            try:
                schemas = hook()
            except Exception:
                logger.warning(
                    "Failed to collect entity schemas from plugin %s",
                    plugin_name,
                    exc_info=True,
                )
                continue

            for schema in schemas or ():
                if not isinstance(schema, EntitySchema):
                    logger.warning(
                        "Plugin %s returned a non-EntitySchema registration", plugin_name
                    )
                    continue
                try:
                    registry.register(schema)
                except SchemaError:
                    logger.warning(
                        "Skipping entity schema %r from plugin %s",
                        schema.name,
                        plugin_name,
                        exc_info=True,
                    )
                    continue
                added.append(schema.name)
        return added

    def _normalize_plugin_instances(self) -> None:
        """Replace registered plugin classes with instantiated objects.

        Entry-point loading may register a plugin class directly. Hook dispatch
        against class objects leaves ``self`` unbound and fails at runtime.
        """
        for plugin in list(self._pm.get_plugins()):
            if not inspect.isclass(plugin):
                continue

            plugin_name = self._pm.get_name(plugin) or plugin.__name__
            self._pm.unregister(plugin)

            try:
                instance = plugin()
            except Exception:
                logger.warning(
                    "Failed to instantiate entry-point plugin %s",
                    plugin_name,
                    exc_info=True,
                )
                continue

            self._pm.register(instance, name=plugin_name)
            logger.debug("Instantiated entry-point plugin: %s", plugin_name)
