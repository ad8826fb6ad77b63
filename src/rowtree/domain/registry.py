"""Schema registry — the single lookup point from entity type to schema.

Engines never construct anything by entity-type name. They ask the
registry for an :class:`EntityRegistration`, which carries the schema and
the lifecycle hooks for that type.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from rowtree.domain.errors import SchemaError, UnknownEntityType
from rowtree.domain.schema import EntitySchema

if TYPE_CHECKING:
    from rowtree.domain.records import RecordNode


class EntityHooks:
    """Lifecycle callbacks for one entity type.

    Subclass and override either method. Both are called once per record,
    immediately around that record's own upsert, and may mutate
    ``node.scalar_fields``. Exceptions propagate and abort the save.
    """

    def before_save(self, node: RecordNode) -> None:
        """Called before the record is written."""

    def after_save(self, node: RecordNode) -> None:
        """Called after the record is written, with generated keys filled in."""


_NO_HOOKS = EntityHooks()


@dataclass(frozen=True)
class EntityRegistration:
    """A registered entity type: its schema and lifecycle hooks."""

    schema: EntitySchema
    hooks: EntityHooks = field(default=_NO_HOOKS)

    @property
    def name(self) -> str:
        return self.schema.name


class SchemaRegistry:
    """Maps entity-type identifiers to their registrations."""

    def __init__(self, schemas: Iterable[EntitySchema] = ()) -> None:
        self._entries: dict[str, EntityRegistration] = {}
        for schema in schemas:
            self.register(schema)

    @classmethod
    def from_config(cls, entities: Mapping[str, Mapping[str, Any]]) -> SchemaRegistry:
        """Build a registry from ``[entities.<Name>]`` config tables."""
        registry = cls()
        for name, data in entities.items():
            registry.register_config(name, data)
        return registry

    def register(
        self,
        schema: EntitySchema,
        hooks: EntityHooks | None = None,
        *,
        replace: bool = False,
    ) -> EntityRegistration:
        """Register *schema* with optional *hooks*.

        Raises:
            SchemaError: If the name is taken and *replace* is False.
        """
        if schema.name in self._entries and not replace:
            msg = f"Entity type {schema.name!r} is already registered"
            raise SchemaError(msg, entity_type=schema.name)
        entry = EntityRegistration(schema=schema, hooks=hooks or _NO_HOOKS)
        self._entries[schema.name] = entry
        return entry

    def register_config(self, name: str, data: Mapping[str, Any]) -> EntityRegistration:
        """Validate a declarative schema table and register it under *name*."""
        try:
            schema = EntitySchema.model_validate({**data, "name": name})
        except ValidationError as exc:
            msg = f"Invalid schema for entity type {name!r}: {exc}"
            raise SchemaError(msg, entity_type=name) from exc
        return self.register(schema)

    def set_hooks(self, entity_type: str, hooks: EntityHooks) -> None:
        """Attach lifecycle hooks to an already registered entity type."""
        entry = self.get(entity_type)
        self._entries[entity_type] = EntityRegistration(schema=entry.schema, hooks=hooks)

    def get(self, entity_type: str) -> EntityRegistration:
        """Look up a registration.

        Raises:
            UnknownEntityType: If nothing is registered under *entity_type*.
        """
        entry = self._entries.get(entity_type)
        if entry is None:
            raise UnknownEntityType(entity_type)
        return entry

    def schema(self, entity_type: str) -> EntitySchema:
        return self.get(entity_type).schema

    def names(self) -> list[str]:
        return sorted(self._entries)

    def __contains__(self, entity_type: object) -> bool:
        return entity_type in self._entries

    def __iter__(self) -> Iterator[EntitySchema]:
        return (entry.schema for entry in self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    # Consistency
    # ------------------------------------------------------------------

    def problems(self) -> list[str]:
        """Describe every inconsistency in the registered relationship graph.

        Checks that related types are registered, that declared children
        reference their parent back, that a pair of types relates in only
        one direction, and that the types form no cycle, whether along
        references alone or along references and children taken together.
        """
        issues: list[str] = []
        for schema in self:
            for parent in schema.references:
                if parent not in self._entries:
                    issues.append(f"{schema.name} references unknown entity type {parent!r}")
                elif self.schema(parent).try_get_reference(schema.name) is not None:
                    issues.append(f"{schema.name} and {parent} reference each other")
            for child in schema.children:
                if child not in self._entries:
                    issues.append(f"{schema.name} lists unknown child entity type {child!r}")
                elif self.schema(child).try_get_reference(schema.name) is None:
                    issues.append(f"{schema.name} lists child {child} without a reference back")

        cycle = self._find_cycle()
        if cycle:
            issues.append("Reference cycle: " + " -> ".join(cycle))
        else:
            loop = self._find_loop()
            if loop:
                issues.append("Relationship cycle: " + " - ".join(loop))
        return issues

    def validate(self) -> None:
        """Raise :class:`SchemaError` if :meth:`problems` reports anything."""
        issues = self.problems()
        if issues:
            raise SchemaError("; ".join(issues), problems=issues)

    def _find_cycle(self) -> list[str]:
        visiting: list[str] = []
        done: set[str] = set()

        def visit(name: str) -> list[str]:
            if name in visiting:
                return [*visiting[visiting.index(name) :], name]
            if name in done or name not in self._entries:
                return []
            visiting.append(name)
            for parent in self.schema(name).references:
                found = visit(parent)
                if found:
                    return found
            visiting.pop()
            done.add(name)
            return []

        for name in self.names():
            found = visit(name)
            if found:
                return found
        return []
    def _find_loop(self) -> list[str]:
        neighbours: dict[str, set[str]] = {name: set() for name in self._entries}
        for schema in self:
            for other in (*schema.references, *schema.children):
                if other in neighbours and other != schema.name:
                    neighbours[schema.name].add(other)
                    neighbours[other].add(schema.name)

        seen: set[str] = set()

        def visit(name: str, came_from: str | None, path: list[str]) -> list[str]:
            seen.add(name)
            path.append(name)
            for other in sorted(neighbours[name]):
                if other == came_from:
                    continue
                if other in path:
                    return [*path[path.index(other) :], other]
                found = visit(other, name, path)
                if found:
                    return found
            path.pop()
            return []

        for name in self.names():
            if name not in seen:
                found = visit(name, None, [])
                if found:
                    return found
        return []
