"""RetrievalEngine — cascading load of an entity and its relationships.

Without cascade a load is one select. With cascade every fetched row is
expanded:

- **Children** (``schema.children``): one select per row per child type,
  attached as a list under the child's entity-type name.
- **Parents** (``schema.references``): the foreign keys of *all* rows are
  OR'd into a single select per parent type, and each returned parent is
  re-attached to the rows pointing at it.

Every entity type already on the path from the top-level load is passed
down, and none of them is expanded again, so an edge is never walked back
and cascades stay finite.
Relationships with nothing to attach are left out of the row.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from rowtree.domain.errors import InvalidRecordError, SchemaError
from rowtree.domain.records import RecordNode
from rowtree.domain.references import key_tuple, referenced_filter, referencing_filter

if TYPE_CHECKING:
    from rowtree.domain.registry import SchemaRegistry
    from rowtree.domain.schema import EntitySchema, Reference
    from rowtree.infrastructure.store import OrderBy, StoreTransaction

logger = logging.getLogger(__name__)

Filters = Mapping[str, Any] | Sequence[Mapping[str, Any]]

_DIRECTIONS = {"asc": False, "desc": True}


class RetrievalEngine:
    """Loads record trees through one open :class:`StoreTransaction`."""

    def __init__(self, txn: StoreTransaction, registry: SchemaRegistry) -> None:
        self._txn = txn
        self._registry = registry

    def load_many(
        self,
        entity_type: str,
        filters: Filters,
        *,
        cascade: bool = False,
        exclude: str | None = None,
        sort: Mapping[str, str] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Load every row matching *filters*.

        Args:
            entity_type: Registered entity type to load.
            filters: One mapping (AND of equalities), or a sequence of
                mappings whose AND-groups are OR'd together.
            cascade: Expand declared relationships recursively.
            exclude: Entity type never to expand (the caller's type).
            sort: External field name → ``"asc"`` or ``"desc"``.
            limit: Maximum number of top-level rows.

        Returns:
            Record trees under external property names; empty when
            nothing matches.
        """
        schema = self._registry.schema(entity_type)
        rows = self._load_rows(
            schema,
            self._filter_groups(schema, filters),
            cascade=cascade,
            visited=frozenset({exclude} if exclude else ()),
            order_by=self._order_by(schema, sort),
            limit=limit,
        )
        return schema.mapper.rows_to_external(rows)

    def load_one(
        self,
        entity_type: str,
        filters: Mapping[str, Any],
        *,
        cascade: bool = False,
    ) -> dict[str, Any] | None:
        """Load the first row matching *filters*, or None."""
        schema = self._registry.schema(entity_type)
        node = RecordNode(entity_type=entity_type, scalar_fields=schema.mapper.to_storage(filters))
        return self.load_node(node, cascade=cascade)

    def load_node(self, node: RecordNode, *, cascade: bool = False) -> dict[str, Any] | None:
        """Load *node* in place from its scalar fields used as a filter.

        The first matching row replaces ``node.scalar_fields`` and the node
        is marked loaded; a loaded node is not queried again.
        """
        schema = self._registry.schema(node.entity_type)
        if not node.loaded:
            rows = self._txn.select(schema.table, [node.scalar_fields], limit=1)
            if not rows:
                return None
            node.scalar_fields = rows[0]
            node.loaded = True

        row = dict(node.scalar_fields)
        if cascade:
            self._expand(schema, [row], visited=frozenset())
        return schema.mapper.to_external(row)

    # ------------------------------------------------------------------
    # Internals: rows stay under column names until handed out
    # ------------------------------------------------------------------

    def _load_rows(
        self,
        schema: EntitySchema,
        groups: list[dict[str, Any]],
        *,
        cascade: bool,
        visited: frozenset[str],
        order_by: OrderBy | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        if not groups:
            return []
        rows = self._txn.select(schema.table, groups, order_by=order_by, limit=limit)
        if rows and cascade:
            self._expand(schema, rows, visited=visited)
        return rows

    def _expand(self, schema: EntitySchema, rows: list[dict[str, Any]], *, visited: frozenset[str]) -> None:
        path = visited | {schema.name}
        for child_type in schema.children:
            if child_type in path:
                continue
            child_schema = self._registry.schema(child_type)
            reference = child_schema.try_get_reference(schema.name)
            if reference is None:
                msg = f"{schema.name} lists child {child_type}, which has no reference back"
                raise SchemaError(msg, entity_type=schema.name, child=child_type)
            for row in rows:
                self._attach_children(row, path, child_schema, reference)

        for parent_type, reference in schema.references.items():
            if parent_type in path:
                continue
            self._attach_parents(rows, path, self._registry.schema(parent_type), reference)

    def _attach_children(
        self,
        row: dict[str, Any],
        path: frozenset[str],
        child_schema: EntitySchema,
        reference: Reference,
    ) -> None:
        group = referencing_filter(reference, row)
        if any(value is None for value in group.values()):
            return
        children = self._load_rows(child_schema, [group], cascade=True, visited=path)
        if children:
            row[child_schema.name] = child_schema.mapper.rows_to_external(children)

    def _attach_parents(
        self,
        rows: list[dict[str, Any]],
        path: frozenset[str],
        parent_schema: EntitySchema,
        reference: Reference,
    ) -> None:
        groups: list[dict[str, Any]] = []
        seen: set[tuple[Any, ...]] = set()
        for row in rows:
            group = referenced_filter(reference, row)
            if group is None:
                continue
            key = key_tuple(group, reference.ref_columns)
            if key not in seen:
                seen.add(key)
                groups.append(group)

        parents = self._load_rows(parent_schema, groups, cascade=True, visited=path)
        logger.debug(
            "batched %d %s lookups into one select (%d found)",
            len(groups),
            parent_schema.name,
            len(parents),
        )

        by_key: dict[tuple[Any, ...], dict[str, Any]] = {}
        for parent in parents:
            by_key.setdefault(key_tuple(parent, reference.ref_columns), parent)
        for row in rows:
            parent = by_key.get(key_tuple(row, reference.columns))
            if parent is not None:
                row[parent_schema.name] = parent_schema.mapper.to_external(parent)

    @staticmethod
    def _filter_groups(schema: EntitySchema, filters: Filters) -> list[dict[str, Any]]:
        if isinstance(filters, Mapping):
            return [schema.mapper.to_storage(filters)]
        if isinstance(filters, (list, tuple)) and all(isinstance(f, Mapping) for f in filters):
            return [schema.mapper.to_storage(group) for group in filters]
        msg = f"{schema.name} filters must be a mapping or a list of mappings"
        raise InvalidRecordError(msg, entity_type=schema.name)

    @staticmethod
    def _order_by(schema: EntitySchema, sort: Mapping[str, str] | None) -> OrderBy:
        order: list[tuple[str, bool]] = []
        for name, direction in (sort or {}).items():
            descending = _DIRECTIONS.get(str(direction).lower())
            if descending is None:
                msg = f"Sort direction for {name!r} must be 'asc' or 'desc', got {direction!r}"
                raise InvalidRecordError(msg, entity_type=schema.name, field=name)
            order.append((schema.mapper.column(name), descending))
        return order
