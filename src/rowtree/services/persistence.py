"""PersistenceEngine — recursive, dependency-ordered save of record trees.

Order per record (never reordered):

1. **Parents** — nested records this entity references are saved first and
   their key values copied into this entity's foreign key columns. A
   referenced column the saved record did not carry is read back from its
   stored row.
2. **Self** — ``before_save`` hook, upsert, generated key read-back,
   ``after_save`` hook.
3. **Children** — nested records that reference this entity are saved last,
   inheriting its key values as foreign key fields.

Inherited fields are passed explicitly down every recursive call. The
caller owns the transaction: a failure anywhere leaves the whole tree to be
rolled back.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from rowtree.domain.records import RecordNode, ensure_records, split_record
from rowtree.domain.references import referencing_values

if TYPE_CHECKING:
    from rowtree.domain.registry import EntityRegistration, SchemaRegistry
    from rowtree.infrastructure.store import StoreTransaction

logger = logging.getLogger(__name__)


class PersistenceEngine:
    """Saves record trees through one open :class:`StoreTransaction`.

    Attributes:
        saved: ``(entity_type, external fields)`` for every record written,
            in write order. Callers dispatch observers from it once the
            transaction has committed.
    """

    def __init__(self, txn: StoreTransaction, registry: SchemaRegistry) -> None:
        self._txn = txn
        self._registry = registry
        self.saved: list[tuple[str, dict[str, Any]]] = []

    def save_many(
        self,
        entity_type: str,
        records: Mapping[str, Any] | Sequence[Mapping[str, Any]],
        global_fields: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Save each record in input order, all sharing *global_fields*.

        Global fields reach every record of every tree level but are only
        written where the table has a column of that name.
        """
        shared = dict(global_fields or {})
        return [
            self.save_one(entity_type, record, inherited=shared, global_fields=shared)
            for record in ensure_records(entity_type, records)
        ]

    def save_one(
        self,
        entity_type: str,
        record: Mapping[str, Any],
        *,
        inherited: Mapping[str, Any] | None = None,
        global_fields: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Save one record tree and return its persisted fields.

        Returns:
            The record's own fields after the write (generated key
            included), under external property names.

        Raises:
            MissingForeignKeyValue: A required key value was not available.
            UnknownEntityType: A nested key names an unregistered type.
        """
        entry = self._registry.get(entity_type)
        node = split_record(entry.schema, record, inherited)
        persisted = self._save_node(entry, node, dict(global_fields or {}))
        return entry.schema.mapper.to_external(persisted)

    def _save_node(
        self,
        entry: EntityRegistration,
        node: RecordNode,
        global_fields: dict[str, Any],
    ) -> dict[str, Any]:
        schema = entry.schema

        for parent_type, parent_record in node.parent_relationships.items():
            parent_entry = self._registry.get(parent_type)
            parent_node = split_record(parent_entry.schema, parent_record, global_fields)
            parent_fields = self._save_node(parent_entry, parent_node, global_fields)

            reference = schema.references[parent_type]
            if any(parent_fields.get(column) is None for column in reference.ref_columns):
                parent_fields = self._stored_fields(parent_entry, parent_node)

            node.scalar_fields.update(
                referencing_values(
                    reference,
                    parent_fields,
                    entity_type=schema.name,
                    related_type=parent_type,
                )
            )

        self._upsert(entry, node)

        for child_type, child_records in node.child_relationships.items():
            child_entry = self._registry.get(child_type)
            reference = child_entry.schema.try_get_reference(schema.name)

            inherited = dict(global_fields)
            if reference is not None:
                inherited.update(
                    referencing_values(
                        reference,
                        node.scalar_fields,
                        entity_type=child_type,
                        related_type=schema.name,
                    )
                )
            else:
                logger.debug("%s has no reference to %s, saving unlinked", child_type, schema.name)

            for child_record in child_records:
                child_node = split_record(child_entry.schema, child_record, inherited)
                self._save_node(child_entry, child_node, global_fields)

        return node.scalar_fields

    def _upsert(self, entry: EntityRegistration, node: RecordNode) -> None:
        schema = entry.schema
        entry.hooks.before_save(node)

        values = node.persistable_fields(self._txn.columns(schema.table))
        result = self._txn.upsert(
            schema.table,
            values,
            primary_key=schema.primary_key,
            unique_keys=schema.unique_keys,
        )

        node.stored_key = result.generated_key
        key_supplied = node.scalar_fields.get(schema.primary_key) is not None
        if schema.auto_increment and not key_supplied:
            if result.rows_affected and result.generated_key is not None:
                node.scalar_fields[schema.primary_key] = result.generated_key
            else:
                logger.warning("%s write affected no rows; key unknown", schema.name)

        entry.hooks.after_save(node)
        self.saved.append((schema.name, schema.mapper.to_external(node.scalar_fields)))

    def _stored_fields(self, entry: EntityRegistration, node: RecordNode) -> dict[str, Any]:
        """The node's fields completed with the columns of the row it was written to."""
        if node.stored_key is None:
            return node.scalar_fields
        schema = entry.schema
        rows = self._txn.select(schema.table, [{schema.primary_key: node.stored_key}], limit=1)
        if not rows:
            return node.scalar_fields
        logger.debug("re-read %s key=%r for referenced columns", schema.name, node.stored_key)
        written = {key: value for key, value in node.scalar_fields.items() if value is not None}
        return {**rows[0], **written}
