"""Record trees and their per-operation working state.

A record tree is a plain mapping. Scalar values are columns of the entity
itself; a nested mapping or a list of mappings, keyed by an entity-type
name, is a related record. :func:`split_record` partitions one tree level
into a :class:`RecordNode` using :func:`classify_relationship`.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from rowtree.domain.errors import InvalidRecordError

if TYPE_CHECKING:
    from rowtree.domain.schema import EntitySchema

RecordTree = dict[str, Any]


class Relationship(StrEnum):
    """Direction of a nested record relative to the entity holding it."""

    PARENT = "parent"  # this entity holds the foreign key; save it first
    CHILD = "child"  # the nested entity holds the foreign key; save it after


@dataclass
class RecordNode:
    """Working state of one entity instance during a single save or load.

    ``scalar_fields`` already contains ``inherited_fields`` (explicit values
    win on collision). The inherited values are kept separately so only
    those that are real table columns get persisted. ``stored_key`` is the
    primary key of the row the node was last written to.
    """

    entity_type: str
    scalar_fields: dict[str, Any] = field(default_factory=dict)
    parent_relationships: dict[str, Mapping[str, Any]] = field(default_factory=dict)
    child_relationships: dict[str, list[Mapping[str, Any]]] = field(default_factory=dict)
    inherited_fields: dict[str, Any] = field(default_factory=dict)
    explicit_keys: set[str] = field(default_factory=set)
    stored_key: Any = None
    loaded: bool = False

    def persistable_fields(self, columns: frozenset[str]) -> dict[str, Any]:
        """Scalar fields to write; inherited-only values survive only as real columns."""
        return {
            key: value
            for key, value in self.scalar_fields.items()
            if key in columns or key in self.explicit_keys or key not in self.inherited_fields
        }


def is_nested(value: Any) -> bool:
    """Whether *value* represents related records rather than a column value.

    Mappings and lists/tuples of mappings are nested. An empty list is an
    empty child list; a list of scalars is an ordinary value.
    """
    if isinstance(value, Mapping):
        return True
    if isinstance(value, (list, tuple)):
        return all(isinstance(item, Mapping) for item in value)
    return False


def classify_relationship(schema: EntitySchema, key: str) -> Relationship:
    """Classify nested field *key* of an entity described by *schema*.

    A declared reference to *key* makes it a parent. Anything else is a
    child that is expected to reference this entity back.
    """
    if schema.try_get_reference(key) is not None:
        return Relationship.PARENT
    return Relationship.CHILD


def _single_record(entity_type: str, key: str, value: Any) -> Mapping[str, Any]:
    if isinstance(value, Mapping):
        return value
    if len(value) == 1:
        return value[0]
    msg = f"{entity_type}.{key} is a parent relationship and takes one record, got {len(value)}"
    raise InvalidRecordError(msg, entity_type=entity_type, relationship=key)


def _record_list(value: Any) -> list[Mapping[str, Any]]:
    if isinstance(value, Mapping):
        return [value]
    return list(value)


def split_record(
    schema: EntitySchema,
    raw: Mapping[str, Any],
    inherited: Mapping[str, Any] | None = None,
) -> RecordNode:
    """Partition *raw* into scalar fields, parent and child relationships.

    Field names are mapped to columns first. *inherited* values are applied
    before the explicit ones, so explicit values take precedence.
    """
    if not isinstance(raw, Mapping):
        msg = f"{schema.name} record must be a mapping, got {type(raw).__name__}"
        raise InvalidRecordError(msg, entity_type=schema.name)

    inherited_fields = schema.mapper.to_storage(inherited or {})
    node = RecordNode(entity_type=schema.name, inherited_fields=inherited_fields)

    explicit = schema.mapper.to_storage(raw)
    node.explicit_keys = set(explicit)
    fields = {**inherited_fields, **explicit}
    for key, value in fields.items():
        if key not in explicit or not is_nested(value):
            node.scalar_fields[key] = value
        elif classify_relationship(schema, key) is Relationship.PARENT:
            node.parent_relationships[key] = _single_record(schema.name, key, value)
        else:
            node.child_relationships[key] = _record_list(value)
    return node


def ensure_records(entity_type: str, records: Mapping[str, Any] | Sequence[Any]) -> list[Mapping[str, Any]]:
    """Normalize a save payload into a list of record trees."""
    if isinstance(records, Mapping):
        return [records]
    if isinstance(records, (list, tuple)) and all(isinstance(item, Mapping) for item in records):
        return list(records)
    msg = f"{entity_type} payload must be a record or a list of records"
    raise InvalidRecordError(msg, entity_type=entity_type)
