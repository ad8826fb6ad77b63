"""Reference resolution — moving key values across a declared foreign key.

A :class:`~rowtree.domain.schema.Reference` always reads from the
referencing entity's point of view: ``columns`` live on the referencing
entity, ``ref_columns`` on the referenced one. The helpers here copy values
in either direction and build the filters retrieval needs.

A ``None`` value counts as missing: a key that was never generated cannot
be propagated.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from rowtree.domain.errors import MissingForeignKeyValue
from rowtree.domain.schema import Reference


def referencing_values(
    reference: Reference,
    referenced_fields: Mapping[str, Any],
    *,
    entity_type: str,
    related_type: str,
) -> dict[str, Any]:
    """Foreign key values for the referencing entity.

    Args:
        reference: Reference held by *entity_type* pointing at *related_type*.
        referenced_fields: Persisted column values of the *related_type* row.
        entity_type: The referencing entity type (for error reporting).
        related_type: The referenced entity type (for error reporting).

    Returns:
        ``{column: value}`` for every column of the reference.

    Raises:
        MissingForeignKeyValue: If a referenced column has no value.
    """
    values: dict[str, Any] = {}
    for column, ref_column in reference.pairs():
        value = referenced_fields.get(ref_column)
        if value is None:
            raise MissingForeignKeyValue(entity_type, column, ref_column, related_type)
        values[column] = value
    return values


def referencing_filter(reference: Reference, referenced_row: Mapping[str, Any]) -> dict[str, Any]:
    """Filter selecting the rows that reference *referenced_row*."""
    return {column: referenced_row.get(ref_column) for column, ref_column in reference.pairs()}


def referenced_filter(reference: Reference, referencing_row: Mapping[str, Any]) -> dict[str, Any] | None:
    """Filter selecting the row *referencing_row* points at.

    None when any foreign key column is empty.
    """
    group: dict[str, Any] = {}
    for column, ref_column in reference.pairs():
        value = referencing_row.get(column)
        if value is None:
            return None
        group[ref_column] = value
    return group


def key_tuple(row: Mapping[str, Any], columns: Iterable[str]) -> tuple[Any, ...]:
    return tuple(row.get(column) for column in columns)
