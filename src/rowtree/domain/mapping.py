"""Bidirectional translation between external property names and columns.

A schema only lists the names that change; every other key passes through
untouched. Property names and column names must not overlap, otherwise a
round trip would rename a column that was never mapped.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from rowtree.domain.errors import SchemaError


@dataclass(frozen=True)
class FieldMapper:
    """Immutable property ↔ column translation table.

    The reverse direction is derived once at construction.
    """

    to_columns: Mapping[str, str] = field(default_factory=dict)
    to_properties: Mapping[str, str] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        forward = dict(self.to_columns)
        reverse: dict[str, str] = {}
        for prop, column in forward.items():
            if column in reverse:
                msg = (
                    f"Field mapping is not one-to-one: {reverse[column]!r} and {prop!r} "
                    f"both map to column {column!r}"
                )
                raise SchemaError(msg, column=column)
            reverse[column] = prop

        overlap = set(forward) & set(reverse)
        if any(forward[name] != name for name in overlap):
            msg = f"Property names overlap column names: {sorted(overlap)}"
            raise SchemaError(msg, names=sorted(overlap))

        object.__setattr__(self, "to_columns", MappingProxyType(forward))
        object.__setattr__(self, "to_properties", MappingProxyType(reverse))

    def column(self, name: str) -> str:
        """Column name for an external property name."""
        return self.to_columns.get(name, name)

    def prop(self, column: str) -> str:
        """External property name for a column."""
        return self.to_properties.get(column, column)

    def to_storage(self, fields: Mapping[str, Any]) -> dict[str, Any]:
        """Rename external keys to column names."""
        return {self.column(key): value for key, value in fields.items()}

    def to_external(self, fields: Mapping[str, Any]) -> dict[str, Any]:
        """Rename column keys back to external property names."""
        return {self.prop(key): value for key, value in fields.items()}

    def rows_to_external(self, rows: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
        return [self.to_external(row) for row in rows]
