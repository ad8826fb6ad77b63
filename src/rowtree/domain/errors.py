"""Exception taxonomy for the record-graph engine.

Reference lookups never raise: a missing reference is ``None`` and drives
control flow. Everything here terminates the current save or load call.
"""

from __future__ import annotations

from typing import Any


class RowtreeError(Exception):
    """Base class for all rowtree errors."""

    code = "ROWTREE_ERROR"

    def __init__(self, message: str, **detail: Any) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class SchemaError(RowtreeError):
    """An entity schema declaration is invalid or inconsistent."""

    code = "SCHEMA_ERROR"


class UnknownEntityType(RowtreeError, KeyError):
    """No schema is registered under the requested entity type."""

    code = "UNKNOWN_ENTITY"

    def __init__(self, entity_type: str) -> None:
        super().__init__(f"Unknown entity type: {entity_type!r}", entity_type=entity_type)
        self.entity_type = entity_type

    def __str__(self) -> str:
        return self.message


class InvalidRecordError(RowtreeError, ValueError):
    """A record tree does not have the shape its schema requires."""

    code = "INVALID_RECORD"


class MissingForeignKeyValue(RowtreeError):
    """A referenced key column has no value when a related record needs it."""

    code = "MISSING_FOREIGN_KEY"

    def __init__(self, entity_type: str, column: str, ref_column: str, related_type: str) -> None:
        super().__init__(
            f"Missing value for {related_type}.{ref_column} "
            f"needed by {entity_type}.{column}",
            entity_type=entity_type,
            column=column,
            ref_column=ref_column,
            related_type=related_type,
        )
        self.entity_type = entity_type
        self.column = column
        self.ref_column = ref_column
        self.related_type = related_type
