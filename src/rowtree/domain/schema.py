"""Entity schema descriptors.

An :class:`EntitySchema` is the static metadata for one entity type: which
table it lives in, how rows are identified, and how it relates to other
entity types. A :class:`Reference` is one declared foreign key, an ordered
list of column pairs from the referencing entity to the referenced one.

Only the referencing side declares a reference. The referenced side lists
the referencing entity type in ``children`` when retrieval should cascade
down into it.
"""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, Field, PrivateAttr, field_validator, model_validator

from rowtree.domain.errors import SchemaError
from rowtree.domain.mapping import FieldMapper


def _as_tuple(value: Any) -> Any:
    if isinstance(value, str):
        return (value,)
    return value


class Reference(BaseModel):
    """A declared foreign key between two entity types.

    Attributes:
        columns: Columns on the referencing entity.
        ref_columns: Columns on the referenced entity, paired by position.
    """

    model_config = {"frozen": True, "populate_by_name": True}

    columns: tuple[str, ...]
    ref_columns: tuple[str, ...] = Field(
        validation_alias=AliasChoices("ref_columns", "refColumns"),
    )

    @field_validator("columns", "ref_columns", mode="before")
    @classmethod
    def _normalize_columns(cls, value: Any) -> Any:
        return _as_tuple(value)

    @model_validator(mode="after")
    def _check_pairs(self) -> Reference:
        if not self.columns or len(self.columns) != len(self.ref_columns):
            msg = (
                "Reference needs the same non-zero number of columns and ref_columns, "
                f"got {list(self.columns)} and {list(self.ref_columns)}"
            )
            raise ValueError(msg)
        return self

    def pairs(self) -> list[tuple[str, str]]:
        """``(column, ref_column)`` pairs in declaration order."""
        return list(zip(self.columns, self.ref_columns, strict=True))


class EntitySchema(BaseModel):
    """Static metadata for one entity type, frozen after construction.

    Attributes:
        name: Entity-type identifier, also the key under which nested
            records of this type appear in a record tree.
        table: Storage table name.
        primary_key: Primary key column.
        unique_keys: Unique keys usable for conflict detection on upsert.
            Each key is a tuple of columns; a bare string is a one-column key.
        auto_increment: Whether the store generates the primary key.
        field_mapping: External property name → column name, for names
            that differ.
        references: Related entity type → foreign key held by this entity.
        children: Entity types holding a reference back to this one,
            expanded on cascading loads.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    name: str = Field(min_length=1)
    table: str = Field(min_length=1)
    primary_key: str = Field(default="id", min_length=1)
    unique_keys: frozenset[tuple[str, ...]] = frozenset()
    auto_increment: bool = False
    field_mapping: dict[str, str] = Field(default_factory=dict)
    references: dict[str, Reference] = Field(default_factory=dict)
    children: tuple[str, ...] = ()

    _mapper: FieldMapper = PrivateAttr()

    @field_validator("unique_keys", mode="before")
    @classmethod
    def _normalize_unique_keys(cls, value: Any) -> Any:
        if value is None:
            return frozenset()
        if isinstance(value, str):
            value = [value]
        return frozenset(tuple(_as_tuple(key)) for key in value)

    @field_validator("children", mode="before")
    @classmethod
    def _normalize_children(cls, value: Any) -> Any:
        return _as_tuple(value)

    @model_validator(mode="after")
    def _check_consistency(self) -> EntitySchema:
        if any(not key for key in self.unique_keys):
            raise ValueError(f"{self.name}: unique keys must name at least one column")
        if self.name in self.references or self.name in self.children:
            raise ValueError(f"{self.name}: an entity type cannot relate to itself")
        both = set(self.references) & set(self.children)
        if both:
            raise ValueError(f"{self.name}: {sorted(both)} declared as both parent and child")
        try:
            FieldMapper(self.field_mapping)
        except SchemaError as exc:
            raise ValueError(f"{self.name}: {exc.message}") from exc
        return self

    def model_post_init(self, __context: Any) -> None:
        self._mapper = FieldMapper(self.field_mapping)

    @property
    def mapper(self) -> FieldMapper:
        """Field mapper derived from ``field_mapping`` at construction."""
        return self._mapper

    def try_get_reference(self, entity_type: str) -> Reference | None:
        """Reference this entity holds to *entity_type*, or None."""
        return self.references.get(entity_type)
