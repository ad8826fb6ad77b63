"""Pluggy hook specifications for rowtree.

Two observer hooks fire after records are written or read; one setup-time
hook lets plugins contribute entity schemas to the registry.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pluggy

if TYPE_CHECKING:
    from rowtree.domain.schema import EntitySchema

hookspec = pluggy.HookspecMarker("rowtree")
hookimpl = pluggy.HookimplMarker("rowtree")


class RowtreeHookSpec:
    """Hook specifications for the rowtree plugin system."""

    @hookspec
    def post_save(self, entity_type: str, fields: dict[str, Any]) -> None:
        """Called once per written record, in write order, after the save commits.

        Not called at all when the save fails and rolls back.
        """

    @hookspec
    def post_load(self, entity_type: str, count: int) -> None:
        """Called after a top-level load returns *count* records."""

    @hookspec
    def register_entity_schemas(self) -> list[EntitySchema] | None:
        """Return entity schemas to add to the registry."""
