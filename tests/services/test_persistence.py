"""Tests for PersistenceEngine — dependency-ordered saves with key propagation."""

from __future__ import annotations

from typing import Any

import pytest
from sqlalchemy.engine import Engine

from rowtree.domain.errors import InvalidRecordError, MissingForeignKeyValue, UnknownEntityType
from rowtree.domain.records import RecordNode
from rowtree.domain.registry import EntityHooks, SchemaRegistry
from rowtree.domain.schema import EntitySchema, Reference
from rowtree.infrastructure.store import RecordStore
from rowtree.services.persistence import PersistenceEngine
from tests.conftest import DUNE, fetch_rows


def _save(
    store: RecordStore,
    registry: SchemaRegistry,
    entity_type: str,
    records: Any,
    global_fields: dict[str, Any] | None = None,
) -> tuple[list[dict[str, Any]], PersistenceEngine]:
    with store.transaction() as txn:
        engine = PersistenceEngine(txn, registry)
        saved = engine.save_many(entity_type, records, global_fields)
    return saved, engine


def _without_auto_increment(registry: SchemaRegistry, entity_type: str) -> None:
    schema = registry.schema(entity_type)
    registry.register(schema.model_copy(update={"auto_increment": False}), replace=True)


def _reference_publisher_city(registry: SchemaRegistry) -> None:
    schema = registry.schema("Title")
    reference = Reference(columns="batch", ref_columns="city")
    registry.register(schema.model_copy(update={"references": {"Publisher": reference}}), replace=True)


class _RecordingHooks(EntityHooks):
    def __init__(self, log: list[str]) -> None:
        self.log = log

    def before_save(self, node: RecordNode) -> None:
        self.log.append(f"before {node.entity_type} id={node.scalar_fields.get('id')}")

    def after_save(self, node: RecordNode) -> None:
        self.log.append(f"after {node.entity_type} id={node.scalar_fields.get('id')}")


class TestSaveOrder:
    def test_example_tree(self, store: RecordStore, registry: SchemaRegistry, db_engine: Engine) -> None:
        saved, _ = _save(store, registry, "Title", DUNE)

        publishers = fetch_rows(db_engine, "publisher")
        titles = fetch_rows(db_engine, "title")
        authors = fetch_rows(db_engine, "author")
        assert [p["name"] for p in publishers] == ["Ace"]
        assert titles[0]["name"] == "Dune"
        assert titles[0]["publisher_id"] == publishers[0]["id"]
        assert authors[0]["name"] == "Herbert"
        assert authors[0]["title_id"] == titles[0]["id"]
        assert saved == [{"name": "Dune", "publisher_id": publishers[0]["id"], "id": titles[0]["id"]}]

    def test_write_order(self, store: RecordStore, registry: SchemaRegistry) -> None:
        _, engine = _save(store, registry, "Title", DUNE)
        assert [entity_type for entity_type, _ in engine.saved] == ["Publisher", "Title", "Author"]

    def test_hooks_wrap_each_upsert(self, store: RecordStore, registry: SchemaRegistry) -> None:
        log: list[str] = []
        for name in ("Publisher", "Title", "Author"):
            registry.set_hooks(name, _RecordingHooks(log))
        _save(store, registry, "Title", DUNE)
        assert log == [
            "before Publisher id=None",
            "after Publisher id=1",
            "before Title id=None",
            "after Title id=1",
            "before Author id=None",
            "after Author id=1",
        ]

    def test_hook_can_set_fields(self, store: RecordStore, registry: SchemaRegistry, db_engine: Engine) -> None:
        class _Stamp(EntityHooks):
            def before_save(self, node: RecordNode) -> None:
                node.scalar_fields["published"] = 1965

        registry.set_hooks("Title", _Stamp())
        _save(store, registry, "Title", {"name": "Dune"})
        assert fetch_rows(db_engine, "title")[0]["published"] == 1965

    def test_child_list_saved_in_order(self, store: RecordStore, registry: SchemaRegistry, db_engine: Engine) -> None:
        record = {"name": "Good Omens", "Author": [{"name": "Pratchett"}, {"name": "Gaiman"}]}
        _save(store, registry, "Title", record)
        assert [(a["name"], a["title_id"]) for a in fetch_rows(db_engine, "author")] == [
            ("Pratchett", 1),
            ("Gaiman", 1),
        ]

    def test_grandchildren_through_parent(self, store: RecordStore, registry: SchemaRegistry, db_engine: Engine) -> None:
        record = {"name": "Ace", "Title": [{"name": "Dune", "Author": [{"name": "Herbert"}]}]}
        _save(store, registry, "Publisher", record)
        assert fetch_rows(db_engine, "title")[0]["publisher_id"] == 1
        assert fetch_rows(db_engine, "author")[0]["title_id"] == 1

    def test_many_top_level_records(self, store: RecordStore, registry: SchemaRegistry) -> None:
        saved, _ = _save(store, registry, "Publisher", [{"name": "Ace"}, {"name": "Tor"}])
        assert [(p["id"], p["name"]) for p in saved] == [(1, "Ace"), (2, "Tor")]

    def test_field_mapping_on_save(self, store: RecordStore, registry: SchemaRegistry, db_engine: Engine) -> None:
        saved, _ = _save(store, registry, "Title", {"name": "Dune", "Review": [{"text": "Classic", "stars": 5}]})
        review = fetch_rows(db_engine, "review")[0]
        assert (review["body"], review["rating"], review["title_id"]) == ("Classic", 5, 1)
        assert saved[0]["name"] == "Dune"


class _Refuse(EntityHooks):
    def __init__(self, when: str) -> None:
        self.when = when

    def before_save(self, node: RecordNode) -> None:
        if self.when == "before":
            raise ValueError(f"{node.entity_type} refused")

    def after_save(self, node: RecordNode) -> None:
        if self.when == "after":
            raise ValueError(f"{node.entity_type} refused")


class TestHookFailures:
    @pytest.mark.parametrize("when", ["before", "after"])
    def test_tree_rolled_back(
        self, store: RecordStore, registry: SchemaRegistry, db_engine: Engine, when: str
    ) -> None:
        registry.set_hooks("Author", _Refuse(when))
        with pytest.raises(ValueError, match="Author refused"):
            _save(store, registry, "Title", DUNE)
        for table in ("publisher", "title", "author"):
            assert fetch_rows(db_engine, table) == []

    def test_later_children_not_written(
        self, store: RecordStore, registry: SchemaRegistry, db_engine: Engine
    ) -> None:
        registry.set_hooks("Title", _Refuse("after"))
        with pytest.raises(ValueError, match="Title refused"):
            _save(store, registry, "Title", DUNE)
        assert fetch_rows(db_engine, "title") == []
        assert fetch_rows(db_engine, "author") == []


class TestUpsertSemantics:
    def test_saving_twice_is_idempotent(self, store: RecordStore, registry: SchemaRegistry, db_engine: Engine) -> None:
        _save(store, registry, "Title", DUNE)
        _save(store, registry, "Title", DUNE)
        assert len(fetch_rows(db_engine, "publisher")) == 1
        assert len(fetch_rows(db_engine, "title")) == 1
        assert len(fetch_rows(db_engine, "author")) == 1

    def test_update_reads_back_matched_key(self, store: RecordStore, registry: SchemaRegistry) -> None:
        _save(store, registry, "Publisher", [{"name": "Ace"}, {"name": "Tor"}])
        saved, _ = _save(store, registry, "Publisher", {"name": "Tor", "city": "New York"})
        assert saved[0]["id"] == 2

    def test_existing_parent_reused(self, store: RecordStore, registry: SchemaRegistry, db_engine: Engine) -> None:
        _save(store, registry, "Title", DUNE)
        _save(store, registry, "Title", {"name": "Hyperion", "Publisher": {"name": "Ace"}})
        assert [t["publisher_id"] for t in fetch_rows(db_engine, "title")] == [1, 1]


class TestGlobalFields:
    def test_written_where_column_exists(self, store: RecordStore, registry: SchemaRegistry, db_engine: Engine) -> None:
        _save(store, registry, "Title", DUNE, {"batch": "b1"})
        assert fetch_rows(db_engine, "title")[0]["batch"] == "b1"
        assert fetch_rows(db_engine, "author")[0]["batch"] == "b1"
        assert "batch" not in fetch_rows(db_engine, "publisher")[0]

    def test_explicit_value_overrides_global(
        self, store: RecordStore, registry: SchemaRegistry, db_engine: Engine
    ) -> None:
        record = {"name": "Dune", "batch": "mine", "Author": [{"name": "Herbert"}]}
        _save(store, registry, "Title", record, {"batch": "b1"})
        assert fetch_rows(db_engine, "title")[0]["batch"] == "mine"
        assert fetch_rows(db_engine, "author")[0]["batch"] == "b1"

    def test_parents_receive_only_globals(self, store: RecordStore, registry: SchemaRegistry) -> None:
        record = {"name": "Dune", "Publisher": {"name": "Ace"}, "Author": [{"name": "Herbert"}]}
        _, engine = _save(store, registry, "Title", record, {"batch": "b1"})
        fields_by_type = dict(engine.saved)
        assert fields_by_type["Publisher"] == {"batch": "b1", "name": "Ace", "id": 1}
        assert fields_by_type["Author"] == {"batch": "b1", "title_id": 1, "name": "Herbert", "id": 1}


class TestMissingKeys:
    def test_existing_parent_linked_by_unique_key(
        self, store: RecordStore, registry: SchemaRegistry, db_engine: Engine
    ) -> None:
        _without_auto_increment(registry, "Publisher")
        _save(store, registry, "Publisher", {"id": 7, "name": "Ace"})
        _save(store, registry, "Title", {"name": "Dune", "Publisher": {"name": "Ace"}})
        assert fetch_rows(db_engine, "title")[0]["publisher_id"] == 7

    def test_parent_non_key_column_read_back(
        self, store: RecordStore, registry: SchemaRegistry, db_engine: Engine
    ) -> None:
        _reference_publisher_city(registry)
        _save(store, registry, "Publisher", {"name": "Ace", "city": "New York"})
        _save(store, registry, "Title", {"name": "Dune", "Publisher": {"name": "Ace"}})
        assert fetch_rows(db_engine, "title")[0]["batch"] == "New York"

    def test_parent_without_value_is_fatal(
        self, store: RecordStore, registry: SchemaRegistry, db_engine: Engine
    ) -> None:
        _reference_publisher_city(registry)
        with pytest.raises(MissingForeignKeyValue) as excinfo:
            _save(store, registry, "Title", DUNE)
        assert excinfo.value.entity_type == "Title"
        assert excinfo.value.related_type == "Publisher"
        assert excinfo.value.column == "batch"
        assert fetch_rows(db_engine, "publisher") == []

    def test_child_key_missing_rolls_back(self, store: RecordStore, registry: SchemaRegistry, db_engine: Engine) -> None:
        _without_auto_increment(registry, "Title")
        with pytest.raises(MissingForeignKeyValue) as excinfo:
            _save(store, registry, "Title", {"name": "Dune", "Author": [{"name": "Herbert"}]})
        assert excinfo.value.column == "title_id"
        assert fetch_rows(db_engine, "title") == []
        assert fetch_rows(db_engine, "author") == []

    def test_supplied_key_needs_no_generation(
        self, store: RecordStore, registry: SchemaRegistry, db_engine: Engine
    ) -> None:
        _without_auto_increment(registry, "Title")
        _save(store, registry, "Title", {"id": 12, "name": "Dune", "Author": [{"name": "Herbert"}]})
        assert fetch_rows(db_engine, "author")[0]["title_id"] == 12


class TestChildrenWithoutBackReference:
    def test_every_record_saved_unlinked(self, store: RecordStore, registry: SchemaRegistry, db_engine: Engine) -> None:
        registry.register(EntitySchema(name="Note", table="note", auto_increment=True))
        record = {"name": "Dune", "Note": [{"body": "first"}, {"body": "second"}]}
        _save(store, registry, "Title", record)
        assert [n["body"] for n in fetch_rows(db_engine, "note")] == ["first", "second"]


class TestInvalidInput:
    def test_unknown_nested_type(self, store: RecordStore, registry: SchemaRegistry) -> None:
        with pytest.raises(UnknownEntityType):
            _save(store, registry, "Title", {"name": "Dune", "Sequel": [{"name": "Messiah"}]})

    def test_unknown_column(self, store: RecordStore, registry: SchemaRegistry) -> None:
        with pytest.raises(InvalidRecordError, match="rating"):
            _save(store, registry, "Title", {"name": "Dune", "rating": 5})

    def test_many_parents_rejected(self, store: RecordStore, registry: SchemaRegistry, db_engine: Engine) -> None:
        with pytest.raises(InvalidRecordError):
            _save(store, registry, "Title", {"name": "Dune", "Publisher": [{"name": "Ace"}, {"name": "Tor"}]})
        assert fetch_rows(db_engine, "title") == []
