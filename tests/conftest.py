"""Shared pytest fixtures and test helpers for rowtree tests.

The fixtures model a small book catalog:

- ``Publisher`` is referenced by ``Title`` (``title.publisher_id -> publisher.id``)
- ``Author`` and ``Review`` reference ``Title`` (``*.title_id -> title.id``)
- ``Review`` renames two columns through its field mapping
"""

from __future__ import annotations

import tomllib
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner
from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    event,
    select,
)
from sqlalchemy.engine import Engine

from rowtree.domain.registry import SchemaRegistry
from rowtree.infrastructure.database.engine import create_db_engine, sqlite_url
from rowtree.infrastructure.store import RecordStore
from rowtree.services.records import RecordService

CATALOG_TOML = """\
[entities.Publisher]
table = "publisher"
auto_increment = true
unique_keys = ["name"]
children = ["Title"]

[entities.Title]
table = "title"
auto_increment = true
unique_keys = ["name"]
children = ["Author", "Review"]

[entities.Title.references.Publisher]
columns = "publisher_id"
ref_columns = "id"

[entities.Author]
table = "author"
auto_increment = true
unique_keys = [["title_id", "name"]]

[entities.Author.references.Title]
columns = ["title_id"]
ref_columns = ["id"]

[entities.Review]
table = "review"
auto_increment = true
field_mapping = { text = "body", stars = "rating" }

[entities.Review.references.Title]
columns = "title_id"
refColumns = "id"
"""

CATALOG_ENTITIES: dict[str, dict[str, Any]] = tomllib.loads(CATALOG_TOML)["entities"]

DUNE: dict[str, Any] = {
    "name": "Dune",
    "Publisher": {"name": "Ace"},
    "Author": [{"name": "Herbert"}],
}


def create_catalog_tables(engine: Engine) -> MetaData:
    """Create the catalog tables (and an unrelated ``note`` table)."""
    metadata = MetaData()
    Table(
        "publisher",
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("name", String, nullable=False, unique=True),
        Column("city", String),
    )
    Table(
        "title",
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("name", String, nullable=False, unique=True),
        Column("publisher_id", Integer, ForeignKey("publisher.id")),
        Column("published", Integer),
        Column("batch", String),
    )
    Table(
        "author",
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("title_id", Integer, ForeignKey("title.id")),
        Column("name", String, nullable=False),
        Column("batch", String),
        UniqueConstraint("title_id", "name"),
    )
    Table(
        "review",
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("title_id", Integer, ForeignKey("title.id")),
        Column("body", String),
        Column("rating", Integer),
    )
    Table(
        "note",
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("body", String),
    )
    metadata.create_all(engine)
    return metadata


def catalog_registry() -> SchemaRegistry:
    return SchemaRegistry.from_config(CATALOG_ENTITIES)


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "rowtree.db"


@pytest.fixture
def db_engine(db_path: Path) -> Iterator[Engine]:
    """SQLite engine with the catalog tables created."""
    engine = create_db_engine(sqlite_url(db_path))
    create_catalog_tables(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def store(db_engine: Engine) -> Iterator[RecordStore]:
    s = RecordStore(db_engine)
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def registry() -> SchemaRegistry:
    return catalog_registry()


@pytest.fixture
def service(store: RecordStore, registry: SchemaRegistry) -> RecordService:
    return RecordService(store, registry)


@pytest.fixture
def project(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    """Temporary project directory: rowtree.toml plus a created database.

    CWD is switched to the project so the CLI discovers its config.
    """
    db = tmp_path / "catalog.db"
    (tmp_path / "rowtree.toml").write_text(
        f'[database]\nurl = "{sqlite_url(db)}"\n\n{CATALOG_TOML}',
        encoding="utf-8",
    )
    engine = create_db_engine(sqlite_url(db))
    create_catalog_tables(engine)
    engine.dispose()

    monkeypatch.delenv("ROWTREE_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)
    yield tmp_path


# ---------------------------------------------------------------------------
# Shared test helpers
# ---------------------------------------------------------------------------


def fetch_rows(engine: Engine, table_name: str) -> list[dict[str, Any]]:
    """All rows of *table_name*, ordered by primary key."""
    table = Table(table_name, MetaData(), autoload_with=engine)
    with engine.connect() as conn:
        rows = conn.execute(select(table).order_by(table.c.id)).mappings().all()
    return [dict(row) for row in rows]


class QueryCounter:
    """Records SELECT statements executed on an engine."""

    def __init__(self, engine: Engine) -> None:
        self.statements: list[str] = []
        self._engine = engine
        event.listen(engine, "before_cursor_execute", self._record)

    def _record(self, conn: Any, cursor: Any, statement: str, *args: Any) -> None:
        if statement.lstrip().upper().startswith("SELECT"):
            self.statements.append(statement)

    def selects_from(self, table_name: str) -> int:
        needle = f"FROM {table_name}".lower()
        return sum(
            1
            for statement in self.statements
            if needle in " ".join(statement.lower().split()) and "sqlite_master" not in statement
        )

    def reset(self) -> None:
        self.statements.clear()

    def close(self) -> None:
        event.remove(self._engine, "before_cursor_execute", self._record)


@pytest.fixture
def query_counter(db_engine: Engine) -> Iterator[QueryCounter]:
    counter = QueryCounter(db_engine)
    try:
        yield counter
    finally:
        counter.close()
