"""RecordStore — the store executor behind the persistence and retrieval engines.

The engines speak in semantic terms: "upsert these column values keyed by
these conflict keys", "select rows matching any of these equality groups".
This module turns those into SQLAlchemy Core statements with bound
parameters against tables reflected from the live database.

- **Transactions**: :meth:`RecordStore.transaction` wraps native
  ``engine.begin()``: commit on success, rollback on any exception.
- **Reflection**: tables are reflected once per store and cached.
- **Errors**: SQLAlchemy errors propagate unchanged; nothing is retried.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import MetaData, Table, and_, insert, or_, select, true, update

from rowtree.domain.errors import InvalidRecordError

if TYPE_CHECKING:
    from sqlalchemy import ColumnElement, Connection
    from sqlalchemy.engine import Engine

    from rowtree.config.settings import RowtreeSettings

logger = logging.getLogger(__name__)

OrderBy = Sequence[tuple[str, bool]]  # (column, descending)


@dataclass(frozen=True)
class WriteResult:
    """Outcome of one upsert.

    ``generated_key`` is the primary key of the written row: the one the
    database generated on insert, or the one of the row matched on update.
    """

    rows_affected: int
    generated_key: Any | None = None


@dataclass
class StoreTransaction:
    """Connection-bound view of the store for one save or load call."""

    conn: Connection
    _store: RecordStore

    def table(self, name: str) -> Table:
        return self._store.reflect(name, self.conn)

    def columns(self, table_name: str) -> frozenset[str]:
        """Column names of *table_name*."""
        return frozenset(self.table(table_name).c.keys())

    def select(
        self,
        table_name: str,
        groups: Sequence[Mapping[str, Any]],
        *,
        order_by: OrderBy | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch rows matching any of *groups*.

        Each group is an AND of column equalities; groups are OR'd together.
        An empty group matches every row. ``None`` values compare with
        ``IS NULL``.
        """
        table = self.table(table_name)
        stmt = select(table)
        clauses = [self._group_clause(table, group) for group in groups]
        if len(clauses) == 1:
            stmt = stmt.where(clauses[0])
        elif clauses:
            stmt = stmt.where(or_(*clauses))

        for column, descending in order_by or ():
            col = self._column(table, column)
            stmt = stmt.order_by(col.desc() if descending else col.asc())
        if limit is not None:
            stmt = stmt.limit(limit)

        logger.debug("select %s (%d filter groups)", table_name, len(clauses))
        rows = self.conn.execute(stmt).mappings().all()
        return [dict(row) for row in rows]

    def upsert(
        self,
        table_name: str,
        values: Mapping[str, Any],
        *,
        primary_key: str,
        unique_keys: Iterable[tuple[str, ...]] = (),
    ) -> WriteResult:
        """Insert *values*, or update the existing row they collide with.

        A row collides when it matches on the primary key or on any unique
        key whose columns are all present (and not None) in *values*. On
        update every provided column is overwritten.
        """
        table = self.table(table_name)
        unknown = sorted(set(values) - set(table.c.keys()))
        if unknown:
            msg = f"Unknown columns for table {table_name!r}: {unknown}"
            raise InvalidRecordError(msg, table=table_name, columns=unknown)

        pk_col = self._column(table, primary_key)
        existing_key = self._find_existing(table, pk_col, values, [(primary_key,), *unique_keys])

        if existing_key is None:
            result = self.conn.execute(insert(table).values(dict(values)))
            inserted = result.inserted_primary_key
            generated = values.get(primary_key)
            if generated is None and inserted is not None and len(inserted) > 0:
                generated = inserted[0]
            logger.debug("insert %s columns=%s", table_name, sorted(values))
            return WriteResult(rows_affected=result.rowcount, generated_key=generated)

        if not values:
            return WriteResult(rows_affected=0, generated_key=existing_key)
        result = self.conn.execute(update(table).where(pk_col == existing_key).values(dict(values)))
        logger.debug("update %s key=%r columns=%s", table_name, existing_key, sorted(values))
        return WriteResult(rows_affected=result.rowcount, generated_key=existing_key)

    # ------------------------------------------------------------------
    # Statement helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _column(table: Table, name: str) -> Any:
        try:
            return table.c[name]
        except KeyError:
            msg = f"Unknown column {name!r} for table {table.name!r}"
            raise InvalidRecordError(msg, table=table.name, column=name) from None

    def _group_clause(self, table: Table, group: Mapping[str, Any]) -> ColumnElement[bool]:
        conditions = [self._column(table, key) == value for key, value in group.items()]
        if not conditions:
            return true()
        return and_(*conditions)

    def _find_existing(
        self,
        table: Table,
        pk_col: Any,
        values: Mapping[str, Any],
        keys: Sequence[tuple[str, ...]],
    ) -> Any | None:
        groups = [
            {column: values[column] for column in key}
            for key in keys
            if all(values.get(column) is not None for column in key)
        ]
        if not groups:
            return None

        stmt = (
            select(pk_col)
            .where(or_(*(self._group_clause(table, group) for group in groups)))
            .limit(1)
        )
        return self.conn.execute(stmt).scalar()


class RecordStore:
    """Owns the SQLAlchemy engine and the reflected table metadata.

    Services receive the store via their :class:`BaseService` constructor
    and open a :class:`StoreTransaction` per call.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._metadata = MetaData()

    @classmethod
    def from_settings(cls, settings: RowtreeSettings) -> RecordStore:
        """Create a store on the database configured in *settings*."""
        from rowtree.infrastructure.database.engine import create_db_engine

        db = settings.database
        engine = create_db_engine(
            db.url,
            sqlite_wal=db.sqlite_wal,
            sqlite_foreign_keys=db.sqlite_foreign_keys,
        )
        return cls(engine)

    @property
    def engine(self) -> Engine:
        """The underlying SQLAlchemy engine."""
        return self._engine

    def reflect(self, table_name: str, conn: Connection) -> Table:
        """Reflected :class:`Table` for *table_name*, cached after first use.

        Raises:
            sqlalchemy.exc.NoSuchTableError: If the table does not exist.
        """
        table = self._metadata.tables.get(table_name)
        if table is None:
            table = Table(table_name, self._metadata, autoload_with=conn)
        return table

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        """Read-write unit of work: commits on success, rolls back on error."""
        with self._engine.begin() as conn:
            yield StoreTransaction(conn=conn, _store=self)

    @contextmanager
    def reader(self) -> Iterator[StoreTransaction]:
        """Read-only access on a single connection."""
        with self._engine.connect() as conn:
            yield StoreTransaction(conn=conn, _store=self)

    def close(self) -> None:
        """Release pooled connections."""
        self._engine.dispose()
