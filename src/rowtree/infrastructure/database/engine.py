"""Database engine setup.

SQLAlchemy Core (not ORM) is used: rowtree builds its own statements from
entity schemas and has no use for sessions or identity maps. SQLite
connections get WAL mode and foreign key enforcement when enabled.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine


def sqlite_url(db_path: Path) -> str:
    """SQLAlchemy URL for a SQLite database file."""
    return f"sqlite:///{db_path}"


def create_db_engine(
    url: str,
    *,
    sqlite_wal: bool = True,
    sqlite_foreign_keys: bool = True,
) -> Engine:
    """Create an engine for *url*, applying SQLite pragmas where relevant."""
    engine = create_engine(url)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_conn: Any, _: Any) -> None:
            cursor = dbapi_conn.cursor()
            if sqlite_wal:
                cursor.execute("PRAGMA journal_mode=WAL")
            if sqlite_foreign_keys:
                cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine
