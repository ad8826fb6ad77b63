"""SQLAlchemy engine setup for the backing relational store."""

from rowtree.infrastructure.database.engine import create_db_engine, sqlite_url

__all__ = ["create_db_engine", "sqlite_url"]
