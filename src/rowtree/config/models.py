"""Pydantic configuration models with code-baked defaults.

Sparse TOML contract: defaults baked here, rowtree.toml only contains
overrides. The ``[entities.<Name>]`` schema tables are validated by the
schema registry, not here.
"""

from __future__ import annotations

from pydantic import BaseModel


class DatabaseConfig(BaseModel):
    """[database] section.

    ``echo`` renders every SQL statement through the rowtree log handler.
    """

    model_config = {"frozen": True}

    url: str = "sqlite:///rowtree.db"
    echo: bool = False
    sqlite_wal: bool = True
    sqlite_foreign_keys: bool = True


class EngineConfig(BaseModel):
    """[engine] section."""

    model_config = {"frozen": True}

    cascade: bool = False
    validate_schemas: bool = True
