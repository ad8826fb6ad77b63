"""RecordService — save and retrieve nested record trees.

Each public method is one unit of work: saves run inside a single store
transaction (all-or-nothing per call), loads on a single connection.
Engine and store errors end the call as ``ok=False`` with a structured
:class:`ServiceError`; nothing is retried.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from rowtree.domain.errors import RowtreeError
from rowtree.services.base import BaseService
from rowtree.services.persistence import PersistenceEngine
from rowtree.services.result import ServiceResult
from rowtree.services.retrieval import Filters, RetrievalEngine

logger = logging.getLogger(__name__)


class RecordService(BaseService):
    """The caller-facing save / get / get_all contract."""

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def save(
        self,
        entity_type: str,
        records: Mapping[str, Any] | Sequence[Mapping[str, Any]],
        *,
        global_fields: Mapping[str, Any] | None = None,
    ) -> ServiceResult:
        """Persist one record tree or a list of them.

        ``data["records"]`` holds each top-level record's persisted fields,
        generated keys included.
        """
        op = "save"
        warnings: list[str] = []
        try:
            with self._store.transaction() as txn:
                engine = PersistenceEngine(txn, self._registry)
                saved = engine.save_many(entity_type, records, global_fields)
        except (RowtreeError, SQLAlchemyError) as exc:
            return self._failure(op, exc, warnings)

        for saved_type, fields in engine.saved:
            self._notify("post_save", warnings, entity_type=saved_type, fields=fields)

        return ServiceResult(
            ok=True,
            op=op,
            data={"records": saved},
            warnings=warnings,
            meta={"entity_type": entity_type, "count": len(saved), "rows_written": len(engine.saved)},
        )

    def get(
        self,
        entity_type: str,
        filters: Mapping[str, Any],
        *,
        cascade: bool = False,
    ) -> ServiceResult:
        """Load the first record matching *filters*.

        No match is not an error: ``data["record"]`` is None.
        """
        op = "get"
        warnings: list[str] = []
        try:
            with self._store.reader() as txn:
                record = RetrievalEngine(txn, self._registry).load_one(
                    entity_type, filters, cascade=cascade
                )
        except (RowtreeError, SQLAlchemyError) as exc:
            return self._failure(op, exc, warnings)

        count = 0 if record is None else 1
        self._notify("post_load", warnings, entity_type=entity_type, count=count)
        return ServiceResult(
            ok=True,
            op=op,
            data={"record": record},
            warnings=warnings,
            meta={"entity_type": entity_type, "count": count},
        )

    def get_all(
        self,
        entity_type: str,
        filters: Filters | None = None,
        *,
        cascade: bool = False,
        sort: Mapping[str, str] | None = None,
        limit: int | None = None,
    ) -> ServiceResult:
        """Load every record matching *filters* (all rows when omitted)."""
        op = "get_all"
        warnings: list[str] = []
        try:
            with self._store.reader() as txn:
                records = RetrievalEngine(txn, self._registry).load_many(
                    entity_type,
                    filters if filters is not None else {},
                    cascade=cascade,
                    sort=sort,
                    limit=limit,
                )
        except (RowtreeError, SQLAlchemyError) as exc:
            return self._failure(op, exc, warnings)

        self._notify("post_load", warnings, entity_type=entity_type, count=len(records))
        return ServiceResult(
            ok=True,
            op=op,
            data={"records": records},
            warnings=warnings,
            meta={"entity_type": entity_type, "count": len(records)},
        )

    def describe(self, entity_type: str | None = None) -> ServiceResult:
        """Registered schemas (or one of them) plus relationship-graph problems."""
        op = "describe"
        try:
            names = [self._registry.get(entity_type).name] if entity_type else self._registry.names()
        except RowtreeError as exc:
            return self._failure(op, exc, [])

        entities = [self._registry.schema(name).model_dump(mode="json") for name in names]
        return ServiceResult(
            ok=True,
            op=op,
            data={"entities": entities},
            warnings=self._registry.problems(),
        )

    # ------------------------------------------------------------------
    # Error shaping
    # ------------------------------------------------------------------

    @staticmethod
    def _failure(op: str, exc: RowtreeError | SQLAlchemyError, warnings: list[str]) -> ServiceResult:
        logger.debug("%s failed: %s", op, exc, exc_info=isinstance(exc, SQLAlchemyError))
        return ServiceResult.failure(op, exc, warnings)
