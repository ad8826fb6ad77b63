"""BaseService — foundation for rowtree services.

Every service receives the :class:`RecordStore`, the
:class:`SchemaRegistry` and an optional plugin manager at construction
time. Services own their transaction boundaries via
``self._store.transaction()``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from rowtree.domain.registry import SchemaRegistry
    from rowtree.infrastructure.store import RecordStore
    from rowtree.plugins.manager import PluginManager

logger = logging.getLogger(__name__)


class BaseService:
    """Base for service-layer classes.

    Usage::

        class RecordService(BaseService):
            def save(self, entity_type: str, records: ...) -> ServiceResult:
                with self._store.transaction() as txn:
                    ...
    """

    def __init__(
        self,
        store: RecordStore,
        registry: SchemaRegistry,
        plugins: PluginManager | None = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._plugins = plugins

    def _notify(self, hook_name: str, warnings: list[str], **payload: Any) -> None:
        """Dispatch an observer hook. No-op without a plugin manager.

        INVARIANT: Plugin failures are warnings, never errors.
        """
        if self._plugins is None:
            return
        self._plugins.notify(hook_name, warnings, **payload)
