"""Политики разрешения конфликтов."""
from __future__ import annotations

import logging
from typing import Dict

from todoist_notion_sync.models import (
    Conflict,
    ConflictReason,
    Resolution,
    SourceSystem,
)

LOGGER = logging.getLogger(__name__)

POLICIES = ("merge", "prefer_list", "prefer_doc", "manual")


class ConflictResolver:
    """Детерминированно превращает конфликт в решение.

    ``merge``: поле, изменённое только одной стороной (по снимку в связи),
    берётся с этой стороны; поле, изменённое обеими, берётся со стороны с более
    поздним временем изменения. Без меток времени или при их равенстве
    конфликт откладывается.
    """

    def __init__(self, policy: str = "merge") -> None:
        if policy not in POLICIES:
            raise ValueError(f"Неизвестная политика конфликтов: {policy}")
        self._policy = policy

    @property
    def policy(self) -> str:
        return self._policy

    def resolve(self, conflict: Conflict) -> Resolution:
        if conflict.reason is ConflictReason.POTENTIAL_DUPLICATE:
            return Resolution.defer("возможный дубликат, требуется подтверждение")
        if self._policy == "manual":
            return Resolution.defer("ручное разрешение")
        if self._policy == "prefer_list":
            return Resolution.keep_left("приоритет Todoist")
        if self._policy == "prefer_doc":
            return Resolution.keep_right("приоритет Notion")
        return self._merge(conflict)

    def _merge(self, conflict: Conflict) -> Resolution:
        if not conflict.fields:
            return Resolution.merge({}, note="значения совпадают")
        list_ts = conflict.list_task.revision.modified_at
        doc_ts = conflict.doc_task.revision.modified_at
        if list_ts is None or doc_ts is None:
            return Resolution.defer("нет меток времени изменения")
        if list_ts == doc_ts:
            return Resolution.defer("одинаковое время изменения")
        newer = SourceSystem.LIST_SERVICE if list_ts > doc_ts else SourceSystem.DOC_STORE

        snapshot = conflict.link.snapshot if conflict.link else {}
        list_values = conflict.list_task.field_values()
        doc_values = conflict.doc_task.field_values()
        winners: Dict[str, SourceSystem] = {}
        for name in conflict.fields:
            if name not in snapshot:
                winners[name] = newer
                continue
            list_changed = list_values[name] != snapshot[name]
            doc_changed = doc_values[name] != snapshot[name]
            if list_changed and not doc_changed:
                winners[name] = SourceSystem.LIST_SERVICE
            elif doc_changed and not list_changed:
                winners[name] = SourceSystem.DOC_STORE
            else:
                winners[name] = newer
        LOGGER.debug("Слияние %s: %s", conflict.change_id, winners)
        return Resolution.merge(winners, note="последнее изменение побеждает")


__all__ = ["ConflictResolver", "POLICIES"]
