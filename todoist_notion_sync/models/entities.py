"""Определения доменных сущностей."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Dict, FrozenSet, Iterator, List, Optional, Tuple

SYNC_FIELDS: Tuple[str, ...] = ("title", "due_date", "labels", "completed", "project")


class SourceSystem(str, Enum):
    """Система-источник задачи."""

    LIST_SERVICE = "list_service"
    DOC_STORE = "doc_store"

    @property
    def opposite(self) -> "SourceSystem":
        if self is SourceSystem.LIST_SERVICE:
            return SourceSystem.DOC_STORE
        return SourceSystem.LIST_SERVICE


@dataclass(frozen=True, slots=True)
class Revision:
    """Непрозрачная метка версии, выданная бэкендом.

    Сравнение выполняется только по ``tag``; ``modified_at`` нужен политике
    разрешения конфликтов и может отсутствовать.
    """

    tag: str
    modified_at: Optional[datetime] = field(default=None, compare=False)


@dataclass(slots=True)
class Task:
    """Задача в нормализованном виде, общем для обоих бэкендов."""

    id: str
    source: SourceSystem
    title: str
    revision: Revision
    project: Optional[str] = None
    due_date: Optional[date] = None
    labels: FrozenSet[str] = frozenset()
    completed: bool = False

    @property
    def key(self) -> Tuple[SourceSystem, str]:
        return self.source, self.id

    def field_values(self) -> Dict[str, object]:
        """Значения синхронизируемых полей в JSON-совместимом виде."""
        return {
            "title": self.title.strip(),
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "labels": sorted(self.labels),
            "completed": self.completed,
            "project": self.project,
        }

    def with_values(self, values: Dict[str, object]) -> "Task":
        """Возвращает копию задачи с подставленными значениями полей."""
        changes: Dict[str, object] = {}
        for name, value in values.items():
            if name == "due_date":
                changes[name] = date.fromisoformat(value) if value else None
            elif name == "labels":
                changes[name] = frozenset(value or ())
            elif name in SYNC_FIELDS:
                changes[name] = value
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, object]:
        payload = {"id": self.id, "source": self.source.value, "revision": self.revision.tag}
        payload.update(self.field_values())
        return payload


def diff_fields(left: Dict[str, object], right: Dict[str, object]) -> Tuple[str, ...]:
    """Имена полей, значения которых различаются, в порядке ``SYNC_FIELDS``."""
    return tuple(name for name in SYNC_FIELDS if left.get(name) != right.get(name))


@dataclass(slots=True)
class SyncLink:
    """Запись реестра, связывающая задачу Todoist с задачей Notion."""

    link_id: str
    list_service_ref: str
    doc_store_ref: str
    last_synced_revision_list: str
    last_synced_revision_doc: str
    last_synced_at: datetime
    snapshot: Dict[str, object] = field(default_factory=dict)
    # обе задачи выполнены и с прошлой синхронизации не менялись
    dormant: bool = False

    def ref_for(self, system: SourceSystem) -> str:
        if system is SourceSystem.LIST_SERVICE:
            return self.list_service_ref
        return self.doc_store_ref

    def revision_for(self, system: SourceSystem) -> str:
        if system is SourceSystem.LIST_SERVICE:
            return self.last_synced_revision_list
        return self.last_synced_revision_doc


@dataclass(slots=True)
class RejectedTask:
    """Задача, отклонённая при нормализации."""

    source: SourceSystem
    native_id: str
    reason: str

    @property
    def item_id(self) -> str:
        return f"rejected:{self.source.value}:{self.native_id}"

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.item_id,
            "source": self.source.value,
            "nativeId": self.native_id,
            "reason": self.reason,
        }


@dataclass(slots=True)
class FetchResult:
    """Результат выгрузки задач: итерируется как последовательность задач."""

    tasks: List[Task] = field(default_factory=list)
    rejected: List[RejectedTask] = field(default_factory=list)

    def __iter__(self) -> Iterator[Task]:
        return iter(self.tasks)

    def __len__(self) -> int:
        return len(self.tasks)


@dataclass(frozen=True, slots=True)
class SyncFilter:
    """Ограничение области синхронизации."""

    projects: Tuple[str, ...] = ()
    include_completed: bool = False


__all__ = [
    "SYNC_FIELDS",
    "SourceSystem",
    "Revision",
    "Task",
    "SyncLink",
    "RejectedTask",
    "FetchResult",
    "SyncFilter",
    "diff_fields",
]
