"""Набор изменений, вычисляемый движком сравнения."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from .entities import RejectedTask, SourceSystem, SyncLink, Task


class ChangeKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    CONFLICT = "conflict"


class ConflictReason(str, Enum):
    BOTH_MODIFIED = "both_modified"
    POTENTIAL_DUPLICATE = "potential_duplicate"


class ResolutionKind(str, Enum):
    KEEP_LEFT = "keep_left"
    KEEP_RIGHT = "keep_right"
    MERGE = "merge"
    DEFER = "defer"


@dataclass(frozen=True, slots=True)
class Resolution:
    """Решение по конфликту. Левая сторона соответствует Todoist, правая Notion."""

    kind: ResolutionKind
    winners: Tuple[Tuple[str, SourceSystem], ...] = ()
    note: str = ""

    @classmethod
    def keep_left(cls, note: str = "") -> "Resolution":
        return cls(ResolutionKind.KEEP_LEFT, note=note)

    @classmethod
    def keep_right(cls, note: str = "") -> "Resolution":
        return cls(ResolutionKind.KEEP_RIGHT, note=note)

    @classmethod
    def merge(cls, winners: Dict[str, SourceSystem], note: str = "") -> "Resolution":
        return cls(ResolutionKind.MERGE, winners=tuple(winners.items()), note=note)

    @classmethod
    def defer(cls, note: str = "") -> "Resolution":
        return cls(ResolutionKind.DEFER, note=note)

    @property
    def is_deferred(self) -> bool:
        return self.kind is ResolutionKind.DEFER

    def winner_map(self, fields: Tuple[str, ...]) -> Dict[str, SourceSystem]:
        """Сторона-победитель для каждого поля."""
        if self.kind is ResolutionKind.KEEP_LEFT:
            return {name: SourceSystem.LIST_SERVICE for name in fields}
        if self.kind is ResolutionKind.KEEP_RIGHT:
            return {name: SourceSystem.DOC_STORE for name in fields}
        if self.kind is ResolutionKind.MERGE:
            return dict(self.winners)
        return {}

    def to_dict(self) -> Dict[str, object]:
        return {
            "kind": self.kind.value,
            "winners": {name: side.value for name, side in self.winners},
            "note": self.note,
        }


@dataclass(slots=True)
class Change:
    """Создание, обновление или удаление задачи на стороне ``target``."""

    change_id: str
    kind: ChangeKind
    target: SourceSystem
    source_task: Optional[Task] = None
    target_task: Optional[Task] = None
    link: Optional[SyncLink] = None
    fields: Tuple[str, ...] = ()

    @property
    def title(self) -> str:
        task = self.source_task or self.target_task
        return task.title if task else ""

    @property
    def project(self) -> Optional[str]:
        task = self.source_task or self.target_task
        return task.project if task else None

    @property
    def target_ref(self) -> Optional[str]:
        return self.target_task.id if self.target_task else None

    def patch(self) -> Dict[str, object]:
        if self.source_task is None:
            return {}
        values = self.source_task.field_values()
        return {name: values[name] for name in self.fields}

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.change_id,
            "kind": self.kind.value,
            "target": self.target.value,
            "title": self.title,
            "project": self.project,
            "linkId": self.link.link_id if self.link else None,
            "fields": list(self.fields),
            "source": self.source_task.to_dict() if self.source_task else None,
            "current": self.target_task.to_dict() if self.target_task else None,
        }


@dataclass(slots=True)
class Conflict:
    """Пара задач, требующая решения политики или пользователя."""

    change_id: str
    reason: ConflictReason
    list_task: Task
    doc_task: Task
    link: Optional[SyncLink] = None
    fields: Tuple[str, ...] = ()
    resolution: Optional[Resolution] = None

    kind = ChangeKind.CONFLICT

    @property
    def title(self) -> str:
        return self.list_task.title

    @property
    def project(self) -> Optional[str]:
        return self.list_task.project or self.doc_task.project

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.change_id,
            "kind": self.kind.value,
            "reason": self.reason.value,
            "title": self.title,
            "project": self.project,
            "linkId": self.link.link_id if self.link else None,
            "fields": list(self.fields),
            "left": self.list_task.to_dict(),
            "right": self.doc_task.to_dict(),
            "resolution": self.resolution.to_dict() if self.resolution else None,
        }


ChangeItem = Union[Change, Conflict]


@dataclass(slots=True)
class ChangeSet:
    """Результат сравнения снимков обеих сторон с реестром."""

    creates: List[Change] = field(default_factory=list)
    updates: List[Change] = field(default_factory=list)
    deletes: List[Change] = field(default_factory=list)
    conflicts: List[Conflict] = field(default_factory=list)
    rejected: List[RejectedTask] = field(default_factory=list)
    stale_links: List[SyncLink] = field(default_factory=list)
    settled_links: List[SyncLink] = field(default_factory=list)
    change_set_id: str = ""
    generated_at: Optional[datetime] = None

    def items(self) -> List[ChangeItem]:
        return [*self.creates, *self.updates, *self.deletes, *self.conflicts]

    def get(self, change_id: str) -> Optional[ChangeItem]:
        for item in self.items():
            if item.change_id == change_id:
                return item
        return None

    @property
    def is_empty(self) -> bool:
        return not (self.creates or self.updates or self.deletes or self.conflicts)

    @property
    def has_ledger_work(self) -> bool:
        """Есть ли правки реестра без обращения к бэкендам."""
        return bool(self.stale_links or self.settled_links)

    def to_dict(self) -> Dict[str, object]:
        return {
            "changeSetId": self.change_set_id,
            "generatedAt": self.generated_at.isoformat() if self.generated_at else None,
            "creates": [item.to_dict() for item in self.creates],
            "updates": [item.to_dict() for item in self.updates],
            "deletes": [item.to_dict() for item in self.deletes],
            "conflicts": [item.to_dict() for item in self.conflicts],
            "rejected": [item.to_dict() for item in self.rejected],
            "staleLinks": [link.link_id for link in self.stale_links],
            "settledLinks": [link.link_id for link in self.settled_links],
            "projects": sorted({item.project for item in self.items() if item.project}),
        }


__all__ = [
    "ChangeKind",
    "ConflictReason",
    "ResolutionKind",
    "Resolution",
    "Change",
    "Conflict",
    "ChangeItem",
    "ChangeSet",
]
