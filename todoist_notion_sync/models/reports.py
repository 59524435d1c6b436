"""События прогресса и итоговый отчёт запуска."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from dateutil import parser


class EventKind(str, Enum):
    STARTED = "started"
    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"


class ItemType(str, Enum):
    PROJECT = "project"
    TASK = "task"
    VALIDATION = "validation"


class ItemOutcome(str, Enum):
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"
    DEFERRED = "deferred"


class RunStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ABORTED = "aborted"


@dataclass(slots=True)
class SyncEvent:
    """Шаг прогресса в стабильной схеме, которую рисует интерфейс."""

    step_id: str
    kind: EventKind
    item_type: ItemType
    timestamp: datetime
    progress_pct: Optional[float] = None
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "stepId": self.step_id,
            "kind": self.kind.value,
            "itemType": self.item_type.value,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.progress_pct is not None:
            payload["progressPct"] = self.progress_pct
        if self.detail:
            payload["detail"] = self.detail
        return payload


@dataclass(slots=True)
class RunCompleted:
    """Финальное событие потока."""

    total_applied: int
    total_failed: int
    total_skipped: int
    elapsed: float
    timestamp: datetime

    def to_dict(self) -> Dict[str, object]:
        return {
            "kind": "run_completed",
            "totalApplied": self.total_applied,
            "totalFailed": self.total_failed,
            "totalSkipped": self.total_skipped,
            "elapsed": round(self.elapsed, 3),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(slots=True)
class ItemResult:
    """Итог обработки одного элемента."""

    item_id: str
    item_type: ItemType
    outcome: ItemOutcome
    title: str = ""
    action: Optional[str] = None
    target: Optional[str] = None
    project: Optional[str] = None
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.item_id,
            "itemType": self.item_type.value,
            "outcome": self.outcome.value,
            "title": self.title,
            "action": self.action,
            "target": self.target,
            "project": self.project,
            "detail": self.detail,
        }

    @classmethod
    def from_dict(cls, payload: Dict) -> "ItemResult":
        return cls(
            item_id=payload["id"],
            item_type=ItemType(payload["itemType"]),
            outcome=ItemOutcome(payload["outcome"]),
            title=payload.get("title") or "",
            action=payload.get("action"),
            target=payload.get("target"),
            project=payload.get("project"),
            detail=payload.get("detail"),
        )


@dataclass(slots=True)
class SyncReport:
    """Отчёт запуска: перечисляет каждый элемент с его исходом."""

    run_id: str
    change_set_id: str
    status: RunStatus
    started_at: datetime
    finished_at: datetime
    elapsed: float
    items: List[ItemResult] = field(default_factory=list)
    error: Optional[str] = None

    def _count(self, outcome: ItemOutcome) -> int:
        return sum(
            1
            for item in self.items
            if item.outcome is outcome and item.item_type is not ItemType.PROJECT
        )

    @property
    def total_applied(self) -> int:
        return self._count(ItemOutcome.APPLIED)

    @property
    def total_failed(self) -> int:
        return self._count(ItemOutcome.FAILED)

    @property
    def total_skipped(self) -> int:
        return self._count(ItemOutcome.SKIPPED)

    @property
    def total_deferred(self) -> int:
        return self._count(ItemOutcome.DEFERRED)

    @property
    def projects_affected(self) -> int:
        return len(
            {item.project for item in self.items if item.project and item.outcome is ItemOutcome.APPLIED}
        )

    def outcome_of(self, item_id: str) -> Optional[ItemOutcome]:
        for item in self.items:
            if item.item_id == item_id:
                return item.outcome
        return None

    def run_completed(self) -> RunCompleted:
        return RunCompleted(
            total_applied=self.total_applied,
            total_failed=self.total_failed,
            total_skipped=self.total_skipped,
            elapsed=self.elapsed,
            timestamp=self.finished_at,
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "runId": self.run_id,
            "changeSetId": self.change_set_id,
            "status": self.status.value,
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat(),
            "elapsed": round(self.elapsed, 3),
            "totalApplied": self.total_applied,
            "totalFailed": self.total_failed,
            "totalSkipped": self.total_skipped,
            "totalDeferred": self.total_deferred,
            "projectsAffected": self.projects_affected,
            "error": self.error,
            "items": [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_dict(cls, payload: Dict) -> "SyncReport":
        return cls(
            run_id=payload["runId"],
            change_set_id=payload.get("changeSetId") or "",
            status=RunStatus(payload["status"]),
            started_at=parser.isoparse(payload["startedAt"]),
            finished_at=parser.isoparse(payload["finishedAt"]),
            elapsed=float(payload.get("elapsed") or 0.0),
            items=[ItemResult.from_dict(item) for item in payload.get("items", [])],
            error=payload.get("error"),
        )


@dataclass(slots=True)
class BackendStatus:
    """Подключение к одному бэкенду для панели интерфейса."""

    system: str
    name: str
    connected: bool
    projects: int = 0
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "system": self.system,
            "name": self.name,
            "connected": self.connected,
            "activeProjects": self.projects,
            "reason": self.reason,
        }


__all__ = [
    "BackendStatus",
    "EventKind",
    "ItemType",
    "ItemOutcome",
    "RunStatus",
    "SyncEvent",
    "RunCompleted",
    "ItemResult",
    "SyncReport",
]
