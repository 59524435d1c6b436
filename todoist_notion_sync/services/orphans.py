"""Поиск задач Todoist без проекта и перенос их во «Входящие»."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from todoist_notion_sync.errors import AuthError, SyncError
from todoist_notion_sync.models import (
    EventKind,
    ItemOutcome,
    ItemResult,
    ItemType,
    SourceSystem,
    SyncEvent,
    Task,
)
from todoist_notion_sync.services.events import EventStream
from todoist_notion_sync.services.orchestrator import SyncOrchestrator

LOGGER = logging.getLogger(__name__)


class OrphanTaskService:
    """Сиротой считается активная задача, проект которой не удалось определить."""

    def __init__(self, orchestrator: SyncOrchestrator, *, inbox_project: str = "Inbox") -> None:
        self._orchestrator = orchestrator
        self._inbox = inbox_project

    def find(self) -> List[Task]:
        result = self._orchestrator.call(SourceSystem.LIST_SERVICE, "fetch_all")
        orphans = [task for task in result if task.project is None and not task.completed]
        LOGGER.info("Найдено задач без проекта: %s", len(orphans))
        return orphans

    def cleanup(
        self,
        tasks: Optional[Sequence[Task]] = None,
        events: Optional[EventStream] = None,
    ) -> List[ItemResult]:
        """Переносит задачи во «Входящие»; ошибка одной задачи не останавливает остальные.

        Перенос идёт под той же блокировкой реестра, что и применение
        изменений, поэтому не пересекается с запущенной синхронизацией.
        """
        tasks = list(self.find() if tasks is None else tasks)
        stream = events or EventStream()
        try:
            with self._orchestrator.store.exclusive():
                return self._move(tasks, stream)
        finally:
            stream.close()

    def _move(self, tasks: List[Task], stream: EventStream) -> List[ItemResult]:
        results: List[ItemResult] = []
        for index, task in enumerate(tasks, start=1):
            step_id = f"orphan:{task.id}"
            progress = round(index * 100.0 / len(tasks), 1)
            stream.publish(_event(step_id, EventKind.STARTED, detail=f"Перенос «{task.title}» в {self._inbox}"))
            try:
                self._orchestrator.call(
                    SourceSystem.LIST_SERVICE,
                    "update",
                    task.id,
                    {"project": self._inbox},
                    expected_revision=task.revision.tag,
                )
            except AuthError:
                raise
            except SyncError as exc:
                LOGGER.warning("Не удалось перенести задачу %s: %s", task.id, exc)
                stream.publish(_event(step_id, EventKind.FAILED, detail=str(exc)))
                results.append(_result(task, ItemOutcome.FAILED, str(exc)))
                continue
            stream.publish(_event(step_id, EventKind.COMPLETED, progress_pct=progress))
            results.append(_result(task, ItemOutcome.APPLIED, f"перенесена в {self._inbox}", self._inbox))
        return results


def _event(
    step_id: str,
    kind: EventKind,
    *,
    progress_pct: Optional[float] = None,
    detail: Optional[str] = None,
) -> SyncEvent:
    return SyncEvent(
        step_id, kind, ItemType.TASK, datetime.now(timezone.utc), progress_pct=progress_pct, detail=detail
    )


def _result(task: Task, outcome: ItemOutcome, detail: str, project: Optional[str] = None) -> ItemResult:
    return ItemResult(
        item_id=f"orphan:{task.id}",
        item_type=ItemType.TASK,
        outcome=outcome,
        title=task.title,
        action="move",
        target=SourceSystem.LIST_SERVICE.value,
        project=project,
        detail=detail,
    )


__all__ = ["OrphanTaskService"]
