"""Общие фикстуры: адаптеры в памяти вместо Todoist и Notion."""
from __future__ import annotations

import itertools
import threading
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from todoist_notion_sync.adapters.base import TaskAdapter
from todoist_notion_sync.config import SyncOptions
from todoist_notion_sync.models import (
    FetchResult,
    RejectedTask,
    Revision,
    SourceSystem,
    SyncFilter,
    SyncLink,
    Task,
)
from todoist_notion_sync.services.mapping_store import MappingStore
from todoist_notion_sync.services.orchestrator import SyncOrchestrator
from todoist_notion_sync.services.sync import TaskSyncService

BASE_TIME = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

# общий для всех адаптеров: более поздняя запись всегда получает более позднее время
_TICKS = itertools.count(1)


class FakeAdapter(TaskAdapter):
    """Бэкенд в памяти с настраиваемыми сбоями.

    Каждая запись выдаёт новую ревизию с возрастающим временем изменения.
    Выполненные задачи не попадают в ``fetch_all`` без ``include_completed``,
    как и в настоящих бэкендах.
    """

    def __init__(self, system: SourceSystem, name: str, prefix: str) -> None:
        self.system = system
        self.name = name
        self._prefix = prefix
        self.tasks: Dict[str, Task] = {}
        self.rejected: List[RejectedTask] = []
        self.calls: List[tuple] = []
        self.projects: List[str] = []
        self._failures: List[dict] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    # region test helpers
    def _revise(self, task: Task) -> Task:
        tick = next(_TICKS)
        modified_at = BASE_TIME + timedelta(minutes=tick)
        task.revision = Revision(tag=f"{task.id}@{tick}", modified_at=modified_at)
        return task

    def add(
        self,
        title: str,
        *,
        project: Optional[str] = None,
        due_date: Optional[date] = None,
        labels=(),
        completed: bool = False,
    ) -> Task:
        with self._lock:
            task = Task(
                id=f"{self._prefix}{next(self._ids)}",
                source=self.system,
                title=title,
                revision=Revision(tag=""),
                project=project,
                due_date=due_date,
                labels=frozenset(labels),
                completed=completed,
            )
            self.tasks[task.id] = self._revise(task)
            return replace(task)

    def edit(self, native_id: str, **values) -> Task:
        """Изменение «со стороны пользователя», без записи в ``calls``."""
        with self._lock:
            task = replace(self.tasks[native_id], **values)
            self.tasks[native_id] = self._revise(task)
            return replace(task)

    def remove(self, native_id: str) -> None:
        with self._lock:
            self.tasks.pop(native_id)

    def fail(self, operation: str, error: Exception, *, target: Optional[str] = None, times: Optional[int] = None) -> None:
        """Заставляет ``operation`` падать с ``error``.

        ``target``: идентификатор задачи (для ``create`` название);
        ``times=None`` означает «всегда».
        """
        self._failures.append({"operation": operation, "error": error, "target": target, "times": times})

    def calls_of(self, operation: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == operation]

    def _maybe_fail(self, operation: str, target: Optional[str]) -> None:
        with self._lock:
            self.calls.append((operation, target))
            for rule in self._failures:
                if rule["operation"] != operation:
                    continue
                if rule["target"] is not None and rule["target"] != target:
                    continue
                if rule["times"] is not None:
                    if rule["times"] <= 0:
                        continue
                    rule["times"] -= 1
                raise rule["error"]

    # endregion

    def fetch_all(self, filter: Optional[SyncFilter] = None) -> FetchResult:
        self._maybe_fail("fetch_all", None)
        filter = filter or SyncFilter()
        with self._lock:
            tasks = [
                replace(task)
                for task in self.tasks.values()
                if (filter.include_completed or not task.completed)
                and (not filter.projects or task.project in filter.projects)
            ]
        return FetchResult(tasks=tasks, rejected=list(self.rejected))

    def fetch_one(self, native_id: str) -> Optional[Task]:
        self._maybe_fail("fetch_one", native_id)
        with self._lock:
            task = self.tasks.get(native_id)
            return replace(task) if task else None

    def create(self, task: Task) -> Task:
        self._maybe_fail("create", task.title)
        with self._lock:
            created = replace(task, id=f"{self._prefix}{next(self._ids)}", source=self.system)
            self.tasks[created.id] = self._revise(created)
            return replace(created)

    def update(self, native_id: str, patch: Dict[str, object], *, expected_revision: Optional[str] = None) -> Task:
        self._check_revision(native_id, expected_revision)
        self._maybe_fail("update", native_id)
        with self._lock:
            task = self.tasks[native_id].with_values(patch)
            self.tasks[native_id] = self._revise(task)
            return replace(task)

    def delete(self, native_id: str) -> None:
        self._maybe_fail("delete", native_id)
        with self._lock:
            self.tasks.pop(native_id, None)

    def list_projects(self) -> List[str]:
        self._maybe_fail("list_projects", None)
        return list(self.projects)

    def ensure_project(self, name: str) -> Optional[str]:
        self._maybe_fail("ensure_project", name)
        if name not in self.projects:
            self.projects.append(name)
        return name


def make_link(list_task: Task, doc_task: Task, link_id: Optional[str] = None) -> SyncLink:
    """Связь пары в состоянии «синхронизировано сейчас»."""
    return SyncLink(
        link_id=link_id or f"link-{list_task.id}-{doc_task.id}",
        list_service_ref=list_task.id,
        doc_store_ref=doc_task.id,
        last_synced_revision_list=list_task.revision.tag,
        last_synced_revision_doc=doc_task.revision.tag,
        last_synced_at=BASE_TIME,
        snapshot=list_task.field_values(),
    )


@pytest.fixture
def list_adapter() -> FakeAdapter:
    return FakeAdapter(SourceSystem.LIST_SERVICE, "Todoist", "L")


@pytest.fixture
def doc_adapter() -> FakeAdapter:
    return FakeAdapter(SourceSystem.DOC_STORE, "Notion", "D")


@pytest.fixture
def store(tmp_path):
    mapping_store = MappingStore(tmp_path / "state.sqlite")
    yield mapping_store
    mapping_store.close()


@pytest.fixture
def make_options():
    def factory(**overrides) -> SyncOptions:
        values = {
            "list_min_interval": 0.0,
            "doc_min_interval": 0.0,
            "backoff_base": 0.0,
            "backoff_max": 0.0,
        }
        values.update(overrides)
        return SyncOptions(**values)

    return factory


@pytest.fixture
def make_orchestrator(list_adapter, doc_adapter, store, make_options):
    def factory(**overrides) -> SyncOrchestrator:
        return SyncOrchestrator(
            list_adapter,
            doc_adapter,
            store,
            options=make_options(**overrides),
            sleep=lambda seconds: None,
        )

    return factory


@pytest.fixture
def orchestrator(make_orchestrator) -> SyncOrchestrator:
    return make_orchestrator()


@pytest.fixture
def service(orchestrator, store) -> TaskSyncService:
    return TaskSyncService(orchestrator, store, preview_cache_size=5, history_limit=10)


@pytest.fixture
def linked_pair(list_adapter, doc_adapter, store):
    """Создаёт одинаковые задачи на обеих сторонах и связывает их в реестре."""

    def factory(title: str, **values):
        list_task = list_adapter.add(title, **values)
        doc_task = doc_adapter.add(title, **values)
        link = make_link(list_task, doc_task)
        store.upsert(link)
        return list_task, doc_task, link

    return factory


@pytest.fixture
def link_for():
    return make_link
