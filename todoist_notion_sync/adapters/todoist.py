"""Адаптер Todoist (плоский список задач)."""
from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional

from todoist_notion_sync.adapters.base import TaskAdapter
from todoist_notion_sync.clients import TodoistClient
from todoist_notion_sync.errors import NotFoundError
from todoist_notion_sync.models import FetchResult, SourceSystem, SyncFilter, Task
from todoist_notion_sync.services.task_mapper import TaskMapper

LOGGER = logging.getLogger(__name__)


class TodoistAdapter(TaskAdapter):
    """Todoist хранит проект как идентификатор; наружу отдаётся имя проекта.

    API активных задач не возвращает выполненные задачи, поэтому
    ``include_completed`` фильтра здесь не влияет на выгрузку. Список
    проектов перечитывается при каждой полной выгрузке и при встрече
    неизвестного ``project_id``.
    """

    system = SourceSystem.LIST_SERVICE
    name = "Todoist"

    def __init__(
        self,
        client: TodoistClient,
        mapper: Optional[TaskMapper] = None,
        *,
        page_size: int = 100,
        inbox_project: str = "Inbox",
    ) -> None:
        self._client = client
        self._mapper = mapper or TaskMapper()
        self._page_size = page_size
        self._inbox_project = inbox_project
        self._projects: Optional[Dict[str, str]] = None
        self._lock = threading.Lock()

    # region projects
    def _project_ids(self, *, refresh: bool = False) -> Dict[str, str]:
        with self._lock:
            if self._projects is None or refresh:
                self._projects = self._client.projects_by_name()
            return dict(self._projects)

    def _project_names(self, payload: Optional[Dict] = None) -> Dict[str, str]:
        names = {ident: name for name, ident in self._project_ids().items()}
        project_id = (payload or {}).get("project_id")
        if project_id and str(project_id) not in names:
            LOGGER.debug("Неизвестный проект %s, обновление списка проектов", project_id)
            names = {ident: name for name, ident in self._project_ids(refresh=True).items()}
        return names

    def list_projects(self) -> List[str]:
        return list(self._project_ids(refresh=True))

    def ensure_project(self, name: str) -> Optional[str]:
        existing = self._project_ids().get(name) or self._project_ids(refresh=True).get(name)
        if existing:
            return existing
        LOGGER.info("Создание проекта Todoist %s", name)
        created = self._client.create_project(name)
        project_id = str(created.get("id"))
        with self._lock:
            if self._projects is not None:
                self._projects[name] = project_id
        return project_id

    # endregion

    def fetch_all(self, filter: Optional[SyncFilter] = None) -> FetchResult:
        project_ids = self._project_ids(refresh=True)
        names = {ident: name for name, ident in project_ids.items()}
        if filter and filter.projects:
            payloads: List[Dict] = []
            for project in filter.projects:
                project_id = project_ids.get(project)
                if not project_id:
                    LOGGER.info("Проект %s отсутствует в Todoist, пропуск", project)
                    continue
                payloads.extend(self._client.iter_tasks(project_id=project_id, page_size=self._page_size))
        else:
            payloads = list(self._client.iter_tasks(page_size=self._page_size))
        return self._collect(payloads, lambda item: self._mapper.map_todoist_task(item, names))

    def fetch_one(self, native_id: str) -> Optional[Task]:
        try:
            payload = self._client.get_task(native_id)
        except NotFoundError:
            return None
        if payload.get("is_deleted"):
            return None
        return self._mapper.map_todoist_task(payload, self._project_names(payload))

    def create(self, task: Task) -> Task:
        values = task.field_values()
        project_id = self.ensure_project(task.project) if task.project else None
        response = self._client.create_task(self._mapper.to_todoist_payload(values, project_id=project_id))
        native_id = str(response.get("id"))
        if task.completed:
            self._client.close_task(native_id)
            return self._refetch(native_id)
        return self._mapper.map_todoist_task(response, self._project_names(response))

    def update(
        self,
        native_id: str,
        patch: Dict[str, object],
        *,
        expected_revision: Optional[str] = None,
    ) -> Task:
        current = self._check_revision(native_id, expected_revision)
        payload = self._mapper.to_todoist_payload(patch)
        if payload:
            self._client.update_task(native_id, payload)
        if "project" in patch and patch["project"] != current.project:
            target = patch["project"] or self._inbox_project
            self._client.move_task(native_id, self.ensure_project(str(target)))
        if "completed" in patch and bool(patch["completed"]) != current.completed:
            if patch["completed"]:
                self._client.close_task(native_id)
            else:
                self._client.reopen_task(native_id)
        return self._refetch(native_id)

    def delete(self, native_id: str) -> None:
        try:
            self._client.delete_task(native_id)
        except NotFoundError:
            LOGGER.debug("Задача Todoist %s уже удалена", native_id)

    def _refetch(self, native_id: str) -> Task:
        task = self.fetch_one(native_id)
        if task is None:
            raise NotFoundError(f"Todoist: задача {native_id} пропала после записи")
        return task


__all__ = ["TodoistAdapter"]
