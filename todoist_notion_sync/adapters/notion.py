"""Адаптер Notion (база данных как хранилище задач)."""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from todoist_notion_sync.adapters.base import TaskAdapter
from todoist_notion_sync.clients import NotionClient
from todoist_notion_sync.config import NotionProperties
from todoist_notion_sync.errors import NotFoundError
from todoist_notion_sync.models import FetchResult, SourceSystem, SyncFilter, Task
from todoist_notion_sync.services.task_mapper import TaskMapper

LOGGER = logging.getLogger(__name__)


class NotionAdapter(TaskAdapter):
    """Задачи хранятся записями одной базы, проект задаётся свойством типа select."""

    system = SourceSystem.DOC_STORE
    name = "Notion"

    def __init__(
        self,
        client: NotionClient,
        mapper: Optional[TaskMapper] = None,
        *,
        properties: Optional[NotionProperties] = None,
        page_size: int = 100,
    ) -> None:
        self._client = client
        self._props = properties or NotionProperties()
        self._mapper = mapper or TaskMapper(notion_properties=self._props)
        self._page_size = page_size

    def _query_filter(self, filter: Optional[SyncFilter]) -> Optional[Dict]:
        if filter is None:
            filter = SyncFilter()
        clauses: List[Dict] = []
        if filter.projects:
            clauses.append(
                {
                    "or": [
                        {"property": self._props.project, "select": {"equals": name}}
                        for name in filter.projects
                    ]
                }
            )
        if not filter.include_completed:
            clauses.append({"property": self._props.done, "checkbox": {"equals": False}})
        if not clauses:
            return None
        if len(clauses) == 1:
            return clauses[0]
        return {"and": clauses}

    def fetch_all(self, filter: Optional[SyncFilter] = None) -> FetchResult:
        pages = [
            page
            for page in self._client.iter_pages(page_size=self._page_size, filter=self._query_filter(filter))
            if not _is_removed(page)
        ]
        return self._collect(pages, self._mapper.map_notion_page)

    def fetch_one(self, native_id: str) -> Optional[Task]:
        try:
            page = self._client.get_page(native_id)
        except NotFoundError:
            return None
        if _is_removed(page):
            return None
        return self._mapper.map_notion_page(page)

    def create(self, task: Task) -> Task:
        page = self._client.create_page(self._mapper.to_notion_properties(task.field_values()))
        return self._mapper.map_notion_page(page)

    def update(
        self,
        native_id: str,
        patch: Dict[str, object],
        *,
        expected_revision: Optional[str] = None,
    ) -> Task:
        current = self._check_revision(native_id, expected_revision)
        properties = self._mapper.to_notion_properties(patch)
        if not properties:
            return current
        return self._mapper.map_notion_page(self._client.update_page(native_id, properties))

    def delete(self, native_id: str) -> None:
        try:
            self._client.archive_page(native_id)
        except NotFoundError:
            LOGGER.debug("Страница Notion %s уже удалена", native_id)

    def list_projects(self) -> List[str]:
        database = self._client.retrieve_database()
        prop = (database.get("properties") or {}).get(self._props.project) or {}
        options = (prop.get("select") or {}).get("options") or []
        return [str(option.get("name")) for option in options if option.get("name")]


def _is_removed(page: Dict) -> bool:
    return bool(page.get("archived") or page.get("in_trash"))


__all__ = ["NotionAdapter"]
