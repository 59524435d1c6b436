"""HTTP-клиент для Todoist API v1."""
from __future__ import annotations

from typing import Dict, Iterable, Optional

import requests

from todoist_notion_sync.clients.http import HttpClient
from todoist_notion_sync.config import TodoistCredentials


class TodoistClient(HttpClient):
    """Минимальный клиент Todoist API."""

    service_name = "Todoist"

    def __init__(
        self,
        config: TodoistCredentials,
        session: Optional[requests.Session] = None,
        *,
        timeout: float = 30.0,
    ) -> None:
        super().__init__(config.base_url, config.token, timeout=timeout, session=session)
        self._config = config

    # region tasks
    def list_tasks(
        self,
        *,
        project_id: Optional[str] = None,
        cursor: Optional[str] = None,
        limit: int = 100,
    ) -> Dict:
        """Возвращает страницу активных задач."""
        params: Dict[str, object] = {"limit": limit}
        if project_id:
            params["project_id"] = project_id
        if cursor:
            params["cursor"] = cursor
        return self._request("GET", "/tasks", params=params).json()

    def iter_tasks(self, *, project_id: Optional[str] = None, page_size: int = 100) -> Iterable[Dict]:
        """Итерирует активные задачи с учётом пагинации."""
        cursor = None
        while True:
            page = self.list_tasks(project_id=project_id, cursor=cursor, limit=page_size)
            for item in page.get("results", []):
                yield item
            cursor = page.get("next_cursor")
            if not cursor:
                break

    def get_task(self, task_id: str) -> Dict:
        return self._request("GET", f"/tasks/{task_id}").json()

    def create_task(self, payload: Dict) -> Dict:
        return self._request("POST", "/tasks", json=payload).json()

    def update_task(self, task_id: str, payload: Dict) -> Dict:
        return self._request("POST", f"/tasks/{task_id}", json=payload).json()

    def move_task(self, task_id: str, project_id: str) -> None:
        self._request("POST", f"/tasks/{task_id}/move", json={"project_id": project_id})

    def close_task(self, task_id: str) -> None:
        self._request("POST", f"/tasks/{task_id}/close")

    def reopen_task(self, task_id: str) -> None:
        self._request("POST", f"/tasks/{task_id}/reopen")

    def delete_task(self, task_id: str) -> None:
        self._request("DELETE", f"/tasks/{task_id}")

    # endregion

    # region projects
    def list_projects(self, *, cursor: Optional[str] = None, limit: int = 200) -> Dict:
        params: Dict[str, object] = {"limit": limit}
        if cursor:
            params["cursor"] = cursor
        return self._request("GET", "/projects", params=params).json()

    def iter_projects(self, page_size: int = 200) -> Iterable[Dict]:
        cursor = None
        while True:
            page = self.list_projects(cursor=cursor, limit=page_size)
            for item in page.get("results", []):
                yield item
            cursor = page.get("next_cursor")
            if not cursor:
                break

    def create_project(self, name: str) -> Dict:
        return self._request("POST", "/projects", json={"name": name}).json()

    def projects_by_name(self) -> Dict[str, str]:
        """Возвращает словарь «имя проекта → id»."""
        return {str(item.get("name")): str(item.get("id")) for item in self.iter_projects()}

    # endregion


__all__ = ["TodoistClient"]
