"""HTTP-клиент для Notion API."""
from __future__ import annotations

from typing import Dict, Iterable, Optional

import requests

from todoist_notion_sync.clients.http import HttpClient
from todoist_notion_sync.config import NotionCredentials


class NotionClient(HttpClient):
    """Минимальный клиент Notion API для работы с одной базой данных."""

    service_name = "Notion"

    def __init__(
        self,
        config: NotionCredentials,
        session: Optional[requests.Session] = None,
        *,
        timeout: float = 30.0,
    ) -> None:
        super().__init__(
            config.base_url,
            config.token,
            timeout=timeout,
            session=session,
            extra_headers={"Notion-Version": config.notion_version},
        )
        self._config = config

    @property
    def database_id(self) -> str:
        return self._config.database_id

    def retrieve_database(self) -> Dict:
        return self._request("GET", f"/databases/{self.database_id}").json()

    def query_database(
        self,
        *,
        start_cursor: Optional[str] = None,
        page_size: int = 100,
        filter: Optional[Dict] = None,
    ) -> Dict:
        """Возвращает страницу записей базы."""
        payload: Dict[str, object] = {"page_size": page_size}
        if start_cursor:
            payload["start_cursor"] = start_cursor
        if filter:
            payload["filter"] = filter
        return self._request("POST", f"/databases/{self.database_id}/query", json=payload).json()

    def iter_pages(self, *, page_size: int = 100, filter: Optional[Dict] = None) -> Iterable[Dict]:
        """Итерирует записи базы с учётом пагинации."""
        cursor = None
        while True:
            payload = self.query_database(start_cursor=cursor, page_size=page_size, filter=filter)
            for item in payload.get("results", []):
                yield item
            cursor = payload.get("next_cursor")
            if not payload.get("has_more") or not cursor:
                break

    def get_page(self, page_id: str) -> Dict:
        return self._request("GET", f"/pages/{page_id}").json()

    def create_page(self, properties: Dict) -> Dict:
        payload = {"parent": {"database_id": self.database_id}, "properties": properties}
        return self._request("POST", "/pages", json=payload).json()

    def update_page(self, page_id: str, properties: Dict) -> Dict:
        return self._request("PATCH", f"/pages/{page_id}", json={"properties": properties}).json()

    def archive_page(self, page_id: str) -> Dict:
        return self._request("PATCH", f"/pages/{page_id}", json={"archived": True}).json()


__all__ = ["NotionClient"]
