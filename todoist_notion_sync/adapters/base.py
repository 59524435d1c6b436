"""Общий контракт адаптеров бэкендов."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, List, Optional

from todoist_notion_sync.errors import ConflictError, NotFoundError, ValidationError
from todoist_notion_sync.models import FetchResult, RejectedTask, SourceSystem, SyncFilter, Task

LOGGER = logging.getLogger(__name__)


class TaskAdapter(ABC):
    """Адаптер бэкенда: приводит задачи к общей модели ``Task``.

    Патч в ``update`` представляет собой словарь значений полей в формате
    ``Task.field_values()``; передаются только изменившиеся поля.
    ``expected_revision`` задаёт ревизию, которую вызывающий видел последней:
    если на бэкенде она уже другая, поднимается ``ConflictError``.
    """

    system: SourceSystem
    name: str = "backend"

    @abstractmethod
    def fetch_all(self, filter: Optional[SyncFilter] = None) -> FetchResult:
        """Выгружает все задачи в области ``filter``."""

    @abstractmethod
    def fetch_one(self, native_id: str) -> Optional[Task]:
        """Возвращает задачу по идентификатору или ``None``, если её больше нет."""

    @abstractmethod
    def create(self, task: Task) -> Task:
        """Создаёт копию задачи и возвращает её с идентификатором и ревизией бэкенда."""

    @abstractmethod
    def update(
        self,
        native_id: str,
        patch: Dict[str, object],
        *,
        expected_revision: Optional[str] = None,
    ) -> Task:
        """Применяет патч и возвращает актуальное состояние задачи."""

    @abstractmethod
    def delete(self, native_id: str) -> None:
        """Удаляет задачу. Повторное удаление не является ошибкой."""

    def list_projects(self) -> List[str]:
        return []

    def ensure_project(self, name: str) -> Optional[str]:
        """Гарантирует существование проекта и возвращает его идентификатор."""
        return None

    def verify(self) -> None:
        """Проверяет учётные данные одним лёгким запросом."""
        self.list_projects()

    def _check_revision(self, native_id: str, expected_revision: Optional[str]) -> Task:
        current = self.fetch_one(native_id)
        if current is None:
            raise NotFoundError(f"{self.name}: задача {native_id} не найдена")
        if expected_revision is not None and current.revision.tag != expected_revision:
            raise ConflictError(
                f"{self.name}: ревизия задачи {native_id} изменилась "
                f"({expected_revision} → {current.revision.tag})"
            )
        return current

    def _collect(self, payloads: Iterable[Dict], convert: Callable[[Dict], Task]) -> FetchResult:
        result = FetchResult()
        for payload in payloads:
            try:
                result.tasks.append(convert(payload))
            except ValidationError as exc:
                native_id = exc.native_id or str(payload.get("id") or "?")
                LOGGER.warning("%s: задача %s отклонена: %s", self.name, native_id, exc)
                result.rejected.append(RejectedTask(self.system, native_id, str(exc)))
        return result


__all__ = ["TaskAdapter"]
