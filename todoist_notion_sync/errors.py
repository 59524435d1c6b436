"""Иерархия исключений синхронизации."""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover
    from todoist_notion_sync.models import SyncReport


class SyncError(RuntimeError):
    """Базовая ошибка приложения."""


class AuthError(SyncError):
    """Неверные или отсутствующие учётные данные. Не повторяется."""


class TransientError(SyncError):
    """Сетевая ошибка или превышение лимита запросов. Повторяется с backoff."""


class ConflictError(SyncError):
    """Бэкенд сообщил о несовпадении ревизии (optimistic lock)."""


class ValidationError(SyncError):
    """Некорректные данные задачи из источника."""

    def __init__(self, message: str, *, native_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.native_id = native_id


class NotFoundError(SyncError):
    """Объект отсутствует на стороне бэкенда."""


class BackendAPIError(SyncError):
    """Прочие ошибки API бэкенда."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StoreError(SyncError):
    """Хранилище соответствий недоступно или нарушен инвариант 1:1."""


class RunInProgressError(SyncError):
    """Другой запуск уже применяет изменения."""


class RunAbortedError(SyncError):
    """Запуск прерван фатальной ошибкой; содержит частичный отчёт."""

    def __init__(self, message: str, *, report: "SyncReport") -> None:
        super().__init__(message)
        self.report = report


__all__ = [
    "SyncError",
    "AuthError",
    "TransientError",
    "ConflictError",
    "ValidationError",
    "NotFoundError",
    "BackendAPIError",
    "StoreError",
    "RunInProgressError",
    "RunAbortedError",
]
