"""Загрузка и валидация конфигурации приложения."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

ENV_OVERRIDES = {
    "TODOIST_TOKEN": ("todoist", "token"),
    "NOTION_TOKEN": ("notion", "token"),
    "NOTION_DATABASE_ID": ("notion", "database_id"),
}


class TodoistCredentials(BaseModel):
    """Настройки подключения к Todoist."""

    base_url: str = Field("https://api.todoist.com/api/v1", description="Базовый URL API Todoist")
    token: str = Field("", description="Персональный API token Todoist")
    inbox_project: str = Field("Inbox", description="Проект, куда переносятся задачи без проекта")


class NotionProperties(BaseModel):
    """Имена свойств базы Notion для синхронизируемых полей."""

    title: str = "Name"
    due: str = "Due"
    labels: str = "Tags"
    done: str = "Done"
    project: str = "Project"


class NotionCredentials(BaseModel):
    """Настройки подключения к Notion."""

    base_url: str = Field("https://api.notion.com/v1", description="Базовый URL API Notion")
    token: str = Field("", description="Секрет интеграции Notion")
    database_id: str = Field("", description="Идентификатор базы данных с задачами")
    notion_version: str = Field("2022-06-28", description="Значение заголовка Notion-Version")
    properties: NotionProperties = Field(default_factory=NotionProperties)


class SyncOptions(BaseModel):
    """Параметры синхронизации."""

    page_size: int = Field(100, ge=1, le=200, description="Размер страницы при выгрузке задач")
    delete_mode: Literal["complete", "delete"] = Field(
        "complete", description="Как применять удаление: отметить выполненной или удалить"
    )
    conflict_policy: Literal["merge", "prefer_list", "prefer_doc", "manual"] = Field(
        "merge", description="Политика разрешения конфликтов"
    )
    max_workers: int = Field(
        1, ge=1, description="Число независимых пар, обрабатываемых параллельно; при отмене доводятся начатые"
    )
    max_attempts: int = Field(3, ge=1, description="Число попыток при временных ошибках")
    backoff_base: float = Field(0.5, ge=0, description="Начальная задержка повтора, секунды")
    backoff_max: float = Field(8.0, ge=0, description="Максимальная задержка повтора, секунды")
    list_concurrency: int = Field(2, ge=1, description="Одновременных запросов к Todoist")
    list_min_interval: float = Field(0.1, ge=0, description="Минимальный интервал между запросами к Todoist")
    doc_concurrency: int = Field(2, ge=1, description="Одновременных запросов к Notion")
    doc_min_interval: float = Field(0.35, ge=0, description="Минимальный интервал между запросами к Notion")
    request_timeout: float = Field(30.0, gt=0, description="Таймаут HTTP-запроса, секунды")
    history_limit: int = Field(50, ge=1, description="Сколько отчётов возвращать из истории")
    preview_cache_size: int = Field(20, ge=1, description="Сколько предпросмотров хранить для apply")
    dry_run: bool = Field(False, description="Если True, команда sync только строит предпросмотр")


class AppConfig(BaseModel):
    """Корневая конфигурация приложения."""

    todoist: TodoistCredentials = Field(default_factory=TodoistCredentials)
    notion: NotionCredentials = Field(default_factory=NotionCredentials)
    sync: SyncOptions = Field(default_factory=SyncOptions)
    state_db: Path = Field(Path(".sync_state.sqlite"), description="Путь к SQLite-базе реестра связей")

    @field_validator("state_db", mode="before")
    @classmethod
    def _state_db_path(cls, value: Path | str) -> Path:
        return Path(value)

    @classmethod
    def load(cls, path: Path | str, environ: Optional[Dict[str, str]] = None) -> "AppConfig":
        """Загружает конфигурацию из YAML-файла, дополняя её переменными окружения."""
        path = Path(path)
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Конфигурация {path} должна быть YAML-словарём")
        _apply_env(raw, os.environ if environ is None else environ)
        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            raise ValueError(f"Конфигурация {path} некорректна: {exc}") from exc

    def ensure_runtime_dirs(self) -> None:
        """Создаёт недостающие служебные каталоги."""
        self.state_db.parent.mkdir(parents=True, exist_ok=True)


def _apply_env(raw: Dict, environ) -> None:
    for variable, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(variable)
        if not value:
            continue
        target = raw.setdefault(section, {}) or {}
        raw[section] = target
        if not target.get(key):
            target[key] = value


__all__ = [
    "AppConfig",
    "TodoistCredentials",
    "NotionCredentials",
    "NotionProperties",
    "SyncOptions",
]
