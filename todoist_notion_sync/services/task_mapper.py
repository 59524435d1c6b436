"""Маппинг задач между API Todoist/Notion и внутренней моделью."""
from __future__ import annotations

import hashlib
import json
from datetime import date, datetime
from typing import Dict, Optional

from dateutil import parser

from todoist_notion_sync.config import NotionProperties
from todoist_notion_sync.errors import ValidationError
from todoist_notion_sync.models import Revision, SourceSystem, Task


def fingerprint(values: Dict[str, object]) -> str:
    """Короткий хеш содержимого синхронизируемых полей."""
    raw = json.dumps(values, sort_keys=True, ensure_ascii=False)
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()[:12]


class TaskMapper:
    """Конвертация данных между API и внутренними моделями."""

    def __init__(self, *, notion_properties: Optional[NotionProperties] = None) -> None:
        self._props = notion_properties or NotionProperties()

    @staticmethod
    def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
        if not value:
            return None
        return parser.isoparse(value)

    @staticmethod
    def _parse_date(value: Optional[str], native_id: str) -> Optional[date]:
        if not value:
            return None
        try:
            return parser.isoparse(value).date()
        except (ValueError, OverflowError) as exc:
            raise ValidationError(f"Некорректная дата {value!r}", native_id=native_id) from exc

    @staticmethod
    def _revision(task: Task, modified_at: Optional[datetime]) -> Revision:
        stamp = modified_at.isoformat() if modified_at else ""
        return Revision(tag=f"{stamp}#{fingerprint(task.field_values())}", modified_at=modified_at)

    @staticmethod
    def _require_title(title: Optional[str], native_id: str) -> str:
        if not title or not title.strip():
            raise ValidationError("Пустое название задачи", native_id=native_id)
        return title.strip()

    # region todoist
    def map_todoist_task(self, payload: Dict, project_names: Optional[Dict[str, str]] = None) -> Task:
        """Нормализует задачу Todoist. Неизвестный проект даёт задачу-сироту."""
        native_id = payload.get("id")
        if not native_id:
            raise ValidationError("Задача Todoist без идентификатора")
        native_id = str(native_id)
        title = self._require_title(payload.get("content"), native_id)
        due = payload.get("due") or {}
        labels = payload.get("labels") or []
        if not isinstance(labels, list):
            raise ValidationError("Поле labels должно быть списком", native_id=native_id)
        project_id = payload.get("project_id")
        project = (project_names or {}).get(str(project_id)) if project_id else None
        completed = bool(payload.get("checked", payload.get("is_completed", False)))
        task = Task(
            id=native_id,
            source=SourceSystem.LIST_SERVICE,
            title=title,
            revision=Revision(tag=""),
            project=project,
            due_date=self._parse_date(due.get("date"), native_id),
            labels=frozenset(str(label) for label in labels),
            completed=completed,
        )
        task.revision = self._revision(task, self._parse_datetime(payload.get("updated_at")))
        return task

    @staticmethod
    def to_todoist_payload(values: Dict[str, object], *, project_id: Optional[str] = None) -> Dict:
        """Тело запроса на создание/изменение задачи Todoist (без статуса и проекта)."""
        payload: Dict[str, object] = {}
        if "title" in values:
            payload["content"] = values["title"]
        if "due_date" in values:
            if values["due_date"]:
                payload["due_date"] = values["due_date"]
            else:
                payload["due_string"] = "no date"
        if "labels" in values:
            payload["labels"] = list(values["labels"] or [])
        if project_id:
            payload["project_id"] = project_id
        return payload

    # endregion

    # region notion
    def map_notion_page(self, payload: Dict) -> Task:
        """Нормализует запись базы Notion."""
        native_id = payload.get("id")
        if not native_id:
            raise ValidationError("Страница Notion без идентификатора")
        native_id = str(native_id)
        properties = payload.get("properties") or {}
        title_prop = properties.get(self._props.title) or {}
        title = "".join(part.get("plain_text", "") for part in title_prop.get("title") or [])
        title = self._require_title(title, native_id)
        date_prop = (properties.get(self._props.due) or {}).get("date") or {}
        labels_prop = (properties.get(self._props.labels) or {}).get("multi_select") or []
        done_prop = properties.get(self._props.done) or {}
        project_prop = (properties.get(self._props.project) or {}).get("select") or {}
        task = Task(
            id=native_id,
            source=SourceSystem.DOC_STORE,
            title=title,
            revision=Revision(tag=""),
            project=project_prop.get("name") or None,
            due_date=self._parse_date(date_prop.get("start"), native_id),
            labels=frozenset(item.get("name", "") for item in labels_prop if item.get("name")),
            completed=bool(done_prop.get("checkbox", False)),
        )
        task.revision = self._revision(task, self._parse_datetime(payload.get("last_edited_time")))
        return task

    def to_notion_properties(self, values: Dict[str, object]) -> Dict:
        """Свойства страницы Notion для переданных значений полей."""
        props: Dict[str, object] = {}
        if "title" in values:
            props[self._props.title] = {"title": [{"text": {"content": values["title"]}}]}
        if "due_date" in values:
            due = values["due_date"]
            props[self._props.due] = {"date": {"start": due} if due else None}
        if "labels" in values:
            props[self._props.labels] = {
                "multi_select": [{"name": name} for name in values["labels"] or []]
            }
        if "completed" in values:
            props[self._props.done] = {"checkbox": bool(values["completed"])}
        if "project" in values:
            project = values["project"]
            props[self._props.project] = {"select": {"name": project} if project else None}
        return props

    # endregion


__all__ = ["TaskMapper", "fingerprint"]
