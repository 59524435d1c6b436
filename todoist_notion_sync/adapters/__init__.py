"""Адаптеры бэкендов задач."""

from .base import TaskAdapter
from .notion import NotionAdapter
from .todoist import TodoistAdapter

__all__ = ["TaskAdapter", "TodoistAdapter", "NotionAdapter"]
