"""Двусторонняя синхронизация задач Todoist ↔ Notion."""

__version__ = "0.1.0"
