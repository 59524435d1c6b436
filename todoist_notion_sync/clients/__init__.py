"""HTTP-клиенты внешних сервисов."""

from .notion import NotionClient
from .todoist import TodoistClient

__all__ = ["TodoistClient", "NotionClient"]
