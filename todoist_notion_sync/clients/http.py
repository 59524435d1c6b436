"""Общая часть HTTP-клиентов: сессия, авторизация и разбор ошибок."""
from __future__ import annotations

import logging
from typing import Dict, Optional

import requests

from todoist_notion_sync import __version__
from todoist_notion_sync.errors import (
    AuthError,
    BackendAPIError,
    ConflictError,
    NotFoundError,
    TransientError,
    ValidationError,
)

LOGGER = logging.getLogger(__name__)

USER_AGENT = f"todoist-notion-sync/{__version__}"


class HttpClient:
    """Минимальный клиент REST API с bearer-токеном."""

    service_name = "API"

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self._base_url = base_url
        self._token = token
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "User-Agent": USER_AGENT,
                "Accept": "application/json",
            }
        )
        if extra_headers:
            self._session.headers.update(extra_headers)

    @property
    def base_url(self) -> str:
        return self._base_url.rstrip("/")

    def close(self) -> None:
        self._session.close()

    def _request(self, method: str, endpoint: str, **kwargs) -> requests.Response:
        if not self._token:
            raise AuthError(f"Не задан токен {self.service_name} в конфигурации")
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        LOGGER.debug("%s %s", method, url)
        try:
            response = self._session.request(method, url, timeout=self._timeout, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise TransientError(f"{self.service_name} недоступен: {method} {url}: {exc}") from exc
        status = response.status_code
        if status < 400:
            return response
        message = f"Ошибка {self.service_name} {status} при запросе {method} {url}: {response.text}"
        if status in (401, 403):
            raise AuthError(message)
        if status in (408, 429) or status >= 500:
            raise TransientError(message)
        if status in (409, 412):
            raise ConflictError(message)
        if status == 404:
            raise NotFoundError(message)
        if status in (400, 422):
            raise ValidationError(message)
        raise BackendAPIError(message, status_code=status)


__all__ = ["HttpClient", "USER_AGENT"]
