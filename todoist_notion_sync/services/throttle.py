"""Ограничение частоты запросов и повторы при временных ошибках."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from todoist_notion_sync.errors import TransientError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimiter:
    """Ограничитель для одного бэкенда: не больше ``max_concurrency``
    одновременных вызовов и не чаще одного старта за ``min_interval`` секунд.
    """

    def __init__(
        self,
        name: str,
        *,
        max_concurrency: int = 1,
        min_interval: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.name = name
        self._slots = threading.BoundedSemaphore(max_concurrency)
        self._min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_start = 0.0

    def __enter__(self) -> "RateLimiter":
        self._slots.acquire()
        with self._lock:
            now = self._clock()
            start = max(now, self._next_start)
            self._next_start = start + self._min_interval
        wait = start - now
        if wait > 0:
            LOGGER.debug("%s: ожидание %.3f с перед запросом", self.name, wait)
            self._sleep(wait)
        return self

    def __exit__(self, *exc_info) -> None:
        self._slots.release()


@dataclass(frozen=True)
class RetryPolicy:
    """Экспоненциальный backoff для ``TransientError``."""

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0

    def delay(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    def call(
        self,
        func: Callable[[], T],
        *,
        sleep: Callable[[float], None] = time.sleep,
        on_retry: Optional[Callable[[int, TransientError], None]] = None,
    ) -> T:
        """Вызывает ``func``; после исчерпания попыток поднимает последнюю ошибку."""
        attempt = 0
        while True:
            try:
                return func()
            except TransientError as exc:
                attempt += 1
                if attempt >= self.max_attempts:
                    raise
                delay = self.delay(attempt - 1)
                LOGGER.info("Временная ошибка (попытка %s/%s): %s", attempt, self.max_attempts, exc)
                if on_retry is not None:
                    on_retry(attempt, exc)
                sleep(delay)


__all__ = ["RateLimiter", "RetryPolicy"]
