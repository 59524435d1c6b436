"""Канал событий прогресса между оркестратором и потребителями."""
from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Iterator, List, Optional, Union

from todoist_notion_sync.models import RunCompleted, SyncEvent

LOGGER = logging.getLogger(__name__)

StreamItem = Union[SyncEvent, RunCompleted]

_CLOSED = object()


class EventStream:
    """Упорядоченный поток событий одного запуска.

    Оркестратор публикует события, потребитель читает их итерацией в своём
    темпе. Подписчики вызываются синхронно в потоке публикации.
    """

    def __init__(self) -> None:
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._lock = threading.Lock()
        self._events: List[StreamItem] = []
        self._listeners: List[Callable[[StreamItem], None]] = []
        self._closed = False

    def subscribe(self, listener: Callable[[StreamItem], None]) -> None:
        self._listeners.append(listener)

    def publish(self, event: StreamItem) -> None:
        with self._lock:
            if self._closed:
                LOGGER.debug("Событие после закрытия потока отброшено: %s", event)
                return
            self._events.append(event)
            self._queue.put(event)
        for listener in list(self._listeners):
            listener(event)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def events(self) -> List[StreamItem]:
        """Копия всех опубликованных событий."""
        with self._lock:
            return list(self._events)

    def get(self, timeout: Optional[float] = None) -> Optional[StreamItem]:
        """Следующее событие или ``None``, если поток закрыт."""
        item = self._queue.get(timeout=timeout)
        if item is _CLOSED:
            self._queue.put(_CLOSED)
            return None
        return item

    def __iter__(self) -> Iterator[StreamItem]:
        while True:
            item = self.get()
            if item is None:
                return
            yield item


__all__ = ["EventStream", "StreamItem"]
