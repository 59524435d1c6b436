"""Граница для интерфейса: предпросмотр, применение, поток событий и история."""
from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from concurrent.futures import Future
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from todoist_notion_sync.errors import NotFoundError, RunInProgressError, SyncError
from todoist_notion_sync.models import (
    BackendStatus,
    ChangeSet,
    Resolution,
    ResolutionKind,
    SyncFilter,
    SyncReport,
)
from todoist_notion_sync.services.events import EventStream
from todoist_notion_sync.services.mapping_store import MappingStore
from todoist_notion_sync.services.orchestrator import SYSTEM_NAMES, SyncOrchestrator

LOGGER = logging.getLogger(__name__)

_OVERRIDES = {
    ResolutionKind.KEEP_LEFT.value: Resolution.keep_left,
    ResolutionKind.KEEP_RIGHT.value: Resolution.keep_right,
    ResolutionKind.DEFER.value: Resolution.defer,
}


def parse_resolutions(raw: Optional[Dict[str, str]]) -> Dict[str, Resolution]:
    """Решения пользователя по конфликтам: ``keep_left``, ``keep_right`` или ``defer``."""
    result: Dict[str, Resolution] = {}
    for change_id, kind in (raw or {}).items():
        factory = _OVERRIDES.get(kind)
        if factory is None:
            raise ValueError(f"Недопустимое решение {kind!r} для {change_id}")
        result[change_id] = factory("выбрано пользователем")
    return result


class ApplyHandle:
    """Запущенное в фоне применение: поток событий и будущий отчёт."""

    def __init__(self, events: EventStream, future: "Future[SyncReport]") -> None:
        self.events = events
        self._future = future

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> SyncReport:
        """Отчёт запуска; для прерванного запуска поднимает ``RunAbortedError``."""
        return self._future.result(timeout)


class TaskSyncService:
    """Фасад над оркестратором для CLI и HTTP API."""

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        store: MappingStore,
        *,
        preview_cache_size: int = 20,
        history_limit: int = 50,
    ) -> None:
        self._orchestrator = orchestrator
        self._store = store
        self._cache_size = preview_cache_size
        self._history_limit = history_limit
        self._previews: "OrderedDict[str, ChangeSet]" = OrderedDict()
        self._lock = threading.Lock()

    @property
    def orchestrator(self) -> SyncOrchestrator:
        return self._orchestrator

    # region preview
    def preview(self, filter: Optional[SyncFilter] = None) -> ChangeSet:
        change_set = self._orchestrator.preview(filter)
        with self._lock:
            self._previews[change_set.change_set_id] = change_set
            while len(self._previews) > self._cache_size:
                self._previews.popitem(last=False)
        return change_set

    def get_preview(self, change_set_id: str) -> ChangeSet:
        with self._lock:
            change_set = self._previews.get(change_set_id)
        if change_set is None:
            raise NotFoundError(f"Набор изменений {change_set_id} не найден, выполните предпросмотр заново")
        return change_set

    # endregion

    # region apply
    def apply(
        self,
        change_set_id: str,
        selections: Optional[Iterable[str]] = None,
        *,
        resolutions: Optional[Dict[str, Resolution]] = None,
        events: Optional[EventStream] = None,
    ) -> SyncReport:
        """Синхронное применение ранее построенного предпросмотра."""
        change_set = self.get_preview(change_set_id)
        return self._orchestrator.apply(change_set, selections, resolutions=resolutions, events=events)

    def start_apply(
        self,
        change_set_id: str,
        selections: Optional[Iterable[str]] = None,
        *,
        resolutions: Optional[Dict[str, Resolution]] = None,
    ) -> ApplyHandle:
        """Запускает применение в фоне и сразу возвращает поток событий.

        ``RunInProgressError`` поднимается синхронно, до возврата управления.
        """
        change_set = self.get_preview(change_set_id)
        selections = None if selections is None else list(selections)
        stream = EventStream()
        future: "Future[SyncReport]" = Future()
        started = threading.Event()
        rejected: List[RunInProgressError] = []

        def worker() -> None:
            try:
                report = self._orchestrator.apply(
                    change_set,
                    selections,
                    resolutions=resolutions,
                    events=stream,
                    on_start=started.set,
                )
            except RunInProgressError as exc:
                rejected.append(exc)
                stream.close()
                future.set_exception(exc)
            except BaseException as exc:  # noqa: BLE001 - передаётся потребителю через future
                stream.close()
                future.set_exception(exc)
            else:
                future.set_result(report)
            finally:
                started.set()

        thread = threading.Thread(target=worker, name=f"apply-{change_set_id[:8]}", daemon=True)
        thread.start()
        started.wait()
        if rejected:
            raise rejected[0]
        return ApplyHandle(stream, future)

    def cancel(self) -> bool:
        return self._orchestrator.cancel()

    # endregion

    # region history
    def history(self, limit: Optional[int] = None) -> List[SyncReport]:
        return self._store.history(limit or self._history_limit)

    def last_sync(self) -> Optional[datetime]:
        return self._store.last_sync()

    # endregion

    # region connections
    def connections(self) -> List[BackendStatus]:
        """Проверка учётных данных и число проектов по каждому бэкенду.

        Ошибка одного бэкенда не мешает проверить другой: она попадает в
        ``reason`` его статуса.
        """
        statuses: List[BackendStatus] = []
        for system in self._orchestrator.systems():
            name = SYSTEM_NAMES[system]
            try:
                projects = self._orchestrator.call(system, "list_projects")
            except SyncError as exc:
                LOGGER.warning("Нет подключения к %s: %s", name, exc)
                statuses.append(BackendStatus(system.value, name, False, reason=str(exc)))
                continue
            statuses.append(BackendStatus(system.value, name, True, projects=len(projects)))
        return statuses

    # endregion


__all__ = ["TaskSyncService", "ApplyHandle", "parse_resolutions"]
