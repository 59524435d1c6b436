"""Оркестратор запуска синхронизации."""
from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from todoist_notion_sync.adapters.base import TaskAdapter
from todoist_notion_sync.config import SyncOptions
from todoist_notion_sync.errors import (
    AuthError,
    ConflictError,
    RunAbortedError,
    StoreError,
    SyncError,
    ValidationError,
)
from todoist_notion_sync.models import (
    SYNC_FIELDS,
    Change,
    ChangeItem,
    ChangeKind,
    ChangeSet,
    Conflict,
    EventKind,
    FetchResult,
    ItemOutcome,
    ItemResult,
    ItemType,
    RejectedTask,
    Resolution,
    ResolutionKind,
    RunStatus,
    SourceSystem,
    SyncEvent,
    SyncFilter,
    SyncLink,
    SyncReport,
    Task,
    diff_fields,
)
from todoist_notion_sync.services.diff import compute_change_set
from todoist_notion_sync.services.events import EventStream
from todoist_notion_sync.services.mapping_store import MappingStore
from todoist_notion_sync.services.resolver import ConflictResolver
from todoist_notion_sync.services.throttle import RateLimiter, RetryPolicy

LOGGER = logging.getLogger(__name__)

LIST = SourceSystem.LIST_SERVICE
DOC = SourceSystem.DOC_STORE

SYSTEM_NAMES = {LIST: "Todoist", DOC: "Notion"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    DIFFING = "diffing"
    PREVIEW_READY = "preview_ready"
    APPLYING = "applying"
    FINALIZING = "finalizing"
    ABORTED = "aborted"


_TRANSITIONS: Dict[RunState, Set[RunState]] = {
    RunState.IDLE: {RunState.FETCHING, RunState.APPLYING},
    RunState.FETCHING: {RunState.DIFFING},
    RunState.DIFFING: {RunState.PREVIEW_READY, RunState.APPLYING},
    RunState.PREVIEW_READY: {RunState.FINALIZING},
    RunState.APPLYING: {RunState.FINALIZING},
    RunState.FINALIZING: {RunState.IDLE},
}


class SyncRun:
    """Состояние одного запуска."""

    def __init__(self, kind: str) -> None:
        self.run_id = uuid.uuid4().hex
        self.kind = kind
        self.state = RunState.IDLE
        self.states: List[RunState] = [RunState.IDLE]
        self._cancelled = threading.Event()

    def transition(self, state: RunState) -> None:
        allowed = _TRANSITIONS.get(self.state, set())
        if state is RunState.ABORTED and self.state not in (RunState.IDLE, RunState.ABORTED):
            allowed = {RunState.ABORTED}
        if state not in allowed:
            raise RuntimeError(f"Недопустимый переход {self.state.value} → {state.value}")
        LOGGER.debug("Запуск %s: %s → %s", self.run_id, self.state.value, state.value)
        self.state = state
        self.states.append(state)

    def abort(self) -> None:
        if self.state not in (RunState.IDLE, RunState.ABORTED):
            self.transition(RunState.ABORTED)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()


class SyncOrchestrator:
    """Связывает адаптеры, движок сравнения, политику конфликтов и реестр.

    ``preview`` ничего не меняет и может работать параллельно с ``apply``.
    Применять изменения одновременно может только один запуск на реестр.
    """

    def __init__(
        self,
        list_adapter: TaskAdapter,
        doc_adapter: TaskAdapter,
        store: MappingStore,
        resolver: Optional[ConflictResolver] = None,
        *,
        options: Optional[SyncOptions] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        options = options or SyncOptions()
        self._adapters: Dict[SourceSystem, TaskAdapter] = {LIST: list_adapter, DOC: doc_adapter}
        self._store = store
        self._resolver = resolver or ConflictResolver(options.conflict_policy)
        self._retry = RetryPolicy(options.max_attempts, options.backoff_base, options.backoff_max)
        self._limiters = {
            LIST: RateLimiter(
                "Todoist",
                max_concurrency=options.list_concurrency,
                min_interval=options.list_min_interval,
                clock=clock,
                sleep=sleep,
            ),
            DOC: RateLimiter(
                "Notion",
                max_concurrency=options.doc_concurrency,
                min_interval=options.doc_min_interval,
                clock=clock,
                sleep=sleep,
            ),
        }
        self._delete_mode = options.delete_mode
        self._max_workers = options.max_workers
        self._sleep = sleep
        self._clock = clock
        self._active: Optional[SyncRun] = None

    # region public API
    @property
    def state(self) -> RunState:
        active = self._active
        return active.state if active else RunState.IDLE

    @property
    def resolver(self) -> ConflictResolver:
        return self._resolver

    @property
    def store(self) -> MappingStore:
        return self._store

    def systems(self) -> List[SourceSystem]:
        return list(self._adapters)

    def cancel(self) -> bool:
        """Кооперативная отмена текущего применения. Проверяется между элементами."""
        active = self._active
        if active is None:
            return False
        LOGGER.info("Отмена запуска %s", active.run_id)
        active.cancel()
        return True

    def preview(self, filter: Optional[SyncFilter] = None) -> ChangeSet:
        """Выгрузка и сравнение без изменений; конфликты снабжены предлагаемым решением."""
        run = SyncRun("preview")
        try:
            change_set = self._build_change_set(run, filter)
            run.transition(RunState.PREVIEW_READY)
            run.transition(RunState.FINALIZING)
            run.transition(RunState.IDLE)
        except Exception:
            run.abort()
            raise
        return change_set

    def apply(
        self,
        change_set: ChangeSet,
        selections: Optional[Iterable[str]] = None,
        *,
        resolutions: Optional[Dict[str, Resolution]] = None,
        events: Optional[EventStream] = None,
        on_start: Optional[Callable[[], None]] = None,
    ) -> SyncReport:
        """Применяет выбранные элементы набора изменений.

        ``selections``: идентификаторы элементов, подтверждённые
        пользователем; ``None`` означает «все». ``resolutions`` заменяет
        предложенные решения конфликтов.
        """
        run = SyncRun("apply")
        with self._store.exclusive(run.run_id):
            self._active = run
            try:
                if on_start is not None:
                    on_start()
                run.transition(RunState.APPLYING)
                return self._apply(run, change_set, selections, resolutions, events)
            finally:
                self._active = None

    def sync(
        self,
        filter: Optional[SyncFilter] = None,
        selections: Optional[Iterable[str]] = None,
        *,
        resolutions: Optional[Dict[str, Resolution]] = None,
        events: Optional[EventStream] = None,
    ) -> SyncReport:
        """Полный запуск: выгрузка, сравнение и применение в одном проходе."""
        run = SyncRun("sync")
        with self._store.exclusive(run.run_id):
            self._active = run
            try:
                try:
                    change_set = self._build_change_set(run, filter)
                except Exception:
                    run.abort()
                    if events is not None:
                        events.close()
                    raise
                run.transition(RunState.APPLYING)
                return self._apply(run, change_set, selections, resolutions, events)
            finally:
                self._active = None

    # endregion

    # region fetching & diffing
    def call(self, system: SourceSystem, operation: str, *args, on_retry=None, **kwargs):
        """Вызов адаптера через ограничитель частоты и политику повторов."""
        adapter = self._adapters[system]

        def attempt():
            with self._limiters[system]:
                return getattr(adapter, operation)(*args, **kwargs)

        return self._retry.call(attempt, sleep=self._sleep, on_retry=on_retry)

    def _build_change_set(self, run: SyncRun, filter: Optional[SyncFilter]) -> ChangeSet:
        run.transition(RunState.FETCHING)
        LOGGER.info("Выгрузка задач Todoist и Notion")
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="fetch") as pool:
            list_future = pool.submit(self.call, LIST, "fetch_all", filter)
            doc_future = pool.submit(self.call, DOC, "fetch_all", filter)
            list_result: FetchResult = list_future.result()
            doc_result: FetchResult = doc_future.result()
        links = self._store.all_links()
        ignore = self._resolve_missing(links, list_result, doc_result, partial=bool(filter and filter.projects))

        run.transition(RunState.DIFFING)
        rejected = [*list_result.rejected, *doc_result.rejected]
        ignore.extend((item.source, item.native_id) for item in rejected)
        change_set = compute_change_set(list_result.tasks, doc_result.tasks, links, ignore=ignore)
        change_set.rejected = rejected
        for conflict in change_set.conflicts:
            conflict.resolution = self._resolver.resolve(conflict)
        change_set.change_set_id = uuid.uuid4().hex
        change_set.generated_at = _utcnow()
        LOGGER.info(
            "Набор изменений %s: создать %s, обновить %s, удалить %s, конфликтов %s, отклонено %s",
            change_set.change_set_id,
            len(change_set.creates),
            len(change_set.updates),
            len(change_set.deletes),
            len(change_set.conflicts),
            len(rejected),
        )
        return change_set

    def _resolve_missing(
        self,
        links: List[SyncLink],
        list_result: FetchResult,
        doc_result: FetchResult,
        *,
        partial: bool,
    ) -> List[Tuple[SourceSystem, str]]:
        """Дочитывает связанные задачи, которых нет в выгрузке.

        Выгрузка не содержит выполненных задач, поэтому отсутствие задачи
        ещё не означает её удаления. При частичной выгрузке (фильтр по
        проектам) связи, обе стороны которых вне выгрузки, пропускаются.
        Спящие связи (обе задачи выполнены) не дочитываются, пока видимая
        сторона не изменится.
        """
        results = {LIST: list_result, DOC: doc_result}
        known = {
            system: {task.id for task in result.tasks} | {item.native_id for item in result.rejected}
            for system, result in results.items()
        }
        fetched = {system: {task.id: task for task in result.tasks} for system, result in results.items()}
        ignore: List[Tuple[SourceSystem, str]] = []
        for link in links:
            refs = {LIST: link.list_service_ref, DOC: link.doc_store_ref}
            missing = [system for system, ref in refs.items() if ref not in known[system]]
            if not missing:
                continue
            if (partial and len(missing) == 2) or (link.dormant and _still_settled(link, missing, fetched)):
                ignore.extend((system, refs[system]) for system in missing)
                continue
            for system in missing:
                try:
                    task = self.call(system, "fetch_one", refs[system])
                except ValidationError as exc:
                    results[system].rejected.append(RejectedTask(system, refs[system], str(exc)))
                    known[system].add(refs[system])
                    continue
                if task is not None:
                    results[system].tasks.append(task)
                    known[system].add(task.id)
        return ignore

    # endregion

    # region applying
    def _apply(
        self,
        run: SyncRun,
        change_set: ChangeSet,
        selections: Optional[Iterable[str]],
        resolutions: Optional[Dict[str, Resolution]],
        events: Optional[EventStream],
    ) -> SyncReport:
        stream = events or EventStream()
        started_at = _utcnow()
        started = self._clock()
        selected = None if selections is None else set(selections)
        overrides = resolutions or {}
        results: Dict[str, ItemResult] = {}
        order: List[str] = []
        plan: List[ChangeItem] = []
        fatal: List[SyncError] = []
        project_results: List[ItemResult] = []

        try:
            for rejected in change_set.rejected:
                order.append(rejected.item_id)
                results[rejected.item_id] = ItemResult(
                    item_id=rejected.item_id,
                    item_type=ItemType.VALIDATION,
                    outcome=ItemOutcome.SKIPPED,
                    title=rejected.native_id,
                    target=rejected.source.value,
                    detail=rejected.reason,
                )
                self._publish(stream, rejected.item_id, EventKind.FAILED, ItemType.VALIDATION, detail=rejected.reason)

            for item in change_set.items():
                order.append(item.change_id)
                if selected is not None and item.change_id not in selected:
                    results[item.change_id] = self._result(item, ItemOutcome.SKIPPED, "не выбрано")
                    continue
                if isinstance(item, Conflict):
                    resolution = overrides.get(item.change_id) or item.resolution or self._resolver.resolve(item)
                    if resolution.is_deferred:
                        LOGGER.info("Конфликт %s отложен: %s", item.change_id, resolution.note)
                        results[item.change_id] = self._result(item, ItemOutcome.DEFERRED, resolution.note)
                        continue
                    item = replace(item, resolution=resolution)
                plan.append(item)

            project_results = self._ensure_projects(run, plan, stream, fatal)
            if not fatal:
                for link in change_set.stale_links:
                    LOGGER.info("Удаление устаревшей связи %s", link.link_id)
                    self._store.remove(link.link_id)
                if change_set.settled_links:
                    LOGGER.info("Связей с выполненными задачами отложено: %s", len(change_set.settled_links))
                    self._store.mark_dormant([link.link_id for link in change_set.settled_links])
        except (AuthError, StoreError) as exc:
            fatal.append(exc)

        self._run_lanes(run, _lanes(plan), stream, results, fatal)

        if fatal:
            status = RunStatus.ABORTED
        elif run.cancelled:
            status = RunStatus.CANCELLED
        else:
            status = RunStatus.COMPLETED
        report = SyncReport(
            run_id=run.run_id,
            change_set_id=change_set.change_set_id,
            status=status,
            started_at=started_at,
            finished_at=_utcnow(),
            elapsed=self._clock() - started,
            items=[*project_results, *(results[item_id] for item_id in order)],
            error=str(fatal[0]) if fatal else None,
        )
        if fatal:
            run.transition(RunState.ABORTED)
        else:
            run.transition(RunState.FINALIZING)
        self._record(report)
        stream.publish(report.run_completed())
        stream.close()
        LOGGER.info(
            "Запуск %s завершён (%s): применено %s, ошибок %s, пропущено %s, отложено %s",
            run.run_id,
            status.value,
            report.total_applied,
            report.total_failed,
            report.total_skipped,
            report.total_deferred,
        )
        if fatal:
            raise RunAbortedError(f"Запуск прерван: {fatal[0]}", report=report) from fatal[0]
        run.transition(RunState.IDLE)
        return report

    def _record(self, report: SyncReport) -> None:
        try:
            self._store.record_run(report)
        except StoreError as exc:
            LOGGER.error("Не удалось сохранить отчёт %s: %s", report.run_id, exc)

    def _ensure_projects(
        self,
        run: SyncRun,
        plan: List[ChangeItem],
        stream: EventStream,
        fatal: List[SyncError],
    ) -> List[ItemResult]:
        results: List[ItemResult] = []
        for name in _projects_for_list_service(plan):
            step_id = f"project:{name}"
            if run.cancelled:
                results.append(
                    ItemResult(step_id, ItemType.PROJECT, ItemOutcome.SKIPPED, title=name, detail="запуск отменён")
                )
                continue
            self._publish(stream, step_id, EventKind.STARTED, ItemType.PROJECT, 0.0, f"Проект «{name}»")
            try:
                self.call(LIST, "ensure_project", name)
            except (AuthError, StoreError) as exc:
                self._publish(stream, step_id, EventKind.FAILED, ItemType.PROJECT, detail=str(exc))
                fatal.append(exc)
                results.append(ItemResult(step_id, ItemType.PROJECT, ItemOutcome.FAILED, title=name, detail=str(exc)))
                break
            except SyncError as exc:
                LOGGER.warning("Не удалось подготовить проект %s: %s", name, exc)
                self._publish(stream, step_id, EventKind.FAILED, ItemType.PROJECT, detail=str(exc))
                results.append(ItemResult(step_id, ItemType.PROJECT, ItemOutcome.FAILED, title=name, detail=str(exc)))
                continue
            self._publish(stream, step_id, EventKind.COMPLETED, ItemType.PROJECT, 100.0)
            results.append(
                ItemResult(step_id, ItemType.PROJECT, ItemOutcome.APPLIED, title=name, target=LIST.value, project=name)
            )
        return results

    def _run_lanes(
        self,
        run: SyncRun,
        lanes: List[List[ChangeItem]],
        stream: EventStream,
        results: Dict[str, ItemResult],
        fatal: List[SyncError],
    ) -> None:
        """Раздаёт дорожки рабочим потокам из общей очереди.

        После отмены новые дорожки не начинаются; элементы, уже взятые в
        работу другими потоками, доводятся до конца.
        """
        pending = iter(lanes)
        dispatch = threading.Lock()

        def worker() -> None:
            while True:
                with dispatch:
                    lane = next(pending, None)
                if lane is None:
                    return
                self._run_lane(run, lane, stream, results, fatal)

        workers = min(self._max_workers, len(lanes))
        if workers <= 1:
            worker()
            return
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="apply") as pool:
            futures = [pool.submit(worker) for _ in range(workers)]
            for future in futures:
                future.result()

    def _run_lane(
        self,
        run: SyncRun,
        lane: List[ChangeItem],
        stream: EventStream,
        results: Dict[str, ItemResult],
        fatal: List[SyncError],
    ) -> None:
        for item in lane:
            if fatal:
                results[item.change_id] = self._result(item, ItemOutcome.SKIPPED, "запуск прерван")
                continue
            if run.cancelled:
                results[item.change_id] = self._result(item, ItemOutcome.SKIPPED, "запуск отменён")
                continue
            try:
                results[item.change_id] = self._apply_item(item, stream)
            except (AuthError, StoreError) as exc:
                LOGGER.error("Фатальная ошибка на элементе %s: %s", item.change_id, exc)
                fatal.append(exc)
                results[item.change_id] = self._result(item, ItemOutcome.FAILED, str(exc))

    def _apply_item(self, item: ChangeItem, stream: EventStream) -> ItemResult:
        step_id = item.change_id

        def on_retry(attempt: int, exc: SyncError) -> None:
            self._publish(stream, step_id, EventKind.PROGRESS, detail=f"повтор {attempt}: {exc}")

        self._publish(stream, step_id, EventKind.STARTED, progress_pct=0.0, detail=_describe(item))
        try:
            try:
                outcome, detail = self._execute(item, stream, on_retry)
            except ConflictError as exc:
                LOGGER.info("Ревизия изменилась во время записи %s: %s", step_id, exc)
                self._publish(stream, step_id, EventKind.PROGRESS, detail="ревизия изменилась, повторное чтение")
                refreshed = self._refresh(item, on_retry)
                if refreshed is None:
                    outcome, detail = ItemOutcome.SKIPPED, "изменения уже применены"
                elif isinstance(refreshed, Conflict) and refreshed.resolution.is_deferred:
                    outcome, detail = ItemOutcome.DEFERRED, refreshed.resolution.note
                else:
                    outcome, detail = self._execute(refreshed, stream, on_retry)
        except (AuthError, StoreError) as exc:
            self._publish(stream, step_id, EventKind.FAILED, detail=str(exc))
            raise
        except ValidationError as exc:
            LOGGER.warning("Элемент %s пропущен: %s", step_id, exc)
            self._publish(stream, step_id, EventKind.FAILED, detail=str(exc))
            return self._result(item, ItemOutcome.SKIPPED, str(exc))
        except SyncError as exc:
            LOGGER.warning("Элемент %s не применён: %s", step_id, exc)
            self._publish(stream, step_id, EventKind.FAILED, detail=str(exc))
            return self._result(item, ItemOutcome.FAILED, str(exc))
        self._publish(stream, step_id, EventKind.COMPLETED, progress_pct=100.0, detail=detail)
        return self._result(item, outcome, detail)

    def _execute(self, item: ChangeItem, stream: EventStream, on_retry) -> Tuple[ItemOutcome, str]:
        if isinstance(item, Conflict):
            return self._apply_resolution(item, stream, on_retry)
        if item.kind is ChangeKind.CREATE:
            return self._apply_create(item, stream, on_retry)
        if item.kind is ChangeKind.UPDATE:
            return self._apply_update(item, stream, on_retry)
        return self._apply_delete(item, stream, on_retry)

    def _apply_create(self, item: Change, stream: EventStream, on_retry) -> Tuple[ItemOutcome, str]:
        source = item.source_task
        if self._store.find_by_native_ref(source.source, source.id) is not None:
            return ItemOutcome.SKIPPED, "задача уже связана"
        created = self.call(item.target, "create", source, on_retry=on_retry)
        self._publish(stream, item.change_id, EventKind.PROGRESS, progress_pct=50.0, detail="создана, обновление реестра")
        list_task, doc_task = (source, created) if source.source is LIST else (created, source)
        self._store.upsert(
            SyncLink(
                link_id=uuid.uuid4().hex,
                list_service_ref=list_task.id,
                doc_store_ref=doc_task.id,
                last_synced_revision_list=list_task.revision.tag,
                last_synced_revision_doc=doc_task.revision.tag,
                last_synced_at=_utcnow(),
                snapshot=source.field_values(),
            )
        )
        return ItemOutcome.APPLIED, f"создана в {SYSTEM_NAMES[item.target]}"

    def _apply_update(self, item: Change, stream: EventStream, on_retry) -> Tuple[ItemOutcome, str]:
        patch = item.patch()
        target = item.target_task
        if patch:
            target = self.call(
                item.target,
                "update",
                item.target_ref,
                patch,
                expected_revision=item.target_task.revision.tag,
                on_retry=on_retry,
            )
            self._publish(stream, item.change_id, EventKind.PROGRESS, progress_pct=50.0, detail="обновлена, обновление реестра")
        link = self._store.get(item.link.link_id) or item.link
        self._store.upsert(_relink(link, item.source_task, target, item.source_task.field_values()))
        if not patch:
            return ItemOutcome.APPLIED, "содержимое совпадает, обновлён реестр"
        return ItemOutcome.APPLIED, "обновлены поля: " + ", ".join(patch)

    def _apply_delete(self, item: Change, stream: EventStream, on_retry) -> Tuple[ItemOutcome, str]:
        target = item.target_task
        if self._delete_mode == "delete":
            self.call(item.target, "delete", target.id, on_retry=on_retry)
            detail = f"удалена в {SYSTEM_NAMES[item.target]}"
        elif not target.completed:
            self.call(
                item.target,
                "update",
                target.id,
                {"completed": True},
                expected_revision=target.revision.tag,
                on_retry=on_retry,
            )
            detail = f"отмечена выполненной в {SYSTEM_NAMES[item.target]}"
        else:
            detail = "уже выполнена"
        self._store.remove(item.link.link_id)
        return ItemOutcome.APPLIED, detail

    def _apply_resolution(self, item: Conflict, stream: EventStream, on_retry) -> Tuple[ItemOutcome, str]:
        winners = item.resolution.winner_map(item.fields)
        list_values = item.list_task.field_values()
        doc_values = item.doc_task.field_values()
        merged = {
            name: (doc_values if winners.get(name) is DOC else list_values)[name] for name in SYNC_FIELDS
        }
        list_patch = {name: doc_values[name] for name, side in winners.items() if side is DOC}
        doc_patch = {name: list_values[name] for name, side in winners.items() if side is LIST}
        list_task, doc_task = item.list_task, item.doc_task
        if doc_patch:
            doc_task = self.call(
                DOC, "update", doc_task.id, doc_patch, expected_revision=doc_task.revision.tag, on_retry=on_retry
            )
        if list_patch:
            list_task = self.call(
                LIST, "update", list_task.id, list_patch, expected_revision=list_task.revision.tag, on_retry=on_retry
            )
        self._publish(stream, item.change_id, EventKind.PROGRESS, progress_pct=50.0, detail="решение применено")
        link = (self._store.get(item.link.link_id) if item.link else None) or item.link
        if link is None:
            link = SyncLink(
                link_id=uuid.uuid4().hex,
                list_service_ref=list_task.id,
                doc_store_ref=doc_task.id,
                last_synced_revision_list=list_task.revision.tag,
                last_synced_revision_doc=doc_task.revision.tag,
                last_synced_at=_utcnow(),
            )
        self._store.upsert(_relink(link, list_task, doc_task, merged))
        return ItemOutcome.APPLIED, f"конфликт разрешён ({item.resolution.kind.value})"

    def _refresh(self, item: ChangeItem, on_retry) -> Optional[ChangeItem]:
        """Перечитывает задачи пары и заново сравнивает только их."""
        if isinstance(item, Change) and item.kind is ChangeKind.CREATE:
            return item
        link = (self._store.get(item.link.link_id) or item.link) if item.link else None
        if isinstance(item, Conflict):
            list_id, doc_id = item.list_task.id, item.doc_task.id
        else:
            list_id, doc_id = link.list_service_ref, link.doc_store_ref
        list_task = self.call(LIST, "fetch_one", list_id, on_retry=on_retry)
        doc_task = self.call(DOC, "fetch_one", doc_id, on_retry=on_retry)

        if link is None:
            if list_task is None or doc_task is None:
                return None
            return replace(
                item,
                list_task=list_task,
                doc_task=doc_task,
                fields=diff_fields(list_task.field_values(), doc_task.field_values()),
            )
        change_set = compute_change_set(
            [list_task] if list_task else [],
            [doc_task] if doc_task else [],
            [link],
        )
        fresh_items = change_set.items()
        if not fresh_items:
            return None
        fresh = fresh_items[0]
        if isinstance(fresh, Conflict):
            previous = item.resolution if isinstance(item, Conflict) else None
            if previous is not None and previous.kind in (ResolutionKind.KEEP_LEFT, ResolutionKind.KEEP_RIGHT):
                fresh.resolution = previous
            else:
                fresh.resolution = self._resolver.resolve(fresh)
        return fresh

    # endregion

    # region helpers
    @staticmethod
    def _publish(
        stream: EventStream,
        step_id: str,
        kind: EventKind,
        item_type: ItemType = ItemType.TASK,
        progress_pct: Optional[float] = None,
        detail: Optional[str] = None,
    ) -> None:
        stream.publish(
            SyncEvent(
                step_id=step_id,
                kind=kind,
                item_type=item_type,
                timestamp=_utcnow(),
                progress_pct=progress_pct,
                detail=detail,
            )
        )

    @staticmethod
    def _result(item: ChangeItem, outcome: ItemOutcome, detail: Optional[str] = None) -> ItemResult:
        target = item.target.value if isinstance(item, Change) else None
        return ItemResult(
            item_id=item.change_id,
            item_type=ItemType.TASK,
            outcome=outcome,
            title=item.title,
            action=item.kind.value,
            target=target,
            project=item.project,
            detail=detail,
        )

    # endregion


def _relink(link: SyncLink, first: Task, second: Task, snapshot: Dict[str, object]) -> SyncLink:
    revisions = {first.source: first.revision.tag, second.source: second.revision.tag}
    return replace(
        link,
        last_synced_revision_list=revisions.get(LIST, link.last_synced_revision_list),
        last_synced_revision_doc=revisions.get(DOC, link.last_synced_revision_doc),
        last_synced_at=_utcnow(),
        snapshot=dict(snapshot),
        dormant=False,
    )


def _still_settled(
    link: SyncLink,
    missing: List[SourceSystem],
    fetched: Dict[SourceSystem, Dict[str, Task]],
) -> bool:
    for system in (LIST, DOC):
        if system in missing:
            continue
        task = fetched[system].get(link.ref_for(system))
        if task is None or not task.completed or task.revision.tag != link.revision_for(system):
            return False
    return True


def _describe(item: ChangeItem) -> str:
    if isinstance(item, Conflict):
        return f"Конфликт «{item.title}» ({item.reason.value})"
    return f"{item.kind.value} «{item.title}» → {SYSTEM_NAMES[item.target]}"


def _item_keys(item: ChangeItem) -> Set[Tuple[str, str]]:
    keys: Set[Tuple[str, str]] = set()
    if item.link is not None:
        keys.add(("link", item.link.link_id))
    if isinstance(item, Conflict):
        tasks = [item.list_task, item.doc_task]
    else:
        tasks = [task for task in (item.source_task, item.target_task) if task is not None]
    keys.update((task.source.value, task.id) for task in tasks)
    return keys


def _lanes(plan: List[ChangeItem]) -> List[List[ChangeItem]]:
    """Группирует элементы одной пары в последовательные «дорожки»."""
    lanes: List[List[ChangeItem]] = []
    lane_keys: List[Set[Tuple[str, str]]] = []
    for item in plan:
        keys = _item_keys(item)
        for index, existing in enumerate(lane_keys):
            if existing & keys:
                lanes[index].append(item)
                existing.update(keys)
                break
        else:
            lanes.append([item])
            lane_keys.append(keys)
    return lanes


def _projects_for_list_service(plan: List[ChangeItem]) -> List[str]:
    names: List[str] = []
    for item in plan:
        project: Optional[str] = None
        if isinstance(item, Conflict):
            winners = item.resolution.winner_map(item.fields) if item.resolution else {}
            if winners.get("project") is DOC:
                project = item.doc_task.project
        elif item.target is LIST and item.kind is ChangeKind.CREATE:
            project = item.source_task.project
        elif item.target is LIST and item.kind is ChangeKind.UPDATE and "project" in item.fields:
            project = item.source_task.project
        if project and project not in names:
            names.append(project)
    return names


__all__ = ["SyncOrchestrator", "SyncRun", "RunState"]
