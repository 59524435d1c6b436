"""CLI-интерфейс для запуска синхронизации."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional

import typer
from tqdm import tqdm

from todoist_notion_sync.adapters import NotionAdapter, TodoistAdapter
from todoist_notion_sync.clients import NotionClient, TodoistClient
from todoist_notion_sync.config import AppConfig
from todoist_notion_sync.errors import RunAbortedError, SyncError
from todoist_notion_sync.models import ChangeSet, Conflict, EventKind, ItemType, SyncEvent, SyncFilter
from todoist_notion_sync.services.events import EventStream
from todoist_notion_sync.services.mapping_store import MappingStore
from todoist_notion_sync.services.orchestrator import SyncOrchestrator
from todoist_notion_sync.services.orphans import OrphanTaskService
from todoist_notion_sync.services.sync import TaskSyncService
from todoist_notion_sync.services.task_mapper import TaskMapper

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

app = typer.Typer(help="Двусторонняя синхронизация задач Todoist ↔ Notion")

ConfigOption = typer.Option(Path("config.yaml"), "--config", "-c", help="Путь к YAML конфигурации")
VerbosityOption = typer.Option(0, "--verbose", "-v", count=True, help="Уровень логирования")
ProjectOption = typer.Option(None, "--project", "-p", help="Ограничить синхронизацию проектом (можно повторять)")


def configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format=LOG_FORMAT)


def load_config(config_path: Path, *, dry_run_override: Optional[bool] = None) -> AppConfig:
    config = AppConfig.load(config_path)
    if dry_run_override is not None:
        config.sync.dry_run = dry_run_override
    config.ensure_runtime_dirs()
    return config


def build_orchestrator(config: AppConfig, store: MappingStore) -> SyncOrchestrator:
    timeout = config.sync.request_timeout
    mapper = TaskMapper(notion_properties=config.notion.properties)
    todoist = TodoistAdapter(
        TodoistClient(config.todoist, timeout=timeout),
        mapper,
        page_size=config.sync.page_size,
        inbox_project=config.todoist.inbox_project,
    )
    notion = NotionAdapter(
        NotionClient(config.notion, timeout=timeout),
        mapper,
        properties=config.notion.properties,
        page_size=config.sync.page_size,
    )
    return SyncOrchestrator(todoist, notion, store, options=config.sync)


def build_service(config: AppConfig) -> tuple[TaskSyncService, MappingStore]:
    store = MappingStore(config.state_db)
    service = TaskSyncService(
        build_orchestrator(config, store),
        store,
        preview_cache_size=config.sync.preview_cache_size,
        history_limit=config.sync.history_limit,
    )
    return service, store


def _filter(projects: Optional[List[str]], include_completed: bool) -> SyncFilter:
    return SyncFilter(projects=tuple(projects or ()), include_completed=include_completed)


def _echo_json(payload) -> None:
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


def _runnable_count(change_set: ChangeSet, select: Optional[List[str]]) -> int:
    """Сколько элементов дойдёт до выполнения: без невыбранных и отложенных конфликтов."""
    chosen = set(select) if select else None
    count = 0
    for item in change_set.items():
        if chosen is not None and item.change_id not in chosen:
            continue
        if isinstance(item, Conflict) and item.resolution is not None and item.resolution.is_deferred:
            continue
        count += 1
    return count


@app.command("preview")
def preview(
    config_path: Path = ConfigOption,
    verbosity: int = VerbosityOption,
    projects: Optional[List[str]] = ProjectOption,
    include_completed: bool = typer.Option(False, "--include-completed", help="Учитывать выполненные задачи Notion"),
) -> None:
    """Показывает, что будет изменено, ничего не применяя."""
    configure_logging(verbosity)
    service, store = build_service(load_config(config_path))
    try:
        change_set = service.preview(_filter(projects, include_completed))
        _echo_json(change_set.to_dict())
    finally:
        store.close()


@app.command("sync")
def sync(
    config_path: Path = ConfigOption,
    verbosity: int = VerbosityOption,
    projects: Optional[List[str]] = ProjectOption,
    include_completed: bool = typer.Option(False, "--include-completed"),
    select: Optional[List[str]] = typer.Option(None, "--select", "-s", help="Применить только указанные элементы"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Не спрашивать подтверждение"),
    dry_run: Optional[bool] = typer.Option(
        None,
        "--dry-run/--no-dry-run",
        help="Только предпросмотр (по умолчанию берётся из конфигурации)",
    ),
) -> None:
    """Предпросмотр и применение изменений."""
    configure_logging(verbosity)
    config = load_config(config_path, dry_run_override=dry_run)
    service, store = build_service(config)
    try:
        change_set = service.preview(_filter(projects, include_completed))
        if config.sync.dry_run:
            _echo_json(change_set.to_dict())
            return
        if change_set.is_empty and not change_set.rejected:
            if change_set.has_ledger_work:
                service.apply(change_set.change_set_id)
            typer.echo("Изменений нет")
            return
        typer.echo(
            f"Создать: {len(change_set.creates)}, обновить: {len(change_set.updates)}, "
            f"удалить: {len(change_set.deletes)}, конфликтов: {len(change_set.conflicts)}"
        )
        if not yes and not typer.confirm("Применить изменения?"):
            raise typer.Abort()

        total = _runnable_count(change_set, select)
        stream = EventStream()
        with tqdm(total=total, desc="Синхронизация", unit="задача") as bar:

            def on_event(event) -> None:
                if (
                    isinstance(event, SyncEvent)
                    and event.item_type is ItemType.TASK
                    and event.kind in (EventKind.COMPLETED, EventKind.FAILED)
                ):
                    bar.update(1)

            stream.subscribe(on_event)
            try:
                report = service.apply(change_set.change_set_id, select, events=stream)
            except RunAbortedError as exc:
                _echo_json(exc.report.to_dict())
                typer.echo(f"Ошибка: {exc}", err=True)
                raise typer.Exit(code=2) from exc
        _echo_json(report.to_dict())
        if report.total_failed:
            raise typer.Exit(code=1)
    except SyncError as exc:
        typer.echo(f"Ошибка: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    finally:
        store.close()


@app.command("history")
def history(
    config_path: Path = ConfigOption,
    limit: int = typer.Option(10, "--limit", "-n", help="Сколько последних запусков показать"),
) -> None:
    """История запусков, начиная с последнего."""
    config = load_config(config_path)
    store = MappingStore(config.state_db)
    try:
        reports = store.history(limit)
        _echo_json([report.to_dict() for report in reports])
    finally:
        store.close()


@app.command("verify")
def verify(config_path: Path = ConfigOption, verbosity: int = VerbosityOption) -> None:
    """Проверяет соединение с API и учётные данные."""
    configure_logging(verbosity)
    config = load_config(config_path)
    service, store = build_service(config)
    try:
        orchestrator = service.orchestrator
        for system in orchestrator.systems():
            orchestrator.call(system, "verify")
        typer.echo("Соединение успешно")
    except SyncError as exc:
        typer.echo(f"Ошибка: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    finally:
        store.close()


@app.command("projects")
def projects(config_path: Path = ConfigOption) -> None:
    """Списки проектов Todoist и вариантов проекта в базе Notion."""
    config = load_config(config_path)
    service, store = build_service(config)
    try:
        orchestrator = service.orchestrator
        _echo_json({system.value: orchestrator.call(system, "list_projects") for system in orchestrator.systems()})
    finally:
        store.close()


@app.command("orphans")
def orphans(
    config_path: Path = ConfigOption,
    verbosity: int = VerbosityOption,
    cleanup: bool = typer.Option(False, "--cleanup", help="Перенести найденные задачи во «Входящие»"),
) -> None:
    """Задачи Todoist без проекта."""
    configure_logging(verbosity)
    config = load_config(config_path)
    service, store = build_service(config)
    try:
        tool = OrphanTaskService(service.orchestrator, inbox_project=config.todoist.inbox_project)
        found = tool.find()
        if not cleanup:
            _echo_json([task.to_dict() for task in found])
            return
        results = tool.cleanup(found)
        _echo_json([item.to_dict() for item in results])
    finally:
        store.close()


@app.command("serve")
def serve(
    config_path: Path = ConfigOption,
    verbosity: int = VerbosityOption,
    host: str = typer.Option("127.0.0.1", help="Адрес HTTP-сервера"),
    port: int = typer.Option(8080, help="Порт HTTP-сервера"),
) -> None:
    """Запускает HTTP API для интерфейса."""
    import uvicorn

    from todoist_notion_sync.api import create_app

    configure_logging(max(verbosity, 1))
    config = load_config(config_path)
    service, store = build_service(config)
    try:
        uvicorn.run(create_app(service, inbox_project=config.todoist.inbox_project), host=host, port=port)
    finally:
        store.close()


if __name__ == "__main__":
    app()
