"""Тесты фасада TaskSyncService и поиска задач без проекта."""
import pytest

from todoist_notion_sync.errors import AuthError, NotFoundError, RunInProgressError, TransientError
from todoist_notion_sync.models import ItemOutcome, RunCompleted, RunStatus, SyncEvent
from todoist_notion_sync.services.events import EventStream
from todoist_notion_sync.services.orphans import OrphanTaskService
from todoist_notion_sync.services.sync import TaskSyncService, parse_resolutions


class TestParseResolutions:
    def test_known_kinds(self):
        parsed = parse_resolutions({"conflict:a": "keep_left", "conflict:b": "defer"})

        assert parsed["conflict:a"].kind.value == "keep_left"
        assert parsed["conflict:b"].is_deferred

    def test_merge_is_not_accepted(self):
        with pytest.raises(ValueError):
            parse_resolutions({"conflict:a": "merge"})

    def test_empty(self):
        assert parse_resolutions(None) == {}


class TestTaskSyncService:
    def test_apply_by_change_set_id(self, service, list_adapter, store):
        list_adapter.add("Задача")
        change_set = service.preview()

        report = service.apply(change_set.change_set_id)

        assert report.change_set_id == change_set.change_set_id
        assert report.total_applied == 1
        assert [item.run_id for item in service.history()] == [report.run_id]
        assert service.last_sync() == report.finished_at

    def test_unknown_change_set(self, service):
        with pytest.raises(NotFoundError):
            service.apply("missing")

    def test_preview_cache_is_bounded(self, orchestrator, store):
        service = TaskSyncService(orchestrator, store, preview_cache_size=1)
        first = service.preview()
        second = service.preview()

        assert service.get_preview(second.change_set_id) is second
        with pytest.raises(NotFoundError):
            service.get_preview(first.change_set_id)

    def test_start_apply_streams_events(self, service, list_adapter):
        list_adapter.add("Первая")
        list_adapter.add("Вторая")
        change_set = service.preview()

        handle = service.start_apply(change_set.change_set_id)
        events = list(handle.events)
        report = handle.result(timeout=5)

        assert report.status is RunStatus.COMPLETED
        assert handle.done()
        assert isinstance(events[-1], RunCompleted)
        steps = {event.step_id for event in events if isinstance(event, SyncEvent)}
        assert steps == {item.change_id for item in change_set.creates}

    def test_start_apply_rejects_concurrent_run(self, service, list_adapter, store):
        list_adapter.add("Задача")
        change_set = service.preview()

        with store.exclusive():
            with pytest.raises(RunInProgressError):
                service.start_apply(change_set.change_set_id)

    def test_cancel_without_run(self, service):
        assert service.cancel() is False


class TestOrphans:
    @pytest.fixture
    def orphans(self, orchestrator):
        return OrphanTaskService(orchestrator, inbox_project="Входящие")

    def test_find_returns_active_tasks_without_project(self, orphans, list_adapter):
        orphan = list_adapter.add("Без проекта")
        list_adapter.add("С проектом", project="Работа")

        assert [task.id for task in orphans.find()] == [orphan.id]

    def test_cleanup_moves_to_inbox(self, orphans, list_adapter):
        orphan = list_adapter.add("Без проекта")
        failing = list_adapter.add("Тоже без проекта")
        list_adapter.fail("update", TransientError("503"), target=failing.id)

        results = orphans.cleanup()

        assert [item.outcome for item in results] == [ItemOutcome.APPLIED, ItemOutcome.FAILED]
        assert results[0].item_id == f"orphan:{orphan.id}"
        assert list_adapter.tasks[orphan.id].project == "Входящие"
        assert orphans.find() == [list_adapter.tasks[failing.id]]

    def test_auth_error_propagates(self, orphans, list_adapter):
        list_adapter.add("Без проекта")
        list_adapter.fail("update", AuthError("401"))

        with pytest.raises(AuthError):
            orphans.cleanup()

    def test_cleanup_refused_while_sync_applies(self, orphans, list_adapter, store):
        list_adapter.add("Без проекта")
        stream = EventStream()

        with store.exclusive():
            with pytest.raises(RunInProgressError):
                orphans.cleanup(events=stream)

        assert list_adapter.calls_of("update") == []
        assert stream.closed
        assert not store.is_applying


class TestConnections:
    def test_reports_each_backend(self, service, list_adapter, doc_adapter):
        list_adapter.projects = ["Inbox"]
        doc_adapter.fail("list_projects", TransientError("503"))

        statuses = service.connections()

        assert [(item.name, item.connected, item.projects) for item in statuses] == [
            ("Todoist", True, 1),
            ("Notion", False, 0),
        ]
        assert statuses[1].reason == "503"
