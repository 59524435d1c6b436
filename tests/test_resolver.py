"""Тесты политик разрешения конфликтов."""
from datetime import datetime, timedelta, timezone

import pytest

from todoist_notion_sync.models import (
    Conflict,
    ConflictReason,
    ResolutionKind,
    Revision,
    SourceSystem,
    SyncLink,
    Task,
    diff_fields,
)
from todoist_notion_sync.services.resolver import ConflictResolver

LIST = SourceSystem.LIST_SERVICE
DOC = SourceSystem.DOC_STORE
EARLY = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
LATE = EARLY + timedelta(hours=1)


def _task(source, title, modified_at, **values) -> Task:
    native_id = "l1" if source is LIST else "d1"
    return Task(native_id, source, title, Revision(f"{native_id}-{title}", modified_at), **values)


def _conflict(list_task, doc_task, snapshot=None, reason=ConflictReason.BOTH_MODIFIED) -> Conflict:
    link = SyncLink("k1", "l1", "d1", "old", "old", EARLY, snapshot=snapshot or {})
    return Conflict(
        change_id="conflict:k1",
        reason=reason,
        list_task=list_task,
        doc_task=doc_task,
        link=link,
        fields=diff_fields(list_task.field_values(), doc_task.field_values()),
    )


class TestPolicies:
    def test_unknown_policy(self):
        with pytest.raises(ValueError):
            ConflictResolver("coin_flip")

    def test_duplicate_is_always_deferred(self):
        conflict = _conflict(_task(LIST, "A", EARLY), _task(DOC, "A", LATE), reason=ConflictReason.POTENTIAL_DUPLICATE)

        for policy in ("merge", "prefer_list", "prefer_doc", "manual"):
            assert ConflictResolver(policy).resolve(conflict).is_deferred

    def test_manual_defers(self):
        conflict = _conflict(_task(LIST, "A", EARLY), _task(DOC, "B", LATE))
        assert ConflictResolver("manual").resolve(conflict).kind is ResolutionKind.DEFER

    def test_prefer_sides(self):
        conflict = _conflict(_task(LIST, "A", EARLY), _task(DOC, "B", LATE))

        assert ConflictResolver("prefer_list").resolve(conflict).kind is ResolutionKind.KEEP_LEFT
        assert ConflictResolver("prefer_doc").resolve(conflict).kind is ResolutionKind.KEEP_RIGHT


class TestMerge:
    @pytest.fixture
    def resolver(self):
        return ConflictResolver()

    def test_missing_timestamps_defer(self, resolver):
        conflict = _conflict(_task(LIST, "A", None), _task(DOC, "B", LATE))
        assert resolver.resolve(conflict).is_deferred

    def test_identical_timestamps_defer(self, resolver):
        conflict = _conflict(_task(LIST, "A", LATE), _task(DOC, "B", LATE))
        assert resolver.resolve(conflict).is_deferred

    def test_equal_content_merges_nothing(self, resolver):
        conflict = _conflict(_task(LIST, "A", EARLY), _task(DOC, "A", LATE))
        resolution = resolver.resolve(conflict)

        assert resolution.kind is ResolutionKind.MERGE
        assert resolution.winners == ()

    def test_most_recent_side_wins_without_snapshot(self, resolver):
        conflict = _conflict(_task(LIST, "A", EARLY), _task(DOC, "B", LATE))
        resolution = resolver.resolve(conflict)

        assert resolution.winner_map(conflict.fields) == {"title": DOC}

    def test_field_changed_on_one_side_keeps_that_side(self, resolver):
        base = _task(LIST, "Old", EARLY)
        snapshot = base.field_values()
        list_task = _task(LIST, "New title", EARLY)
        doc_task = _task(DOC, "Old", LATE, completed=True)
        conflict = _conflict(list_task, doc_task, snapshot=snapshot)

        winners = resolver.resolve(conflict).winner_map(conflict.fields)

        assert winners == {"title": LIST, "completed": DOC}

    def test_field_changed_on_both_sides_goes_to_newer(self, resolver):
        snapshot = _task(LIST, "Old", EARLY).field_values()
        conflict = _conflict(_task(LIST, "List title", LATE), _task(DOC, "Doc title", EARLY), snapshot=snapshot)

        winners = resolver.resolve(conflict).winner_map(conflict.fields)

        assert winners == {"title": LIST}
