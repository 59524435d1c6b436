"""Тесты движка сравнения снимков."""
from datetime import date, datetime, timezone

import pytest

from todoist_notion_sync.models import (
    ChangeKind,
    ConflictReason,
    Revision,
    SourceSystem,
    SyncLink,
    Task,
)
from todoist_notion_sync.services.diff import compute_change_set, duplicate_key, normalize_title

LIST = SourceSystem.LIST_SERVICE
DOC = SourceSystem.DOC_STORE
SYNCED_AT = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _task(source, native_id, title, revision="r1", **values) -> Task:
    return Task(id=native_id, source=source, title=title, revision=Revision(revision), **values)


def _link(link_id, list_ref, doc_ref, list_rev="r1", doc_rev="r1") -> SyncLink:
    return SyncLink(link_id, list_ref, doc_ref, list_rev, doc_rev, SYNCED_AT)


class TestNormalizeTitle:
    def test_case_accents_and_spaces(self):
        assert normalize_title("  Revisar   Propuésta ") == "revisar propuesta"

    def test_duplicate_key_includes_due_date(self):
        task = _task(LIST, "1", "Report", due_date=date(2024, 6, 1))
        assert duplicate_key(task) == ("report", date(2024, 6, 1))


class TestLinkedPairs:
    def test_unchanged_pair_is_noop(self):
        change_set = compute_change_set(
            [_task(LIST, "l1", "A")],
            [_task(DOC, "d1", "A")],
            [_link("k1", "l1", "d1")],
        )

        assert change_set.is_empty
        assert change_set.stale_links == []

    def test_completed_unchanged_pair_is_settled(self):
        settled = _link("k1", "l1", "d1")
        dormant = _link("k2", "l2", "d2")
        dormant.dormant = True

        change_set = compute_change_set(
            [_task(LIST, "l1", "A", completed=True), _task(LIST, "l2", "B", completed=True), _task(LIST, "l3", "C")],
            [_task(DOC, "d1", "A", completed=True), _task(DOC, "d2", "B", completed=True), _task(DOC, "d3", "C")],
            [settled, dormant, _link("k3", "l3", "d3")],
        )

        assert change_set.is_empty
        assert change_set.settled_links == [settled]

    def test_list_change_updates_doc_side(self):
        change_set = compute_change_set(
            [_task(LIST, "l1", "A v2", revision="r2")],
            [_task(DOC, "d1", "A")],
            [_link("k1", "l1", "d1")],
        )

        [update] = change_set.updates
        assert update.change_id == "update:k1"
        assert update.target is DOC
        assert update.fields == ("title",)
        assert update.patch() == {"title": "A v2"}

    def test_doc_change_updates_list_side(self):
        change_set = compute_change_set(
            [_task(LIST, "l1", "A")],
            [_task(DOC, "d1", "A", revision="r2", completed=True)],
            [_link("k1", "l1", "d1")],
        )

        [update] = change_set.updates
        assert update.target is LIST
        assert update.patch() == {"completed": True}

    def test_both_changed_is_always_conflict(self):
        change_set = compute_change_set(
            [_task(LIST, "l1", "A", revision="r2")],
            [_task(DOC, "d1", "B", revision="r2", labels=frozenset({"x"}))],
            [_link("k1", "l1", "d1")],
        )

        assert change_set.updates == []
        [conflict] = change_set.conflicts
        assert conflict.reason is ConflictReason.BOTH_MODIFIED
        assert conflict.change_id == "conflict:k1"
        assert conflict.fields == ("title", "labels")

    def test_both_changed_with_equal_content_is_still_conflict(self):
        change_set = compute_change_set(
            [_task(LIST, "l1", "A", revision="r2")],
            [_task(DOC, "d1", "A", revision="r3")],
            [_link("k1", "l1", "d1")],
        )

        [conflict] = change_set.conflicts
        assert conflict.fields == ()

    def test_missing_list_task_deletes_doc_side(self):
        change_set = compute_change_set([], [_task(DOC, "d1", "A")], [_link("k1", "l1", "d1")])

        [delete] = change_set.deletes
        assert delete.kind is ChangeKind.DELETE
        assert delete.target is DOC
        assert delete.target_ref == "d1"

    def test_missing_doc_task_deletes_list_side(self):
        change_set = compute_change_set([_task(LIST, "l1", "A")], [], [_link("k1", "l1", "d1")])

        [delete] = change_set.deletes
        assert delete.target is LIST
        assert delete.change_id == "delete:k1"

    def test_both_missing_is_stale_link(self):
        link = _link("k1", "l1", "d1")
        change_set = compute_change_set([], [], [link])

        assert change_set.is_empty
        assert change_set.stale_links == [link]

    def test_ignored_reference_keeps_link_untouched(self):
        change_set = compute_change_set(
            [_task(LIST, "l1", "A")],
            [],
            [_link("k1", "l1", "d1")],
            ignore=[(DOC, "d1")],
        )

        assert change_set.is_empty
        assert change_set.stale_links == []


class TestUnlinkedTasks:
    def test_each_unlinked_task_creates_once_on_other_side(self):
        change_set = compute_change_set(
            [_task(LIST, "l1", "Buy milk"), _task(LIST, "l2", "Call Ana")],
            [_task(DOC, "d1", "Write report")],
            [],
        )

        targets = {item.source_task.id: item.target for item in change_set.creates}
        assert targets == {"l1": DOC, "l2": DOC, "d1": LIST}
        assert [item.change_id for item in change_set.creates] == [
            "create:list_service:l1",
            "create:list_service:l2",
            "create:doc_store:d1",
        ]

    def test_potential_duplicate_is_never_created(self):
        due = date(2024, 6, 3)
        change_set = compute_change_set(
            [_task(LIST, "l1", "Revisar propuesta de cliente ABC", due_date=due)],
            [_task(DOC, "d1", "revisar  propuesta de Cliente ABC ", due_date=due)],
            [],
        )

        assert change_set.creates == []
        [conflict] = change_set.conflicts
        assert conflict.reason is ConflictReason.POTENTIAL_DUPLICATE
        assert conflict.change_id == "conflict:duplicate:l1:d1"
        assert conflict.link is None

    def test_same_title_different_due_date_is_not_duplicate(self):
        change_set = compute_change_set(
            [_task(LIST, "l1", "Report", due_date=date(2024, 6, 1))],
            [_task(DOC, "d1", "Report", due_date=date(2024, 6, 2))],
            [],
        )

        assert len(change_set.creates) == 2
        assert change_set.conflicts == []

    def test_duplicate_claims_one_counterpart(self):
        change_set = compute_change_set(
            [_task(LIST, "l1", "Report"), _task(LIST, "l2", "Report")],
            [_task(DOC, "d1", "Report")],
            [],
        )

        assert [item.change_id for item in change_set.conflicts] == ["conflict:duplicate:l1:d1"]
        assert [item.change_id for item in change_set.creates] == ["create:list_service:l2"]


class TestDeterminism:
    @pytest.fixture
    def inputs(self):
        list_tasks = [_task(LIST, f"l{i}", f"Task {i}", revision="r2") for i in range(5)]
        doc_tasks = [_task(DOC, f"d{i}", f"Task {i}") for i in range(5)]
        links = [_link(f"k{i}", f"l{i}", f"d{i}") for i in range(3)]
        return list_tasks, doc_tasks, links

    def test_identical_inputs_give_identical_output(self, inputs):
        first = compute_change_set(*inputs)
        second = compute_change_set(*inputs)

        assert [item.change_id for item in first.items()] == [item.change_id for item in second.items()]

    def test_order_follows_fetch_order(self, inputs):
        list_tasks, doc_tasks, links = inputs
        change_set = compute_change_set(list(reversed(list_tasks)), doc_tasks, links)

        assert [item.change_id for item in change_set.updates] == ["update:k2", "update:k1", "update:k0"]
