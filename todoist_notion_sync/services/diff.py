"""Вычисление набора изменений по двум снимкам и реестру связей.

Функции модуля чистые: результат зависит только от аргументов, а порядок
элементов внутри каждого списка повторяет порядок задач во входных снимках.
"""
from __future__ import annotations

import re
import unicodedata
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from todoist_notion_sync.models import (
    Change,
    ChangeKind,
    ChangeSet,
    Conflict,
    ConflictReason,
    SourceSystem,
    SyncLink,
    Task,
    diff_fields,
)

_SPACES = re.compile(r"\s+")

LIST = SourceSystem.LIST_SERVICE
DOC = SourceSystem.DOC_STORE


def normalize_title(title: str) -> str:
    """Название без регистра, диакритики и лишних пробелов."""
    decomposed = unicodedata.normalize("NFKD", title)
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return _SPACES.sub(" ", stripped).strip().casefold()


def duplicate_key(task: Task) -> Tuple[str, Optional[date]]:
    return normalize_title(task.title), task.due_date


def _index(tasks: Sequence[Task]) -> Dict[str, Task]:
    indexed: Dict[str, Task] = {}
    for task in tasks:
        indexed.setdefault(task.id, task)
    return indexed


def _linked_change(link: SyncLink, list_task: Task, doc_task: Task) -> Optional[Change | Conflict]:
    list_changed = list_task.revision.tag != link.last_synced_revision_list
    doc_changed = doc_task.revision.tag != link.last_synced_revision_doc
    if not list_changed and not doc_changed:
        return None
    fields = diff_fields(list_task.field_values(), doc_task.field_values())
    if list_changed and doc_changed:
        return Conflict(
            change_id=f"conflict:{link.link_id}",
            reason=ConflictReason.BOTH_MODIFIED,
            list_task=list_task,
            doc_task=doc_task,
            link=link,
            fields=fields,
        )
    source, target = (list_task, doc_task) if list_changed else (doc_task, list_task)
    return Change(
        change_id=f"update:{link.link_id}",
        kind=ChangeKind.UPDATE,
        target=target.source,
        source_task=source,
        target_task=target,
        link=link,
        fields=fields,
    )


def _delete(link: SyncLink, remaining: Task) -> Change:
    return Change(
        change_id=f"delete:{link.link_id}",
        kind=ChangeKind.DELETE,
        target=remaining.source,
        target_task=remaining,
        link=link,
    )


def _create(task: Task) -> Change:
    return Change(
        change_id=f"create:{task.source.value}:{task.id}",
        kind=ChangeKind.CREATE,
        target=task.source.opposite,
        source_task=task,
    )


def compute_change_set(
    list_tasks: Sequence[Task],
    doc_tasks: Sequence[Task],
    links: Iterable[SyncLink],
    *,
    ignore: Iterable[Tuple[SourceSystem, str]] = (),
) -> ChangeSet:
    """Сравнивает текущие снимки обеих сторон с последним состоянием реестра.

    ``ignore``: ссылки на задачи, которые не удалось нормализовать: их связи
    не трогаются, иначе отклонённая задача выглядела бы удалённой.
    Неизменённые пары, выполненные с обеих сторон, попадают в
    ``settled_links``: при применении такие связи засыпают.
    """
    list_by_id = _index(list_tasks)
    doc_by_id = _index(doc_tasks)
    ignored: Set[Tuple[SourceSystem, str]] = set(ignore)
    links = list(links)
    by_list = {link.list_service_ref: link for link in links}
    by_doc = {link.doc_store_ref: link for link in links}

    result = ChangeSet()
    unlinked_list: List[Task] = []
    unlinked_doc: List[Task] = []

    for task in list_by_id.values():
        link = by_list.get(task.id)
        if link is None:
            unlinked_list.append(task)
            continue
        if (DOC, link.doc_store_ref) in ignored:
            continue
        counterpart = doc_by_id.get(link.doc_store_ref)
        if counterpart is None:
            result.deletes.append(_delete(link, task))
            continue
        change = _linked_change(link, task, counterpart)
        if change is None and task.completed and counterpart.completed and not link.dormant:
            result.settled_links.append(link)
        _route(result, change)

    for task in doc_by_id.values():
        link = by_doc.get(task.id)
        if link is None:
            unlinked_doc.append(task)
            continue
        if (LIST, link.list_service_ref) in ignored:
            continue
        if link.list_service_ref not in list_by_id:
            result.deletes.append(_delete(link, task))

    for link in links:
        if (LIST, link.list_service_ref) in ignored or (DOC, link.doc_store_ref) in ignored:
            continue
        if link.list_service_ref not in list_by_id and link.doc_store_ref not in doc_by_id:
            result.stale_links.append(link)

    _route_unlinked(result, unlinked_list, unlinked_doc)
    return result


def _route(result: ChangeSet, item: Optional[Change | Conflict]) -> None:
    if item is None:
        return
    if isinstance(item, Conflict):
        result.conflicts.append(item)
    else:
        result.updates.append(item)


def _route_unlinked(result: ChangeSet, unlinked_list: List[Task], unlinked_doc: List[Task]) -> None:
    candidates: Dict[Tuple[str, Optional[date]], List[Task]] = {}
    for task in unlinked_doc:
        candidates.setdefault(duplicate_key(task), []).append(task)
    claimed: Set[str] = set()

    for task in unlinked_list:
        matches = candidates.get(duplicate_key(task)) or []
        match = next((doc for doc in matches if doc.id not in claimed), None)
        if match is None:
            result.creates.append(_create(task))
            continue
        claimed.add(match.id)
        result.conflicts.append(
            Conflict(
                change_id=f"conflict:duplicate:{task.id}:{match.id}",
                reason=ConflictReason.POTENTIAL_DUPLICATE,
                list_task=task,
                doc_task=match,
                fields=diff_fields(task.field_values(), match.field_values()),
            )
        )

    for task in unlinked_doc:
        if task.id not in claimed:
            result.creates.append(_create(task))


__all__ = ["compute_change_set", "normalize_title", "duplicate_key"]
