"""Хранилище реестра связей (ledger) и истории запусков."""
from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from contextlib import closing, contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

from dateutil import parser

from todoist_notion_sync.errors import RunInProgressError, StoreError
from todoist_notion_sync.models import SourceSystem, SyncLink, SyncReport

LOGGER = logging.getLogger(__name__)

RUN_LOCK_STALE_AFTER = 6 * 60 * 60


class MappingStore:
    """Обёртка над SQLite для хранения связей Todoist ↔ Notion.

    Все операции сериализуются блокировкой соединения, поэтому читатель
    никогда не видит частично записанную связь. Блокировка применения
    ``exclusive()`` хранится в самой базе (таблица ``run_lock``) и действует
    для всех процессов, открывших один и тот же файл реестра.
    """

    def __init__(self, path: Path | str, *, lock_stale_after: float = RUN_LOCK_STALE_AFTER) -> None:
        self._path = Path(path)
        self._lock = threading.RLock()
        self._lock_stale_after = lock_stale_after
        try:
            self._conn = sqlite3.connect(str(self._path), timeout=10, check_same_thread=False)
        except sqlite3.Error as exc:
            raise StoreError(f"Не удалось открыть реестр {self._path}: {exc}") from exc
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # region schema
    def _init_schema(self) -> None:
        with self._guard(), closing(self._conn.cursor()) as cursor:
            cursor.executescript(
                """
                CREATE TABLE IF NOT EXISTS links (
                    link_id TEXT PRIMARY KEY,
                    list_ref TEXT NOT NULL UNIQUE,
                    doc_ref TEXT NOT NULL UNIQUE,
                    list_revision TEXT NOT NULL,
                    doc_revision TEXT NOT NULL,
                    synced_at TEXT NOT NULL,
                    snapshot TEXT NOT NULL DEFAULT '{}',
                    dormant INTEGER NOT NULL DEFAULT 0
                );

                CREATE TABLE IF NOT EXISTS sync_runs (
                    run_id TEXT PRIMARY KEY,
                    finished_at TEXT NOT NULL,
                    report TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS run_lock (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    holder TEXT NOT NULL,
                    started_at TEXT NOT NULL
                );
                """
            )
            self._conn.commit()

    # endregion

    # region helpers
    @contextmanager
    def _guard(self) -> Iterator[None]:
        with self._lock:
            try:
                yield
            except sqlite3.IntegrityError as exc:
                self._conn.rollback()
                raise StoreError(f"Нарушена целостность реестра: {exc}") from exc
            except sqlite3.Error as exc:
                raise StoreError(f"Реестр {self._path} недоступен: {exc}") from exc

    @staticmethod
    def _row_to_link(row: sqlite3.Row) -> SyncLink:
        return SyncLink(
            link_id=row["link_id"],
            list_service_ref=row["list_ref"],
            doc_store_ref=row["doc_ref"],
            last_synced_revision_list=row["list_revision"],
            last_synced_revision_doc=row["doc_revision"],
            last_synced_at=parser.isoparse(row["synced_at"]),
            snapshot=json.loads(row["snapshot"] or "{}"),
            dormant=bool(row["dormant"]),
        )

    def _fetch_link(self, where: str, value: str) -> Optional[SyncLink]:
        with self._guard():
            row = self._conn.execute(f"SELECT * FROM links WHERE {where} = ?", (value,)).fetchone()
        return self._row_to_link(row) if row else None

    # endregion

    # region links
    def get(self, link_id: str) -> Optional[SyncLink]:
        return self._fetch_link("link_id", link_id)

    def find_by_native_ref(self, system: SourceSystem, native_id: str) -> Optional[SyncLink]:
        column = "list_ref" if system is SourceSystem.LIST_SERVICE else "doc_ref"
        return self._fetch_link(column, native_id)

    def upsert(self, link: SyncLink) -> None:
        """Атомарно вставляет или заменяет связь; при нарушении 1:1 поднимает ``StoreError``."""
        with self._guard(), self._conn:
            self._conn.execute(
                "INSERT INTO links (link_id, list_ref, doc_ref, list_revision, doc_revision, synced_at, snapshot, dormant)\n"
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)\n"
                "ON CONFLICT(link_id) DO UPDATE SET list_ref = excluded.list_ref, doc_ref = excluded.doc_ref,\n"
                "list_revision = excluded.list_revision, doc_revision = excluded.doc_revision,\n"
                "synced_at = excluded.synced_at, snapshot = excluded.snapshot, dormant = excluded.dormant",
                (
                    link.link_id,
                    link.list_service_ref,
                    link.doc_store_ref,
                    link.last_synced_revision_list,
                    link.last_synced_revision_doc,
                    link.last_synced_at.isoformat(),
                    json.dumps(link.snapshot, sort_keys=True, ensure_ascii=False),
                    int(link.dormant),
                ),
            )

    def remove(self, link_id: str) -> None:
        with self._guard(), self._conn:
            self._conn.execute("DELETE FROM links WHERE link_id = ?", (link_id,))

    def mark_dormant(self, link_ids: List[str]) -> None:
        """Помечает связи, обе задачи которых выполнены; выгрузка их больше не дочитывает."""
        with self._guard(), self._conn:
            self._conn.executemany("UPDATE links SET dormant = 1 WHERE link_id = ?", [(link_id,) for link_id in link_ids])

    def all_links(self) -> List[SyncLink]:
        """Снимок реестра на момент вызова."""
        with self._guard():
            rows = self._conn.execute("SELECT * FROM links ORDER BY rowid").fetchall()
        return [self._row_to_link(row) for row in rows]

    # endregion

    # region runs
    def record_run(self, report: SyncReport) -> None:
        with self._guard(), self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO sync_runs (run_id, finished_at, report) VALUES (?, ?, ?)",
                (
                    report.run_id,
                    report.finished_at.isoformat(),
                    json.dumps(report.to_dict(), ensure_ascii=False),
                ),
            )

    def history(self, limit: int = 50) -> List[SyncReport]:
        """Отчёты запусков, начиная с последнего."""
        with self._guard():
            rows = self._conn.execute(
                "SELECT report FROM sync_runs ORDER BY finished_at DESC, rowid DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [SyncReport.from_dict(json.loads(row["report"])) for row in rows]

    def last_sync(self) -> Optional[datetime]:
        reports = self.history(limit=1)
        return reports[0].finished_at if reports else None

    # endregion

    # region exclusivity
    @contextmanager
    def exclusive(self, holder: Optional[str] = None) -> Iterator[None]:
        """Взаимное исключение применяющих запусков; не ждёт, а сразу падает.

        Блокировка захватывается в транзакции ``BEGIN IMMEDIATE``, поэтому два
        процесса с общим файлом реестра не могут занять её одновременно.
        Блокировка старше ``lock_stale_after`` секунд считается брошенной
        упавшим процессом и перехватывается.
        """
        holder = holder or uuid.uuid4().hex
        self._claim_run_lock(holder)
        try:
            yield
        finally:
            self._release_run_lock(holder)

    def _claim_run_lock(self, holder: str) -> None:
        now = datetime.now(timezone.utc)
        with self._guard():
            try:
                self._conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as exc:
                raise RunInProgressError(f"Реестр занят другим процессом: {exc}") from exc
            try:
                row = self._conn.execute("SELECT holder, started_at FROM run_lock WHERE id = 1").fetchone()
                if row is not None:
                    if not self._is_stale(row["started_at"], now):
                        raise RunInProgressError("Синхронизация уже выполняется, повторите позже")
                    LOGGER.warning("Снята устаревшая блокировка %s от %s", row["holder"], row["started_at"])
                self._conn.execute(
                    "INSERT OR REPLACE INTO run_lock (id, holder, started_at) VALUES (1, ?, ?)",
                    (holder, now.isoformat()),
                )
            except BaseException:
                self._conn.rollback()
                raise
            self._conn.commit()
        LOGGER.debug("Блокировка применения захвачена: %s", holder)

    def _release_run_lock(self, holder: str) -> None:
        with self._guard(), self._conn:
            self._conn.execute("DELETE FROM run_lock WHERE id = 1 AND holder = ?", (holder,))

    def _is_stale(self, started_at: str, now: datetime) -> bool:
        return (now - parser.isoparse(started_at)).total_seconds() >= self._lock_stale_after

    @property
    def is_applying(self) -> bool:
        with self._guard():
            row = self._conn.execute("SELECT started_at FROM run_lock WHERE id = 1").fetchone()
        return row is not None and not self._is_stale(row["started_at"], datetime.now(timezone.utc))

    # endregion


__all__ = ["MappingStore"]
