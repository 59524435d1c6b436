"""Доменные модели синхронизации."""

from .changes import (
    Change,
    ChangeItem,
    ChangeKind,
    ChangeSet,
    Conflict,
    ConflictReason,
    Resolution,
    ResolutionKind,
)
from .entities import (
    SYNC_FIELDS,
    FetchResult,
    RejectedTask,
    Revision,
    SourceSystem,
    SyncFilter,
    SyncLink,
    Task,
    diff_fields,
)
from .reports import (
    BackendStatus,
    EventKind,
    ItemOutcome,
    ItemResult,
    ItemType,
    RunCompleted,
    RunStatus,
    SyncEvent,
    SyncReport,
)

__all__ = [
    "SYNC_FIELDS",
    "Task",
    "Revision",
    "SourceSystem",
    "SyncLink",
    "SyncFilter",
    "FetchResult",
    "RejectedTask",
    "diff_fields",
    "Change",
    "ChangeItem",
    "ChangeKind",
    "ChangeSet",
    "Conflict",
    "ConflictReason",
    "Resolution",
    "ResolutionKind",
    "BackendStatus",
    "EventKind",
    "ItemOutcome",
    "ItemResult",
    "ItemType",
    "RunCompleted",
    "RunStatus",
    "SyncEvent",
    "SyncReport",
]
