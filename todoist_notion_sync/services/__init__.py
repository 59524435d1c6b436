"""Сервисный слой приложения."""

from .diff import compute_change_set
from .events import EventStream
from .mapping_store import MappingStore
from .orchestrator import RunState, SyncOrchestrator
from .orphans import OrphanTaskService
from .resolver import ConflictResolver
from .sync import ApplyHandle, TaskSyncService
from .task_mapper import TaskMapper

__all__ = [
    "compute_change_set",
    "ConflictResolver",
    "EventStream",
    "MappingStore",
    "OrphanTaskService",
    "RunState",
    "SyncOrchestrator",
    "TaskSyncService",
    "ApplyHandle",
    "TaskMapper",
]
