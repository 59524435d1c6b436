"""HTTP API для интерфейса: предпросмотр, применение с потоком событий, история."""
from __future__ import annotations

import json
import logging
from typing import Dict, Iterator, List, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from todoist_notion_sync import __version__
from todoist_notion_sync.errors import (
    AuthError,
    NotFoundError,
    RunAbortedError,
    RunInProgressError,
    SyncError,
    TransientError,
)
from todoist_notion_sync.models import SyncFilter
from todoist_notion_sync.services.orphans import OrphanTaskService
from todoist_notion_sync.services.sync import ApplyHandle, TaskSyncService, parse_resolutions

LOGGER = logging.getLogger(__name__)


class FilterModel(BaseModel):
    """Область синхронизации."""

    projects: List[str] = Field(default_factory=list)
    include_completed: bool = Field(False, alias="includeCompleted")

    model_config = ConfigDict(populate_by_name=True)

    def to_filter(self) -> SyncFilter:
        return SyncFilter(projects=tuple(self.projects), include_completed=self.include_completed)


class PreviewRequest(BaseModel):
    filter: FilterModel = Field(default_factory=FilterModel)


class ApplyRequest(BaseModel):
    """Подтверждение предпросмотра пользователем."""

    change_set_id: str = Field(..., alias="changeSetId", min_length=1)
    selections: Optional[List[str]] = None
    resolutions: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)


def _line(payload: Dict) -> str:
    return json.dumps(payload, ensure_ascii=False) + "\n"


def _stream(handle: ApplyHandle) -> Iterator[str]:
    for event in handle.events:
        yield _line({"type": "event", "event": event.to_dict()})
    try:
        report = handle.result()
    except RunAbortedError as exc:
        yield _line({"type": "report", "report": exc.report.to_dict(), "error": str(exc)})
    except SyncError as exc:
        LOGGER.error("Применение завершилось ошибкой: %s", exc)
        yield _line({"type": "error", "error": str(exc)})
    else:
        yield _line({"type": "report", "report": report.to_dict()})


def create_app(service: TaskSyncService, *, inbox_project: str = "Inbox") -> FastAPI:
    """Создаёт приложение FastAPI поверх готового сервиса."""
    app = FastAPI(title="Todoist ↔ Notion Sync", version=__version__)
    orphans = OrphanTaskService(service.orchestrator, inbox_project=inbox_project)

    @app.exception_handler(SyncError)
    async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
        code = status.HTTP_502_BAD_GATEWAY
        if isinstance(exc, AuthError):
            code = status.HTTP_401_UNAUTHORIZED
        elif isinstance(exc, TransientError):
            code = status.HTTP_503_SERVICE_UNAVAILABLE
        elif isinstance(exc, RunInProgressError):
            code = status.HTTP_409_CONFLICT
        elif isinstance(exc, NotFoundError):
            code = status.HTTP_404_NOT_FOUND
        return JSONResponse(status_code=code, content={"detail": str(exc), "error": type(exc).__name__})

    @app.get("/status")
    def get_status() -> Dict:
        last_sync = service.last_sync()
        return {
            "state": service.orchestrator.state.value,
            "lastSync": last_sync.isoformat() if last_sync else None,
        }

    @app.get("/connections")
    def connections() -> List[Dict]:
        return [item.to_dict() for item in service.connections()]

    @app.post("/preview")
    def preview(request: PreviewRequest) -> Dict:
        return service.preview(request.filter.to_filter()).to_dict()

    @app.post("/apply")
    def apply(request: ApplyRequest) -> StreamingResponse:
        try:
            resolutions = parse_resolutions(request.resolutions)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
        handle = service.start_apply(request.change_set_id, request.selections, resolutions=resolutions)
        return StreamingResponse(_stream(handle), media_type="application/x-ndjson")

    @app.post("/runs/cancel")
    def cancel() -> Dict:
        return {"cancelled": service.cancel()}

    @app.get("/history")
    def history(limit: Optional[int] = None) -> List[Dict]:
        return [report.to_dict() for report in service.history(limit)]

    @app.get("/orphans")
    def list_orphans() -> List[Dict]:
        return [task.to_dict() for task in orphans.find()]

    @app.post("/orphans/cleanup")
    def cleanup_orphans() -> List[Dict]:
        return [item.to_dict() for item in orphans.cleanup()]

    return app


__all__ = ["create_app"]
