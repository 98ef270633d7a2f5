"""FastAPI application exposing the tracker over a local HTTP API."""

from __future__ import annotations

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict

from .controller import ActivityController
from .db import SqliteGateway
from .errors import (
    InvalidTimestamp,
    InvalidTransition,
    NothingToUndo,
    PersistenceFailure,
)
from .filters import Filter
from .inactivity import InactivityMonitor, default_idle_probe
from .models import Activity, Project
from .paths import resolve_db_path
from .reporting import REPORTS, bucket_sort_key, format_bucket

logger = logging.getLogger(__name__)


class ProjectPayload(BaseModel):
    title: str
    description: str = ""

    model_config = ConfigDict(extra="forbid")


class ProjectUpdate(BaseModel):
    title: Optional[str] = None
    active: Optional[bool] = None
    description: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class SelectPayload(BaseModel):
    project_id: Optional[int] = None

    model_config = ConfigDict(extra="forbid")


class TimestampPayload(BaseModel):
    at: Optional[datetime] = None

    model_config = ConfigDict(extra="forbid")


class DescriptionPayload(BaseModel):
    description: str

    model_config = ConfigDict(extra="forbid")


class ActivityUpdate(BaseModel):
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    project_id: Optional[int] = None
    description: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class FilterPayload(BaseModel):
    project_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    description: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


def create_app(
    *,
    db_path: Optional[Path] = None,
    controller: Optional[ActivityController] = None,
    monitor: Optional[InactivityMonitor] = None,
) -> FastAPI:
    """Instantiate the FastAPI application around one controller."""
    if controller is None:
        gateway = SqliteGateway.open(resolve_db_path(db_path), check_same_thread=False)
        controller = ActivityController.from_gateway(gateway)
    if monitor is None:
        monitor = InactivityMonitor(controller, probe=default_idle_probe())

    app = FastAPI(title="Project Tracker", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.controller = controller
    app.state.monitor = monitor

    @app.on_event("startup")
    async def _startup() -> None:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
        monitor.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        monitor.stop()

    @app.exception_handler(InvalidTransition)
    async def _invalid_transition(request: Request, exc: InvalidTransition) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(NothingToUndo)
    async def _nothing_to_undo(request: Request, exc: NothingToUndo) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(InvalidTimestamp)
    async def _invalid_timestamp(request: Request, exc: InvalidTimestamp) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(PersistenceFailure)
    async def _persistence_failure(request: Request, exc: PersistenceFailure) -> JSONResponse:
        logger.error("Persistence failure: %s", exc)
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    def _project(project_id: int) -> Project:
        project = controller.projection.find_project(project_id)
        if project is None:
            raise HTTPException(status_code=404, detail="Project not found")
        return project

    def _activity(activity_id: int) -> Activity:
        activity = controller.projection.find_activity(activity_id)
        if activity is None:
            raise HTTPException(status_code=404, detail="Activity not found")
        return activity

    @app.get("/api/status")
    def status() -> Dict[str, Any]:
        with controller.lock:
            return _status_payload(controller, monitor)

    @app.get("/api/projects")
    def list_projects(include_archived: bool = False) -> Dict[str, Any]:
        with controller.lock:
            view = (
                controller.projection.all_projects
                if include_archived
                else controller.projection.active_projects
            )
            return {"projects": [_project_payload(project) for project in view]}

    @app.post("/api/projects", status_code=201)
    def create_project(payload: ProjectPayload) -> Dict[str, Any]:
        try:
            project = controller.add_project(
                Project(title=payload.title, description=payload.description)
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _project_payload(project)

    @app.patch("/api/projects/{project_id}")
    def update_project(project_id: int, payload: ProjectUpdate) -> Dict[str, Any]:
        updates = payload.model_dump(exclude_unset=True, exclude_none=True)
        with controller.lock:
            project = _project(project_id)
            try:
                controller.update_project(project, **updates)
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
            return _project_payload(project)

    @app.delete("/api/projects/{project_id}", status_code=204)
    def delete_project(project_id: int) -> None:
        with controller.lock:
            controller.remove_project(_project(project_id))

    @app.post("/api/select")
    def select_project(payload: SelectPayload) -> Dict[str, Any]:
        with controller.lock:
            project = _project(payload.project_id) if payload.project_id is not None else None
            controller.change_project(project)
            return _status_payload(controller, monitor)

    @app.post("/api/start")
    def start(payload: TimestampPayload) -> Dict[str, Any]:
        with controller.lock:
            controller.start(payload.at)
            return _status_payload(controller, monitor)

    @app.post("/api/stop")
    def stop(payload: TimestampPayload) -> Dict[str, Any]:
        with controller.lock:
            recorded = controller.stop(payload.at)
            return {"activities": [_activity_payload(activity) for activity in recorded]}

    @app.put("/api/description")
    def set_description(payload: DescriptionPayload) -> Dict[str, Any]:
        with controller.lock:
            controller.set_description(payload.description)
            return _status_payload(controller, monitor)

    @app.get("/api/activities")
    def list_activities() -> Dict[str, Any]:
        with controller.lock:
            return {
                "filter": _filter_payload(controller.filter),
                "activities": [_activity_payload(activity) for activity in controller.activities],
            }

    @app.patch("/api/activities/{activity_id}")
    def update_activity(activity_id: int, payload: ActivityUpdate) -> Dict[str, Any]:
        updates = payload.model_dump(exclude_unset=True, exclude_none=True)
        with controller.lock:
            activity = _activity(activity_id)
            project_id = updates.pop("project_id", None)
            if project_id is not None:
                updates["project"] = _project(project_id)
            try:
                controller.update_activity(activity, **updates)
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
            return _activity_payload(activity)

    @app.delete("/api/activities/{activity_id}", status_code=204)
    def delete_activity(activity_id: int) -> None:
        with controller.lock:
            controller.remove_activity(_activity(activity_id))

    @app.put("/api/filter")
    def set_filter(payload: FilterPayload) -> Dict[str, Any]:
        new_filter = Filter(**payload.model_dump())
        controller.set_filter(None if new_filter.is_empty else new_filter)
        return list_activities()

    @app.post("/api/undo")
    def undo() -> Dict[str, Any]:
        with controller.lock:
            controller.undo()
            return _history_payload(controller)

    @app.post("/api/redo")
    def redo() -> Dict[str, Any]:
        with controller.lock:
            controller.redo()
            return _history_payload(controller)

    @app.post("/api/user-activity", status_code=204)
    def user_activity() -> None:
        controller.reset_user_inactivity()

    @app.get("/api/reports/{kind}")
    def report(kind: str) -> Dict[str, Any]:
        aggregate = REPORTS.get(kind)
        if aggregate is None:
            raise HTTPException(status_code=404, detail=f"Unknown report '{kind}'")
        with controller.lock:
            totals = aggregate(controller.activities)
        return {
            "kind": kind,
            "entries": [
                {"key": format_bucket(key), "seconds": totals[key].total_seconds()}
                for key in sorted(totals, key=bucket_sort_key)
            ],
        }

    return app


def _status_payload(
    controller: ActivityController, monitor: InactivityMonitor
) -> Dict[str, Any]:
    project = controller.selected_project
    elapsed = controller.elapsed
    return {
        "active": controller.active,
        "start": controller.start_time.isoformat() if controller.start_time else None,
        "elapsed_seconds": elapsed.total_seconds() if elapsed is not None else None,
        "selected_project": _project_payload(project) if project else None,
        "description": controller.description,
        "user_inactive": controller.user_inactive,
        "monitor_running": monitor.is_running(),
        **_history_payload(controller),
    }


def _history_payload(controller: ActivityController) -> Dict[str, Any]:
    history = controller.history
    return {"undo": history.undo_text, "redo": history.redo_text}


def _project_payload(project: Project) -> Dict[str, Any]:
    return {
        "id": project.id,
        "title": project.title,
        "description": project.description,
        "active": project.active,
    }


def _activity_payload(activity: Activity) -> Dict[str, Any]:
    return {
        "id": activity.id,
        "start": activity.start.isoformat(),
        "end": activity.end.isoformat(),
        "project_id": activity.project.id,
        "project": activity.project.title,
        "description": activity.description,
        "duration_seconds": activity.duration_seconds,
    }


def _filter_payload(filter: Optional[Filter]) -> Optional[Dict[str, Any]]:
    return filter.to_record() if filter else None
