from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import (
    ConfigError,
    bootstrap_runtime_config,
    get_runtime_config,
    get_state_db_path,
    set_runtime_config,
)
from .services.story_service import (
    create_story,
    get_job_log,
    get_story,
    latest_story,
    list_job_logs,
    list_stories,
)
from .storage import init_db
from .utils import configure_logging, log_event
from .worker import run_story_job

app = FastAPI(title="AgentStory API")


def _require_admin_token(request: Request) -> None:
    token = os.environ.get("AS_ADMIN_TOKEN")
    if not token:
        return
    header = request.headers.get("X-Admin-Token")
    if header != token:
        raise HTTPException(status_code=401, detail="unauthorized")


class StoryRequest(BaseModel):
    emiten: str | None = None
    key_stats: Any = None
    run: bool = True


class RuntimeConfigRequest(BaseModel):
    config: dict


@app.get("/")
def root() -> dict[str, str]:
    return {"service": "AgentStory API"}


@app.get("/health")
def health() -> dict[str, object]:
    return {
        "ok": True,
        "version": _get_version(),
        "time": datetime.now(tz=timezone.utc).isoformat(),
    }


@app.on_event("startup")
def _startup() -> None:
    logger = logging.getLogger("agentstory.api")
    try:
        conn = _get_conn()
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return
    conn.close()


@app.post("/analyze-story")
async def analyze_story_trigger(
    request: Request,
    emiten: str | None = None,
    story_id: str | None = Query(default=None, alias="id"),
) -> JSONResponse:
    body = await request.body()
    result = await run_in_threadpool(run_story_job, emiten, story_id, body)
    return JSONResponse(result.body, status_code=result.status_code)


@app.post("/stories")
def stories_create(payload: StoryRequest, background_tasks: BackgroundTasks) -> dict[str, object]:
    logger = logging.getLogger("agentstory.api")
    conn = _get_conn()
    try:
        story = create_story(conn, {"emiten": payload.emiten})
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    finally:
        conn.close()
    if payload.run:
        body = {"keyStats": payload.key_stats} if payload.key_stats is not None else None
        background_tasks.add_task(run_story_job, story["emiten"], story["id"], body)
        log_event(
            logger,
            logging.INFO,
            "story_scheduled",
            story_id=story["id"],
            emiten=story["emiten"],
        )
    return {"id": story["id"], "emiten": story["emiten"], "status": story["status"]}


@app.get("/stories")
def stories_list(emiten: str | None = None, limit: int = 20) -> list[dict[str, object]]:
    conn = _get_conn()
    try:
        return list_stories(conn, emiten=emiten, limit=limit)
    finally:
        conn.close()


@app.get("/stories/latest")
def stories_latest(emiten: str) -> dict[str, object]:
    conn = _get_conn()
    try:
        story = latest_story(conn, emiten)
    finally:
        conn.close()
    if not story:
        raise HTTPException(status_code=404, detail="story_not_found")
    return story


@app.get("/stories/{story_id}")
def stories_read(story_id: int) -> dict[str, object]:
    conn = _get_conn()
    try:
        story = get_story(conn, story_id)
    finally:
        conn.close()
    if not story:
        raise HTTPException(status_code=404, detail="story_not_found")
    return story


@app.get("/jobs/logs")
def job_logs_list(job_name: str | None = None, limit: int = 20) -> list[dict[str, object]]:
    conn = _get_conn()
    try:
        return list_job_logs(conn, job_name=job_name, limit=limit)
    finally:
        conn.close()


@app.get("/jobs/logs/{job_id}")
def job_logs_read(job_id: int) -> dict[str, object]:
    conn = _get_conn()
    try:
        job_log = get_job_log(conn, job_id)
    finally:
        conn.close()
    if not job_log:
        raise HTTPException(status_code=404, detail="job_log_not_found")
    return job_log


@app.get("/admin/config/runtime", dependencies=[Depends(_require_admin_token)])
def runtime_config_get() -> dict[str, object]:
    conn = _get_conn()
    try:
        cfg = get_runtime_config(conn)
    except ConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    finally:
        conn.close()
    return {"config": cfg}


@app.put("/admin/config/runtime", dependencies=[Depends(_require_admin_token)])
def runtime_config_set(payload: RuntimeConfigRequest) -> dict[str, object]:
    conn = _get_conn()
    try:
        set_runtime_config(conn, payload.config)
    except ConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    finally:
        conn.close()
    return {"status": "ok"}


def _setup_logging() -> None:
    configure_logging("agentstory.api")


_setup_logging()


def _get_version() -> str:
    try:
        from importlib.metadata import version

        return version("agentstory")
    except Exception:  # noqa: BLE001
        return "unknown"


def _get_conn():
    conn = init_db(get_state_db_path())
    bootstrap_runtime_config(conn)
    return conn
