from __future__ import annotations

from dataclasses import asdict
from typing import Any

from ..storage import (
    create_agent_story,
    get_agent_story,
    get_background_job_log,
    list_agent_stories,
    list_background_job_logs,
)


def create_story(conn: Any, payload: dict[str, Any]) -> dict[str, Any]:
    emiten = str(payload.get("emiten") or "").strip()
    if not emiten:
        raise ValueError("emiten is required")
    return asdict(create_agent_story(conn, emiten))


def get_story(conn: Any, story_id: int) -> dict[str, Any] | None:
    story = get_agent_story(conn, story_id)
    return asdict(story) if story else None


def list_stories(conn: Any, emiten: str | None = None, limit: int = 20) -> list[dict[str, Any]]:
    limit = _clamp_limit(limit)
    return [asdict(story) for story in list_agent_stories(conn, emiten=emiten, limit=limit)]


def latest_story(conn: Any, emiten: str) -> dict[str, Any] | None:
    stories = list_agent_stories(conn, emiten=emiten, limit=1)
    return asdict(stories[0]) if stories else None


def get_job_log(conn: Any, job_id: int) -> dict[str, Any] | None:
    job_log = get_background_job_log(conn, job_id)
    return asdict(job_log) if job_log else None


def list_job_logs(
    conn: Any, job_name: str | None = None, limit: int = 20
) -> list[dict[str, Any]]:
    limit = _clamp_limit(limit)
    return [asdict(item) for item in list_background_job_logs(conn, job_name=job_name, limit=limit)]


def _clamp_limit(limit: int) -> int:
    return max(1, min(int(limit), 200))
