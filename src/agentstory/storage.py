from __future__ import annotations

import json
from typing import Any

from .db import connect_db, get_state_db_path
from .models import (
    JOB_LOG_COMPLETED,
    JOB_LOG_FAILED,
    JOB_LOG_RUNNING,
    STORY_PENDING,
    STORY_STATUSES,
    AgentStory,
    BackgroundJobLog,
)
from .utils import json_dumps, json_loads_or, utc_now_iso

STORY_JSON_FIELDS = (
    "matriks_story",
    "swot_analysis",
    "checklist_katalis",
    "strategi_trading",
    "sources",
)
STORY_TEXT_FIELDS = ("status", "keystat_signal", "kesimpulan", "error_message")

_STORY_COLUMNS = """
    id, emiten, status, matriks_story, swot_analysis, checklist_katalis,
    strategi_trading, keystat_signal, kesimpulan, sources, error_message,
    created_at, updated_at
"""

_JOB_LOG_COLUMNS = """
    id, job_name, status, total_items, success_count, error_count, log_entries,
    error_message, metadata, started_at, completed_at
"""


def init_db(path: str | None = None):
    return connect_db(path or get_state_db_path())


def get_setting(conn: Any, key: str, default: object) -> object:
    cursor = conn.execute("SELECT value FROM settings WHERE key = ?", (key,))
    row = cursor.fetchone()
    if not row:
        return default
    try:
        return json.loads(row[0])
    except json.JSONDecodeError:
        return default


def set_setting(conn: Any, key: str, value: object) -> None:
    payload = json_dumps(value)
    now = utc_now_iso()
    conn.execute(
        """
        INSERT INTO settings (key, value, updated_at)
        VALUES (?, ?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
        """,
        (key, payload, now),
    )
    conn.commit()


def create_agent_story(conn: Any, emiten: str) -> AgentStory:
    emiten = emiten.strip().upper()
    if not emiten:
        raise ValueError("emiten is required")
    now = utc_now_iso()
    cursor = conn.execute(
        """
        INSERT INTO agent_stories (emiten, status, created_at, updated_at)
        VALUES (?, ?, ?, ?)
        RETURNING id
        """,
        (emiten, STORY_PENDING, now, now),
    )
    story_id = int(cursor.fetchall()[0][0])
    conn.commit()
    story = get_agent_story(conn, story_id)
    if story is None:
        raise ValueError("story_not_found")
    return story


def get_agent_story(conn: Any, story_id: int) -> AgentStory | None:
    cursor = conn.execute(
        f"SELECT {_STORY_COLUMNS} FROM agent_stories WHERE id = ?",
        (story_id,),
    )
    row = cursor.fetchone()
    if not row:
        return None
    return _row_to_story(row)


def list_agent_stories(
    conn: Any, emiten: str | None = None, limit: int = 20
) -> list[AgentStory]:
    if emiten:
        cursor = conn.execute(
            f"""
            SELECT {_STORY_COLUMNS}
            FROM agent_stories
            WHERE emiten = ?
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            (emiten.strip().upper(), limit),
        )
    else:
        cursor = conn.execute(
            f"""
            SELECT {_STORY_COLUMNS}
            FROM agent_stories
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            (limit,),
        )
    return [_row_to_story(row) for row in cursor.fetchall()]


def update_agent_story(conn: Any, story_id: int, fields: dict[str, object]) -> bool:
    """Overwrite the given columns of one story row in a single statement.

    Structured analysis fields are stored as JSON text. Unknown field names are
    rejected before anything is written.
    """
    if not fields:
        raise ValueError("no_story_fields")
    assignments: list[str] = []
    params: list[object] = []
    for key, value in fields.items():
        if key in STORY_JSON_FIELDS:
            params.append(json_dumps(value))
        elif key in STORY_TEXT_FIELDS:
            if value is None or isinstance(value, str):
                params.append(value)
            else:
                params.append(json_dumps(value))
        else:
            raise ValueError(f"unknown_story_field: {key}")
        assignments.append(f"{key} = ?")
    if "status" in fields and fields["status"] not in STORY_STATUSES:
        raise ValueError(f"invalid_story_status: {fields['status']}")
    assignments.append("updated_at = ?")
    params.append(utc_now_iso())
    params.append(story_id)
    cursor = conn.execute(
        f"UPDATE agent_stories SET {', '.join(assignments)} WHERE id = ?",
        tuple(params),
    )
    conn.commit()
    return cursor.rowcount == 1


def create_background_job_log(
    conn: Any, job_name: str, total_items: int
) -> dict[str, object]:
    cursor = conn.execute(
        """
        INSERT INTO background_job_logs
            (job_name, status, total_items, success_count, error_count, log_entries,
             started_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        RETURNING id
        """,
        (job_name, JOB_LOG_RUNNING, int(total_items), 0, 0, "[]", utc_now_iso()),
    )
    job_id = int(cursor.fetchall()[0][0])
    conn.commit()
    return {"id": job_id, "job_name": job_name, "status": JOB_LOG_RUNNING}


def append_background_job_log_entry(
    conn: Any, job_id: int, entry: dict[str, object]
) -> None:
    cursor = conn.execute(
        "SELECT log_entries FROM background_job_logs WHERE id = ?", (job_id,)
    )
    row = cursor.fetchone()
    if not row:
        raise ValueError("job_log_not_found")
    entries = json_loads_or(row[0], [])
    record: dict[str, object] = {
        "timestamp": utc_now_iso(),
        "level": str(entry.get("level") or "info"),
        "message": str(entry.get("message") or ""),
    }
    if entry.get("emiten"):
        record["emiten"] = entry["emiten"]
    if entry.get("details") is not None:
        record["details"] = entry["details"]
    entries.append(record)
    conn.execute(
        "UPDATE background_job_logs SET log_entries = ? WHERE id = ?",
        (json_dumps(entries), job_id),
    )
    conn.commit()


def update_background_job_log(
    conn: Any, job_id: int, updates: dict[str, object]
) -> bool:
    assignments: list[str] = []
    params: list[object] = []
    status = updates.get("status")
    if status is not None:
        assignments.append("status = ?")
        params.append(str(status))
        if status in (JOB_LOG_COMPLETED, JOB_LOG_FAILED):
            assignments.append("completed_at = ?")
            params.append(utc_now_iso())
    for key in ("success_count", "error_count"):
        if updates.get(key) is not None:
            assignments.append(f"{key} = ?")
            params.append(int(updates[key]))
    if "error_message" in updates:
        assignments.append("error_message = ?")
        params.append(updates["error_message"])
    if updates.get("metadata") is not None:
        assignments.append("metadata = ?")
        params.append(json_dumps(updates["metadata"]))
    if not assignments:
        return False
    params.append(job_id)
    cursor = conn.execute(
        f"UPDATE background_job_logs SET {', '.join(assignments)} WHERE id = ?",
        tuple(params),
    )
    conn.commit()
    return cursor.rowcount == 1


def get_background_job_log(conn: Any, job_id: int) -> BackgroundJobLog | None:
    cursor = conn.execute(
        f"SELECT {_JOB_LOG_COLUMNS} FROM background_job_logs WHERE id = ?",
        (job_id,),
    )
    row = cursor.fetchone()
    if not row:
        return None
    return _row_to_job_log(row)


def list_background_job_logs(
    conn: Any, job_name: str | None = None, limit: int = 20
) -> list[BackgroundJobLog]:
    if job_name:
        cursor = conn.execute(
            f"""
            SELECT {_JOB_LOG_COLUMNS}
            FROM background_job_logs
            WHERE job_name = ?
            ORDER BY started_at DESC, id DESC
            LIMIT ?
            """,
            (job_name, limit),
        )
    else:
        cursor = conn.execute(
            f"""
            SELECT {_JOB_LOG_COLUMNS}
            FROM background_job_logs
            ORDER BY started_at DESC, id DESC
            LIMIT ?
            """,
            (limit,),
        )
    return [_row_to_job_log(row) for row in cursor.fetchall()]


def _row_to_story(row: tuple) -> AgentStory:
    (
        story_id,
        emiten,
        status,
        matriks_story,
        swot_analysis,
        checklist_katalis,
        strategi_trading,
        keystat_signal,
        kesimpulan,
        sources,
        error_message,
        created_at,
        updated_at,
    ) = row
    return AgentStory(
        id=int(story_id),
        emiten=emiten,
        status=status,
        matriks_story=json_loads_or(matriks_story, []),
        swot_analysis=json_loads_or(swot_analysis, {}),
        checklist_katalis=json_loads_or(checklist_katalis, []),
        strategi_trading=json_loads_or(strategi_trading, {}),
        keystat_signal=keystat_signal,
        kesimpulan=kesimpulan,
        sources=json_loads_or(sources, []),
        error_message=error_message,
        created_at=created_at,
        updated_at=updated_at,
    )


def _row_to_job_log(row: tuple) -> BackgroundJobLog:
    (
        job_id,
        job_name,
        status,
        total_items,
        success_count,
        error_count,
        log_entries,
        error_message,
        metadata,
        started_at,
        completed_at,
    ) = row
    return BackgroundJobLog(
        id=int(job_id),
        job_name=job_name,
        status=status,
        total_items=int(total_items or 0),
        success_count=int(success_count or 0),
        error_count=int(error_count or 0),
        log_entries=json_loads_or(log_entries, []),
        error_message=error_message,
        metadata=json_loads_or(metadata, None),
        started_at=started_at,
        completed_at=completed_at,
    )
