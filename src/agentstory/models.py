from __future__ import annotations

from dataclasses import dataclass

STORY_PENDING = "pending"
STORY_PROCESSING = "processing"
STORY_COMPLETED = "completed"
STORY_ERROR = "error"
STORY_STATUSES = (STORY_PENDING, STORY_PROCESSING, STORY_COMPLETED, STORY_ERROR)

JOB_LOG_RUNNING = "running"
JOB_LOG_COMPLETED = "completed"
JOB_LOG_FAILED = "failed"


@dataclass(frozen=True)
class AgentStory:
    id: int
    emiten: str
    status: str
    matriks_story: list[dict[str, object]]
    swot_analysis: dict[str, object]
    checklist_katalis: list[dict[str, object]]
    strategi_trading: dict[str, object]
    keystat_signal: str | None
    kesimpulan: str | None
    sources: list[dict[str, str]]
    error_message: str | None
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class BackgroundJobLog:
    id: int
    job_name: str
    status: str
    total_items: int
    success_count: int
    error_count: int
    log_entries: list[dict[str, object]]
    error_message: str | None
    metadata: dict[str, object] | None
    started_at: str
    completed_at: str | None
