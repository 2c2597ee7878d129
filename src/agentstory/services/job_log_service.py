from __future__ import annotations

import logging
from typing import Any

from ..models import JOB_LOG_COMPLETED, JOB_LOG_FAILED
from ..storage import (
    append_background_job_log_entry,
    create_background_job_log,
    update_background_job_log,
)
from ..utils import log_event


class BackgroundJobLogger:
    """Diagnostic trail for one background job.

    Every method swallows its own failures after logging them locally; callers
    never see an exception from here. ``job_id`` stays ``None`` until creation
    succeeds, and later calls become no-ops while it is unset.
    """

    def __init__(self, conn: Any, job_name: str, logger: logging.Logger) -> None:
        self._conn = conn
        self.job_name = job_name
        self.job_id: int | None = None
        self._logger = logger

    def start(self, total_items: int) -> int | None:
        try:
            created = create_background_job_log(self._conn, self.job_name, total_items)
            self.job_id = int(created["id"])
        except Exception as exc:  # noqa: BLE001
            self._rollback()
            log_event(
                self._logger,
                logging.ERROR,
                "job_log_create_failed",
                job_name=self.job_name,
                error=str(exc),
            )
            return None
        return self.job_id

    def append(
        self,
        level: str,
        message: str,
        emiten: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        if self.job_id is None:
            return
        entry: dict[str, object] = {"level": level, "message": message, "emiten": emiten}
        if details is not None:
            entry["details"] = details
        try:
            append_background_job_log_entry(self._conn, self.job_id, entry)
        except Exception as exc:  # noqa: BLE001
            self._rollback()
            log_event(
                self._logger,
                logging.ERROR,
                "job_log_append_failed",
                job_log_id=self.job_id,
                error=str(exc),
            )

    def complete(self, success_count: int, metadata: dict[str, object] | None = None) -> None:
        self._close(
            {
                "status": JOB_LOG_COMPLETED,
                "success_count": success_count,
                "metadata": metadata,
            }
        )

    def fail(self, error_message: str) -> None:
        self._close(
            {
                "status": JOB_LOG_FAILED,
                "error_count": 1,
                "error_message": error_message,
            }
        )

    def _close(self, updates: dict[str, object]) -> None:
        if self.job_id is None:
            return
        try:
            update_background_job_log(self._conn, self.job_id, updates)
        except Exception as exc:  # noqa: BLE001
            self._rollback()
            log_event(
                self._logger,
                logging.ERROR,
                "job_log_close_failed",
                job_log_id=self.job_id,
                status=updates.get("status"),
                error=str(exc),
            )

    def _rollback(self) -> None:
        try:
            self._conn.rollback()
        except Exception as exc:  # noqa: BLE001
            log_event(self._logger, logging.WARNING, "rollback_failed", error=str(exc))
