from __future__ import annotations

import logging
from typing import Any

from .config import ConfigError, get_api_key, load_runtime_config
from .models import STORY_ERROR
from .pipelines.story_analysis import (
    MISSING_PARAMS_ERROR,
    StoryJobResult,
    analyze_story,
    normalize_emiten,
    parse_story_id,
)
from .storage import init_db, update_agent_story
from .utils import log_event


def run_story_job(
    emiten: str | None,
    story_id: str | int | None,
    body: Any = None,
    *,
    db_path: str | None = None,
) -> StoryJobResult:
    """Open a connection, load runtime config and run one story analysis.

    Never raises: invalid input is a 400 result, and an unreachable store or
    unusable runtime config is a 500 result carrying the error text.
    """
    logger = logging.getLogger("agentstory.worker")
    symbol = normalize_emiten(emiten)
    record_id = parse_story_id(story_id)
    if not symbol or record_id is None:
        log_event(
            logger,
            logging.WARNING,
            "story_rejected",
            emiten=emiten or "",
            story_id=story_id or "",
        )
        return StoryJobResult(400, {"error": MISSING_PARAMS_ERROR})

    try:
        conn = init_db(db_path)
    except Exception as exc:  # noqa: BLE001
        log_event(
            logger,
            logging.ERROR,
            "story_store_unavailable",
            emiten=symbol,
            story_id=record_id,
            error=str(exc),
        )
        return StoryJobResult(500, {"error": str(exc)})

    try:
        try:
            config = load_runtime_config(conn)
        except ConfigError as exc:
            log_event(logger, logging.ERROR, "config_error", error=str(exc))
            return _fail_without_config(conn, record_id, str(exc), logger)
        except Exception as exc:  # noqa: BLE001
            log_event(logger, logging.ERROR, "config_load_failed", error=str(exc))
            return _fail_without_config(conn, record_id, str(exc), logger)
        return analyze_story(
            conn,
            config,
            symbol,
            record_id,
            body,
            api_key=get_api_key(),
            logger=logger,
        )
    finally:
        _close(conn, logger)


def _fail_without_config(
    conn: Any, record_id: int, error: str, logger: logging.Logger
) -> StoryJobResult:
    try:
        conn.rollback()
        update_agent_story(conn, record_id, {"status": STORY_ERROR, "error_message": error})
    except Exception as exc:  # noqa: BLE001
        log_event(
            logger,
            logging.ERROR,
            "story_error_write_failed",
            story_id=record_id,
            error=str(exc),
        )
    return StoryJobResult(500, {"error": error})


def _close(conn: Any, logger: logging.Logger) -> None:
    try:
        conn.close()
    except Exception as exc:  # noqa: BLE001
        log_event(logger, logging.WARNING, "db_close_failed", error=str(exc))
