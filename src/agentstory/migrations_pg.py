from __future__ import annotations

import logging

from .utils import utc_now_iso


def apply_migrations_pg(conn) -> None:
    logger = logging.getLogger("agentstory.migrations")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
        """
    )
    applied = {
        row[0]
        for row in conn.execute("SELECT version FROM schema_migrations").fetchall()
    }
    try:
        if "pg_bootstrap_001" not in applied:
            _bootstrap_schema(conn)
            conn.execute(
                "INSERT INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                ("pg_bootstrap_001", utc_now_iso()),
            )
            logger.info("migration_applied version=pg_bootstrap_001")
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def _bootstrap_schema(conn) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS agent_stories (
            id BIGSERIAL PRIMARY KEY,
            emiten TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            matriks_story TEXT NULL,
            swot_analysis TEXT NULL,
            checklist_katalis TEXT NULL,
            strategi_trading TEXT NULL,
            keystat_signal TEXT NULL,
            kesimpulan TEXT NULL,
            sources TEXT NULL,
            error_message TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_agent_stories_emiten ON agent_stories(emiten, created_at)"
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS background_job_logs (
            id BIGSERIAL PRIMARY KEY,
            job_name TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'running',
            total_items INTEGER NOT NULL DEFAULT 0,
            success_count INTEGER NOT NULL DEFAULT 0,
            error_count INTEGER NOT NULL DEFAULT 0,
            log_entries TEXT NOT NULL DEFAULT '[]',
            error_message TEXT NULL,
            metadata TEXT NULL,
            started_at TEXT NOT NULL,
            completed_at TEXT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_background_job_logs_started ON background_job_logs(started_at)"
    )
