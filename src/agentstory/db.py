from __future__ import annotations

import os
import sqlite3
from typing import Any

from .migrations import apply_migrations
from .migrations_pg import apply_migrations_pg

DEFAULT_DATA_DIR = "/data"

_MIGRATED: set[str] = set()


def get_db_url() -> str | None:
    url = os.environ.get("AS_DB_URL", "").strip()
    return url or None


def is_postgres_url(url: str | None) -> bool:
    if not url:
        return False
    return url.startswith("postgres://") or url.startswith("postgresql://")


class DBConn:
    def __init__(self, conn: Any, backend: str) -> None:
        self._conn = conn
        self.backend = backend

    def execute(self, sql: str, params: tuple | list | None = None):
        sql = _normalize_sql(sql, self.backend)
        params = params or ()
        cursor = self._conn.cursor()
        cursor.execute(sql, params)
        return cursor

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()

    def __getattr__(self, name: str):
        return getattr(self._conn, name)


def connect_db(path: str) -> DBConn:
    url = get_db_url()
    if url and is_postgres_url(url):
        try:
            import psycopg
        except ImportError as exc:  # pragma: no cover - depends on env
            raise RuntimeError("psycopg is required for PostgreSQL support") from exc
        raw = psycopg.connect(url)
        conn = DBConn(raw, "postgres")
        if url not in _MIGRATED:
            apply_migrations_pg(conn)
            _MIGRATED.add(url)
        return conn

    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    raw = sqlite3.connect(path)
    raw.execute("PRAGMA journal_mode=WAL")
    raw.execute("PRAGMA synchronous=NORMAL")
    raw.execute("PRAGMA busy_timeout=5000")
    key = os.path.abspath(path)
    if key not in _MIGRATED or not _has_schema(raw):
        apply_migrations(raw)
        _MIGRATED.add(key)
    return DBConn(raw, "sqlite")


def _has_schema(raw: sqlite3.Connection) -> bool:
    row = raw.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_migrations'"
    ).fetchone()
    return row is not None


def _normalize_sql(sql: str, backend: str) -> str:
    if backend != "postgres":
        return sql
    return _convert_qmark_to_percent(sql)


def _convert_qmark_to_percent(sql: str) -> str:
    out = []
    in_single = False
    in_double = False
    escape = False
    for ch in sql:
        if ch == "\\" and not escape:
            escape = True
            out.append(ch)
            continue
        if ch == "'" and not in_double and not escape:
            in_single = not in_single
        elif ch == '"' and not in_single and not escape:
            in_double = not in_double
        if ch == "?" and not in_single and not in_double:
            out.append("%s")
        else:
            out.append(ch)
        escape = False
    return "".join(out)


def get_state_db_path() -> str:
    data_dir = os.environ.get("AS_DATA_DIR", DEFAULT_DATA_DIR)
    return os.path.join(data_dir, "state.sqlite3")
