from __future__ import annotations

import pytest

from agentstory.config import load_runtime_config
from agentstory.storage import init_db


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    monkeypatch.delenv("AS_DB_URL", raising=False)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("AS_ADMIN_TOKEN", raising=False)
    monkeypatch.setenv("AS_DATA_DIR", str(tmp_path / "data"))


@pytest.fixture
def conn(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    yield conn
    conn.close()


@pytest.fixture
def config(conn):
    return load_runtime_config(conn)
