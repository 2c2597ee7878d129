import copy

import pytest

from agentstory.config import (
    CONFIG_KEY,
    DEFAULT_CONFIG,
    ConfigError,
    bootstrap_runtime_config,
    get_api_key,
    get_runtime_config,
    load_runtime_config,
    set_runtime_config,
)
from agentstory.storage import set_setting


def test_bootstrap_creates_runtime_config(conn):
    cfg = bootstrap_runtime_config(conn)
    assert cfg == DEFAULT_CONFIG


def test_get_runtime_config_after_set(conn):
    custom = copy.deepcopy(DEFAULT_CONFIG)
    custom["llm"]["model"] = "gemini-2.5-pro"
    set_runtime_config(conn, custom)
    cfg = get_runtime_config(conn)
    assert cfg["llm"]["model"] == "gemini-2.5-pro"


def test_set_runtime_config_rejects_missing_sections(conn):
    with pytest.raises(ConfigError) as excinfo:
        set_runtime_config(conn, {"app": {"name": "Bad"}})
    assert "Invalid config.runtime" in str(excinfo.value)
    assert "missing config.runtime.llm" in str(excinfo.value)


def test_set_runtime_config_rejects_unknown_keys_and_types(conn):
    custom = copy.deepcopy(DEFAULT_CONFIG)
    custom["llm"]["temperature"] = 0.2
    custom["llm"]["web_search"] = "yes"
    custom["story"]["raw_preview_chars"] = True
    with pytest.raises(ConfigError) as excinfo:
        set_runtime_config(conn, custom)
    message = str(excinfo.value)
    assert "unknown config.runtime.llm.temperature" in message
    assert "config.runtime.llm.web_search must be a boolean" in message
    assert "config.runtime.story.raw_preview_chars must be an integer" in message


def test_set_runtime_config_rejects_bad_ranges(conn):
    custom = copy.deepcopy(DEFAULT_CONFIG)
    custom["llm"]["timeout_seconds"] = 0
    with pytest.raises(ConfigError, match="timeout_seconds must be > 0"):
        set_runtime_config(conn, custom)


def test_stored_invalid_config_is_reported(conn):
    set_setting(conn, CONFIG_KEY, {"app": {}})
    with pytest.raises(ConfigError):
        load_runtime_config(conn)


def test_load_runtime_config_builds_typed_config(conn):
    config = load_runtime_config(conn)
    assert config.app.timezone == "Asia/Jakarta"
    assert config.llm.model == "gemini-3-flash-preview"
    assert config.llm.thinking_level == "HIGH"
    assert config.llm.web_search is True
    assert config.llm.timeout_seconds == 600
    assert config.story.raw_preview_chars == 500
    assert config.story.default_source_title == "Sumber Berita"


def test_get_api_key_reads_environment(monkeypatch):
    assert get_api_key() is None
    monkeypatch.setenv("GEMINI_API_KEY", "  ")
    assert get_api_key() is None
    monkeypatch.setenv("GEMINI_API_KEY", "abc123")
    assert get_api_key() == "abc123"
