from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any

from .db import get_state_db_path
from .storage import get_setting, set_setting

API_KEY_ENV = "GEMINI_API_KEY"


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class AppConfig:
    name: str
    timezone: str


@dataclass(frozen=True)
class LlmConfig:
    model: str
    base_url: str
    timeout_seconds: int
    thinking_level: str
    web_search: bool


@dataclass(frozen=True)
class StoryConfig:
    raw_preview_chars: int
    default_source_title: str


@dataclass(frozen=True)
class Config:
    app: AppConfig
    llm: LlmConfig
    story: StoryConfig


DEFAULT_CONFIG: dict[str, Any] = {
    "app": {
        "name": "AgentStory",
        "timezone": "Asia/Jakarta",
    },
    "llm": {
        "model": "gemini-3-flash-preview",
        "base_url": "https://generativelanguage.googleapis.com/v1beta",
        "timeout_seconds": 600,
        "thinking_level": "HIGH",
        "web_search": True,
    },
    "story": {
        "raw_preview_chars": 500,
        "default_source_title": "Sumber Berita",
    },
}

CONFIG_KEY = "config.runtime"


def get_api_key() -> str | None:
    value = os.environ.get(API_KEY_ENV, "").strip()
    return value or None


def bootstrap_runtime_config(conn) -> dict[str, Any]:
    cfg = get_setting(conn, CONFIG_KEY, None)
    if cfg is None:
        set_setting(conn, CONFIG_KEY, _deep_copy(DEFAULT_CONFIG))
        cfg = get_setting(conn, CONFIG_KEY, None)
    if not isinstance(cfg, dict):
        raise ConfigError("config.runtime must be a JSON object")
    return cfg


def get_runtime_config(conn) -> dict[str, Any]:
    cfg = bootstrap_runtime_config(conn)
    errors = validate_runtime_config(cfg)
    if errors:
        raise ConfigError("Invalid config.runtime: " + "; ".join(errors))
    return cfg


def set_runtime_config(conn, cfg: dict[str, Any]) -> None:
    errors = validate_runtime_config(cfg)
    if errors:
        raise ConfigError("Invalid config.runtime: " + "; ".join(errors))
    set_setting(conn, CONFIG_KEY, _deep_copy(cfg))


def load_runtime_config(conn) -> Config:
    cfg = get_runtime_config(conn)
    return _build_config(cfg)


def validate_runtime_config(cfg: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    _validate_dict(cfg, DEFAULT_CONFIG, "config.runtime", errors)
    if not errors and int(cfg["story"]["raw_preview_chars"]) < 0:
        errors.append("config.runtime.story.raw_preview_chars must be >= 0")
    if not errors and int(cfg["llm"]["timeout_seconds"]) <= 0:
        errors.append("config.runtime.llm.timeout_seconds must be > 0")
    return errors


def _validate_dict(value: dict[str, Any], schema: dict[str, Any], path: str, errors: list[str]) -> None:
    if not isinstance(value, dict):
        errors.append(f"{path} must be an object")
        return
    for key in schema.keys():
        if key not in value:
            errors.append(f"missing {path}.{key}")
    for key in value.keys():
        if key not in schema:
            errors.append(f"unknown {path}.{key}")
    for key, default in schema.items():
        if key not in value:
            continue
        _validate_value(value[key], default, f"{path}.{key}", errors)


def _validate_value(value: Any, default: Any, path: str, errors: list[str]) -> None:
    if isinstance(default, dict):
        if not isinstance(value, dict):
            errors.append(f"{path} must be an object")
            return
        _validate_dict(value, default, path, errors)
        return
    if isinstance(default, bool):
        if not isinstance(value, bool):
            errors.append(f"{path} must be a boolean")
        return
    if isinstance(default, int):
        if not isinstance(value, int) or isinstance(value, bool):
            errors.append(f"{path} must be an integer")
        return
    if isinstance(default, str):
        if not isinstance(value, str):
            errors.append(f"{path} must be a string")
        return


def _build_config(cfg: dict[str, Any]) -> Config:
    app_cfg = cfg.get("app") or {}
    llm_cfg = cfg.get("llm") or {}
    story_cfg = cfg.get("story") or {}

    app = AppConfig(
        name=str(app_cfg.get("name")),
        timezone=str(app_cfg.get("timezone")),
    )

    llm = LlmConfig(
        model=str(llm_cfg.get("model")),
        base_url=str(llm_cfg.get("base_url")),
        timeout_seconds=int(llm_cfg.get("timeout_seconds")),
        thinking_level=str(llm_cfg.get("thinking_level")),
        web_search=bool(llm_cfg.get("web_search")),
    )

    story = StoryConfig(
        raw_preview_chars=int(story_cfg.get("raw_preview_chars")),
        default_source_title=str(story_cfg.get("default_source_title")),
    )

    return Config(app=app, llm=llm, story=story)


def _deep_copy(value: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(value))
