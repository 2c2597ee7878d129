from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from typing import Any

from ..utils import log_event

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class GeminiError(ValueError):
    pass


@dataclass(frozen=True)
class GroundedAnswer:
    text: str
    grounding_chunks: list[dict[str, Any]] = field(default_factory=list)
    grounding_supports: list[dict[str, Any]] = field(default_factory=list)
    web_search_queries: list[str] = field(default_factory=list)


def generate_grounded_answer(
    prompt: str,
    *,
    api_key: str,
    model: str,
    base_url: str | None = None,
    timeout_seconds: int = 600,
    thinking_level: str | None = "HIGH",
    web_search: bool = True,
    logger: logging.Logger | None = None,
) -> GroundedAnswer:
    """Issue one ``generateContent`` call and return its text plus grounding data.

    The request enables the Google Search tool when ``web_search`` is set so the
    answer carries citation metadata. There is no retry: transport and HTTP
    failures surface as ``GeminiError``.
    """
    logger = logger or logging.getLogger("agentstory.llm")
    path = _join_url(
        base_url or DEFAULT_BASE_URL,
        f"/models/{urllib.parse.quote(model)}:generateContent",
    )
    path = _append_key(path, api_key)
    payload = build_request_payload(prompt, thinking_level=thinking_level, web_search=web_search)
    log_event(
        logger,
        logging.INFO,
        "llm_request",
        model=model,
        prompt_chars=len(prompt),
        web_search=web_search,
        thinking_level=thinking_level or "default",
    )
    response = _http_request("POST", path, {}, payload, timeout_seconds)
    if not response.get("candidates"):
        feedback = response.get("promptFeedback") or {}
        log_event(
            logger,
            logging.WARNING,
            "llm_no_candidates",
            model=model,
            block_reason=feedback.get("blockReason") or "none",
        )
    return read_grounded_answer(response)


def build_request_payload(
    prompt: str, *, thinking_level: str | None, web_search: bool
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "contents": [{"role": "user", "parts": [{"text": prompt}]}],
    }
    if web_search:
        payload["tools"] = [{"googleSearch": {}}]
    if thinking_level:
        payload["generationConfig"] = {
            "thinkingConfig": {"thinkingLevel": thinking_level.upper()},
        }
    return payload


def read_grounded_answer(response: dict[str, Any]) -> GroundedAnswer:
    """Collect answer text and grounding metadata from a generateContent response.

    A response without candidates (a blocked prompt, for one) yields empty text.
    """
    candidates = response.get("candidates") or []
    if not candidates:
        return GroundedAnswer(text="")
    candidate = candidates[0] or {}
    parts = (candidate.get("content") or {}).get("parts") or []
    # thought summaries come back as parts flagged with "thought"
    text = "".join(
        part.get("text") or ""
        for part in parts
        if isinstance(part, dict) and not part.get("thought")
    )
    metadata = candidate.get("groundingMetadata") or response.get("groundingMetadata") or {}
    return GroundedAnswer(
        text=text,
        grounding_chunks=list(metadata.get("groundingChunks") or []),
        grounding_supports=list(metadata.get("groundingSupports") or []),
        web_search_queries=list(metadata.get("webSearchQueries") or []),
    )


def _http_request(
    method: str,
    url: str,
    headers: dict[str, str],
    payload: dict[str, Any] | None,
    timeout_seconds: int,
) -> dict[str, Any]:
    data = json.dumps(payload).encode("utf-8") if payload is not None else None
    request = urllib.request.Request(url, data=data, method=method)
    request.add_header("Content-Type", "application/json")
    for key, value in headers.items():
        request.add_header(key, value)
    try:
        with urllib.request.urlopen(request, timeout=timeout_seconds) as response:
            raw = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        raw = exc.read().decode("utf-8", errors="ignore")
        raise GeminiError(f"http_error {exc.code}: {raw[:500]}") from exc
    except urllib.error.URLError as exc:
        raise GeminiError(f"network_error: {exc}") from exc
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise GeminiError(f"invalid_json_response: {raw[:500]}") from exc


def _append_key(url: str, api_key: str | None) -> str:
    if not api_key:
        return url
    parsed = urllib.parse.urlsplit(url)
    query = urllib.parse.parse_qsl(parsed.query, keep_blank_values=True)
    query.append(("key", api_key))
    return urllib.parse.urlunsplit(
        (parsed.scheme, parsed.netloc, parsed.path, urllib.parse.urlencode(query), parsed.fragment)
    )


def _join_url(base: str, path: str) -> str:
    return base.rstrip("/") + path
