from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable

import jsonschema

from ..llm.gemini import GroundedAnswer, generate_grounded_answer
from ..models import STORY_COMPLETED, STORY_ERROR, STORY_PROCESSING
from ..services.job_log_service import BackgroundJobLogger
from ..storage import update_agent_story
from ..utils import format_indonesian_date, log_event, today_in

JOB_NAME = "analyze-story"

MISSING_PARAMS_ERROR = "Missing emiten or id"
API_KEY_ERROR = "API key not configured"
API_KEY_LOG_ERROR = "GEMINI_API_KEY not configured"
PARSE_ERROR = "Failed to parse AI response"
PARSE_ERROR_RESPONSE = "Parse error"

SWOT_KEYS = ("strengths", "weaknesses", "opportunities", "threats")

SYSTEM_PROMPT = (
    "Kamu adalah seorang analis saham profesional Indonesia yang ahli dalam "
    "menganalisa story dan katalis pergerakan harga saham."
)

RESPONSE_TEMPLATE = """{
  "matriks_story": [
    {
      "kategori_story": "Transformasi Bisnis | Aksi Korporasi | Pemulihan Fundamental | Kondisi Makro | Sentimen Pasar",
      "deskripsi_katalis": "deskripsi singkat katalis beserta tanggal rilis berita",
      "logika_ekonomi_pasar": "penjelasan logika ekonomi/pasar",
      "potensi_dampak_harga": "dampak terhadap harga saham negatif/netral/positif dan alasannya"
    }
  ],
  "swot_analysis": {
    "strengths": ["kekuatan perusahaan"],
    "weaknesses": ["kelemahan perusahaan"],
    "opportunities": ["peluang pasar"],
    "threats": ["ancaman/risiko"]
  },
  "checklist_katalis": [
    {
      "item": "katalis yang perlu dipantau",
      "dampak_instan": "dampak jika katalis terjadi"
    }
  ],
  "strategi_trading": {
    "tipe_saham": "jenis saham (growth/value/turnaround/dll)",
    "target_entry": "area entry yang disarankan",
    "exit_strategy": {
      "take_profit": "target take profit",
      "stop_loss": "level stop loss"
    }
  },
  "keystat_signal": "interpretasi data key statistics dalam bahasa awam beserta signal investasinya",
  "kesimpulan": "kesimpulan analisis dalam 2-3 kalimat"
}"""

STORY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "matriks_story": {"type": "array", "items": {"type": "object"}},
        "swot_analysis": {
            "type": "object",
            "properties": {
                key: {"type": "array", "items": {"type": "string"}} for key in SWOT_KEYS
            },
        },
        "checklist_katalis": {"type": "array", "items": {"type": "object"}},
        "strategi_trading": {"type": "object"},
        "keystat_signal": {"type": "string"},
        "kesimpulan": {"type": "string"},
    },
}

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

Generator = Callable[..., GroundedAnswer]


@dataclass(frozen=True)
class StoryJobResult:
    status_code: int
    body: dict[str, object]


@dataclass
class StoryJobContext:
    emiten: str
    story_id: int
    job_log: BackgroundJobLogger
    started_at: float
    terminal_written: bool = False


def analyze_story(
    conn: Any,
    config: Any,
    emiten: str | None,
    story_id: str | int | None,
    body: Any = None,
    *,
    api_key: str | None,
    generate: Generator | None = None,
    logger: logging.Logger | None = None,
) -> StoryJobResult:
    """Run one story analysis for ``story_id`` and record its outcome.

    The row must already exist with status ``pending``. It moves to
    ``processing`` before the model is called and ends in exactly one of
    ``completed`` or ``error``. Every failure is turned into a response; nothing
    is raised to the caller.
    """
    logger = logger or logging.getLogger("agentstory.worker")
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

    ctx = StoryJobContext(
        emiten=symbol,
        story_id=record_id,
        job_log=BackgroundJobLogger(conn, JOB_NAME, logger),
        started_at=time.monotonic(),
    )
    log_event(logger, logging.INFO, "story_started", emiten=symbol, story_id=record_id)
    try:
        return _run_story_job(conn, config, ctx, body, api_key, generate, logger)
    except Exception as exc:  # noqa: BLE001
        return _handle_failure(conn, ctx, exc, logger)


def _run_story_job(
    conn: Any,
    config: Any,
    ctx: StoryJobContext,
    body: Any,
    api_key: str | None,
    generate: Generator | None,
    logger: logging.Logger,
) -> StoryJobResult:
    ctx.job_log.start(total_items=1)
    ctx.job_log.append("info", "Starting AI Story Analysis", ctx.emiten)

    key_stats = parse_key_stats(body, logger)

    if not api_key:
        _write_terminal(conn, ctx, {"status": STORY_ERROR, "error_message": API_KEY_ERROR})
        ctx.job_log.fail(API_KEY_LOG_ERROR)
        log_event(
            logger,
            logging.ERROR,
            "story_config_error",
            emiten=ctx.emiten,
            story_id=ctx.story_id,
            error=API_KEY_LOG_ERROR,
        )
        return StoryJobResult(500, {"error": API_KEY_ERROR})

    if not update_agent_story(conn, ctx.story_id, {"status": STORY_PROCESSING}):
        raise ValueError("story_not_found")

    llm = config.llm
    ctx.job_log.append(
        "info",
        f"Analyzing using {llm.model} (Thinking {llm.thinking_level})...",
        ctx.emiten,
    )
    prompt = build_story_prompt(ctx.emiten, today_in(config.app.timezone), key_stats)
    generate = generate or generate_grounded_answer
    answer = generate(
        prompt,
        api_key=api_key,
        model=llm.model,
        base_url=llm.base_url,
        timeout_seconds=llm.timeout_seconds,
        thinking_level=llm.thinking_level,
        web_search=llm.web_search,
    )

    sources = extract_sources(answer.grounding_chunks, config.story.default_source_title)
    log_event(
        logger,
        logging.INFO,
        "story_response_received",
        emiten=ctx.emiten,
        text_chars=len(answer.text),
        grounding_supports=len(answer.grounding_supports),
        sources=len(sources),
    )
    ctx.job_log.append(
        "info",
        f"Gemini response received, parsing results... ({len(sources)} sources found)",
        ctx.emiten,
    )

    analysis = extract_json_object(answer.text)
    if analysis is None:
        _write_terminal(conn, ctx, {"status": STORY_ERROR, "error_message": PARSE_ERROR})
        log_event(
            logger,
            logging.ERROR,
            "story_parse_failed",
            emiten=ctx.emiten,
            story_id=ctx.story_id,
            text_chars=len(answer.text),
        )
        ctx.job_log.append(
            "error",
            PARSE_ERROR,
            ctx.emiten,
            {"raw": answer.text[: config.story.raw_preview_chars]},
        )
        ctx.job_log.fail(PARSE_ERROR)
        return StoryJobResult(500, {"error": PARSE_ERROR_RESPONSE})

    shape = validate_story_shape(analysis)
    if not shape["ok"]:
        log_event(
            logger,
            logging.WARNING,
            "story_shape_mismatch",
            emiten=ctx.emiten,
            error=shape["error"],
        )
        ctx.job_log.append(
            "warning",
            "AI response does not match the expected structure",
            ctx.emiten,
            {"error": shape["error"]},
        )

    fields = build_story_fields(analysis, sources)
    _write_terminal(conn, ctx, {"status": STORY_COMPLETED, "error_message": None, **fields})

    duration = round(time.monotonic() - ctx.started_at, 3)
    metadata = {"duration_seconds": duration, "sources_count": len(sources)}
    log_event(
        logger,
        logging.INFO,
        "story_completed",
        emiten=ctx.emiten,
        story_id=ctx.story_id,
        duration_seconds=duration,
    )
    ctx.job_log.append("info", "Analysis completed successfully", ctx.emiten, metadata)
    ctx.job_log.complete(success_count=1, metadata=metadata)
    return StoryJobResult(200, {"success": True, "emiten": ctx.emiten})


def _write_terminal(conn: Any, ctx: StoryJobContext, fields: dict[str, object]) -> None:
    update_agent_story(conn, ctx.story_id, fields)
    ctx.terminal_written = True


def _handle_failure(
    conn: Any, ctx: StoryJobContext, exc: Exception, logger: logging.Logger
) -> StoryJobResult:
    error = str(exc)
    log_event(
        logger,
        logging.ERROR,
        "story_failed",
        emiten=ctx.emiten,
        story_id=ctx.story_id,
        error=error,
    )
    _rollback(conn, logger)
    ctx.job_log.append("error", f"Analysis failed: {error}", ctx.emiten)
    ctx.job_log.fail(error)
    if not ctx.terminal_written:
        try:
            _write_terminal(conn, ctx, {"status": STORY_ERROR, "error_message": error})
        except Exception as write_exc:  # noqa: BLE001
            log_event(
                logger,
                logging.ERROR,
                "story_error_write_failed",
                story_id=ctx.story_id,
                error=str(write_exc),
            )
    return StoryJobResult(500, {"error": error})


def _rollback(conn: Any, logger: logging.Logger) -> None:
    try:
        conn.rollback()
    except Exception as exc:  # noqa: BLE001
        log_event(logger, logging.WARNING, "rollback_failed", error=str(exc))


def normalize_emiten(value: str | None) -> str | None:
    if value is None:
        return None
    symbol = str(value).strip().upper()
    return symbol or None


def parse_story_id(value: str | int | None) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    if not (text.isascii() and text.isdigit()):
        return None
    story_id = int(text)
    return story_id if story_id > 0 else None


def parse_key_stats(body: Any, logger: logging.Logger | None = None) -> Any:
    """Return the ``keyStats`` member of a request body, or ``None``.

    ``body`` may be raw bytes, text or an already decoded mapping. Anything that
    is not a JSON object is treated as "no key statistics".
    """
    if body is None or body == b"" or body == "":
        return None
    if isinstance(body, dict):
        payload = body
    else:
        try:
            payload = json.loads(body)
        except (TypeError, ValueError):
            if logger:
                log_event(logger, logging.INFO, "story_body_ignored", reason="invalid_json")
            return None
    if not isinstance(payload, dict):
        return None
    return payload.get("keyStats")


def build_story_prompt(emiten: str, today: date, key_stats: Any = None) -> str:
    if key_stats is not None:
        key_stats_block = (
            f"DATA KEY STATISTICS UNTUK {emiten}:\n"
            + json.dumps(key_stats, indent=2, ensure_ascii=False)
            + "\n\n"
        )
        key_stats_task = (
            "5. Terjemahkan DATA KEY STATISTICS di atas ke dalam bahasa yang mudah dipahami "
            "tapi detail untuk trading & investasi. Simpulkan apakah data tersebut memberi "
            "signal 'Positif/Sehat', 'Neutral', atau 'Negatif/Hati-hati' untuk jangka pendek "
            "dan jangka panjang."
        )
    else:
        key_stats_block = ""
        key_stats_task = (
            "5. Data key statistics tidak tersedia; isi keystat_signal dengan penjelasan "
            "singkat bahwa data tersebut tidak diberikan."
        )
    return (
        f"{SYSTEM_PROMPT}\n\n"
        f"Hari ini adalah {format_indonesian_date(today)}.\n"
        "Cari dan analisa berita-berita TERBARU (1-2 minggu terakhir) tentang emiten saham "
        f"Indonesia dengan kode {emiten} dari internet menggunakan Google Search.\n\n"
        f"{key_stats_block}"
        "FOKUS ANALISA:\n"
        "1. Fokus pada STORY BISNIS, AKSI KORPORASI, KATALIS fundamental, SENTIMEN PASAR, "
        "dan berita TERBARU (1-2 minggu terakhir), baik positif maupun negatif.\n"
        "2. ABAIKAN data harga saham (price action) karena data harga dari internet sering "
        "tidak akurat atau delay. Jangan menyebutkan angka harga saham spesifik.\n"
        "3. Hubungkan berita dengan logika pasar: mengapa berita ini bagus atau buruk untuk "
        "masa depan perusahaan?\n"
        "4. Sebutkan tanggal rilis berita yang dijadikan referensi di dalam deskripsi katalis.\n"
        f"{key_stats_task}\n\n"
        "Berikan analisis dalam format JSON dengan struktur berikut (HANYA OUTPUT JSON, tanpa "
        "markdown code block):\n"
        f"{RESPONSE_TEMPLATE}"
    )


def extract_json_object(text: str | None) -> dict[str, Any] | None:
    """Parse the span from the first ``{`` to the last ``}`` of ``text``.

    Returns ``None`` when there is no such span or it is not a valid JSON object.
    """
    if not text:
        return None
    match = _JSON_OBJECT_RE.search(text)
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def extract_sources(
    chunks: list[dict[str, Any]] | None, default_title: str = "Sumber Berita"
) -> list[dict[str, str]]:
    sources: list[dict[str, str]] = []
    for chunk in chunks or []:
        if not isinstance(chunk, dict):
            continue
        web = chunk.get("web") or {}
        uri = str(web.get("uri") or "").strip()
        if not uri:
            continue
        sources.append({"title": str(web.get("title") or default_title), "uri": uri})
    return sources


def build_story_fields(
    analysis: dict[str, Any], sources: list[dict[str, str]]
) -> dict[str, object]:
    return {
        "matriks_story": analysis.get("matriks_story") or [],
        "swot_analysis": _normalize_swot(analysis.get("swot_analysis")),
        "checklist_katalis": analysis.get("checklist_katalis") or [],
        "strategi_trading": analysis.get("strategi_trading") or {},
        "keystat_signal": analysis.get("keystat_signal") or "",
        "kesimpulan": analysis.get("kesimpulan") or "",
        "sources": sources,
    }


def _normalize_swot(value: Any) -> Any:
    if not value:
        return {}
    if not isinstance(value, dict):
        return value
    swot = dict(value)
    for key in SWOT_KEYS:
        if not swot.get(key):
            swot[key] = []
    return swot


def validate_story_shape(analysis: Any) -> dict[str, Any]:
    try:
        jsonschema.validate(analysis, STORY_SCHEMA)
        return {"ok": True}
    except jsonschema.ValidationError as exc:
        return {"ok": False, "error": exc.message}
