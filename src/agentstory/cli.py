from __future__ import annotations

import argparse
import json
import logging
import os
import sys

import yaml

from .config import (
    ConfigError,
    bootstrap_runtime_config,
    get_runtime_config,
    get_state_db_path,
    set_runtime_config,
)
from .services.story_service import (
    create_story,
    get_job_log,
    get_story,
    list_job_logs,
    list_stories,
)
from .storage import init_db
from .utils import log_event
from .worker import run_story_job


def _setup_logging() -> logging.Logger:
    level_name = os.environ.get("AS_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )
    return logging.getLogger("agentstory.cli")


def _open(args: argparse.Namespace):
    conn = init_db(args.db or get_state_db_path())
    bootstrap_runtime_config(conn)
    return conn


def _print_json(value: object) -> None:
    sys.stdout.write(json.dumps(value, indent=2, ensure_ascii=False, default=str) + "\n")


def _cmd_db_migrate(args: argparse.Namespace, logger: logging.Logger) -> int:
    path = args.db or get_state_db_path()
    conn = init_db(path)
    conn.close()
    log_event(logger, logging.INFO, "db_migrated", path=path)
    return 0


def _cmd_stories_create(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = _open(args)
    try:
        story = create_story(conn, {"emiten": args.emiten})
    except ValueError as exc:
        log_event(logger, logging.ERROR, "story_create_failed", error=str(exc))
        return 1
    finally:
        conn.close()
    log_event(logger, logging.INFO, "story_created", story_id=story["id"], emiten=story["emiten"])
    _print_json(story)
    return 0


def _cmd_stories_show(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = _open(args)
    try:
        story = get_story(conn, args.story_id)
    finally:
        conn.close()
    if story is None:
        log_event(logger, logging.ERROR, "story_not_found", story_id=args.story_id)
        return 1
    _print_json(story)
    return 0


def _cmd_stories_list(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = _open(args)
    try:
        stories = list_stories(conn, emiten=args.emiten, limit=args.limit)
    finally:
        conn.close()
    for story in stories:
        log_event(
            logger,
            logging.INFO,
            "story",
            story_id=story["id"],
            emiten=story["emiten"],
            status=story["status"],
            created_at=story["created_at"],
            error=story["error_message"] or "",
        )
    return 0


def _cmd_analyze(args: argparse.Namespace, logger: logging.Logger) -> int:
    body = None
    if args.key_stats:
        try:
            with open(args.key_stats, "r", encoding="utf-8") as handle:
                body = {"keyStats": json.load(handle)}
        except (OSError, json.JSONDecodeError) as exc:
            log_event(logger, logging.ERROR, "key_stats_unreadable", path=args.key_stats, error=str(exc))
            return 1
    result = run_story_job(args.emiten, args.story_id, body, db_path=args.db)
    _print_json({"status_code": result.status_code, **result.body})
    return 0 if result.status_code == 200 else 1


def _cmd_jobs_logs(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = _open(args)
    try:
        logs = list_job_logs(conn, job_name=args.job_name, limit=args.limit)
    finally:
        conn.close()
    for item in logs:
        log_event(
            logger,
            logging.INFO,
            "job_log",
            job_log_id=item["id"],
            job_name=item["job_name"],
            status=item["status"],
            started_at=item["started_at"],
            completed_at=item["completed_at"] or "",
            error=item["error_message"] or "",
        )
    return 0


def _cmd_jobs_show(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = _open(args)
    try:
        job_log = get_job_log(conn, args.job_id)
    finally:
        conn.close()
    if job_log is None:
        log_event(logger, logging.ERROR, "job_log_not_found", job_log_id=args.job_id)
        return 1
    _print_json(job_log)
    return 0


def _cmd_config_show(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = _open(args)
    try:
        cfg = get_runtime_config(conn)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    finally:
        conn.close()
    sys.stdout.write(yaml.safe_dump(cfg, sort_keys=False, allow_unicode=True))
    return 0


def _cmd_config_import(args: argparse.Namespace, logger: logging.Logger) -> int:
    try:
        with open(args.path, "r", encoding="utf-8") as handle:
            cfg = yaml.safe_load(handle)
    except (OSError, yaml.YAMLError) as exc:
        log_event(logger, logging.ERROR, "config_unreadable", path=args.path, error=str(exc))
        return 1
    if not isinstance(cfg, dict):
        log_event(logger, logging.ERROR, "config_error", error="config file must be a mapping")
        return 1
    conn = _open(args)
    try:
        set_runtime_config(conn, cfg)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    finally:
        conn.close()
    log_event(logger, logging.INFO, "config_imported", path=args.path)
    return 0


def _cmd_config_export(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = _open(args)
    try:
        cfg = get_runtime_config(conn)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    finally:
        conn.close()
    try:
        with open(args.out, "w", encoding="utf-8") as handle:
            yaml.safe_dump(cfg, handle, sort_keys=False, allow_unicode=True)
    except OSError as exc:
        log_event(logger, logging.ERROR, "config_export_error", error=str(exc))
        return 1
    log_event(logger, logging.INFO, "config_exported", path=args.out)
    return 0


def _cmd_serve(args: argparse.Namespace, logger: logging.Logger) -> int:
    import uvicorn

    log_event(logger, logging.INFO, "api_starting", host=args.host, port=args.port)
    uvicorn.run("agentstory.api:app", host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="agentstory", description="AgentStory CLI")
    parser.add_argument(
        "--db",
        dest="db",
        default=None,
        help="Path to the sqlite state database (defaults to $AS_DATA_DIR/state.sqlite3)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    db_parser = subparsers.add_parser("db", help="Database maintenance")
    db_subparsers = db_parser.add_subparsers(dest="db_command", required=True)
    db_migrate = db_subparsers.add_parser("migrate", help="Apply database migrations")
    db_migrate.set_defaults(func=_cmd_db_migrate)

    stories_parser = subparsers.add_parser("stories", help="Story analysis records")
    stories_subparsers = stories_parser.add_subparsers(dest="stories_command", required=True)

    stories_create = stories_subparsers.add_parser("create", help="Create a pending story row")
    stories_create.add_argument("--emiten", required=True, help="Ticker symbol")
    stories_create.set_defaults(func=_cmd_stories_create)

    stories_show = stories_subparsers.add_parser("show", help="Show one story")
    stories_show.add_argument("story_id", type=int, help="Story id")
    stories_show.set_defaults(func=_cmd_stories_show)

    stories_list = stories_subparsers.add_parser("list", help="List recent stories")
    stories_list.add_argument("--emiten", default=None, help="Only stories for this ticker")
    stories_list.add_argument("--limit", type=int, default=20, help="Number of stories to show")
    stories_list.set_defaults(func=_cmd_stories_list)

    analyze_parser = subparsers.add_parser("analyze", help="Run a story analysis now")
    analyze_parser.add_argument("--emiten", required=True, help="Ticker symbol")
    analyze_parser.add_argument("--id", dest="story_id", required=True, help="Story id")
    analyze_parser.add_argument(
        "--key-stats",
        dest="key_stats",
        default=None,
        help="Path to a JSON file with key statistics for the prompt",
    )
    analyze_parser.set_defaults(func=_cmd_analyze)

    jobs_parser = subparsers.add_parser("jobs", help="Background job logs")
    jobs_subparsers = jobs_parser.add_subparsers(dest="jobs_command", required=True)

    jobs_logs = jobs_subparsers.add_parser("logs", help="List recent job logs")
    jobs_logs.add_argument("--job-name", default=None, help="Filter by job name")
    jobs_logs.add_argument("--limit", type=int, default=20, help="Number of logs to show")
    jobs_logs.set_defaults(func=_cmd_jobs_logs)

    jobs_show = jobs_subparsers.add_parser("show", help="Show one job log with entries")
    jobs_show.add_argument("job_id", type=int, help="Job log id")
    jobs_show.set_defaults(func=_cmd_jobs_show)

    config_parser = subparsers.add_parser("config", help="Runtime configuration")
    config_subparsers = config_parser.add_subparsers(dest="config_command", required=True)

    config_show = config_subparsers.add_parser("show", help="Print runtime config as YAML")
    config_show.set_defaults(func=_cmd_config_show)

    config_import = config_subparsers.add_parser("import", help="Replace runtime config from YAML")
    config_import.add_argument("path", help="Path to YAML file")
    config_import.set_defaults(func=_cmd_config_import)

    config_export = config_subparsers.add_parser("export", help="Write runtime config to YAML")
    config_export.add_argument("--out", required=True, help="Output YAML path")
    config_export.set_defaults(func=_cmd_config_export)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=8000, help="Bind port")
    serve_parser.set_defaults(func=_cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = _setup_logging()
    return args.func(args, logger)


if __name__ == "__main__":
    raise SystemExit(main())
