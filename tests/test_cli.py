import copy
import json

import yaml

from agentstory.cli import main
from agentstory.config import DEFAULT_CONFIG
from agentstory.llm.gemini import GroundedAnswer


def test_stories_create_and_show(tmp_path, capsys):
    db_path = str(tmp_path / "state.sqlite3")

    assert main(["--db", db_path, "stories", "create", "--emiten", "bbca"]) == 0
    created = json.loads(capsys.readouterr().out)
    assert created["emiten"] == "BBCA"
    assert created["status"] == "pending"

    assert main(["--db", db_path, "stories", "show", str(created["id"])]) == 0
    shown = json.loads(capsys.readouterr().out)
    assert shown["id"] == created["id"]

    assert main(["--db", db_path, "stories", "show", "999"]) == 1


def test_analyze_with_key_stats_file(tmp_path, capsys, monkeypatch):
    db_path = str(tmp_path / "state.sqlite3")
    key_stats = tmp_path / "keystats.json"
    key_stats.write_text(json.dumps({"der": 0.4}), encoding="utf-8")
    monkeypatch.setenv("GEMINI_API_KEY", "secret")
    prompts = []

    def _generate(prompt, **kwargs):
        prompts.append(prompt)
        return GroundedAnswer(text=json.dumps({"kesimpulan": "ok"}))

    monkeypatch.setattr(
        "agentstory.pipelines.story_analysis.generate_grounded_answer", _generate
    )
    main(["--db", db_path, "stories", "create", "--emiten", "ANTM"])
    story_id = json.loads(capsys.readouterr().out)["id"]

    code = main(
        [
            "--db",
            db_path,
            "analyze",
            "--emiten",
            "ANTM",
            "--id",
            str(story_id),
            "--key-stats",
            str(key_stats),
        ]
    )

    assert code == 0
    output = json.loads(capsys.readouterr().out)
    assert output == {"status_code": 200, "success": True, "emiten": "ANTM"}
    assert '"der": 0.4' in prompts[0]

    assert main(["--db", db_path, "jobs", "logs"]) == 0
    capsys.readouterr()


def test_analyze_without_key_exits_nonzero(tmp_path, capsys):
    db_path = str(tmp_path / "state.sqlite3")
    main(["--db", db_path, "stories", "create", "--emiten", "INCO"])
    story_id = json.loads(capsys.readouterr().out)["id"]

    code = main(["--db", db_path, "analyze", "--emiten", "INCO", "--id", str(story_id)])

    assert code == 1
    output = json.loads(capsys.readouterr().out)
    assert output == {"status_code": 500, "error": "API key not configured"}


def test_config_import_and_export(tmp_path):
    db_path = str(tmp_path / "state.sqlite3")
    custom = copy.deepcopy(DEFAULT_CONFIG)
    custom["llm"]["thinking_level"] = "LOW"
    source = tmp_path / "runtime.yml"
    source.write_text(yaml.safe_dump(custom), encoding="utf-8")
    target = tmp_path / "export.yml"

    assert main(["--db", db_path, "config", "import", str(source)]) == 0
    assert main(["--db", db_path, "config", "export", "--out", str(target)]) == 0

    exported = yaml.safe_load(target.read_text(encoding="utf-8"))
    assert exported["llm"]["thinking_level"] == "LOW"


def test_config_import_rejects_invalid(tmp_path):
    db_path = str(tmp_path / "state.sqlite3")
    source = tmp_path / "runtime.yml"
    source.write_text("app:\n  name: Bad\n", encoding="utf-8")

    assert main(["--db", db_path, "config", "import", str(source)]) == 1
