import pytest

from agentstory.storage import (
    append_background_job_log_entry,
    create_agent_story,
    create_background_job_log,
    get_agent_story,
    get_background_job_log,
    get_setting,
    list_agent_stories,
    list_background_job_logs,
    set_setting,
    update_agent_story,
    update_background_job_log,
)


def test_create_story_starts_pending(conn):
    story = create_agent_story(conn, " bbca ")
    assert story.id > 0
    assert story.emiten == "BBCA"
    assert story.status == "pending"
    assert story.matriks_story == []
    assert story.swot_analysis == {}
    assert story.sources == []
    assert story.error_message is None


def test_create_story_requires_emiten(conn):
    with pytest.raises(ValueError, match="emiten is required"):
        create_agent_story(conn, "   ")


def test_update_story_writes_json_and_text_fields(conn):
    story = create_agent_story(conn, "TLKM")
    updated = update_agent_story(
        conn,
        story.id,
        {
            "status": "completed",
            "swot_analysis": {"strengths": ["Infrastruktur luas"]},
            "sources": [{"title": "Berita", "uri": "https://example.com"}],
            "kesimpulan": "Stabil.",
            "error_message": None,
        },
    )
    assert updated is True
    stored = get_agent_story(conn, story.id)
    assert stored.status == "completed"
    assert stored.swot_analysis == {"strengths": ["Infrastruktur luas"]}
    assert stored.sources == [{"title": "Berita", "uri": "https://example.com"}]
    assert stored.kesimpulan == "Stabil."
    assert stored.updated_at >= story.updated_at


def test_update_story_stores_structured_text_as_json(conn):
    story = create_agent_story(conn, "BBNI")
    update_agent_story(
        conn,
        story.id,
        {"keystat_signal": ["PER murah", "ROE tinggi"], "kesimpulan": {"ringkas": "Positif"}},
    )
    stored = get_agent_story(conn, story.id)
    assert stored.keystat_signal == '["PER murah", "ROE tinggi"]'
    assert stored.kesimpulan == '{"ringkas": "Positif"}'


def test_update_story_reports_missing_row(conn):
    assert update_agent_story(conn, 404, {"status": "processing"}) is False


def test_update_story_rejects_bad_input(conn):
    story = create_agent_story(conn, "ASII")
    with pytest.raises(ValueError, match="unknown_story_field"):
        update_agent_story(conn, story.id, {"emiten": "BBRI"})
    with pytest.raises(ValueError, match="invalid_story_status"):
        update_agent_story(conn, story.id, {"status": "done"})
    with pytest.raises(ValueError, match="no_story_fields"):
        update_agent_story(conn, story.id, {})


def test_list_stories_filters_by_emiten_newest_first(conn):
    first = create_agent_story(conn, "BBCA")
    create_agent_story(conn, "BBRI")
    third = create_agent_story(conn, "BBCA")

    stories = list_agent_stories(conn, emiten="bbca")
    assert [story.id for story in stories] == [third.id, first.id]
    assert len(list_agent_stories(conn)) == 3
    assert len(list_agent_stories(conn, limit=1)) == 1


def test_job_log_lifecycle(conn):
    created = create_background_job_log(conn, "analyze-story", 1)
    job_id = created["id"]
    assert created["status"] == "running"

    append_background_job_log_entry(
        conn, job_id, {"level": "info", "message": "Mulai", "emiten": "BBCA"}
    )
    append_background_job_log_entry(
        conn, job_id, {"level": "error", "message": "Gagal", "details": {"raw": "abc"}}
    )
    assert update_background_job_log(
        conn,
        job_id,
        {"status": "failed", "error_count": 1, "error_message": "Gagal"},
    )

    job_log = get_background_job_log(conn, job_id)
    assert job_log.status == "failed"
    assert job_log.error_count == 1
    assert job_log.error_message == "Gagal"
    assert job_log.completed_at is not None
    assert [entry["message"] for entry in job_log.log_entries] == ["Mulai", "Gagal"]
    assert job_log.log_entries[0]["emiten"] == "BBCA"
    assert "emiten" not in job_log.log_entries[1]
    assert job_log.log_entries[1]["details"] == {"raw": "abc"}
    assert all(entry["timestamp"] for entry in job_log.log_entries)


def test_job_log_completion_metadata(conn):
    job_id = create_background_job_log(conn, "analyze-story", 1)["id"]
    update_background_job_log(
        conn,
        job_id,
        {"status": "completed", "success_count": 1, "metadata": {"sources_count": 3}},
    )
    job_log = get_background_job_log(conn, job_id)
    assert job_log.success_count == 1
    assert job_log.metadata == {"sources_count": 3}


def test_append_to_missing_job_log(conn):
    with pytest.raises(ValueError, match="job_log_not_found"):
        append_background_job_log_entry(conn, 999, {"level": "info", "message": "x"})


def test_list_job_logs_by_name(conn):
    create_background_job_log(conn, "analyze-story", 1)
    create_background_job_log(conn, "other-job", 5)
    assert [item.job_name for item in list_background_job_logs(conn, job_name="analyze-story")] == [
        "analyze-story"
    ]
    assert len(list_background_job_logs(conn)) == 2
    assert get_background_job_log(conn, 999) is None


def test_settings_round_trip(conn):
    assert get_setting(conn, "missing", {"x": 1}) == {"x": 1}
    set_setting(conn, "demo", {"a": [1, 2]})
    set_setting(conn, "demo", {"a": [3]})
    assert get_setting(conn, "demo", None) == {"a": [3]}


def test_migrations_are_idempotent(tmp_path):
    from agentstory.storage import init_db

    path = str(tmp_path / "again.sqlite3")
    first = init_db(path)
    first.close()
    second = init_db(path)
    versions = [row[0] for row in second.execute("SELECT version FROM schema_migrations").fetchall()]
    second.close()
    assert versions.count("001_initial_schema") == 1
    assert versions.count("002_background_job_logs") == 1
