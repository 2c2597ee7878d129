import json
from dataclasses import dataclass
from datetime import date, datetime, timezone

from agentstory.utils import format_indonesian_date, json_dumps, json_loads_or, today_in


@dataclass
class Payload:
    value: str


def test_format_indonesian_date():
    assert format_indonesian_date(date(2026, 10, 19)) == "19 Oktober 2026"
    assert format_indonesian_date(date(2025, 1, 1)) == "1 Januari 2025"
    assert format_indonesian_date(date(2024, 12, 31)) == "31 Desember 2024"


def test_today_in_returns_date():
    assert isinstance(today_in("Asia/Jakarta"), date)


def test_json_dumps_handles_supported_types():
    payload = {
        "dataclass": Payload(value="ok"),
        "datetime": datetime(2025, 1, 1, tzinfo=timezone.utc),
        "date": date(2025, 1, 2),
        "set": {"a"},
        "tuple": ("x", "y"),
        "text": "Pendapatan naik 20%",
    }
    encoded = json_dumps(payload)
    decoded = json.loads(encoded)
    assert decoded["dataclass"] == {"value": "ok"}
    assert decoded["datetime"].startswith("2025-01-01T00:00:00")
    assert decoded["date"] == "2025-01-02"
    assert decoded["set"] == ["a"]
    assert decoded["tuple"] == ["x", "y"]
    assert "Pendapatan naik 20%" in encoded


def test_json_loads_or_falls_back():
    assert json_loads_or(None, []) == []
    assert json_loads_or("", {}) == {}
    assert json_loads_or("{broken", {"x": 1}) == {"x": 1}
    assert json_loads_or('[{"a": 1}]', []) == [{"a": 1}]
