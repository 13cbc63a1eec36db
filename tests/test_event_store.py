import json
import os
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from memory.event_store import (
    Event,
    EventType,
    append_event,
    count_events,
    list_event_files,
    log_event,
    parse_event_line,
    read_event_file,
    read_events,
)
from tests.event_log_test_utils import make_event, write_events
from tests.fakes.memory_storage import InMemoryStorage


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def test_append_event_writes_to_file_of_utc_day(tmp_path):
    event = make_event("2025-08-02T01:00:00+02:00", type="session_start")

    result = append_event(event, events_dir=tmp_path)

    assert result.ok
    assert result.value.file == "events-2025-08-01.jsonl"
    line = (tmp_path / "events-2025-08-01.jsonl").read_text().strip()
    data = json.loads(line)
    assert data["id"] == event.id
    assert data["sessionId"] == "sess-1"
    assert data["type"] == "session_start"


def test_append_event_accepts_camel_case_dict(tmp_path):
    result = append_event(
        {"id": "e1", "timestamp": "2025-08-01T08:00:00Z", "sessionId": "s1",
         "type": "skill_invoked", "data": {"skill": "Research"}},
        events_dir=tmp_path,
    )

    assert result.ok
    [event] = read_events(tmp_path)
    assert event.data == {"skill": "Research"}
    assert event.session_id == "s1"


def test_append_event_rejects_invalid_records(tmp_path):
    result = append_event({"id": "e1", "timestamp": 1234, "sessionId": "s1", "type": "custom"},
                          events_dir=tmp_path)

    assert not result.ok
    assert list(tmp_path.iterdir()) == []


def test_event_model_validation():
    with pytest.raises(ValidationError):
        Event(id="x", timestamp="2025-08-01T00:00:00Z", session_id="s", type="not-a-type")
    with pytest.raises(ValidationError):
        Event(id="", timestamp="2025-08-01T00:00:00Z", session_id="s", type="custom")

    naive = Event(id="x", timestamp="2025-08-01T10:00:00", session_id="s", type="custom")
    assert naive.timestamp == _utc(2025, 8, 1, 10)


def test_log_event_uses_session_from_environment(tmp_path):
    with patch.dict(os.environ, {"PAI_SESSION_ID": "env-session"}):
        result = log_event(EventType.LEARNING_EXTRACTED, {"note": "x"}, events_dir=tmp_path)

    assert result.ok
    [event] = read_events(tmp_path)
    assert event.session_id == "env-session"
    assert event.type is EventType.LEARNING_EXTRACTED


def test_malformed_lines_are_skipped(tmp_path):
    good = make_event("2025-08-01T08:00:00Z")
    (tmp_path / "events-2025-08-01.jsonl").write_text(
        "not json\n" + good.to_json_line() + "\n" + json.dumps({"id": "partial"}) + "\n"
    )

    events = read_event_file(tmp_path / "events-2025-08-01.jsonl")

    assert [e.id for e in events] == [good.id]
    assert parse_event_line("   ") is None


def test_read_events_filters_and_orders(tmp_path):
    write_events(tmp_path, [
        make_event("2025-08-03T09:00:00Z", type="error", session_id="b", event_id="e4"),
        make_event("2025-08-01T08:00:00Z", type="skill_invoked", session_id="a", event_id="e1"),
        make_event("2025-08-02T12:00:00Z", type="skill_invoked", session_id="b", event_id="e3"),
        make_event("2025-08-02T08:00:00Z", type="error", session_id="a", event_id="e2"),
    ])

    assert [e.id for e in read_events(tmp_path)] == ["e1", "e2", "e3", "e4"]
    assert [e.id for e in read_events(tmp_path, type="error")] == ["e2", "e4"]
    assert [e.id for e in read_events(tmp_path, session_id="b")] == ["e3", "e4"]
    assert [e.id for e in read_events(tmp_path, limit=2)] == ["e1", "e2"]
    # bounds are inclusive
    window = read_events(tmp_path, since=_utc(2025, 8, 2, 8), until=_utc(2025, 8, 2, 12))
    assert [e.id for e in window] == ["e2", "e3"]


def test_count_events_groups_by_type(tmp_path):
    write_events(tmp_path, [
        make_event("2025-08-01T08:00:00Z", type="error"),
        make_event("2025-08-01T09:00:00Z", type="error"),
        make_event("2025-08-01T10:00:00Z", type="session_end"),
    ])

    assert count_events(events_dir=tmp_path) == {"error": 2, "session_end": 1}


def test_missing_directory_reads_as_empty(tmp_path):
    assert read_events(tmp_path / "missing") == []
    assert list_event_files(tmp_path / "missing") == []


def test_in_memory_storage_round_trip():
    storage = InMemoryStorage()

    append_event(make_event("2025-08-01T08:00:00Z", event_id="m1"), "/mem/events", storage)
    append_event(make_event("2025-08-05T08:00:00Z", event_id="m2"), "/mem/events", storage)

    assert list_event_files("/mem/events", storage) == [
        ("events-2025-08-01.jsonl", "2025-08-01"),
        ("events-2025-08-05.jsonl", "2025-08-05"),
    ]
    assert [e.id for e in read_events("/mem/events", storage=storage)] == ["m1", "m2"]
