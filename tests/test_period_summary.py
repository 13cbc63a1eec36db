import json

import pytest

from core.exceptions import SummaryFormatError
from core.period_summary import (
    PeriodSummary,
    days_in_month,
    generate_period_summary,
    top_n,
)
from tests.event_log_test_utils import events_in_month, make_event


def _skill(ts, name, session="sess-1"):
    return make_event(ts, type="skill_invoked", session_id=session, data={"skill": name})


def _error(ts, message, session="sess-1"):
    return make_event(ts, type="error", session_id=session, data={"error": message})


def test_event_counts_per_type():
    events = [
        make_event("2025-08-01T08:00:00Z", type="session_start"),
        _skill("2025-08-01T08:05:00Z", "Research"),
        _skill("2025-08-01T08:10:00Z", "Research"),
        _error("2025-08-01T08:20:00Z", "timeout"),
        make_event("2025-08-01T09:00:00Z", type="session_end"),
    ]

    summary = generate_period_summary("2025-08", events)

    assert summary.event_count == 5
    assert summary.event_counts == {
        "session_start": 1,
        "skill_invoked": 2,
        "error": 1,
        "session_end": 1,
    }


def test_top_patterns_rank_by_count_and_keep_first_seen_order_on_ties():
    events = [
        _skill("2025-08-01T08:00:00Z", "Alpha"),
        _skill("2025-08-01T08:01:00Z", "Beta"),
        _skill("2025-08-01T08:02:00Z", "Gamma"),
        _skill("2025-08-01T08:03:00Z", "Gamma"),
        _skill("2025-08-01T08:04:00Z", "Beta"),
        _skill("2025-08-01T08:05:00Z", "Alpha"),
        _skill("2025-08-01T08:06:00Z", "Gamma"),
    ]

    skills = generate_period_summary("2025-08", events).top_patterns.skills

    assert [(p.name, p.count) for p in skills] == [("Gamma", 3), ("Alpha", 2), ("Beta", 2)]


def test_top_patterns_are_capped_at_ten():
    events = [_skill(f"2025-08-01T08:{n:02d}:00Z", f"skill-{n}") for n in range(12)]

    skills = generate_period_summary("2025-08", events).top_patterns.skills

    assert len(skills) == 10
    assert skills[0].name == "skill-0"


def test_patterns_ignore_missing_or_non_string_payload_fields():
    events = [
        make_event("2025-08-01T08:00:00Z", type="skill_invoked", data={"skill": 42}),
        make_event("2025-08-01T08:01:00Z", type="skill_invoked", data={}),
        make_event("2025-08-01T08:02:00Z", type="custom", data={"skill": "NotASkillEvent"}),
        _error("2025-08-01T08:03:00Z", "boom"),
    ]

    summary = generate_period_summary("2025-08", events)

    assert summary.top_patterns.skills == []
    assert [(p.name, p.count) for p in summary.top_patterns.errors] == [("boom", 1)]


def test_time_distribution_uses_utc_weekday_and_zero_padded_hour():
    # 2025-08-01 is a Friday; 01:30+02:00 is still the 31st of July in UTC
    events = [
        make_event("2025-08-01T08:00:00Z"),
        make_event("2025-08-01T08:45:00Z"),
        make_event("2025-08-02T23:10:00Z"),
        make_event("2025-08-01T01:30:00+02:00"),
    ]

    dist = generate_period_summary("2025-08", events).time_distribution

    assert dist.by_day_of_week == {"Fri": 2, "Sat": 1, "Thu": 1}
    assert dist.by_hour == {"08": 2, "23": 2}


def test_session_stats():
    events = [
        make_event("2025-08-01T08:00:00Z", session_id="s1"),
        make_event("2025-08-01T08:01:00Z", session_id="s2"),
        make_event("2025-08-01T08:02:00Z", session_id="s1"),
        make_event("2025-08-01T08:03:00Z", session_id="s2"),
        make_event("2025-08-01T08:04:00Z", session_id="s3"),
        make_event("2025-08-01T08:05:00Z", session_id="s2"),
        make_event("2025-08-01T08:06:00Z", session_id="s1"),
    ]

    stats = generate_period_summary("2025-08", events).session_stats

    assert stats.total_sessions == 3
    assert stats.avg_events_per_session == 2.33
    # s1 and s2 both reach 3 events; s1 got there first
    assert stats.longest_session.session_id == "s1"
    assert stats.longest_session.event_count == 3


def test_zero_days_for_sparse_thirty_day_month():
    events = [make_event("2025-09-01T10:00:00Z"), make_event("2025-09-15T10:00:00Z")]

    anomalies = generate_period_summary("2025-09", events).anomalies

    assert len(anomalies.zero_days) == 28
    assert "2025-09-01" not in anomalies.zero_days
    assert "2025-09-15" not in anomalies.zero_days
    assert anomalies.zero_days[0] == "2025-09-02"
    assert anomalies.zero_days[-1] == "2025-09-30"


def test_high_count_day_detected_above_two_standard_deviations():
    events = events_in_month("2025-09", range(1, 31))
    events += events_in_month("2025-09", [10], per_day=19)

    anomalies = generate_period_summary("2025-09", events).anomalies

    assert [(d.date, d.count) for d in anomalies.high_count_days] == [("2025-09-10", 20)]
    assert anomalies.zero_days == []


def test_uniform_month_has_no_high_count_days():
    events = events_in_month("2025-09", range(1, 31), per_day=4)

    anomalies = generate_period_summary("2025-09", events).anomalies

    assert anomalies.high_count_days == []
    assert anomalies.zero_days == []


def test_zero_and_active_days_cover_the_whole_month():
    events = events_in_month("2024-02", [2, 3, 5, 8, 13, 21], per_day=2)

    summary = generate_period_summary("2024-02", events)
    active_days = {e.day for e in events}

    assert len(summary.anomalies.zero_days) + len(active_days) == 29


def test_empty_event_list():
    summary = generate_period_summary("2025-08", [])

    assert summary.event_count == 0
    assert summary.event_counts == {}
    assert summary.session_stats.total_sessions == 0
    assert summary.session_stats.avg_events_per_session == 0
    assert summary.session_stats.longest_session.session_id == "none"
    assert summary.session_stats.longest_session.event_count == 0
    assert len(summary.anomalies.zero_days) == 31
    assert summary.anomalies.high_count_days == []
    assert summary.source_files == []


def test_source_files_are_derived_from_utc_days_and_merged_with_extra_names():
    events = [
        make_event("2025-08-03T12:00:00Z"),
        make_event("2025-08-01T12:00:00Z"),
        make_event("2025-08-01T13:00:00Z"),
    ]

    summary = generate_period_summary(
        "2025-08", events, source_files=["events-2025-08-02.jsonl", "events-2025-08-01.jsonl"],
    )

    assert summary.source_files == [
        "events-2025-08-01.jsonl",
        "events-2025-08-02.jsonl",
        "events-2025-08-03.jsonl",
    ]


def test_statistics_do_not_depend_on_input_order():
    events = [
        _skill("2025-08-04T08:00:00Z", "Research", session="a"),
        _error("2025-08-05T09:00:00Z", "timeout", session="b"),
        make_event("2025-08-05T10:00:00Z", session_id="a"),
    ]

    first = generate_period_summary("2025-08", events).to_dict()
    second = generate_period_summary("2025-08", list(reversed(events))).to_dict()

    for key in ("id", "createdAt"):
        first.pop(key)
        second.pop(key)
    assert first == second


def test_each_summary_gets_its_own_id_and_utc_timestamp():
    a = generate_period_summary("2025-08", [])
    b = generate_period_summary("2025-08", [])

    assert a.id != b.id
    assert a.created_at.endswith("Z")


def test_invalid_period_is_rejected():
    with pytest.raises(ValueError):
        generate_period_summary("2025-8", [])


def test_serialized_form_uses_camel_case_keys():
    summary = generate_period_summary("2025-08", [_skill("2025-08-01T08:00:00Z", "Research")])

    data = json.loads(summary.to_json())

    assert set(data) == {
        "id", "period", "createdAt", "eventCount", "eventCounts", "topPatterns",
        "timeDistribution", "sessionStats", "anomalies", "sourceFiles",
    }
    assert data["sessionStats"]["longestSession"] == {"sessionId": "sess-1", "eventCount": 1}
    assert data["topPatterns"]["skills"] == [{"name": "Research", "count": 1}]
    assert PeriodSummary.from_json(summary.to_json()) == summary


@pytest.mark.parametrize("broken", [
    "not json",
    "[1, 2]",
    json.dumps({"period": "2025-08"}),
    json.dumps({"id": "x", "period": "August"}),
])
def test_malformed_summary_raises_summary_format_error(broken):
    with pytest.raises(SummaryFormatError):
        PeriodSummary.from_json(broken)


def test_helpers():
    assert len(days_in_month("2023-02")) == 28
    assert days_in_month("2024-02")[-1] == "2024-02-29"

    from collections import Counter
    ranked = top_n(Counter({"a": 1, "b": 5, "c": 5}), n=2)
    assert [(p.name, p.count) for p in ranked] == [("b", 5), ("c", 5)]
