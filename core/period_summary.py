"""
Period summaries: the permanent statistical record of a compacted month.

``generate_period_summary`` is pure.  Given the same ``(period, events)`` it
always produces the same statistics; only ``id`` and ``created_at`` differ
between calls.  It performs no I/O, so it is also usable for ad-hoc reports
over any slice of events.

The serialized form (``to_dict`` / ``from_dict``) uses the camelCase keys of
the on-disk ``summary-YYYY-MM.json`` files.
"""
from __future__ import annotations

import calendar
import json
import re
import statistics
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from core.exceptions import SummaryFormatError
from core.period_detector import parse_period
from memory.event_store import Event, EventType, event_file_name

TOP_N = 10
DAY_NAMES = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]  # datetime.weekday() order
_PERIOD_RE = re.compile(r"^\d{4}-\d{2}$")

# (event type, payload field) pairs feeding the two ranked pattern lists
SKILL_PATTERN_SOURCE = (EventType.SKILL_INVOKED, "skill")
ERROR_PATTERN_SOURCE = (EventType.ERROR, "error")


@dataclass(frozen=True)
class PatternCount:
    name: str
    count: int


@dataclass(frozen=True)
class TopPatterns:
    skills: List[PatternCount] = field(default_factory=list)
    errors: List[PatternCount] = field(default_factory=list)


@dataclass(frozen=True)
class TimeDistribution:
    by_day_of_week: Dict[str, int] = field(default_factory=dict)
    by_hour: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class LongestSession:
    session_id: str = "none"
    event_count: int = 0


@dataclass(frozen=True)
class SessionStats:
    total_sessions: int = 0
    avg_events_per_session: float = 0.0
    longest_session: LongestSession = field(default_factory=LongestSession)


@dataclass(frozen=True)
class HighCountDay:
    date: str
    count: int


@dataclass(frozen=True)
class Anomalies:
    zero_days: List[str] = field(default_factory=list)
    high_count_days: List[HighCountDay] = field(default_factory=list)


@dataclass(frozen=True)
class PeriodSummary:
    id: str
    period: str
    created_at: str
    event_count: int
    event_counts: Dict[str, int]
    top_patterns: TopPatterns
    time_distribution: TimeDistribution
    session_stats: SessionStats
    anomalies: Anomalies
    source_files: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "period": self.period,
            "createdAt": self.created_at,
            "eventCount": self.event_count,
            "eventCounts": dict(self.event_counts),
            "topPatterns": {
                "skills": [{"name": p.name, "count": p.count} for p in self.top_patterns.skills],
                "errors": [{"name": p.name, "count": p.count} for p in self.top_patterns.errors],
            },
            "timeDistribution": {
                "byDayOfWeek": dict(self.time_distribution.by_day_of_week),
                "byHour": dict(self.time_distribution.by_hour),
            },
            "sessionStats": {
                "totalSessions": self.session_stats.total_sessions,
                "avgEventsPerSession": self.session_stats.avg_events_per_session,
                "longestSession": {
                    "sessionId": self.session_stats.longest_session.session_id,
                    "eventCount": self.session_stats.longest_session.event_count,
                },
            },
            "anomalies": {
                "zeroDays": list(self.anomalies.zero_days),
                "highCountDays": [
                    {"date": d.date, "count": d.count} for d in self.anomalies.high_count_days
                ],
            },
            "sourceFiles": list(self.source_files),
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PeriodSummary":
        """Rebuild a summary from its serialized form.

        Raises:
            SummaryFormatError: if a field is missing or has the wrong shape.
        """
        try:
            period = data["period"]
            if not isinstance(period, str) or not _PERIOD_RE.match(period):
                raise SummaryFormatError(f"Invalid period {period!r}")
            summary_id = data["id"]
            if not isinstance(summary_id, str) or not summary_id:
                raise SummaryFormatError("Summary id must be a non-empty string")
            patterns = data["topPatterns"]
            distribution = data["timeDistribution"]
            sessions = data["sessionStats"]
            longest = sessions["longestSession"]
            anomalies = data["anomalies"]
            return cls(
                id=summary_id,
                period=period,
                created_at=str(data["createdAt"]),
                event_count=int(data["eventCount"]),
                event_counts={str(k): int(v) for k, v in data["eventCounts"].items()},
                top_patterns=TopPatterns(
                    skills=[PatternCount(str(p["name"]), int(p["count"])) for p in patterns["skills"]],
                    errors=[PatternCount(str(p["name"]), int(p["count"])) for p in patterns["errors"]],
                ),
                time_distribution=TimeDistribution(
                    by_day_of_week={str(k): int(v) for k, v in distribution["byDayOfWeek"].items()},
                    by_hour={str(k): int(v) for k, v in distribution["byHour"].items()},
                ),
                session_stats=SessionStats(
                    total_sessions=int(sessions["totalSessions"]),
                    avg_events_per_session=float(sessions["avgEventsPerSession"]),
                    longest_session=LongestSession(
                        session_id=str(longest["sessionId"]),
                        event_count=int(longest["eventCount"]),
                    ),
                ),
                anomalies=Anomalies(
                    zero_days=[str(d) for d in anomalies["zeroDays"]],
                    high_count_days=[
                        HighCountDay(str(d["date"]), int(d["count"]))
                        for d in anomalies["highCountDays"]
                    ],
                ),
                source_files=[str(f) for f in data["sourceFiles"]],
            )
        except SummaryFormatError:
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise SummaryFormatError(f"Malformed period summary: {exc!r}") from exc

    @classmethod
    def from_json(cls, text: str) -> "PeriodSummary":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise SummaryFormatError(f"Summary is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise SummaryFormatError("Summary must be a JSON object")
        return cls.from_dict(data)


# ── Pure helpers ──────────────────────────────────────────────────────────────

def days_in_month(period: str) -> List[str]:
    """Every calendar day of *period* as ``YYYY-MM-DD``."""
    year, month = parse_period(period)
    last_day = calendar.monthrange(year, month)[1]
    return [f"{period}-{day:02d}" for day in range(1, last_day + 1)]


def top_n(counts: Counter, n: int = TOP_N) -> List[PatternCount]:
    """Highest *n* counts; ties keep first-seen order.

    ``Counter`` preserves insertion order and ``sorted`` is stable, so equal
    counts stay in the order their names first appeared.
    """
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [PatternCount(name, count) for name, count in ranked[:n]]


def _pattern_counts(events: Iterable[Event], source) -> Counter:
    event_type, payload_field = source
    counts: Counter = Counter()
    for e in events:
        if e.type != event_type:
            continue
        value = e.data.get(payload_field)
        if isinstance(value, str):
            counts[value] += 1
    return counts


def _time_distribution(events: Sequence[Event]) -> TimeDistribution:
    by_day: Dict[str, int] = {}
    by_hour: Dict[str, int] = {}
    for e in events:
        day_name = DAY_NAMES[e.timestamp.weekday()]
        by_day[day_name] = by_day.get(day_name, 0) + 1
        hour = f"{e.timestamp.hour:02d}"
        by_hour[hour] = by_hour.get(hour, 0) + 1
    return TimeDistribution(by_day_of_week=by_day, by_hour=by_hour)


def _session_stats(events: Sequence[Event]) -> SessionStats:
    per_session: Counter = Counter(e.session_id for e in events)
    total = len(per_session)
    if total == 0:
        return SessionStats()

    longest = LongestSession()
    for session_id, count in per_session.items():
        # strict ">" keeps the first session to reach the maximum
        if count > longest.event_count:
            longest = LongestSession(session_id=session_id, event_count=count)
    return SessionStats(
        total_sessions=total,
        avg_events_per_session=round(len(events) / total, 2),
        longest_session=longest,
    )


def _anomalies(period: str, events: Sequence[Event]) -> Anomalies:
    daily = {day: 0 for day in days_in_month(period)}
    for e in events:
        if e.day in daily:
            daily[e.day] += 1

    zero_days = [day for day, count in daily.items() if count == 0]

    counts = list(daily.values())
    mean = statistics.fmean(counts)
    stddev = statistics.pstdev(counts, mu=mean)
    high_days: List[HighCountDay] = []
    if stddev > 0:
        threshold = mean + 2 * stddev
        high_days = [HighCountDay(day, count) for day, count in daily.items() if count > threshold]
    return Anomalies(zero_days=zero_days, high_count_days=high_days)


def generate_period_summary(
    period: str,
    events: Sequence[Event],
    source_files: Optional[Iterable[str]] = None,
) -> PeriodSummary:
    """Summarize *events* of the month *period*.

    Args:
        period: ``YYYY-MM`` key of the month.
        events: The month's events, in any order.
        source_files: Extra daily file names to record as folded into this
            summary (e.g. files whose lines were all malformed).  File names
            derived from the events' UTC days are always included.

    Raises:
        ValueError: if *period* is not a valid ``YYYY-MM`` key.
    """
    parse_period(period)
    events = list(events)

    event_counts: Dict[str, int] = {}
    for e in events:
        event_counts[e.type.value] = event_counts.get(e.type.value, 0) + 1

    files = {event_file_name(e.day) for e in events}
    if source_files:
        files.update(source_files)

    return PeriodSummary(
        id=uuid.uuid4().hex,
        period=period,
        created_at=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        event_count=len(events),
        event_counts=event_counts,
        top_patterns=TopPatterns(
            skills=top_n(_pattern_counts(events, SKILL_PATTERN_SOURCE)),
            errors=top_n(_pattern_counts(events, ERROR_PATTERN_SOURCE)),
        ),
        time_distribution=_time_distribution(events),
        session_stats=_session_stats(events),
        anomalies=_anomalies(period, events),
        source_files=sorted(files),
    )
