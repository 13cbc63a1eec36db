"""
Append-only daily event log.

Events are written as newline-delimited JSON, one file per UTC day::

    <events_dir>/events-2025-08-14.jsonl

This module is the writer side (``append_event`` / ``log_event``) and the
filtered reader (``read_events``) that the compaction engine consumes.  Lines
that fail to parse or validate are skipped; the rest of the file is still read.

Usage::

    from memory.event_store import log_event, read_events, EventType
    log_event(EventType.SKILL_INVOKED, {"skill": "Research"}, session_id="s-1")
    recent = read_events(type=EventType.ERROR, since=datetime(2025, 8, 1, tzinfo=timezone.utc))
"""
from __future__ import annotations

import json
import os
import re
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core.config_manager import config
from core.logging_utils import log_json
from core.result import Err, Ok, Result, err_from
from core.runtime_paths import resolve_events_dir as _resolve_events_path
from core.storage import Storage, get_storage

EVENT_FILE_PATTERN = re.compile(r"^events-(\d{4}-\d{2}-\d{2})\.jsonl$")


class EventType(str, Enum):
    SESSION_START = "session_start"
    SESSION_END = "session_end"
    SKILL_INVOKED = "skill_invoked"
    ISC_VERIFIED = "isc_verified"
    LEARNING_EXTRACTED = "learning_extracted"
    PROPOSAL_ACCEPTED = "proposal_accepted"
    PROPOSAL_REJECTED = "proposal_rejected"
    ERROR = "error"
    CUSTOM = "custom"


class Event(BaseModel):
    """A single immutable interaction record."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(min_length=1)
    timestamp: datetime
    session_id: str = Field(alias="sessionId", min_length=1)
    type: EventType
    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _require_iso_string(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return value
        if not isinstance(value, str):
            raise ValueError("timestamp must be an ISO-8601 string")
        return value

    @field_validator("timestamp")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @property
    def day(self) -> str:
        """UTC calendar day of the event as ``YYYY-MM-DD``."""
        return self.timestamp.strftime("%Y-%m-%d")

    @property
    def file_name(self) -> str:
        return event_file_name(self.day)

    def to_json_line(self) -> str:
        return json.dumps(self.model_dump(mode="json", by_alias=True)) + "\n"


@dataclass(frozen=True)
class AppendReceipt:
    event_id: str
    file: str


def event_file_name(day: str) -> str:
    return f"events-{day}.jsonl"


def new_event_id() -> str:
    return uuid.uuid4().hex


def resolve_events_dir(events_dir: Union[str, Path, None] = None) -> Path:
    """Explicit argument, then configured ``events_dir``, then ``~/.pai/events``."""
    if events_dir is None:
        events_dir = config.get("events_dir")
    return _resolve_events_path(events_dir)


def parse_event_line(line: str) -> Optional[Event]:
    """Parse one JSONL line; ``None`` for blank, malformed or invalid lines."""
    line = line.strip()
    if not line:
        return None
    try:
        return Event.model_validate(json.loads(line))
    except (json.JSONDecodeError, ValidationError, TypeError):
        return None


def list_event_files(events_dir: Union[str, Path], storage: Storage = None) -> List[Tuple[str, str]]:
    """Return ``(file_name, YYYY-MM-DD)`` for every daily file, sorted by name.

    A missing directory yields an empty list.
    """
    storage = get_storage(storage)
    try:
        names = storage.list_dir(events_dir)
    except (FileNotFoundError, NotADirectoryError):
        return []
    files = []
    for name in sorted(names):
        match = EVENT_FILE_PATTERN.match(name)
        if match:
            files.append((name, match.group(1)))
    return files


def read_event_file(path: Union[str, Path], storage: Storage = None) -> List[Event]:
    """Read every valid event from one daily file, skipping bad lines."""
    storage = get_storage(storage)
    content = storage.read_text(path)
    events = []
    skipped = 0
    for line in content.splitlines():
        if not line.strip():
            continue
        event = parse_event_line(line)
        if event is None:
            skipped += 1
            continue
        events.append(event)
    if skipped:
        log_json("WARN", "event_lines_skipped",
                 details={"file": os.path.basename(str(path)), "skipped": skipped})
    return events


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def append_event(
    event: Union[Event, Dict[str, Any]],
    events_dir: Union[str, Path, None] = None,
    storage: Storage = None,
) -> Result[AppendReceipt]:
    """Validate *event* and append it to the file for its UTC day."""
    try:
        if not isinstance(event, Event):
            event = Event.model_validate(event)
    except ValidationError as exc:
        return Err(str(exc))

    storage = get_storage(storage)
    try:
        directory = resolve_events_dir(events_dir)
        storage.make_dirs(directory)
        storage.append_text(directory / event.file_name, event.to_json_line())
    except OSError as exc:
        log_json("ERROR", "event_append_failed", details={"event_id": event.id, "error": str(exc)})
        return err_from(exc)
    return Ok(AppendReceipt(event_id=event.id, file=event.file_name))


def log_event(
    type: Union[EventType, str],
    data: Dict[str, Any],
    session_id: Optional[str] = None,
    events_dir: Union[str, Path, None] = None,
    storage: Storage = None,
) -> Result[AppendReceipt]:
    """Build an event stamped with the current time and append it."""
    try:
        event = Event(
            id=new_event_id(),
            timestamp=datetime.now(timezone.utc),
            session_id=session_id or os.environ.get("PAI_SESSION_ID") or "unknown",
            type=type,
            data=data,
        )
    except ValidationError as exc:
        return Err(str(exc))
    return append_event(event, events_dir=events_dir, storage=storage)


def read_events(
    events_dir: Union[str, Path, None] = None,
    type: Union[EventType, str, None] = None,
    session_id: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: Optional[int] = None,
    storage: Storage = None,
) -> List[Event]:
    """Return events matching every given filter, oldest first.

    *since* and *until* are inclusive bounds.  Daily files outside the range
    are not opened at all.
    """
    storage = get_storage(storage)
    directory = resolve_events_dir(events_dir)
    since_utc = _utc(since) if since is not None else None
    until_utc = _utc(until) if until is not None else None
    since_day = since_utc.strftime("%Y-%m-%d") if since_utc else None
    until_day = until_utc.strftime("%Y-%m-%d") if until_utc else None
    wanted_type = EventType(type) if type is not None else None

    events: List[Event] = []
    for name, day in list_event_files(directory, storage):
        if since_day and day < since_day:
            continue
        if until_day and day > until_day:
            continue
        try:
            file_events = read_event_file(directory / name, storage)
        except (OSError, UnicodeDecodeError) as exc:
            log_json("WARN", "event_file_unreadable", details={"file": name, "error": str(exc)})
            continue
        for event in file_events:
            if wanted_type is not None and event.type != wanted_type:
                continue
            if session_id is not None and event.session_id != session_id:
                continue
            if since_utc is not None and event.timestamp < since_utc:
                continue
            if until_utc is not None and event.timestamp > until_utc:
                continue
            events.append(event)

    events.sort(key=lambda e: e.timestamp)
    if limit is not None:
        return events[:limit]
    return events


def count_events(**filters: Any) -> Dict[str, int]:
    """Count events per type; accepts the same filters as :func:`read_events`."""
    counts = Counter(event.type.value for event in read_events(**filters))
    return dict(counts)
