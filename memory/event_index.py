"""
EventIndex: SQLite secondary index over the daily event log.

Two logical tables:

- **events**: a thin projection (id, timestamp, session, type; no payload) of
  the active window, for fast filtering without opening JSONL files.
- **summaries**: one row per compacted period holding the full serialized
  :class:`~core.period_summary.PeriodSummary`.

The index is derived data.  The daily files and the archive are the sources
of truth, so a corrupt ``index.db`` is simply deleted and recreated, and
:func:`rebuild_index` can re-derive everything at any time.

WAL journaling lets read-only connections query the active window while the
compaction engine holds the write lock.

Usage::

    from memory.event_index import init_index, rebuild_index
    with init_index(log_dir) as index:
        if index.needs_rebuild:
            index.rebuild(log_dir, archive_root)
        errors = index.query_events(type="error", since=week_ago)
"""
from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

from core.archiver import load_archived_summaries
from core.config_manager import config
from core.exceptions import EventIndexError, SummaryFormatError
from core.logging_utils import log_json
from core.period_summary import PeriodSummary
from core.runtime_paths import resolve_archive_dir
from core.storage import Storage
from memory.event_store import Event, EventType, list_event_files, read_event_file, read_events

INDEX_FILE_NAME = "index.db"
SCHEMA_VERSION = "1"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    id          TEXT PRIMARY KEY,
    timestamp   TEXT NOT NULL,
    session_id  TEXT NOT NULL,
    type        TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_events_type ON events(type);
CREATE INDEX IF NOT EXISTS idx_events_session ON events(session_id);
CREATE INDEX IF NOT EXISTS idx_events_timestamp ON events(timestamp);

CREATE TABLE IF NOT EXISTS summaries (
    id          TEXT PRIMARY KEY,
    period      TEXT NOT NULL UNIQUE,
    created_at  TEXT NOT NULL,
    event_count INTEGER NOT NULL,
    data        TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

_INSERT_EVENT = (
    "INSERT OR IGNORE INTO events (id, timestamp, session_id, type) VALUES (?, ?, ?, ?)"
)
_INSERT_SUMMARY = (
    "INSERT OR REPLACE INTO summaries (id, period, created_at, event_count, data) "
    "VALUES (?, ?, ?, ?, ?)"
)


@dataclass(frozen=True)
class IndexedEvent:
    """Payload-free projection of an :class:`~memory.event_store.Event`."""

    id: str
    timestamp: str
    session_id: str
    type: str


def _ts(value: datetime) -> str:
    """Fixed-width UTC text so that string order equals time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def _event_row(event: Event) -> Tuple[str, str, str, str]:
    return (event.id, _ts(event.timestamp), event.session_id, event.type.value)


def _summary_row(summary: PeriodSummary) -> Tuple[str, str, str, int, str]:
    return (
        summary.id,
        summary.period,
        summary.created_at,
        summary.event_count,
        json.dumps(summary.to_dict()),
    )


class EventIndex:
    """Handle on ``<log_dir>/index.db``.

    Args:
        db_path: Location of the SQLite file.  Its parent directory is
            created if needed.
        fresh: Delete any existing file first and start empty.

    Attributes:
        needs_rebuild: ``True`` when the file could not be opened and was
            recreated empty; callers should run :meth:`rebuild`.

    Raises:
        EventIndexError: if the database cannot be created even from scratch.
    """

    def __init__(self, db_path: Union[str, Path], fresh: bool = False):
        self.db_path = Path(db_path)
        self.needs_rebuild = False
        self._conn: Optional[sqlite3.Connection] = None
        if fresh:
            self._discard_files()
            self.needs_rebuild = True
        self._conn = self._open()

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.executescript(_SCHEMA)
            with conn:
                conn.execute(
                    "INSERT OR IGNORE INTO meta (key, value) VALUES ('schema_version', ?)",
                    (SCHEMA_VERSION,),
                )
        except sqlite3.DatabaseError:
            conn.close()
            raise
        return conn

    def _open(self) -> sqlite3.Connection:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise EventIndexError(f"Cannot create index directory: {exc}") from exc

        try:
            return self._connect()
        except sqlite3.DatabaseError as exc:
            log_json("WARN", "event_index_corrupt",
                     details={"path": str(self.db_path), "error": str(exc)})

        self._discard_files()
        self.needs_rebuild = True
        try:
            conn = self._connect()
        except sqlite3.DatabaseError as exc:
            raise EventIndexError(f"Cannot create index at {self.db_path}: {exc}") from exc
        log_json("INFO", "event_index_recreated", details={"path": str(self.db_path)})
        return conn

    def _discard_files(self) -> None:
        for suffix in ("", "-wal", "-shm"):
            candidate = Path(f"{self.db_path}{suffix}")
            try:
                candidate.unlink(missing_ok=True)
            except OSError as exc:
                raise EventIndexError(f"Cannot delete corrupt index {candidate}: {exc}") from exc

    @property
    def closed(self) -> bool:
        return self._conn is None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise EventIndexError("Event index is closed")
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "EventIndex":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ── Events table ──────────────────────────────────────────────────────────

    def index_event(self, event: Event) -> None:
        with self.conn:
            self.conn.execute(_INSERT_EVENT, _event_row(event))

    def index_events(self, events: Iterable[Event]) -> int:
        """Insert *events* in one transaction; duplicates are ignored.  Returns rows added."""
        with self.conn:
            cursor = self.conn.executemany(_INSERT_EVENT, (_event_row(e) for e in events))
        return max(cursor.rowcount, 0)

    def remove_entries(self, period: str) -> int:
        """Drop event rows of the month *period*.  Returns the number removed."""
        with self.conn:
            cursor = self.conn.execute(
                "DELETE FROM events WHERE timestamp LIKE ?", (f"{period}-%",)
            )
        return cursor.rowcount

    def query_events(
        self,
        type: Union[EventType, str, None] = None,
        session_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[IndexedEvent]:
        """Filter the active window without reading any JSONL file."""
        clauses, params = [], []
        if type is not None:
            clauses.append("type = ?")
            params.append(EventType(type).value)
        if session_id is not None:
            clauses.append("session_id = ?")
            params.append(session_id)
        if since is not None:
            clauses.append("timestamp >= ?")
            params.append(_ts(since))
        if until is not None:
            clauses.append("timestamp <= ?")
            params.append(_ts(until))

        sql = "SELECT id, timestamp, session_id, type FROM events"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY timestamp, id"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        rows = self.conn.execute(sql, params).fetchall()
        return [IndexedEvent(*row) for row in rows]

    def count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]

    # ── Summaries table ───────────────────────────────────────────────────────

    def insert_summary(self, summary: PeriodSummary) -> None:
        with self.conn:
            self.conn.execute(_INSERT_SUMMARY, _summary_row(summary))

    def query_summaries(self, period: Optional[str] = None) -> List[PeriodSummary]:
        """Stored summaries, ordered by period.  Rows that fail to parse are dropped."""
        if period is not None:
            rows = self.conn.execute(
                "SELECT data FROM summaries WHERE period = ?", (period,)
            ).fetchall()
        else:
            rows = self.conn.execute("SELECT data FROM summaries ORDER BY period").fetchall()

        summaries = []
        for (data,) in rows:
            try:
                summaries.append(PeriodSummary.from_json(data))
            except SummaryFormatError as exc:
                log_json("WARN", "event_index_summary_unreadable", details={"error": str(exc)})
        return summaries

    def schema_version(self) -> Optional[str]:
        row = self.conn.execute("SELECT value FROM meta WHERE key = 'schema_version'").fetchone()
        return row[0] if row else None

    # ── Rebuild ───────────────────────────────────────────────────────────────

    def rebuild(
        self,
        log_dir: Union[str, Path],
        archive_root: Union[str, Path, None] = None,
        storage: Storage = None,
    ) -> Tuple[int, int]:
        """Replace the index contents with what the daily files and archive hold.

        Runs as a single transaction.  Returns ``(events_indexed, summaries_indexed)``.
        """
        log_dir = Path(log_dir)
        summaries = load_archived_summaries(archive_root, storage) if archive_root is not None else []
        events_indexed = 0
        with self.conn:
            self.conn.execute("DELETE FROM events")
            self.conn.execute("DELETE FROM summaries")
            for name, _day in list_event_files(log_dir, storage):
                try:
                    events = read_event_file(log_dir / name, storage)
                except (OSError, UnicodeDecodeError) as exc:
                    log_json("WARN", "event_file_unreadable", details={"file": name, "error": str(exc)})
                    continue
                cursor = self.conn.executemany(_INSERT_EVENT, [_event_row(e) for e in events])
                events_indexed += max(cursor.rowcount, 0)
            for summary in summaries:
                self.conn.execute(_INSERT_SUMMARY, _summary_row(summary))
        self.needs_rebuild = False
        log_json("INFO", "event_index_rebuilt",
                 details={"events": events_indexed, "summaries": len(summaries)})
        return events_indexed, len(summaries)


class NullEventIndex:
    """Drop-in for :class:`EventIndex` that stores nothing.

    Writes are no-ops; reads fall back to scanning the daily log and the
    archive.  Used when the index is disabled (``use_index = false``).
    """

    needs_rebuild = False

    def __init__(self, log_dir: Union[str, Path], archive_root: Union[str, Path, None] = None,
                 storage: Storage = None):
        self.log_dir = Path(log_dir)
        self.archive_root = archive_root
        self.storage = storage
        self.closed = False

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> "NullEventIndex":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def index_event(self, event: Event) -> None:
        return None

    def index_events(self, events: Iterable[Event]) -> int:
        return 0

    def remove_entries(self, period: str) -> int:
        return 0

    def insert_summary(self, summary: PeriodSummary) -> None:
        return None

    def query_events(self, type=None, session_id=None, since=None, until=None, limit=None) -> List[IndexedEvent]:
        events = read_events(self.log_dir, type=type, session_id=session_id,
                             since=since, until=until, limit=limit, storage=self.storage)
        return [IndexedEvent(*_event_row(e)) for e in events]

    def count(self) -> int:
        return len(read_events(self.log_dir, storage=self.storage))

    def query_summaries(self, period: Optional[str] = None) -> List[PeriodSummary]:
        if self.archive_root is None:
            return []
        summaries = load_archived_summaries(self.archive_root, self.storage)
        if period is not None:
            summaries = [s for s in summaries if s.period == period]
        return summaries

    def rebuild(self, log_dir=None, archive_root=None, storage=None) -> Tuple[int, int]:
        return 0, 0


# ── Module-level API ──────────────────────────────────────────────────────────

def index_path(log_dir: Union[str, Path]) -> Path:
    return Path(log_dir) / INDEX_FILE_NAME


def init_index(log_dir: Union[str, Path]) -> EventIndex:
    """Open (creating or recovering as needed) the index for *log_dir*."""
    return EventIndex(index_path(log_dir))


def index_event(handle: EventIndex, event: Event) -> None:
    handle.index_event(event)


def index_events(handle: EventIndex, events: Iterable[Event]) -> int:
    return handle.index_events(events)


def remove_index_entries(handle: EventIndex, period: str) -> int:
    return handle.remove_entries(period)


def insert_summary(handle: EventIndex, summary: PeriodSummary) -> None:
    handle.insert_summary(summary)


def query_summaries(handle: EventIndex, period: Optional[str] = None) -> List[PeriodSummary]:
    return handle.query_summaries(period)


def rebuild_index(
    log_dir: Union[str, Path],
    archive_root: Union[str, Path, None] = None,
    storage: Storage = None,
) -> Tuple[int, int]:
    """Delete ``index.db`` and re-derive it from the daily files and archive.

    *archive_root* defaults to the configured archive directory.
    Returns ``(events_indexed, summaries_indexed)``.

    Raises:
        EventIndexError: if the index cannot be created.
    """
    if archive_root is None:
        archive_root = resolve_archive_dir(config.get("archive_dir"))
    with EventIndex(index_path(log_dir), fresh=True) as handle:
        return handle.rebuild(log_dir, archive_root, storage)
