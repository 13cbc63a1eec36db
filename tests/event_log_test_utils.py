"""Builders for synthetic events and daily log files used across the test suite."""
from __future__ import annotations

import itertools
import json
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from memory.event_store import Event

_ids = itertools.count(1)


def make_event(
    timestamp: str,
    type: str = "custom",
    session_id: str = "sess-1",
    data: Optional[Dict[str, Any]] = None,
    event_id: Optional[str] = None,
) -> Event:
    return Event(
        id=event_id or f"evt-{next(_ids)}",
        timestamp=timestamp,
        session_id=session_id,
        type=type,
        data=data or {},
    )


def write_events(log_dir: Path, events: Iterable[Event]) -> List[Path]:
    """Append *events* to their daily files under *log_dir*; returns the files touched."""
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    by_file: Dict[str, List[Event]] = defaultdict(list)
    for e in events:
        by_file[e.file_name].append(e)
    written = []
    for name, group in sorted(by_file.items()):
        path = log_dir / name
        with path.open("a", encoding="utf-8") as fh:
            for e in group:
                fh.write(e.to_json_line())
        written.append(path)
    return written


def events_in_month(period: str, days: Iterable[int], per_day: int = 1, **kwargs) -> List[Event]:
    """*per_day* events on each listed day of *period*, spread over the morning."""
    events = []
    for day in days:
        for n in range(per_day):
            events.append(make_event(f"{period}-{day:02d}T{8 + n % 12:02d}:{n % 60:02d}:00.000Z", **kwargs))
    return events


def snapshot_tree(root: Path) -> Dict[str, bytes]:
    """Relative path → bytes for every file under *root* (``index.db*`` excluded)."""
    root = Path(root)
    if not root.exists():
        return {}
    return {
        str(p.relative_to(root)): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file() and not p.name.startswith("index.db")
    }


def read_jsonl_ids(path: Path) -> List[str]:
    ids = []
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        if line.strip():
            ids.append(json.loads(line)["id"])
    return ids


FIXED_NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
