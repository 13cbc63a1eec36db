"""
Event-log Compaction.

Prevents the daily event log from growing unboundedly.  Whole calendar months
older than the retention window are folded into a statistical
:class:`~core.period_summary.PeriodSummary`, their raw daily files are copied
into the archive tree, the secondary index is updated, and only then are the
originals deleted from the live log.

Every step is safe to repeat: the summary sentinel marks a month as done, so
re-running after a crash or partial failure only finishes what is missing.
Duplicated data (present in both log and archive) is the failure mode; data
loss is not.

Usage::

    from core.memory_compaction import CompactionOptions, compact_events
    result = compact_events(CompactionOptions(retention_days=90))
    if result.ok:
        print(result.value.periods_processed)

    loop = EventCompactionLoop()
    loop.on_session_end()        # auto-trigger, returns a one-line message or None
"""
from __future__ import annotations

import sqlite3
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from core.archiver import (
    archive_period,
    archive_year_dir,
    is_already_archived,
    load_summary,
    remove_source_files,
)
from core.config_manager import config, validate_value
from core.exceptions import ConfigurationError, EventIndexError, SummaryFormatError
from core.logging_utils import log_json
from core.period_detector import compute_cutoff, find_eligible_periods, list_period_files, period_bounds
from core.period_summary import generate_period_summary
from core.result import Err, Ok, Result, err_from
from core.runtime_paths import resolve_archive_dir
from core.storage import Storage, get_storage
from memory.event_index import NullEventIndex, init_index
from memory.event_store import read_events, resolve_events_dir

DEFAULT_RETENTION_DAYS: int = 90
DEFAULT_MAX_PERIODS_PER_RUN: int = 3


@dataclass
class CompactionOptions:
    """Unset fields fall back to the configuration, then to the defaults."""

    log_dir: Union[str, Path, None] = None
    archive_root: Union[str, Path, None] = None
    retention_days: Optional[int] = None
    max_periods_per_run: Optional[int] = None
    use_index: Optional[bool] = None
    now: Optional[datetime] = None
    storage: Optional[Storage] = None


@dataclass
class CompactionStats:
    periods_processed: int = 0
    periods_skipped: int = 0
    events_archived: int = 0
    summaries_created: int = 0
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


CompactionResult = Result[CompactionStats]


@dataclass(frozen=True)
class _Settings:
    log_dir: Path
    archive_root: Path
    retention_days: int
    max_periods_per_run: int
    use_index: bool
    now: Optional[datetime]
    storage: Storage


def _pick(explicit: Any, key: str) -> Any:
    if explicit is None:
        return config.get(key)
    return validate_value(key, explicit)


def _resolve(options: CompactionOptions) -> _Settings:
    retention_days = _pick(options.retention_days, "retention_days")
    max_periods = _pick(options.max_periods_per_run, "max_periods_per_run")
    use_index = _pick(options.use_index, "use_index")
    archive_root = options.archive_root if options.archive_root is not None else config.get("archive_dir")
    return _Settings(
        log_dir=resolve_events_dir(options.log_dir),
        archive_root=resolve_archive_dir(archive_root),
        retention_days=DEFAULT_RETENTION_DAYS if retention_days is None else retention_days,
        max_periods_per_run=DEFAULT_MAX_PERIODS_PER_RUN if max_periods is None else max_periods,
        use_index=True if use_index is None else use_index,
        now=options.now,
        storage=get_storage(options.storage),
    )


# ── Public API ────────────────────────────────────────────────────────────────

def compact_events(options: Optional[CompactionOptions] = None) -> CompactionResult:
    """Compact every eligible period, up to the per-run cap.  Never raises."""
    try:
        settings = _resolve(options or CompactionOptions())
    except ConfigurationError as exc:
        log_json("ERROR", "compaction_options_invalid", details={"error": str(exc)})
        return err_from(exc, "Invalid compaction options: ")
    except Exception as exc:
        log_json("ERROR", "compaction_failed", details={"error": str(exc)})
        return err_from(exc)

    try:
        return _run(settings)
    except Exception as exc:
        log_json("ERROR", "compaction_failed", details={"error": str(exc)})
        return err_from(exc)


def format_compaction_message(result: CompactionResult) -> Optional[str]:
    """One-line status for the end of a session, or ``None`` if nothing happened."""
    if not result.ok:
        return f"Compaction warning: {result.error}"
    stats = result.value
    if stats.periods_processed == 0:
        return None
    plural = "s" if stats.periods_processed > 1 else ""
    return f"Compacted {stats.events_archived} events ({stats.periods_processed} period{plural}) → archive"


class EventCompactionLoop:
    """Trigger compaction at the end of a session."""

    def __init__(self, options: Optional[CompactionOptions] = None):
        self.options = options or CompactionOptions()
        self.last_result: Optional[CompactionResult] = None

    def on_session_end(self, _session_id: Optional[str] = None) -> Optional[str]:
        """Compact and return the user-facing message, if any.  Never raises."""
        self.last_result = self.run()
        return format_compaction_message(self.last_result)

    def run(self) -> CompactionResult:
        return compact_events(self.options)


# ── Internal ──────────────────────────────────────────────────────────────────

def _open_index(settings: _Settings):
    if not settings.use_index:
        return NullEventIndex(settings.log_dir, settings.archive_root, settings.storage)
    return init_index(settings.log_dir)


def _run(settings: _Settings) -> CompactionResult:
    cutoff = compute_cutoff(settings.retention_days, settings.now)
    eligible = find_eligible_periods(settings.log_dir, cutoff, settings.storage)
    stats = CompactionStats()
    if not eligible:
        log_json("INFO", "compaction_nothing_eligible",
                 details={"cutoff": cutoff.date().isoformat()})
        return Ok(stats)

    try:
        index = _open_index(settings)
    except EventIndexError as exc:
        log_json("ERROR", "compaction_index_unavailable", details={"error": str(exc)})
        return Err(f"Index init failed: {exc}")

    try:
        if index.needs_rebuild:
            try:
                index.rebuild(settings.log_dir, settings.archive_root, settings.storage)
            except (sqlite3.Error, OSError) as exc:
                stats.warnings.append(f"Index rebuild failed: {exc}")

        for period in eligible[:settings.max_periods_per_run]:
            try:
                _compact_period(period, settings, index, stats)
            except Exception as exc:
                log_json("ERROR", "compaction_period_failed", period=period,
                         details={"error": str(exc)})
                stats.warnings.append(f"Failed to compact {period}: {exc}")
    finally:
        index.close()

    log_json(
        "INFO", "compaction_complete",
        details={
            "eligible": len(eligible),
            "periods_processed": stats.periods_processed,
            "periods_skipped": stats.periods_skipped,
            "events_archived": stats.events_archived,
            "warnings": len(stats.warnings),
        },
    )
    return Ok(stats)


def _compact_period(period: str, settings: _Settings, index, stats: CompactionStats) -> None:
    storage = settings.storage

    if is_already_archived(settings.archive_root, period, storage):
        stats.periods_skipped += 1
        _settle_archived_period(period, settings, index, stats)
        return

    since, until = period_bounds(period)
    events = read_events(settings.log_dir, since=since, until=until, storage=storage)
    if not events:
        stats.periods_skipped += 1
        log_json("INFO", "compaction_period_empty", period=period)
        return

    period_files = list_period_files(settings.log_dir, period, storage)
    summary = generate_period_summary(period, events, source_files=period_files)

    archived = archive_period(
        period, summary.source_files, settings.log_dir, settings.archive_root, summary, storage,
    )
    if not archived.ok:
        stats.warnings.append(f"Archive failed for {period}: {archived.error}")
        return

    # Index follows the archive, never the other way round
    removed_rows = index.remove_entries(period)
    index.insert_summary(summary)

    year_dir = archive_year_dir(settings.archive_root, period)
    verified, mismatched = _split_by_archived_copy(storage, settings.log_dir, year_dir, summary.source_files)
    for name in mismatched:
        stats.warnings.append(f"Archived copy of {name} does not match the original; original kept")
    removed_files, warnings = remove_source_files(settings.log_dir, verified, storage)
    stats.warnings.extend(warnings)

    stats.periods_processed += 1
    stats.events_archived += len(events)
    stats.summaries_created += 1
    log_json(
        "INFO", "compaction_period_archived", period=period,
        details={
            "events": len(events),
            "files_copied": archived.value,
            "files_removed": removed_files,
            "index_rows_removed": removed_rows,
        },
    )


def _settle_archived_period(period: str, settings: _Settings, index, stats: CompactionStats) -> None:
    """Finish a period whose archive is complete but whose run was cut short.

    Drops the period's event rows from the index, restores its summary row
    if that is missing, and deletes every original daily file whose archived
    copy has identical content.  Files that cannot be settled keep the month
    eligible, so they are logged by name.
    """
    storage = settings.storage
    try:
        summary = load_summary(settings.archive_root, period, storage)
    except (OSError, SummaryFormatError) as exc:
        stats.warnings.append(f"Archived summary for {period} is unreadable: {exc}")
        return

    # rows of an archived month never belong to the active window
    index.remove_entries(period)
    if not index.query_summaries(period):
        index.insert_summary(summary)
        log_json("INFO", "compaction_index_summary_restored", period=period)

    year_dir = archive_year_dir(settings.archive_root, period)
    present = list_period_files(settings.log_dir, period, storage)
    leftovers, blocked = _split_by_archived_copy(storage, settings.log_dir, year_dir, present)
    if leftovers:
        removed, warnings = remove_source_files(settings.log_dir, leftovers, storage)
        stats.warnings.extend(warnings)
        log_json("INFO", "compaction_leftovers_removed", period=period,
                 details={"removed": removed})
    if blocked:
        listed = set(summary.source_files)
        log_json(
            "WARN", "compaction_period_not_cleared", period=period,
            details={
                "not_in_summary": [name for name in blocked if name not in listed],
                "archive_copy_differs": [name for name in blocked if name in listed],
            },
        )


def _split_by_archived_copy(
    storage: Storage, log_dir: Path, year_dir: Path, names: List[str],
) -> Tuple[List[str], List[str]]:
    """Partition *names* into ``(safe_to_delete, keep)`` by comparing with the archive."""
    verified: List[str] = []
    mismatched: List[str] = []
    for name in names:
        if _archived_copy_matches(storage, log_dir / name, year_dir / name):
            verified.append(name)
        else:
            mismatched.append(name)
    return verified, mismatched


def _archived_copy_matches(storage: Storage, original: Path, copy: Path) -> bool:
    if not (storage.exists(original) and storage.exists(copy)):
        return False
    try:
        return storage.read_text(original) == storage.read_text(copy)
    except (OSError, UnicodeDecodeError):
        return False
