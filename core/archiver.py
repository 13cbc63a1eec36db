"""
Archive tree for compacted periods.

Layout::

    <archive_root>/<YYYY>/events-YYYY-MM-DD.jsonl   byte-identical copies
    <archive_root>/<YYYY>/summary-YYYY-MM.json      sentinel + statistics

The summary file is the only thing consulted to decide whether a period is
done.  It is written last, through a temp file and an atomic rename, so it
is either absent or complete.  Deleting the originals from the live log is
left to the caller, after ``archive_period`` has reported success.
"""
from __future__ import annotations

from pathlib import Path
from typing import List, Tuple, Union

from core.exceptions import SummaryFormatError
from core.logging_utils import log_json
from core.period_summary import PeriodSummary
from core.result import Ok, Result, err_from
from core.storage import Storage, get_storage

SUMMARY_PREFIX = "summary-"


def archive_year_dir(archive_root: Union[str, Path], period: str) -> Path:
    return Path(archive_root) / period[:4]


def summary_path(archive_root: Union[str, Path], period: str) -> Path:
    return archive_year_dir(archive_root, period) / f"{SUMMARY_PREFIX}{period}.json"


def is_already_archived(archive_root: Union[str, Path], period: str, storage: Storage = None) -> bool:
    """True once the summary sentinel for *period* exists."""
    return get_storage(storage).exists(summary_path(archive_root, period))


def archive_period(
    period: str,
    source_file_names: List[str],
    log_dir: Union[str, Path],
    archive_root: Union[str, Path],
    summary: PeriodSummary,
    storage: Storage = None,
) -> Result[int]:
    """Copy the period's daily files into the archive and write its summary.

    Files already present at the destination are left alone and not counted,
    so re-running after a partial failure only copies what is missing.

    Returns:
        ``Ok(files_copied)`` or ``Err(message)``; never raises.
    """
    storage = get_storage(storage)
    year_dir = archive_year_dir(archive_root, period)
    try:
        storage.make_dirs(year_dir)

        copied = 0
        for name in source_file_names:
            dest = year_dir / name
            if storage.exists(dest):
                continue
            storage.copy_file(Path(log_dir) / name, dest)
            copied += 1

        storage.write_text_atomic(summary_path(archive_root, period), summary.to_json())
    except OSError as exc:
        log_json("ERROR", "archive_period_failed", period=period, details={"error": str(exc)})
        return err_from(exc)

    log_json("INFO", "archive_period_written", period=period,
             details={"files_copied": copied, "files_listed": len(source_file_names)})
    return Ok(copied)


def remove_source_files(
    log_dir: Union[str, Path],
    file_names: List[str],
    storage: Storage = None,
) -> Tuple[int, List[str]]:
    """Delete archived originals.  Returns ``(removed, warnings)``; never raises."""
    storage = get_storage(storage)
    removed = 0
    warnings: List[str] = []
    for name in file_names:
        try:
            storage.remove(Path(log_dir) / name)
            removed += 1
        except OSError as exc:
            warnings.append(f"Could not remove {name}: {exc}")
    if warnings:
        log_json("WARN", "source_file_removal_incomplete",
                 details={"removed": removed, "failed": len(warnings)})
    return removed, warnings


def load_summary(archive_root: Union[str, Path], period: str, storage: Storage = None) -> PeriodSummary:
    """Read the archived summary of *period*.

    Raises:
        FileNotFoundError: if the period was never archived.
        SummaryFormatError: if the file is not a valid summary.
    """
    text = get_storage(storage).read_text(summary_path(archive_root, period))
    return PeriodSummary.from_json(text)


def load_archived_summaries(archive_root: Union[str, Path], storage: Storage = None) -> List[PeriodSummary]:
    """Every readable summary under *archive_root*, ordered by period."""
    storage = get_storage(storage)
    root = Path(archive_root)
    try:
        years = storage.list_dir(root)
    except (FileNotFoundError, NotADirectoryError):
        return []

    summaries: List[PeriodSummary] = []
    for year in sorted(years):
        if not (len(year) == 4 and year.isdigit()):
            continue
        try:
            names = storage.list_dir(root / year)
        except (FileNotFoundError, NotADirectoryError):
            continue
        for name in sorted(names):
            if not (name.startswith(SUMMARY_PREFIX) and name.endswith(".json")):
                continue
            try:
                summaries.append(PeriodSummary.from_json(storage.read_text(root / year / name)))
            except (OSError, SummaryFormatError) as exc:
                log_json("WARN", "archived_summary_unreadable",
                         details={"file": f"{year}/{name}", "error": str(exc)})
    summaries.sort(key=lambda s: s.period)
    return summaries
