"""Decide which calendar months of the daily log are cold enough to compact."""
from __future__ import annotations

import calendar
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Tuple, Union

from core.storage import Storage
from memory.event_store import list_event_files


def compute_cutoff(retention_days: int, now: datetime = None) -> datetime:
    """Return ``now - retention_days`` as an aware UTC datetime."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc) - timedelta(days=retention_days)


def find_eligible_periods(
    log_dir: Union[str, Path],
    cutoff: datetime,
    storage: Storage = None,
) -> List[str]:
    """Return sorted ``YYYY-MM`` keys whose latest daily file predates *cutoff*.

    Only filenames are inspected.  A month qualifies when the most recent
    day present is strictly before the cutoff's UTC date, so a month is never
    split between the archive and the live log.
    """
    if cutoff.tzinfo is not None:
        cutoff = cutoff.astimezone(timezone.utc)
    cutoff_day = cutoff.strftime("%Y-%m-%d")

    latest: Dict[str, str] = {}
    for _name, day in list_event_files(log_dir, storage):
        period = day[:7]
        if day > latest.get(period, ""):
            latest[period] = day

    return sorted(period for period, day in latest.items() if day < cutoff_day)


def list_period_files(
    log_dir: Union[str, Path],
    period: str,
    storage: Storage = None,
) -> List[str]:
    """Daily file names in *log_dir* that belong to *period*, sorted."""
    return [name for name, day in list_event_files(log_dir, storage) if day[:7] == period]


def parse_period(period: str) -> Tuple[int, int]:
    """Split ``YYYY-MM`` into ``(year, month)``; raises ``ValueError`` if malformed."""
    try:
        year_str, month_str = period.split("-")
        year, month = int(year_str), int(month_str)
    except ValueError:
        raise ValueError(f"Invalid period {period!r}, expected YYYY-MM")
    if len(year_str) != 4 or len(month_str) != 2 or not 1 <= month <= 12:
        raise ValueError(f"Invalid period {period!r}, expected YYYY-MM")
    return year, month


def period_bounds(period: str) -> Tuple[datetime, datetime]:
    """First and last instant (inclusive, UTC) of the month *period*."""
    year, month = parse_period(period)
    last_day = calendar.monthrange(year, month)[1]
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    end = datetime(year, month, last_day, 23, 59, 59, 999999, tzinfo=timezone.utc)
    return start, end
