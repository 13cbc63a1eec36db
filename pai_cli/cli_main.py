"""Operator commands for the event log: compact, status, rebuild-index."""
from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from core.config_manager import config
from core.exceptions import EventIndexError
from core.logging_utils import log_json
from core.memory_compaction import CompactionOptions, compact_events, format_compaction_message
from core.period_detector import compute_cutoff, find_eligible_periods
from core.period_summary import PeriodSummary
from core.runtime_paths import resolve_archive_dir
from memory.event_index import init_index, rebuild_index
from memory.event_store import resolve_events_dir


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pai-events",
        description="Maintain the PAI interaction log: compaction, archive status and index repair.",
    )
    parser.add_argument("--events-dir", help="Directory holding events-YYYY-MM-DD.jsonl files")
    parser.add_argument("--archive-dir", help="Root of the YYYY/ archive tree")
    sub = parser.add_subparsers(dest="command", required=True)

    compact = sub.add_parser("compact", help="Archive and summarize months older than the retention window")
    compact.add_argument("--retention-days", type=int, default=None)
    compact.add_argument("--max-periods", type=int, default=None, dest="max_periods_per_run")
    compact.add_argument("--no-index", action="store_true", help="Do not touch index.db")
    compact.add_argument("--json", action="store_true", help="Print the result as JSON")

    status = sub.add_parser("status", help="Show archived summaries and pending periods")
    status.add_argument("--period", help="Only this YYYY-MM period")
    status.add_argument("--json", action="store_true", help="Print the status as JSON")

    sub.add_parser("rebuild-index", help="Recreate index.db from the daily files and archive")
    return parser


def _summary_table(summaries: List[PeriodSummary]) -> Table:
    table = Table(title="Archived periods", box=box.SIMPLE, expand=False)
    table.add_column("Period")
    table.add_column("Events", justify="right")
    table.add_column("Sessions", justify="right")
    table.add_column("Top skill")
    table.add_column("Zero days", justify="right")
    table.add_column("High days", justify="right")
    for s in summaries:
        top_skill = s.top_patterns.skills[0].name if s.top_patterns.skills else "-"
        table.add_row(
            s.period,
            str(s.event_count),
            str(s.session_stats.total_sessions),
            top_skill,
            str(len(s.anomalies.zero_days)),
            str(len(s.anomalies.high_count_days)),
        )
    return table


def _cmd_compact(args, console: Console) -> int:
    options = CompactionOptions(
        log_dir=args.events_dir,
        archive_root=args.archive_dir,
        retention_days=args.retention_days,
        max_periods_per_run=args.max_periods_per_run,
        use_index=False if args.no_index else None,
    )
    result = compact_events(options)
    if args.json:
        payload = {"ok": True, **result.value.to_dict()} if result.ok else {"ok": False, "error": result.error}
        console.print_json(json.dumps(payload))
    else:
        message = format_compaction_message(result)
        console.print(escape(message or "Nothing to compact."))
        if result.ok:
            for warning in result.value.warnings:
                console.print(f"[yellow]warning:[/yellow] {escape(warning)}")
    return 0 if result.ok else 1


def _cmd_status(args, console: Console) -> int:
    events_dir = resolve_events_dir(args.events_dir)
    archive_dir = resolve_archive_dir(args.archive_dir or config.get("archive_dir"))
    retention_days = config.get("retention_days")
    cutoff = compute_cutoff(retention_days, datetime.now(timezone.utc))
    pending = find_eligible_periods(events_dir, cutoff)

    try:
        with init_index(events_dir) as index:
            if index.needs_rebuild:
                index.rebuild(events_dir, archive_dir)
            summaries = index.query_summaries(args.period)
            active_events = index.count()
    except EventIndexError as exc:
        console.print(f"[red]Index unavailable:[/red] {escape(str(exc))}")
        return 1

    if args.json:
        console.print_json(json.dumps({
            "events_dir": str(events_dir),
            "archive_dir": str(archive_dir),
            "retention_days": retention_days,
            "config": config.show_config(),
            "active_events": active_events,
            "pending_periods": pending,
            "summaries": [s.to_dict() for s in summaries],
        }))
        return 0

    console.print(f"Events dir:  {escape(str(events_dir))}")
    console.print(f"Archive dir: {escape(str(archive_dir))}")
    console.print(f"Indexed active events: {active_events}")
    console.print(f"Periods pending compaction: {', '.join(pending) if pending else 'none'}")
    if summaries:
        console.print(_summary_table(summaries))
    else:
        console.print("No archived periods.")
    return 0


def _cmd_rebuild(args, console: Console) -> int:
    events_dir = resolve_events_dir(args.events_dir)
    archive_dir = resolve_archive_dir(args.archive_dir or config.get("archive_dir"))
    try:
        events, summaries = rebuild_index(events_dir, archive_dir)
    except EventIndexError as exc:
        console.print(f"[red]Rebuild failed:[/red] {escape(str(exc))}")
        return 1
    console.print(f"Rebuilt index: {events} events, {summaries} summaries.")
    return 0


_COMMANDS = {
    "compact": _cmd_compact,
    "status": _cmd_status,
    "rebuild-index": _cmd_rebuild,
}


def main(argv: Optional[Sequence[str]] = None, console: Optional[Console] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    console = console or Console()
    log_json("INFO", "cli_command_started", details={"command": args.command})
    return _COMMANDS[args.command](args, console)


if __name__ == "__main__":
    sys.exit(main())
