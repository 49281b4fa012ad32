"""CLI entry point for taskteam."""

import argparse
import asyncio
import logging
import sys

from taskteam.config import load_settings
from taskteam.errors import ConfigError, TerminalProviderError
from taskteam.history import RunHistory
from taskteam.ledger import TaskLedger, TaskStatus
from taskteam.orchestrator import ExecutionResult, Orchestrator
from taskteam.stats import UsageStats


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="taskteam",
        description="Delegate a task to a dynamically assembled team of model-backed workers",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--config", default=None, help="Path to a YAML config file")

    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser("run", help="Plan and execute a task")
    run.add_argument("task", help="Task description")
    run.add_argument("--context", default=None, help="Additional context for the task")
    run.add_argument("--resumable", action="store_true", help="Record progress in the task ledger")
    run.add_argument("--no-cache", action="store_true", help="Bypass the result cache")
    run.add_argument("--stats", action="store_true", help="Print per-model call statistics")

    tasks = sub.add_parser("tasks", help="Inspect and manage ledger records")
    tasks_sub = tasks.add_subparsers(dest="tasks_command")

    ls = tasks_sub.add_parser("list", help="List ledger records")
    ls.add_argument("--status", choices=[s.value for s in TaskStatus], default=None)

    show = tasks_sub.add_parser("show", help="Show one record")
    show.add_argument("id")

    pause = tasks_sub.add_parser("pause", help="Pause a running record")
    pause.add_argument("id")
    pause.add_argument("--reason", default=None)

    resume = tasks_sub.add_parser("resume", help="Resume a paused or interrupted record")
    resume.add_argument("id")

    history = tasks_sub.add_parser("history", help="Browse completed runs")
    history.add_argument("id", nargs="?", default=None, help="Show one run in full")
    history.add_argument("--search", default=None, help="Match against task and summary")
    history.add_argument("--limit", type=int, default=20)

    cleanup = tasks_sub.add_parser("cleanup", help="Delete old completed records and trim history")
    cleanup.add_argument("--days", type=float, default=None, help="Age threshold in days")

    return parser


def _progress(message: str, percent: int | None = None) -> None:
    prefix = f"[{percent:3d}%] " if percent is not None else "       "
    print(f"{prefix}{message}", flush=True)


def _print_stats(stats: UsageStats) -> None:
    print("\nModel calls:")
    for s in stats.models():
        print(
            f"  {s.model:<24} {s.total_calls:3d} calls  {s.success_rate:6.1%} ok  "
            f"avg {s.avg_duration:.2f}s"
        )
    totals = stats.totals()
    print(f"  total: {totals['total_calls']} calls, {totals['total_failed']} failed")
    for record in stats.recent():
        if not record.success:
            print(f"  failed: {record.model}: {record.error}")


def _history(history: RunHistory, args: argparse.Namespace) -> int:
    if args.id:
        entry = history.get(args.id)
        if entry is None:
            print(f"Unknown run {args.id}")
            return 1
        print(f"{entry.id}  {entry.timestamp}")
        print(f"Task: {entry.task}")
        print(f"Workers: {', '.join(entry.workers)}")
        if entry.duration is not None:
            print(f"Duration: {entry.duration:.1f}s")
        print()
        print(entry.summary)
        return 0

    entries = history.search(args.search, args.limit) if args.search else history.list(args.limit)
    if not entries:
        print("No history")
    for entry in entries:
        task = entry.task if len(entry.task) <= 50 else entry.task[:50] + "..."
        print(f"{entry.id}  {len(entry.outputs):2d} outputs  {task}")
    return 0


def _print_result(result: ExecutionResult) -> None:
    if result.paused:
        print(f"\nPaused. Resume with: taskteam tasks resume {result.record_id}")
        return
    print()
    print(result.summary)
    for output in result.outputs:
        for f in output.files:
            print(f"  file: {f.path} ({output.worker_name})")
    if result.record_id:
        print(f"\nLedger record: {result.record_id}")


async def _run_task(orchestrator: Orchestrator, args: argparse.Namespace) -> int:
    result = await orchestrator.execute(args.task, args.context, resumable=args.resumable)
    _print_result(result)
    if args.stats and orchestrator.stats is not None:
        _print_stats(orchestrator.stats)
    return 0


async def _resume_task(orchestrator: Orchestrator, record_id: str) -> int:
    result = await orchestrator.resume(record_id)
    if result is None:
        print(f"Nothing to resume for {record_id}")
        return 1
    _print_result(result)
    return 0


def _tasks(
    ledger: TaskLedger,
    history: RunHistory,
    args: argparse.Namespace,
    cleanup_days: float,
    keep_recent: int,
) -> int:
    if args.tasks_command == "list":
        records = ledger.list(TaskStatus(args.status) if args.status else None)
        if not records:
            print("No ledger records")
        for record in records:
            task = record.task if len(record.task) <= 50 else record.task[:50] + "..."
            print(f"{record.id}  {record.status.value:<9} {ledger.progress(record):3d}%  {task}")
            if record.pause_reason:
                print(f"    paused: {record.pause_reason}")
        return 0

    if args.tasks_command == "show":
        record = ledger.get(args.id)
        if record is None:
            print(f"Unknown record {args.id}")
            return 1
        print(f"{record.id}: {record.status.value} ({ledger.progress(record)}%)")
        print(f"Task: {record.task}")
        for subtask in record.subtasks:
            state = record.subtask_states[subtask.id]
            line = f"  {subtask.id:<12} {state.status.value:<9} {subtask.worker_id}"
            if state.error:
                line += f"  error: {state.error}"
            print(line)
        if record.error:
            print(f"Error: {record.error}")
        return 0

    if args.tasks_command == "history":
        return _history(history, args)

    if args.tasks_command == "pause":
        if ledger.pause(args.id, args.reason) is None:
            print(f"Cannot pause {args.id} (unknown or not running)")
            return 1
        print(f"Paused {args.id}")
        return 0

    if args.tasks_command == "cleanup":
        days = args.days if args.days is not None else cleanup_days
        print(f"Deleted {ledger.cleanup(days)} completed records")
        print(f"Deleted {history.cleanup(keep_recent)} history entries")
        return 0

    return 1


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s %(levelname)s %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING, format="%(message)s")

    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    if args.command == "run":
        orchestrator = Orchestrator.from_settings(
            settings, on_progress=_progress, use_cache=not args.no_cache
        )
        try:
            code = asyncio.run(_run_task(orchestrator, args))
        except TerminalProviderError as e:
            print(f"Task failed: {e}", file=sys.stderr)
            code = 1
        sys.exit(code)
    elif args.command == "tasks" and args.tasks_command == "resume":
        orchestrator = Orchestrator.from_settings(settings, on_progress=_progress)
        try:
            code = asyncio.run(_resume_task(orchestrator, args.id))
        except TerminalProviderError as e:
            print(f"Task failed: {e}", file=sys.stderr)
            code = 1
        sys.exit(code)
    elif args.command == "tasks" and args.tasks_command:
        ledger = TaskLedger(settings.ledger.state_dir)
        history = RunHistory(settings.history.history_dir)
        sys.exit(
            _tasks(
                ledger, history, args, settings.ledger.cleanup_days, settings.history.keep_recent
            )
        )
    else:
        parser.print_help()
        sys.exit(1)
