"""Command-line interface for cronloop.

COMMANDS:
---------
- check: Validate a cron expression and print its normalized form.
- next:  Show the upcoming occurrences of a cron expression.
- run:   Run shell-command jobs from a YAML file until interrupted.
"""

import argparse
import logging
import signal
import sys
from datetime import datetime

from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from cronloop import __version__
from cronloop.config import settings
from cronloop.cron import (
    BatchLeaveEvent,
    CancellationToken,
    CronScheduler,
    ParseError,
    Schedule,
    time_until_next_run,
)
from cronloop.cron.jobs import build_task, load_jobs

console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.WARNING)
    fmt = "%(name)s: %(message)s" if verbose else "%(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        handlers=[RichHandler(rich_tracebacks=True, console=console, show_path=verbose)],
    )


def _parse_schedule(expression: str, seconds: bool) -> Schedule:
    """Parse an expression or exit with the parse error."""
    result = Schedule.try_parse(expression, seconds)
    if isinstance(result, ParseError):
        console.print(f"[red]Invalid expression:[/red] {result.message}")
        sys.exit(1)
    return result


def _parse_time(value: str | None, name: str) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        console.print(f"[red]Invalid {name} time:[/red] {value}")
        console.print("Use ISO format: YYYY-MM-DDTHH:MM:SS")
        sys.exit(1)


def _format_delta(seconds: float) -> str:
    """Format a duration like '2d 3h 4m 5s'."""
    seconds = int(seconds)
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    parts = [f"{days}d"] if days else []
    if hours or parts:
        parts.append(f"{hours}h")
    if minutes or parts:
        parts.append(f"{minutes}m")
    parts.append(f"{secs}s")
    return " ".join(parts)


def cmd_check(args: argparse.Namespace) -> None:
    """Validate a cron expression."""
    schedule = _parse_schedule(args.expression, args.seconds)
    console.print(f"[green]Valid:[/green] {schedule}")

    delta = time_until_next_run(schedule)
    if delta is not None:
        console.print(f"  Next run in {_format_delta(delta.total_seconds())}")


def cmd_next(args: argparse.Namespace) -> None:
    """Show the next occurrences of a cron expression."""
    schedule = _parse_schedule(args.expression, args.seconds)
    base = _parse_time(args.start, "start")
    end = _parse_time(args.until, "end")

    if base is None:
        base = datetime.now(end.tzinfo if end is not None else None)
    if end is None:
        end = datetime.max.replace(tzinfo=base.tzinfo)
    elif (base.tzinfo is None) != (end.tzinfo is None):
        console.print("[red]--from and --until must both have a UTC offset or both omit it[/red]")
        sys.exit(1)

    table = Table(title=f"Next occurrences of '{schedule}'")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Time", style="yellow")
    table.add_column("Weekday", style="white")
    table.add_column("In", style="blue")

    count = 0
    for occurrence in schedule.occurrences(base, end):
        count += 1
        table.add_row(
            str(count),
            occurrence.isoformat(sep=" "),
            occurrence.strftime("%A"),
            _format_delta((occurrence - base).total_seconds()),
        )
        if count >= args.count:
            break

    if count == 0:
        console.print("[yellow]No occurrences in range.[/yellow]")
        return

    console.print(table)


def cmd_run(args: argparse.Namespace) -> None:
    """Run jobs from a YAML file in the foreground."""
    try:
        jobs = load_jobs(args.jobs_file)
    except ValidationError as e:
        console.print(f"[red]Invalid jobs file:[/red] {args.jobs_file}")
        console.print(str(e))
        sys.exit(1)

    if not jobs:
        console.print("[yellow]No jobs to run.[/yellow]")
        return

    scheduler = CronScheduler()
    names: dict[int, str] = {}
    for job in jobs:
        task = build_task(job)
        names[task.id] = job.name
        scheduler.add_task(task)
        console.print(f"[green]Scheduled:[/green] {job.name} ({task.schedule})")

    @scheduler.on_leave
    def report(event: BatchLeaveEvent) -> None:
        ran = ", ".join(names.get(task_id, str(task_id)) for task_id in event.tasks)
        console.print(
            f"[dim]{event.leave:%Y-%m-%d %H:%M:%S}[/dim] ran {ran} "
            f"in {event.duration.total_seconds() * 1000:.0f}ms"
        )

    token = CancellationToken()

    def handle_signal(signum, frame):
        console.print("\n[yellow]Stopping...[/yellow]")
        token.cancel()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    console.print(f"Running {len(jobs)} jobs. Press Ctrl+C to stop.")
    scheduler.start(token)
    console.print(f"Stopped after {scheduler.loop_count} batches.")


def main() -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="cronloop",
        description="Parse cron expressions and run scheduled jobs.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--version", action="version", version=f"cronloop {__version__}")

    subparsers = parser.add_subparsers(dest="command", title="commands")

    # check
    check_parser = subparsers.add_parser(
        "check",
        help="Validate a cron expression",
        description="Validate a cron expression and print its normalized form.",
    )
    check_parser.add_argument("expression", help="Cron expression, quoted")
    check_parser.add_argument(
        "-s", "--seconds", action="store_true", default=settings.include_seconds,
        help="Expression has a leading seconds field",
    )
    check_parser.set_defaults(func=cmd_check)

    # next
    next_parser = subparsers.add_parser(
        "next",
        help="Show upcoming occurrences",
        description="List the next occurrences of a cron expression.",
    )
    next_parser.add_argument("expression", help="Cron expression, quoted")
    next_parser.add_argument(
        "-n", "--count", type=int, default=5,
        help="Number of occurrences to show (default: 5)",
    )
    next_parser.add_argument("--from", dest="start", help="Start time (ISO format, default: now)")
    next_parser.add_argument("--until", help="End time, exclusive (ISO format)")
    next_parser.add_argument(
        "-s", "--seconds", action="store_true", default=settings.include_seconds,
        help="Expression has a leading seconds field",
    )
    next_parser.set_defaults(func=cmd_next)

    # run
    run_parser = subparsers.add_parser(
        "run",
        help="Run jobs from a YAML file",
        description="Schedule the shell commands in a jobs file and run them until interrupted.",
    )
    run_parser.add_argument("jobs_file", help="Path to the jobs YAML file")
    run_parser.set_defaults(func=cmd_run)

    args = parser.parse_args()
    setup_logging(args.verbose)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    args.func(args)
    sys.exit(0)


if __name__ == "__main__":
    main()
