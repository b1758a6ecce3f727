"""Cron expression parsing and task scheduling.

This package provides:
- Field and schedule parsing with structured errors
- Next-occurrence computation over six calendar fields
- A scheduler loop running sync and async tasks at their due instants

Example:
    from cronloop.cron import CronScheduler, Schedule

    schedule = Schedule.parse("0 9 * * mon-fri")
    print(schedule.next_occurrence(datetime.now()))

    scheduler = CronScheduler()
    scheduler.add(schedule, lambda token: print("Good morning!"))

    # Run until stopped
    await scheduler.start_async()
"""

from cronloop.cron.executor import ExecutionResult, TaskExecutor
from cronloop.cron.field import ExpressionParser, FieldSet
from cronloop.cron.schedule import (
    Schedule,
    time_until_next_run,
    validate_cron_expression,
)
from cronloop.cron.service import CronScheduler
from cronloop.cron.task import (
    AsyncBody,
    CancellationToken,
    SyncBody,
    Task,
    TaskBody,
    new_task_id,
)
from cronloop.cron.types import (
    FIELD_SPECS,
    BatchEnterEvent,
    BatchLeaveEvent,
    CronParseError,
    FieldKind,
    FieldSpec,
    OccurrenceGroup,
    ParseError,
    ParseErrorCode,
    SchedulerAlreadyRunningError,
)

__all__ = [
    # Scheduler
    "CronScheduler",
    # Tasks
    "Task",
    "TaskBody",
    "SyncBody",
    "AsyncBody",
    "CancellationToken",
    "new_task_id",
    # Executor
    "TaskExecutor",
    "ExecutionResult",
    # Parsing
    "FieldSet",
    "ExpressionParser",
    "Schedule",
    # Types
    "FieldKind",
    "FieldSpec",
    "FIELD_SPECS",
    "ParseError",
    "ParseErrorCode",
    "CronParseError",
    "SchedulerAlreadyRunningError",
    "BatchEnterEvent",
    "BatchLeaveEvent",
    "OccurrenceGroup",
    # Schedule utilities
    "validate_cron_expression",
    "time_until_next_run",
]
