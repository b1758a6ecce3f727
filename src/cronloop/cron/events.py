"""Structured log events emitted by the scheduler.

Each helper logs one event at a fixed level. The event name, a stable
numeric id and the event fields are attached to the log record through
``extra`` so handlers can consume them without parsing the message.
"""

import logging

from cronloop.cron.schedule import Schedule

logger = logging.getLogger("cronloop.events")

TASK_ADDED = 401
TASK_REMOVED = 402
TASKS_REMOVED = 403
TASKS_CLEARED = 404
TASKS_REFRESHED = 405
LOOP_START = 406
LOOP_STOP = 407
LOOP_CANCELLED = 408
TASK_DISPATCHED = 409
TASK_FAILED = 410
BATCH_COMPLETE = 411


def _emit(level: int, event_id: int, event: str, message: str, **fields: object) -> None:
    logger.log(level, message, extra={"event": event, "event_id": event_id, **fields})


def task_added(task_id: int, schedule: Schedule) -> None:
    _emit(
        logging.INFO, TASK_ADDED, "task_added",
        f"Task added: id={task_id}, schedule={schedule}",
        task_id=task_id, schedule=str(schedule),
    )


def task_removed(task_id: int, schedule: Schedule) -> None:
    _emit(
        logging.INFO, TASK_REMOVED, "task_removed",
        f"Task removed: id={task_id}, schedule={schedule}",
        task_id=task_id, schedule=str(schedule),
    )


def tasks_removed(count: int) -> None:
    _emit(logging.DEBUG, TASKS_REMOVED, "tasks_removed", f"Removed {count} tasks", count=count)


def tasks_cleared(count: int) -> None:
    _emit(logging.DEBUG, TASKS_CLEARED, "tasks_cleared", f"Removed all tasks: {count}", count=count)


def tasks_refreshed() -> None:
    _emit(logging.DEBUG, TASKS_REFRESHED, "tasks_refreshed", "Task schedules refreshed")


def loop_start() -> None:
    _emit(logging.DEBUG, LOOP_START, "loop_start", "Scheduler loop started")


def loop_stop() -> None:
    _emit(logging.DEBUG, LOOP_STOP, "loop_stop", "Scheduler loop stopping")


def loop_cancelled() -> None:
    _emit(logging.DEBUG, LOOP_CANCELLED, "loop_cancelled", "Scheduler wait cancelled mid-loop")


def task_dispatched(task_id: int) -> None:
    _emit(logging.INFO, TASK_DISPATCHED, "task_dispatched", f"Running task: id={task_id}", task_id=task_id)


def task_failed(task_id: int, error: str) -> None:
    _emit(
        logging.ERROR, TASK_FAILED, "task_failed",
        f"Task raised an error: id={task_id}, error={error}",
        task_id=task_id, error=error,
    )


def batch_complete(count: int, size: int) -> None:
    _emit(
        logging.INFO, BATCH_COMPLETE, "batch_complete",
        f"Task loop complete: iteration {count}, tasks: {size}",
        count=count, size=size,
    )
