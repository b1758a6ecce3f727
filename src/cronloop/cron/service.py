"""Cron scheduler loop.

This module provides the CronScheduler class, which keeps a registry of
tasks, sleeps until the earliest of their next occurrences and runs every
task due at that instant as one batch.
"""

from __future__ import annotations

import asyncio
import logging
import math
import threading
from datetime import datetime, timedelta, tzinfo
from typing import Callable
from zoneinfo import ZoneInfo

from cronloop.config import settings
from cronloop.cron import events
from cronloop.cron.executor import TaskExecutor
from cronloop.cron.schedule import Schedule
from cronloop.cron.task import AsyncFunc, CancellationToken, SyncFunc, Task, TaskBody
from cronloop.cron.types import (
    BatchEnterEvent,
    BatchLeaveEvent,
    OccurrenceGroup,
    SchedulerAlreadyRunningError,
)

logger = logging.getLogger(__name__)

EnterHandler = Callable[[BatchEnterEvent], None]
LeaveHandler = Callable[[BatchLeaveEvent], None]


class _WakeSource:
    """One-shot interruption handle for the loop's wait.

    ``cancel`` may be called from any thread; the event is set on the
    loop that owns the wait.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._event = asyncio.Event()
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._event.set)

    async def wait(self, timeout: float | None) -> bool:
        """Wait until cancelled or until timeout elapses.

        Args:
            timeout: Seconds to wait, or None to wait until cancelled.

        Returns:
            True if the wait was interrupted, False if it timed out.
        """
        if self._cancelled:
            return True
        if timeout is None:
            await self._event.wait()
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False


class CronScheduler:
    """Runs tasks at the instants their schedules fire.

    The scheduler handles:
    - Task registration, lookup and removal from any thread
    - Waiting until the next due instant, interruptible by changes to the
      task set and by cancellation
    - Running all tasks due at the same instant as one batch
    - Publishing batch enter/leave events

    Example:
        scheduler = CronScheduler()

        scheduler.add("*/5 * * * *", lambda token: print("tick"))

        @scheduler.on_leave
        def report(event):
            print(f"batch {event.tasks} took {event.duration}")

        await scheduler.start_async()
    """

    def __init__(
        self,
        wait_density: timedelta | None = None,
        throw_exceptions: bool | None = None,
        wait_async_tasks: bool | None = None,
        tz: tzinfo | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            wait_density: Extra margin added to each wait.
            throw_exceptions: Re-raise task errors and stop the loop.
            wait_async_tasks: Await async task bodies instead of detaching them.
            tz: Timezone for the current time (default: local naive time).

        Unset arguments fall back to the values in ``cronloop.config.settings``.
        """
        if wait_density is None:
            wait_density = timedelta(milliseconds=settings.wait_density_ms)
        if throw_exceptions is None:
            throw_exceptions = settings.throw_exceptions
        if wait_async_tasks is None:
            wait_async_tasks = settings.wait_async_tasks
        if tz is None and settings.timezone:
            tz = ZoneInfo(settings.timezone)

        self.wait_density = wait_density
        self.throw_exceptions = throw_exceptions
        self._tz = tz
        self._executor = TaskExecutor(wait_async_tasks=wait_async_tasks)

        self._lock = threading.Lock()
        self._tasks: list[Task] = []
        self._running = False
        self._loop_count = 0
        self._loop: asyncio.AbstractEventLoop | None = None
        self._wake: _WakeSource | None = None
        # Stop signal of the current run; each start gets a fresh one.
        self._run: CancellationToken | None = None

        self._enter_handlers: list[EnterHandler] = []
        self._leave_handlers: list[LeaveHandler] = []

    @property
    def is_running(self) -> bool:
        """Check if the loop is running."""
        return self._running

    @property
    def loop_count(self) -> int:
        """Number of batches run since the loop was last started."""
        return self._loop_count

    @property
    def wait_async_tasks(self) -> bool:
        return self._executor.wait_async_tasks

    @wait_async_tasks.setter
    def wait_async_tasks(self, value: bool) -> None:
        self._executor.wait_async_tasks = value

    @property
    def task_count(self) -> int:
        with self._lock:
            return len(self._tasks)

    def on_enter(self, handler: EnterHandler) -> EnterHandler:
        """Subscribe to batch enter events. Usable as a decorator."""
        self._enter_handlers.append(handler)
        return handler

    def on_leave(self, handler: LeaveHandler) -> LeaveHandler:
        """Subscribe to batch leave events. Usable as a decorator."""
        self._leave_handlers.append(handler)
        return handler

    # Lifecycle

    def start(self, token: CancellationToken | None = None) -> None:
        """Run the loop on a new event loop, blocking until it stops.

        Args:
            token: External cancellation token.

        Raises:
            SchedulerAlreadyRunningError: If the loop is already running.
        """
        if self._running:
            raise SchedulerAlreadyRunningError("Scheduler is already running")
        asyncio.run(self.start_async(token))

    async def start_async(self, token: CancellationToken | None = None) -> None:
        """Run the loop until stopped or cancelled.

        Args:
            token: External cancellation token. Cancelling it ends the loop
                and is also passed to every task body.

        Raises:
            SchedulerAlreadyRunningError: If the loop is already running.
        """
        token = token or CancellationToken()
        loop = asyncio.get_running_loop()
        run = CancellationToken()

        with self._lock:
            if self._running:
                raise SchedulerAlreadyRunningError("Scheduler is already running")
            self._running = True
            self._loop = loop
            self._wake = _WakeSource(loop)
            self._run = run

        unregister = token.register(self._on_token_cancelled)
        events.loop_start()

        try:
            self._loop_count = 0
            await self._run_loop(token, run)
        finally:
            unregister()
            with self._lock:
                # A stopped run must not reset the state of a newer one.
                if self._run is run:
                    self._running = False
                    self._loop = None
                    self._wake = None
                    self._run = None

    def stop(self) -> None:
        """Stop the loop. Safe to call from any thread and more than once."""
        events.loop_stop()

        with self._lock:
            if not self._running:
                return
            self._running = False
            if self._run is not None:
                self._run.cancel()
            if self._wake is not None:
                self._wake.cancel()

    def refresh_tasks(self) -> None:
        """Recompute the pending wait.

        Call this after replacing the schedule of a registered task.
        """
        events.tasks_refreshed()
        with self._lock:
            self._reset_wait()

    def close(self) -> None:
        """Remove all tasks and stop the loop."""
        with self._lock:
            self._tasks.clear()
        self.stop()

    def __enter__(self) -> CronScheduler:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _on_token_cancelled(self) -> None:
        with self._lock:
            if self._wake is not None:
                self._wake.cancel()

    def _reset_wait(self) -> None:
        # Caller holds self._lock
        if not self._running or self._loop is None:
            return
        if self._wake is not None:
            self._wake.cancel()
        self._wake = _WakeSource(self._loop)

    # Loop

    def _now(self) -> datetime:
        return datetime.now(self._tz)

    async def _run_loop(self, token: CancellationToken, run: CancellationToken) -> None:
        """Main loop: find the next due batch, wait for it, run it.

        Args:
            token: External cancellation token, handed to task bodies.
            run: Stop signal of this run, cancelled by ``stop``.
        """
        last_issue: datetime | None = None

        while True:
            if token.is_cancelled or run.is_cancelled:
                break

            now = self._now()
            base = now if last_issue is None or now > last_issue else last_issue

            with self._lock:
                if run.is_cancelled:
                    break
                issue, due = self._collect_due(base)
                wake = self._wake

            if wake is None:
                break

            timeout = self._wait_timeout(issue, now) if issue is not None else None
            interrupted = await wake.wait(timeout)

            if run.is_cancelled or token.is_cancelled:
                events.loop_cancelled()
                break

            if issue is None or not due:
                continue

            if interrupted:
                # A change to the task set arrived before the batch was due.
                if _seconds_between(self._now(), issue) > 0:
                    continue
                # The batch is due but the task set changed during the wait.
                with self._lock:
                    due = [task for task in due if task in self._tasks]
                if not due:
                    continue

            await self._dispatch(due, token, run)
            last_issue = issue

    def _collect_due(self, base: datetime) -> tuple[datetime | None, list[Task]]:
        """Find the earliest next occurrence and every task due at it."""
        end = datetime.max.replace(tzinfo=base.tzinfo)
        issue: datetime | None = None
        due: list[Task] = []

        for task in self._tasks:
            occurrence = task.schedule.next_occurrence(base, end)
            if occurrence == end:
                continue
            if issue is None or occurrence < issue:
                issue = occurrence
                due = [task]
            elif occurrence == issue:
                due.append(task)

        return issue, due

    def _wait_timeout(self, issue: datetime, now: datetime) -> float:
        """Seconds to wait for issue, rounded up and never early."""
        delta = _seconds_between(now, issue)
        if delta <= 0:
            return 0.0
        return min(float(math.ceil(delta)), delta + self.wait_density.total_seconds())

    async def _dispatch(
        self,
        due: list[Task],
        token: CancellationToken,
        run: CancellationToken | None = None,
    ) -> None:
        """Run one batch of due tasks in order, stopping early on cancellation."""
        begin = self._now()
        ids = tuple(task.id for task in due)

        enter = BatchEnterEvent(enter=begin, tasks=ids)
        for handler in list(self._enter_handlers):
            handler(enter)

        for task in due:
            if token.is_cancelled or (run is not None and run.is_cancelled):
                break

            result = await self._executor.execute(task, token)
            if not result.success and self.throw_exceptions and result.exception is not None:
                raise result.exception

        leave = BatchLeaveEvent(enter=begin, leave=self._now(), tasks=ids)
        for handler in list(self._leave_handlers):
            handler(leave)

        self._loop_count += 1
        events.batch_complete(self._loop_count, len(ids))

    # Task registry

    def add_task(self, task: Task) -> int:
        """Register a task.

        Args:
            task: The task to add.

        Returns:
            The task id.
        """
        events.task_added(task.id, task.schedule)

        with self._lock:
            self._tasks.append(task)
            self._reset_wait()

        return task.id

    def add(
        self,
        schedule: Schedule | str,
        func: SyncFunc | AsyncFunc | TaskBody,
        include_seconds: bool | None = None,
    ) -> int:
        """Create and register a task.

        Args:
            schedule: Schedule or cron expression.
            func: Function or coroutine function taking a CancellationToken.
            include_seconds: Whether a string expression has a seconds field
                (default from settings).

        Returns:
            The new task id.

        Raises:
            CronParseError: If the expression is invalid.
        """
        if include_seconds is None:
            include_seconds = settings.include_seconds
        return self.add_task(Task(schedule, func, include_seconds))

    def find_task(self, task_id: int) -> Task | None:
        """Get a registered task by id."""
        with self._lock:
            return self._find(task_id)

    def _find(self, task_id: int) -> Task | None:
        for task in self._tasks:
            if task.id == task_id:
                return task
        return None

    def list_tasks(self) -> list[Task]:
        """Get a snapshot of the registered tasks."""
        with self._lock:
            return list(self._tasks)

    def remove_task(self, task: Task | int | None) -> bool:
        """Remove a task by reference or id.

        Returns:
            True if the task was registered and has been removed.
        """
        if task is None:
            return False

        with self._lock:
            target = self._find(task) if isinstance(task, int) else task
            if target is None or target not in self._tasks:
                return False
            self._tasks.remove(target)
            self._reset_wait()

        events.task_removed(target.id, target.schedule)
        return True

    def remove_tasks(self, *tasks: Task | int) -> int:
        """Remove several tasks by reference or id.

        Returns:
            Number of tasks removed.
        """
        ids = {t if isinstance(t, int) else t.id for t in tasks}

        with self._lock:
            kept = [t for t in self._tasks if t.id not in ids]
            count = len(self._tasks) - len(kept)
            self._tasks = kept
            self._reset_wait()

        events.tasks_removed(count)
        return count

    def remove_all(self) -> int:
        """Remove every task.

        Returns:
            Number of tasks removed.
        """
        with self._lock:
            count = len(self._tasks)
            self._tasks.clear()
            self._reset_wait()

        events.tasks_cleared(count)
        return count

    # Occurrence introspection

    def next_occurrence(self, begin: datetime | None = None) -> list[OccurrenceGroup]:
        """Group registered tasks by their next occurrence after begin.

        Tasks whose schedules never fire again are left out.

        Args:
            begin: Reference time (defaults to now).

        Returns:
            Groups ordered by occurrence time.
        """
        begin = begin or self._now()
        end = datetime.max.replace(tzinfo=begin.tzinfo)

        pairs = []
        for task, schedule in self._snapshot():
            occurrence = schedule.next_occurrence(begin, end)
            if occurrence != end:
                pairs.append((occurrence, task))

        return _group(pairs)

    def next_occurrences(self, begin: datetime, end: datetime) -> list[OccurrenceGroup]:
        """Group registered tasks by every occurrence between begin and end.

        Args:
            begin: Start of the range (exclusive).
            end: End of the range (exclusive).

        Returns:
            Groups ordered by occurrence time.
        """
        pairs = [
            (occurrence, task)
            for task, schedule in self._snapshot()
            for occurrence in schedule.occurrences(begin, end)
        ]
        return _group(pairs)

    def _snapshot(self) -> list[tuple[Task, Schedule]]:
        with self._lock:
            return [(task, task.schedule) for task in self._tasks]


def _seconds_between(start: datetime, end: datetime) -> float:
    # Timestamps keep the difference correct across DST transitions.
    return end.timestamp() - start.timestamp()


def _group(pairs: list[tuple[datetime, Task]]) -> list[OccurrenceGroup]:
    groups: dict[datetime, OccurrenceGroup] = {}
    for occurrence, task in pairs:
        group = groups.get(occurrence)
        if group is None:
            group = groups[occurrence] = OccurrenceGroup(issue=occurrence)
        group.tasks.append(task)
    return sorted(groups.values(), key=lambda g: g.issue)
