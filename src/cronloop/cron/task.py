"""Scheduled tasks and their executable bodies.

A :class:`Task` pairs a :class:`Schedule` with a body. Bodies come in two
variants: :class:`SyncBody` runs a plain function inline, and
:class:`AsyncBody` runs a coroutine function, either awaited or detached.
Every body receives the scheduler's :class:`CancellationToken`.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import threading
from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from cronloop.cron.schedule import Schedule

# Process-wide task identity counter, starts at 1 on import.
_task_ids = itertools.count(1)
_task_id_lock = threading.Lock()


def new_task_id() -> int:
    """Allocate the next task identifier."""
    with _task_id_lock:
        return next(_task_ids)


class CancellationToken:
    """Thread-safe, one-shot cancellation signal.

    Callbacks registered with :meth:`register` run once, on the thread
    that calls :meth:`cancel`. Registering on an already cancelled token
    runs the callback immediately.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []

        for callback in callbacks:
            callback()

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback to run on cancellation.

        Returns:
            A function that unregisters the callback.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return lambda: self._unregister(callback)

        callback()
        return lambda: None

    def _unregister(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or timeout; returns True if cancelled."""
        return self._event.wait(timeout)


SyncFunc = Callable[[CancellationToken], object]
AsyncFunc = Callable[[CancellationToken], Awaitable[object]]


class TaskBody(ABC):
    """The executable part of a task."""

    is_async: bool = False

    @abstractmethod
    async def run(self, token: CancellationToken, detach: bool = False) -> asyncio.Task | None:
        """Execute the body.

        Args:
            token: Cancellation token handed to the user function.
            detach: For async bodies, start the coroutine as a background
                task instead of awaiting it.

        Returns:
            The background task when detached, otherwise None.
        """


class SyncBody(TaskBody):
    """Body wrapping a plain function; runs inline and blocks the loop.

    A function that turns out to return an awaitable, such as a lambda
    wrapping a coroutine function, has the awaitable awaited.
    """

    def __init__(self, func: SyncFunc) -> None:
        self.func = func

    async def run(self, token: CancellationToken, detach: bool = False) -> asyncio.Task | None:
        result = self.func(token)
        if inspect.isawaitable(result):
            await result
        return None


class AsyncBody(TaskBody):
    """Body wrapping a coroutine function."""

    is_async = True

    def __init__(self, func: AsyncFunc) -> None:
        self.func = func

    async def run(self, token: CancellationToken, detach: bool = False) -> asyncio.Task | None:
        if detach:
            return asyncio.ensure_future(self.func(token))
        await self.func(token)
        return None


def make_body(func: SyncFunc | AsyncFunc | TaskBody) -> TaskBody:
    """Wrap a function in the matching body type."""
    if isinstance(func, TaskBody):
        return func
    if _is_async_callable(func):
        return AsyncBody(func)
    return SyncBody(func)


def _is_async_callable(func: object) -> bool:
    if inspect.iscoroutinefunction(func):
        return True
    # Instances of classes defining ``async def __call__``
    return not inspect.isroutine(func) and inspect.iscoroutinefunction(getattr(func, "__call__", None))


class Task:
    """A schedule plus the body to run when it fires.

    The identifier is assigned at construction and never changes. The
    schedule may be replaced; call the scheduler's ``refresh_tasks`` after
    doing so while it is running.

    Example:
        task = Task("*/5 * * * *", lambda token: print("tick"))
        scheduler.add_task(task)
    """

    def __init__(
        self,
        schedule: Schedule | str,
        func: SyncFunc | AsyncFunc | TaskBody,
        include_seconds: bool = False,
    ) -> None:
        if isinstance(schedule, str):
            schedule = Schedule.parse(schedule, include_seconds)

        self._id = new_task_id()
        self.schedule = schedule
        self._body = make_body(func)

    @property
    def id(self) -> int:
        return self._id

    @property
    def body(self) -> TaskBody:
        return self._body

    @property
    def is_async(self) -> bool:
        return self._body.is_async

    def __str__(self) -> str:
        return f"{self._id} ({self.schedule})"

    def __repr__(self) -> str:
        return f"Task(id={self._id}, schedule={str(self.schedule)!r}, is_async={self.is_async})"
