"""Task execution for the scheduler.

This module runs a single task body and turns its outcome into an
:class:`ExecutionResult`, so one failing task does not take down the
batch it belongs to.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

from cronloop.cron import events
from cronloop.cron.task import CancellationToken, Task

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    """Result of executing a task.

    Attributes:
        task_id: Identifier of the executed task.
        success: Whether execution succeeded.
        error: Error message on failure.
        exception: The exception raised by the task body, if any.
        detached: Whether the body was started in the background.
        duration_ms: Execution duration in milliseconds.
    """

    task_id: int
    success: bool
    error: str | None = None
    exception: Exception | None = None
    detached: bool = False
    duration_ms: float = 0


class TaskExecutor:
    """Runs task bodies on behalf of the scheduler loop.

    Synchronous bodies run inline. Asynchronous bodies are awaited unless
    ``wait_async_tasks`` is False, in which case they are started as
    background tasks. The executor keeps references to background tasks
    until they finish and logs their failures.

    Example:
        executor = TaskExecutor(wait_async_tasks=False)
        result = await executor.execute(task, token)
    """

    def __init__(self, wait_async_tasks: bool = True) -> None:
        """Initialize the executor.

        Args:
            wait_async_tasks: Await async bodies instead of detaching them.
        """
        self.wait_async_tasks = wait_async_tasks
        self._detached: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Number of detached tasks still running."""
        return len(self._detached)

    async def execute(self, task: Task, token: CancellationToken) -> ExecutionResult:
        """Execute a task.

        Args:
            task: The task to execute.
            token: Cancellation token passed to the body.

        Returns:
            Execution result.
        """
        start_time = datetime.now()
        events.task_dispatched(task.id)

        try:
            background = await task.body.run(token, detach=not self.wait_async_tasks)
        except Exception as e:
            duration_ms = (datetime.now() - start_time).total_seconds() * 1000
            error = str(e) or type(e).__name__
            events.task_failed(task.id, error)
            return ExecutionResult(
                task_id=task.id,
                success=False,
                error=error,
                exception=e,
                duration_ms=duration_ms,
            )

        duration_ms = (datetime.now() - start_time).total_seconds() * 1000

        if background is not None:
            self._detached.add(background)
            background.add_done_callback(lambda t: self._on_detached_done(task.id, t))
            return ExecutionResult(
                task_id=task.id,
                success=True,
                detached=True,
                duration_ms=duration_ms,
            )

        logger.debug(f"Task {task.id} completed in {duration_ms:.0f}ms")
        return ExecutionResult(task_id=task.id, success=True, duration_ms=duration_ms)

    def _on_detached_done(self, task_id: int, background: asyncio.Task) -> None:
        self._detached.discard(background)

        if background.cancelled():
            logger.debug(f"Detached task {task_id} was cancelled")
            return

        exc = background.exception()
        if exc is not None:
            events.task_failed(task_id, str(exc) or type(exc).__name__)

