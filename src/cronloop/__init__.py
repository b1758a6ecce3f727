"""cronloop - cron expression parsing and an asyncio task scheduler."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("cronloop")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from cronloop.cron import CronScheduler, FieldSet, Schedule, Task

__all__ = ["CronScheduler", "FieldSet", "Schedule", "Task"]
