"""Shell command jobs loaded from a YAML file.

The ``cronloop run`` command reads a file like::

    jobs:
      - name: heartbeat
        schedule: "*/10 * * * * *"
        seconds: true
        command: "date >> /tmp/heartbeat.log"
      - name: nightly-backup
        schedule: "0 3 * * *"
        command: "tar czf /tmp/backup.tgz ~/notes"

and registers one task per entry.
"""

import asyncio
import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, model_validator

from cronloop.cron.schedule import Schedule
from cronloop.cron.task import AsyncFunc, CancellationToken, Task
from cronloop.cron.types import ParseError

logger = logging.getLogger(__name__)


class CommandFailedError(RuntimeError):
    """Raised when a job's shell command exits with a non-zero status."""

    def __init__(self, name: str, returncode: int, stderr: str) -> None:
        self.name = name
        self.returncode = returncode
        self.stderr = stderr
        detail = f": {stderr.strip()}" if stderr.strip() else ""
        super().__init__(f"Job '{name}' exited with status {returncode}{detail}")


class JobDefinition(BaseModel):
    """A shell command to run on a cron schedule.

    Attributes:
        name: Human-readable job name.
        schedule: Cron expression.
        command: Shell command line.
        seconds: Whether the expression has a leading seconds field.
        enabled: Disabled jobs are skipped when loading.
    """

    name: str = Field(..., description="Human-readable job name")
    schedule: str = Field(..., description="Cron expression (e.g., '0 9 * * *')")
    command: str = Field(..., description="Shell command to run")
    seconds: bool = Field(default=False, description="Expression includes a seconds field")
    enabled: bool = Field(default=True, description="Whether the job is active")

    @model_validator(mode="after")
    def _check_schedule(self) -> "JobDefinition":
        result = Schedule.try_parse(self.schedule, self.seconds)
        if isinstance(result, ParseError):
            raise ValueError(result.message)
        return self

    def to_schedule(self) -> Schedule:
        return Schedule.parse(self.schedule, self.seconds)


class JobsFile(BaseModel):
    """Top-level structure of a jobs YAML file."""

    jobs: list[JobDefinition] = Field(default_factory=list)


def load_jobs(path: str | Path) -> list[JobDefinition]:
    """Load enabled job definitions from a YAML file.

    Args:
        path: Path to the jobs file.

    Returns:
        Enabled jobs, in file order. A missing or empty file yields no jobs.

    Raises:
        pydantic.ValidationError: If an entry is malformed or its schedule
            is invalid.
    """
    path = Path(path)
    if not path.exists():
        logger.warning(f"Jobs file not found: {path}")
        return []

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    jobs = JobsFile.model_validate(data).jobs
    enabled = [job for job in jobs if job.enabled]
    logger.info(f"Loaded {len(enabled)} of {len(jobs)} jobs from {path}")
    return enabled


def command_runner(job: JobDefinition) -> AsyncFunc:
    """Build the coroutine function that runs a job's command."""

    async def run(token: CancellationToken) -> None:
        proc = await asyncio.create_subprocess_shell(
            job.command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()

        if stdout:
            logger.info(f"[{job.name}] {stdout.decode(errors='replace').rstrip()}")
        if proc.returncode != 0:
            raise CommandFailedError(job.name, proc.returncode, stderr.decode(errors="replace"))

    return run


def build_task(job: JobDefinition) -> Task:
    """Create a scheduler task for a job definition."""
    return Task(job.to_schedule(), command_runner(job))
