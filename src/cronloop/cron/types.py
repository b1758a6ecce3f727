"""Type definitions for the cron scheduling system.

This module defines the field kinds and their value ranges, the structured
parse error types, and the models carried by scheduler batch events.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum, IntEnum
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from cronloop.cron.task import Task


class FieldKind(IntEnum):
    """Kind of a cron expression field.

    Values follow the order of appearance in a six-field expression.
    """

    SECOND = 0
    MINUTE = 1
    HOUR = 2
    DAY = 3
    MONTH = 4
    DAY_OF_WEEK = 5

    @property
    def description(self) -> str:
        """Human-readable name of the field."""
        return self.name.lower().replace("_", "-")


@dataclass(frozen=True)
class FieldSpec:
    """Value range and optional symbolic names for one field kind.

    Attributes:
        kind: The field kind.
        min_value: Smallest value the field accepts.
        max_value: Largest value the field accepts.
        names: Ordered display names, one per value starting at min_value.
    """

    kind: FieldKind
    min_value: int
    max_value: int
    names: tuple[str, ...] | None = None

    @property
    def value_count(self) -> int:
        return self.max_value - self.min_value + 1


MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)

WEEKDAY_NAMES = (
    "Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday",
)

FIELD_SPECS: dict[FieldKind, FieldSpec] = {
    FieldKind.SECOND: FieldSpec(FieldKind.SECOND, 0, 59),
    FieldKind.MINUTE: FieldSpec(FieldKind.MINUTE, 0, 59),
    FieldKind.HOUR: FieldSpec(FieldKind.HOUR, 0, 23),
    FieldKind.DAY: FieldSpec(FieldKind.DAY, 1, 31),
    FieldKind.MONTH: FieldSpec(FieldKind.MONTH, 1, 12, MONTH_NAMES),
    FieldKind.DAY_OF_WEEK: FieldSpec(FieldKind.DAY_OF_WEEK, 0, 6, WEEKDAY_NAMES),
}


class ParseErrorCode(str, Enum):
    """Reason a cron expression was rejected."""

    VALUE_BELOW_MIN = "value_below_min"
    VALUE_ABOVE_MAX = "value_above_max"
    EMPTY_FIELD = "empty_field"
    UNKNOWN_NAME = "unknown_name"
    MALFORMED = "malformed"
    FIELD_COUNT = "field_count"


@dataclass(frozen=True)
class ParseError:
    """Structured description of a failed parse.

    Parse functions return this value instead of raising, so callers can
    decide whether a bad expression is fatal.

    Attributes:
        code: Machine-readable reason.
        message: Human-readable explanation.
        expression: The text that failed to parse.
        kind: The field being parsed, or None for whole-schedule errors.
    """

    code: ParseErrorCode
    message: str
    expression: str = ""
    kind: FieldKind | None = None

    def to_exception(self) -> CronParseError:
        return CronParseError(self)

    def __str__(self) -> str:
        return self.message


class CronParseError(ValueError):
    """Raised by the strict parse functions when an expression is invalid."""

    def __init__(self, error: ParseError) -> None:
        self.error = error
        super().__init__(error.message)


class SchedulerAlreadyRunningError(RuntimeError):
    """Raised when starting a scheduler that is already running."""


class BatchEnterEvent(BaseModel):
    """Published before a batch of due tasks is executed.

    Attributes:
        enter: Time the batch started.
        tasks: Identifiers of the tasks in the batch, in execution order.
    """

    model_config = ConfigDict(frozen=True)

    enter: datetime = Field(..., description="Time the batch started")
    tasks: tuple[int, ...] = Field(..., description="Task ids in the batch")


class BatchLeaveEvent(BatchEnterEvent):
    """Published after a batch of due tasks has been executed.

    Attributes:
        leave: Time the batch finished.
        duration: Elapsed time between enter and leave.
    """

    leave: datetime = Field(..., description="Time the batch finished")

    @property
    def duration(self) -> timedelta:
        return self.leave - self.enter


@dataclass
class OccurrenceGroup:
    """An occurrence instant and the tasks due at exactly that instant."""

    issue: datetime
    tasks: list[Task] = field(default_factory=list)

    def __str__(self) -> str:
        return f"{self.issue.isoformat()}: {len(self.tasks)}"
