"""Cron schedules and next-occurrence computation.

A :class:`Schedule` aggregates the six fields of a cron expression and
finds the next instant after a base time at which all of them match.
"""

from __future__ import annotations

import calendar
import logging
from datetime import MAXYEAR, datetime, timedelta, timezone
from typing import Iterator

from cronloop.cron.field import FieldSet
from cronloop.cron.types import FieldKind, ParseError, ParseErrorCode

logger = logging.getLogger(__name__)

_SECOND_ZERO = FieldSet.seconds("0")

_FIVE_FIELDS = "minute hour day month day-of-week"
_SIX_FIELDS = "second minute hour day month day-of-week"


class Schedule:
    """A parsed cron schedule.

    Holds one FieldSet per field kind. The seconds field is optional; when
    absent the schedule fires at second 0 of every matching minute.

    Example:
        schedule = Schedule.parse("*/15 9-17 * * mon-fri")
        run_at = schedule.next_occurrence(datetime.now())
    """

    __slots__ = ("_seconds", "_minutes", "_hours", "_days", "_months", "_days_of_week")

    def __init__(
        self,
        seconds: FieldSet | None,
        minutes: FieldSet,
        hours: FieldSet,
        days: FieldSet,
        months: FieldSet,
        days_of_week: FieldSet,
    ) -> None:
        self._seconds = seconds
        self._minutes = minutes
        self._hours = hours
        self._days = days
        self._months = months
        self._days_of_week = days_of_week

    @classmethod
    def try_parse(cls, expression: str, include_seconds: bool = False) -> Schedule | ParseError:
        """Parse a cron expression.

        Args:
            expression: Five whitespace-separated fields, or six when
                include_seconds is set.
            include_seconds: Whether the expression starts with a seconds field.

        Returns:
            The parsed Schedule, or a ParseError describing the problem.
        """
        tokens = expression.split()
        expected = 6 if include_seconds else 5

        if len(tokens) != expected:
            components = _SIX_FIELDS if include_seconds else _FIVE_FIELDS
            return ParseError(
                code=ParseErrorCode.FIELD_COUNT,
                message=(
                    f"'{expression}' is not a valid schedule: expected {expected} "
                    f"components ({components}), got {len(tokens)}"
                ),
                expression=expression,
            )

        fields: list[FieldSet | None] = [None] * 6
        offset = 0 if include_seconds else 1

        for index, token in enumerate(tokens):
            kind = FieldKind(index + offset)
            result = FieldSet.try_parse(kind, token)
            if isinstance(result, ParseError):
                return result
            fields[kind] = result

        return cls(*fields)

    @classmethod
    def parse(cls, expression: str, include_seconds: bool = False) -> Schedule:
        """Parse a cron expression, raising CronParseError on failure."""
        result = cls.try_parse(expression, include_seconds)
        if isinstance(result, ParseError):
            raise result.to_exception()
        return result

    @property
    def include_seconds(self) -> bool:
        return self._seconds is not None

    @property
    def fields(self) -> tuple[FieldSet | None, FieldSet, FieldSet, FieldSet, FieldSet, FieldSet]:
        """The six fields, ordered from seconds to day-of-week."""
        return (
            self._seconds,
            self._minutes,
            self._hours,
            self._days,
            self._months,
            self._days_of_week,
        )

    def next_occurrence(self, base: datetime, end: datetime | None = None) -> datetime:
        """Get the first occurrence strictly after base.

        An occurrence equal to base is never returned. The result has no
        sub-second part and carries the tzinfo of base.

        Args:
            base: Reference time.
            end: Exclusive upper bound of the search (defaults to the
                largest representable datetime).

        Returns:
            The next occurrence, or end itself if none exists before end.
        """
        end = end if end is not None else _max_datetime(base)
        occurrence = self._try_next_occurrence(base, end)
        return end if occurrence is None else occurrence

    def occurrences(self, base: datetime, end: datetime) -> Iterator[datetime]:
        """Lazily yield every occurrence after base and before end."""
        occurrence = self._try_next_occurrence(base, end)
        while occurrence is not None and occurrence < end:
            yield occurrence
            occurrence = self._try_next_occurrence(occurrence, end)

    def _try_next_occurrence(self, base: datetime, end: datetime) -> datetime | None:
        seconds = self._seconds or _SECOND_ZERO
        minutes = self._minutes
        hours = self._hours
        days = self._days
        months = self._months

        while True:
            base_year, base_month, base_day = base.year, base.month, base.day
            base_hour, base_minute = base.hour, base.minute

            year, month, day = base_year, base_month, base_day
            hour, minute = base_hour, base_minute
            second: int | None = base.second + 1

            second = seconds.next(second)
            if second is None:
                second = seconds.first()
                minute += 1

            minute = minutes.next(minute)
            if minute is None:
                second = seconds.first()
                minute = minutes.first()
                hour += 1
            elif minute > base_minute:
                second = seconds.first()

            hour = hours.next(hour)
            if hour is None:
                second = seconds.first()
                minute = minutes.first()
                hour = hours.first()
                day += 1
            elif hour > base_hour:
                second = seconds.first()
                minute = minutes.first()

            day = days.next(day)

            # Day and month carry, repeated when the day does not exist in
            # the month it landed on (e.g. the 31st of April).
            while True:
                if day is None:
                    second = seconds.first()
                    minute = minutes.first()
                    hour = hours.first()
                    day = days.first()
                    month += 1
                elif day > base_day:
                    second = seconds.first()
                    minute = minutes.first()
                    hour = hours.first()

                month = months.next(month)
                if month is None:
                    second = seconds.first()
                    minute = minutes.first()
                    hour = hours.first()
                    day = days.first()
                    month = months.first()
                    year += 1
                elif month > base_month:
                    second = seconds.first()
                    minute = minutes.first()
                    hour = hours.first()
                    day = days.first()

                if year > MAXYEAR:
                    return None

                date_changed = day != base_day or month != base_month or year != base_year
                if day > 28 and date_changed and day > calendar.monthrange(year, month)[1]:
                    if (year, month, day) >= (end.year, end.month, end.day):
                        return end
                    day = None
                    continue
                break

            candidate = datetime(year, month, day, hour, minute, second, tzinfo=base.tzinfo)
            if candidate >= end:
                return end

            if not self._days_of_week.contains(candidate.isoweekday() % 7):
                # Wrong weekday: skip the rest of the candidate day.
                base = datetime(year, month, day, 23, 59, 59, tzinfo=base.tzinfo)
                continue

            if not _wall_time_exists(candidate):
                # Inside a daylight saving gap, e.g. 02:30 on a spring-forward day.
                base = candidate
                continue

            return candidate

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Schedule):
            return NotImplemented
        return self.fields == other.fields

    def __hash__(self) -> int:
        return hash(self.fields)

    def __str__(self) -> str:
        return " ".join(str(f) for f in self.fields if f is not None)

    def __repr__(self) -> str:
        return f"Schedule({str(self)!r})"


def _max_datetime(base: datetime) -> datetime:
    return datetime.max.replace(tzinfo=base.tzinfo)


def _wall_time_exists(value: datetime) -> bool:
    """Check that an aware wall-clock time is not skipped by a DST change."""
    if value.tzinfo is None:
        return True
    try:
        round_trip = value.astimezone(timezone.utc).astimezone(value.tzinfo)
    except OverflowError:
        return True
    return round_trip.replace(tzinfo=None) == value.replace(tzinfo=None)


def validate_cron_expression(expr: str, include_seconds: bool = False) -> bool:
    """Validate a cron expression.

    Args:
        expr: The cron expression to validate.
        include_seconds: Whether the expression has a seconds field.

    Returns:
        True if the expression is valid.
    """
    result = Schedule.try_parse(expr, include_seconds)
    if isinstance(result, ParseError):
        logger.debug(f"Rejected cron expression: {result.message}")
        return False
    return True


def time_until_next_run(schedule: Schedule, now: datetime | None = None) -> timedelta | None:
    """Get the time remaining until the next scheduled run.

    Args:
        schedule: The schedule.
        now: Current time (defaults to local now).

    Returns:
        Time until next run, or None if no future runs.
    """
    now = now or datetime.now()
    end = _max_datetime(now)
    next_run = schedule.next_occurrence(now, end)

    if next_run == end:
        return None

    return next_run - now
