"""Cron field value sets and the field expression parser.

A field expression such as ``*/15``, ``1-5`` or ``jan,mar-may`` is parsed
into (start, end, interval) triples which are accumulated into a
:class:`FieldSet`, a bitset over the field's value range.

Parsing never raises internally. Every step returns either ``None`` on
success or a :class:`ParseError` describing the first problem found.
"""

from __future__ import annotations

import sys
from typing import Callable, Iterator

from cronloop.cron.types import (
    FIELD_SPECS,
    FieldKind,
    FieldSpec,
    ParseError,
    ParseErrorCode,
)

# Open range endpoint; start == end == OPEN selects the whole range.
OPEN = -1

_UNSET_MIN = sys.maxsize

Accumulator = Callable[[int, int, int], ParseError | None]


def _is_number(text: str) -> bool:
    return text.isascii() and text.isdigit()


class ExpressionParser:
    """Recursive-descent parser for a single field expression.

    The parser does not build anything itself. Each term it recognizes is
    handed to an accumulator callback as a (start, end, interval) triple.

    Example:
        parser = ExpressionParser(FIELD_SPECS[FieldKind.MINUTE])
        error = parser.parse("0-30/10,45", lambda start, end, step: print(start, end, step))
    """

    def __init__(self, spec: FieldSpec) -> None:
        self._spec = spec

    @property
    def spec(self) -> FieldSpec:
        return self._spec

    def parse(self, expression: str, accumulate: Accumulator) -> ParseError | None:
        """Parse an expression, feeding each term to the accumulator.

        An expression that is empty after trimming is accepted and leaves
        the target untouched.

        Args:
            expression: Field expression text.
            accumulate: Callback receiving (start, end, interval).

        Returns:
            None on success, otherwise the first error encountered.
        """
        text = expression.strip()
        if not text:
            return None

        if "," in text:
            for term in text.split(","):
                error = self._parse_term(term.strip(), accumulate)
                if error is not None:
                    return error
            return None

        return self._parse_term(text, accumulate)

    def _parse_term(self, term: str, accumulate: Accumulator) -> ParseError | None:
        if not term:
            return self._error(ParseErrorCode.EMPTY_FIELD, "A field term is empty", term)

        interval: int | None = None

        # Stepping first, e.g. */2 or 1-10/3
        slash = term.find("/")
        if slash == 0:
            return self._error(ParseErrorCode.MALFORMED, f"Missing value before '/' in '{term}'", term)
        if slash > 0:
            step = term[slash + 1:].strip()
            if not _is_number(step):
                return self._error(ParseErrorCode.MALFORMED, f"Invalid step '{step}' in '{term}'", term)
            interval = int(step)
            term = term[:slash].strip()

        if term == "*":
            return accumulate(OPEN, OPEN, 1 if interval is None else interval)

        dash = term.find("-")
        if dash > 0:
            first = self._parse_value(term[:dash].strip())
            if isinstance(first, ParseError):
                return first
            last = self._parse_value(term[dash + 1:].strip())
            if isinstance(last, ParseError):
                return last
            return accumulate(first, last, 1 if interval is None else interval)

        value = self._parse_value(term)
        if isinstance(value, ParseError):
            return value

        if interval is None:
            return accumulate(value, value, 1)

        return accumulate(value, self._spec.max_value, interval)

    def _parse_value(self, text: str) -> int | ParseError:
        spec = self._spec

        if not text:
            return self._error(ParseErrorCode.EMPTY_FIELD, "A field value is empty", text)

        if text[0].isascii() and text[0].isdigit():
            if not _is_number(text):
                return self._error(ParseErrorCode.MALFORMED, f"'{text}' is not a number", text)
            return int(text)

        if spec.names is None:
            return self._error(
                ParseErrorCode.MALFORMED,
                f"'{text}' is not a valid {spec.kind.description} value; "
                f"expected a number between {spec.min_value} and {spec.max_value}",
                text,
            )

        prefix = text.casefold()
        matches = [i for i, name in enumerate(spec.names) if name.casefold().startswith(prefix)]
        if len(matches) == 1:
            return matches[0] + spec.min_value

        reason = "is ambiguous" if matches else "is not recognized"
        return self._error(
            ParseErrorCode.UNKNOWN_NAME,
            f"'{text}' {reason}; expected one of: {', '.join(spec.names)}",
            text,
        )

    def _error(self, code: ParseErrorCode, message: str, expression: str) -> ParseError:
        return ParseError(code=code, message=message, expression=expression, kind=self._spec.kind)


class FieldSet:
    """The set of values permitted by one field of a schedule.

    Values are stored in a bitset indexed from the field's minimum value.
    The smallest and largest values ever set are tracked alongside so that
    lookups can stop early.

    A FieldSet is built once by :meth:`parse` or :meth:`try_parse` and is
    read-only afterwards.
    """

    __slots__ = ("_spec", "_bits", "_min_value_set", "_max_value_set")

    def __init__(self, kind: FieldKind) -> None:
        self._spec = FIELD_SPECS[kind]
        self._bits = 0
        self._min_value_set = _UNSET_MIN
        self._max_value_set = -1

    @classmethod
    def try_parse(cls, kind: FieldKind, expression: str) -> FieldSet | ParseError:
        """Parse a field expression.

        Args:
            kind: Field being parsed.
            expression: Field expression text.

        Returns:
            The parsed FieldSet, or a ParseError describing the problem.
        """
        field_set = cls(kind)
        error = ExpressionParser(field_set._spec).parse(expression, field_set._accumulate)
        if error is not None:
            return ParseError(
                code=error.code,
                message=f"Invalid {kind.description} expression '{expression}': {error.message}",
                expression=expression,
                kind=kind,
            )
        return field_set

    @classmethod
    def parse(cls, kind: FieldKind, expression: str) -> FieldSet:
        """Parse a field expression, raising CronParseError on failure."""
        result = cls.try_parse(kind, expression)
        if isinstance(result, ParseError):
            raise result.to_exception()
        return result

    @classmethod
    def seconds(cls, expression: str) -> FieldSet:
        return cls.parse(FieldKind.SECOND, expression)

    @classmethod
    def minutes(cls, expression: str) -> FieldSet:
        return cls.parse(FieldKind.MINUTE, expression)

    @classmethod
    def hours(cls, expression: str) -> FieldSet:
        return cls.parse(FieldKind.HOUR, expression)

    @classmethod
    def days(cls, expression: str) -> FieldSet:
        return cls.parse(FieldKind.DAY, expression)

    @classmethod
    def months(cls, expression: str) -> FieldSet:
        return cls.parse(FieldKind.MONTH, expression)

    @classmethod
    def days_of_week(cls, expression: str) -> FieldSet:
        return cls.parse(FieldKind.DAY_OF_WEEK, expression)

    @property
    def kind(self) -> FieldKind:
        return self._spec.kind

    @property
    def spec(self) -> FieldSpec:
        return self._spec

    def first(self) -> int | None:
        """Get the smallest value in the set, or None if the set is empty."""
        if self._max_value_set < 0:
            return None
        return self._min_value_set

    def next(self, start: int) -> int | None:
        """Get the smallest value in the set that is >= start.

        Args:
            start: Value to search from (inclusive).

        Returns:
            The next value, or None if there is none up to the largest value set.
        """
        if self._max_value_set < 0:
            return None

        if start < self._min_value_set:
            return self._min_value_set

        if start > self._max_value_set:
            return None

        remaining = self._bits >> (start - self._spec.min_value)
        if not remaining:
            return None

        return start + (remaining & -remaining).bit_length() - 1

    def contains(self, value: int) -> bool:
        """Check whether a value is in the set."""
        if not self._spec.min_value <= value <= self._spec.max_value:
            return False
        return bool(self._bits >> (value - self._spec.min_value) & 1)

    def __contains__(self, value: object) -> bool:
        return isinstance(value, int) and self.contains(value)

    def __iter__(self) -> Iterator[int]:
        value = self.first()
        while value is not None:
            yield value
            value = self.next(value + 1)

    def __len__(self) -> int:
        return bin(self._bits).count("1")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FieldSet):
            return NotImplemented
        return self.kind == other.kind and self._bits == other._bits

    def __hash__(self) -> int:
        return hash((self.kind, self._bits))

    def _accumulate(self, start: int, end: int, interval: int) -> ParseError | None:
        """Add the values from start to end, stepping by interval.

        Passing OPEN for both start and end with an interval of 1 selects
        the entire range of the field. For ranges, OPEN as the start means
        the field minimum and OPEN as the end means the field maximum.
        """
        min_value = self._spec.min_value
        max_value = self._spec.max_value

        if start == end:
            if start < 0:
                if interval <= 1:
                    self._bits = (1 << self._spec.value_count) - 1
                    self._min_value_set = min_value
                    self._max_value_set = max_value
                    return None

                start = min_value
                end = max_value
            else:
                if start < min_value:
                    return self._below_min(start)
                if start > max_value:
                    return self._above_max(start)
        else:
            if start > end:
                start, end = end, start

            if start < 0:
                start = min_value
            elif start < min_value:
                return self._below_min(start)

            if end < 0:
                end = max_value
            elif end > max_value:
                return self._above_max(end)

        if interval < 1:
            interval = 1

        for value in range(start, end + 1, interval):
            self._bits |= 1 << (value - min_value)

        last = start + ((end - start) // interval) * interval

        if start < self._min_value_set:
            self._min_value_set = start
        if last > self._max_value_set:
            self._max_value_set = last

        return None

    def _below_min(self, value: int) -> ParseError:
        spec = self._spec
        return ParseError(
            code=ParseErrorCode.VALUE_BELOW_MIN,
            message=(
                f"{value} is below the minimum of the {spec.kind.description} field "
                f"({spec.min_value}-{spec.max_value})"
            ),
            expression=str(value),
            kind=spec.kind,
        )

    def _above_max(self, value: int) -> ParseError:
        spec = self._spec
        return ParseError(
            code=ParseErrorCode.VALUE_ABOVE_MAX,
            message=(
                f"{value} is above the maximum of the {spec.kind.description} field "
                f"({spec.min_value}-{spec.max_value})"
            ),
            expression=str(value),
            kind=spec.kind,
        )

    def format(self, use_names: bool = False) -> str:
        """Format the set back into a field expression.

        The full range is written as ``*``. Otherwise consecutive values
        are collapsed into ``first-last`` runs.

        Args:
            use_names: Write symbolic names where the field has them.

        Returns:
            The expression text (empty for an empty set).
        """
        runs: list[tuple[int, int]] = []
        for value in self:
            if runs and runs[-1][1] == value - 1:
                runs[-1] = (runs[-1][0], value)
            else:
                runs.append((value, value))

        if runs == [(self._spec.min_value, self._spec.max_value)]:
            return "*"

        parts = []
        for first, last in runs:
            if first == last:
                parts.append(self._format_value(first, use_names))
            else:
                parts.append(
                    f"{self._format_value(first, use_names)}-{self._format_value(last, use_names)}"
                )
        return ",".join(parts)

    def _format_value(self, value: int, use_names: bool) -> str:
        if use_names and self._spec.names is not None:
            return self._spec.names[value - self._spec.min_value]
        return str(value)

    def __str__(self) -> str:
        return self.format()

    def __repr__(self) -> str:
        return f"FieldSet({self.kind.name}, {self.format()!r})"
