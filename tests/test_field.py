"""Tests for cron field parsing and value sets."""

import pytest

from cronloop.cron.field import OPEN, ExpressionParser, FieldSet
from cronloop.cron.types import (
    FIELD_SPECS,
    CronParseError,
    FieldKind,
    ParseError,
    ParseErrorCode,
)


def _values(kind: FieldKind, expression: str) -> list[int]:
    return list(FieldSet.parse(kind, expression))


class TestSingleValues:
    @pytest.mark.parametrize("kind", list(FieldKind))
    def test_every_value_in_range(self, kind: FieldKind) -> None:
        spec = FIELD_SPECS[kind]
        for value in range(spec.min_value, spec.max_value + 1):
            field = FieldSet.parse(kind, str(value))
            assert field.contains(value)
            assert field.first() == value
            assert field.next(value) == value
            assert list(field) == [value]

    def test_next_past_value_is_none(self) -> None:
        field = FieldSet.hours("7")
        assert field.next(8) is None

    def test_next_below_minimum_returns_first(self) -> None:
        field = FieldSet.hours("5-10")
        assert field.next(0) == 5
        assert field.next(7) == 7
        assert field.next(11) is None


class TestWildcard:
    @pytest.mark.parametrize("kind", list(FieldKind))
    def test_star_contains_whole_range(self, kind: FieldKind) -> None:
        spec = FIELD_SPECS[kind]
        field = FieldSet.parse(kind, "*")
        expected = list(range(spec.min_value, spec.max_value + 1))

        assert list(field) == expected
        for value in expected:
            assert field.next(value) == value
        assert field.next(spec.max_value + 1) is None

    def test_star_step(self) -> None:
        assert _values(FieldKind.MINUTE, "*/15") == [0, 15, 30, 45]
        assert _values(FieldKind.DAY, "*/10") == [1, 11, 21, 31]

    def test_zero_step_is_treated_as_one(self) -> None:
        assert len(FieldSet.minutes("*/0")) == 60
        assert _values(FieldKind.HOUR, "20/0") == [20, 21, 22, 23]


class TestRangesAndSteps:
    def test_range(self) -> None:
        assert _values(FieldKind.HOUR, "9-17") == list(range(9, 18))

    def test_reversed_range_is_swapped(self) -> None:
        assert FieldSet.minutes("30-10") == FieldSet.minutes("10-30")
        assert FieldSet.days_of_week("5-1") == FieldSet.days_of_week("1-5")

    def test_bare_step_runs_to_field_maximum(self) -> None:
        field = FieldSet.minutes("5/20")
        assert list(field) == [5, 25, 45]
        assert field.next(45) == 45
        assert field.next(46) is None

    def test_range_step_tracks_last_touched_value(self) -> None:
        field = FieldSet.minutes("10-50/15")
        assert list(field) == [10, 25, 40]
        assert field.next(41) is None
        assert field.next(26) == 40

    def test_list_accumulates(self) -> None:
        assert _values(FieldKind.MINUTE, "0,5-7,50/5") == [0, 5, 6, 7, 50, 55]

    def test_whitespace_is_tolerated(self) -> None:
        assert _values(FieldKind.MINUTE, " 1 , 2 - 4 , */30 ") == [0, 1, 2, 3, 4, 30]

    def test_empty_expression_leaves_set_empty(self) -> None:
        field = FieldSet.minutes("   ")
        assert field.first() is None
        assert field.next(0) is None
        assert len(field) == 0


class TestNames:
    def test_month_prefixes(self) -> None:
        assert _values(FieldKind.MONTH, "jan,JUNE,Dec") == [1, 6, 12]

    def test_weekday_range_by_name(self) -> None:
        assert _values(FieldKind.DAY_OF_WEEK, "mon-fri") == [1, 2, 3, 4, 5]

    def test_ambiguous_prefix_is_an_error(self) -> None:
        result = FieldSet.try_parse(FieldKind.MONTH, "ju")
        assert isinstance(result, ParseError)
        assert result.code == ParseErrorCode.UNKNOWN_NAME
        assert "ambiguous" in result.message

    def test_unknown_name_is_an_error(self) -> None:
        result = FieldSet.try_parse(FieldKind.DAY_OF_WEEK, "funday")
        assert isinstance(result, ParseError)
        assert result.code == ParseErrorCode.UNKNOWN_NAME
        assert result.kind == FieldKind.DAY_OF_WEEK

    def test_names_on_numeric_field_are_malformed(self) -> None:
        result = FieldSet.try_parse(FieldKind.HOUR, "noon")
        assert isinstance(result, ParseError)
        assert result.code == ParseErrorCode.MALFORMED


class TestErrors:
    @pytest.mark.parametrize(
        "kind, expression, code",
        [
            (FieldKind.MINUTE, "60", ParseErrorCode.VALUE_ABOVE_MAX),
            (FieldKind.DAY, "0", ParseErrorCode.VALUE_BELOW_MIN),
            (FieldKind.DAY, "1-32", ParseErrorCode.VALUE_ABOVE_MAX),
            (FieldKind.MONTH, "0-5", ParseErrorCode.VALUE_BELOW_MIN),
            (FieldKind.MINUTE, "1,,2", ParseErrorCode.EMPTY_FIELD),
            (FieldKind.MINUTE, "5-", ParseErrorCode.EMPTY_FIELD),
            (FieldKind.MINUTE, "1x", ParseErrorCode.MALFORMED),
            (FieldKind.MINUTE, "*/x", ParseErrorCode.MALFORMED),
            (FieldKind.MINUTE, "/5", ParseErrorCode.MALFORMED),
        ],
    )
    def test_error_codes(self, kind: FieldKind, expression: str, code: ParseErrorCode) -> None:
        result = FieldSet.try_parse(kind, expression)
        assert isinstance(result, ParseError)
        assert result.code == code
        assert result.kind == kind
        assert result.expression == expression

    def test_first_bad_term_stops_the_list(self) -> None:
        result = FieldSet.try_parse(FieldKind.HOUR, "1,99,abc")
        assert isinstance(result, ParseError)
        assert result.code == ParseErrorCode.VALUE_ABOVE_MAX

    def test_parse_raises(self) -> None:
        with pytest.raises(CronParseError) as exc_info:
            FieldSet.hours("24")
        assert exc_info.value.error.code == ParseErrorCode.VALUE_ABOVE_MAX
        assert "24" in str(exc_info.value)


class TestParserAccumulation:
    def test_parser_emits_triples(self) -> None:
        calls = []

        def accumulate(start: int, end: int, interval: int) -> None:
            calls.append((start, end, interval))
            return None

        parser = ExpressionParser(FIELD_SPECS[FieldKind.MINUTE])
        assert parser.parse("*/5,3,10-20/2,40/7", accumulate) is None
        assert calls == [(OPEN, OPEN, 5), (3, 3, 1), (10, 20, 2), (40, 59, 7)]

    def test_parser_stops_on_accumulator_error(self) -> None:
        error = ParseError(code=ParseErrorCode.MALFORMED, message="nope")
        calls = []

        def accumulate(start: int, end: int, interval: int) -> ParseError:
            calls.append(start)
            return error

        parser = ExpressionParser(FIELD_SPECS[FieldKind.MINUTE])
        assert parser.parse("1,2,3", accumulate) is error
        assert calls == [1]


class TestFormat:
    def test_full_range_is_star(self) -> None:
        assert str(FieldSet.minutes("0-59")) == "*"
        assert str(FieldSet.days_of_week("sun-sat")) == "*"

    def test_runs_are_collapsed(self) -> None:
        assert str(FieldSet.minutes("1,2,3,5,7-9")) == "1-3,5,7-9"

    def test_names(self) -> None:
        field = FieldSet.months("1-3,12")
        assert field.format() == "1-3,12"
        assert field.format(use_names=True) == "January-March,December"

    def test_names_ignored_for_numeric_fields(self) -> None:
        assert FieldSet.hours("1,3").format(use_names=True) == "1,3"

    @pytest.mark.parametrize(
        "kind, expression",
        [
            (FieldKind.SECOND, "*/7"),
            (FieldKind.MINUTE, "0,15,30-35,59"),
            (FieldKind.HOUR, "22-2"),
            (FieldKind.DAY, "1,15,31"),
            (FieldKind.MONTH, "feb,apr-jun,nov"),
            (FieldKind.DAY_OF_WEEK, "sat,sun"),
        ],
    )
    def test_format_then_parse_keeps_membership(self, kind: FieldKind, expression: str) -> None:
        field = FieldSet.parse(kind, expression)
        assert FieldSet.parse(kind, field.format()) == field
        assert FieldSet.parse(kind, field.format(use_names=True)) == field
