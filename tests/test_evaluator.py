"""
Tests for the expression evaluator.

These tests verify:
    - Nil-coalescing and forced unwrapping
    - Arithmetic (integer truncation, float promotion, IEEE division)
    - Equality and ordering, including strings and tuples
    - Typed failures are returned, never raised
    - Evaluation traces
    - Optional binding, lookups and optional chaining
    - The nesting limit
"""

import math

import pytest
from optbox.errors import ErrorKind, EvaluationFailed
from optbox.evaluator import EvalResult, evaluate, evaluate_source
from optbox.expressions import (
    MAX_NESTING_DEPTH,
    BinaryOp,
    BinaryOperator,
    Coalesce,
    ForceUnwrap,
    Literal,
    TupleExpr,
    VariableReference,
)
from optbox.parser import ParseError
from optbox.values import ABSENT, FALSE, TRUE, Value


def run(source, **kwargs) -> EvalResult:
    return evaluate_source(source, **kwargs)


def value_of(source, **kwargs):
    result = run(source, **kwargs)
    assert result.ok, result.error
    return result.value


def error_of(source, **kwargs) -> ErrorKind:
    result = run(source, **kwargs)
    assert not result.ok, f"expected an error, got {result.value}"
    return result.error.kind


class TestCoreProperties:
    """Properties every implementation of the sandbox must hold."""

    @pytest.mark.parametrize("n", [0, 1, -1, 42, 2 ** 63 - 1, -(2 ** 63)])
    def test_coalesce_absent_returns_fallback(self, n):
        expr = Coalesce(Literal(ABSENT), Literal(Value.integer(n)))
        assert evaluate(expr).value == Value.integer(n)

    def test_force_unwrap_absent_fails(self):
        result = evaluate(ForceUnwrap(Literal(ABSENT)))
        assert not result.ok
        assert result.error.kind is ErrorKind.UNWRAP_ON_ABSENT

    def test_division_by_zero_fails(self):
        expr = BinaryOp(BinaryOperator.DIVIDE, Literal(Value.integer(10)), Literal(Value.integer(0)))
        assert evaluate(expr).error.kind is ErrorKind.DIVISION_BY_ZERO

    def test_string_ordering(self):
        assert value_of('"apple" < "banana"') == TRUE

    def test_tuple_ordering(self):
        assert value_of('(1, "B") > (2, "A")') == FALSE
        assert value_of('(2, "B") > (2, "A")') == TRUE

    def test_coalesce_is_idempotent(self):
        expr = Coalesce(Literal(Value.integer(7)), Literal(Value.integer(0)))
        assert evaluate(expr) == evaluate(expr)
        assert evaluate(expr).value == Value.integer(7)


class TestOptionals:

    def test_failed_conversion_is_nil(self):
        assert value_of('int("ABC1")') == ABSENT

    def test_successful_conversion(self):
        assert value_of('int("123")') == Value.integer(123)
        assert value_of('int("+5")') == Value.integer(5)
        assert value_of('int("-5")') == Value.integer(-5)

    @pytest.mark.parametrize("text", [" 5", "5 ", "1_000", "12.5", "", "٣"])
    def test_int_conversion_is_strict(self, text):
        assert value_of(f'int("{text}")') == ABSENT

    def test_int_conversion_out_of_range_is_nil(self):
        assert value_of('int("9223372036854775808")') == ABSENT

    def test_float_conversion(self):
        assert value_of('float("16.0")') == Value.floating(16.0)
        assert value_of('float("A")') == ABSENT
        assert value_of('float(".5")') == Value.floating(0.5)
        assert math.isinf(value_of('float("inf")').payload)

    def test_numeric_conversions(self):
        assert value_of("int(3.7)") == Value.integer(3)
        assert value_of("int(-3.7)") == Value.integer(-3)
        assert value_of("float(3)") == Value.floating(3.0)

    def test_int_of_nil_is_type_mismatch(self):
        assert error_of("int(nil)") is ErrorKind.TYPE_MISMATCH
        assert error_of("float(true)") is ErrorKind.TYPE_MISMATCH

    def test_int_of_infinity_overflows(self):
        assert error_of("int(1.0 / 0.0)") is ErrorKind.OVERFLOW

    def test_str_conversion(self):
        assert value_of("str(42)") == Value.text("42")
        assert value_of('str("x")') == Value.text("x")
        assert value_of("str(nil)") == Value.text("nil")
        assert value_of("str((1, true))") == Value.text("(1, true)")

    def test_coalesce_with_conversion(self):
        assert value_of('int("XD") ?? -1') == Value.integer(-1)
        assert value_of('int("42") ?? -1') == Value.integer(42)

    def test_coalesce_does_not_evaluate_fallback_when_present(self):
        assert value_of("1 ?? nil!") == Value.integer(1)

    def test_coalesce_chain(self):
        assert value_of("nil ?? nil ?? 3") == Value.integer(3)

    def test_coalesce_fallback_kind_must_match(self):
        assert error_of('int("12") ?? "twelve"') is ErrorKind.TYPE_MISMATCH

    def test_coalesce_nil_fallback_is_allowed(self):
        assert value_of("5 ?? nil") == Value.integer(5)

    def test_force_unwrap_present_value(self):
        assert value_of('int("42")!') == Value.integer(42)

    def test_force_unwrap_failure_inside_larger_expression(self):
        result = run('1 + int("Hello World!")!')
        assert result.error.kind is ErrorKind.UNWRAP_ON_ABSENT
        assert result.error.source == 'int("Hello World!")!'

    def test_nil_equality(self):
        assert value_of('int("ABC") == nil') == TRUE
        assert value_of('int("1") == nil') == FALSE
        assert value_of("nil != nil") == FALSE

    def test_nil_is_not_ordered(self):
        assert error_of("nil < 1") is ErrorKind.TYPE_MISMATCH


class TestArithmetic:

    def test_integer_division_truncates(self):
        assert value_of("5 / 10") == Value.integer(0)
        assert value_of("-7 / 2") == Value.integer(-3)
        assert value_of("7 / -2") == Value.integer(-3)

    def test_remainder_takes_sign_of_dividend(self):
        assert value_of("52 % 7") == Value.integer(3)
        assert value_of("-7 % 2") == Value.integer(-1)
        assert value_of("7 % -2") == Value.integer(1)

    def test_remainder_by_zero(self):
        assert error_of("10 % 0") is ErrorKind.DIVISION_BY_ZERO

    def test_mixed_operands_promote_to_float(self):
        assert value_of("5.0 / 10") == Value.floating(0.5)
        assert value_of("1 + 0.5") == Value.floating(1.5)

    def test_float_divided_by_integer_zero_is_division_by_zero(self):
        assert error_of("5.0 / 0") is ErrorKind.DIVISION_BY_ZERO

    def test_float_division_by_float_zero_follows_ieee(self):
        assert value_of("1.0 / 0.0").payload == math.inf
        assert value_of("-1.0 / 0.0").payload == -math.inf
        assert math.isnan(value_of("0.0 / 0.0").payload)
        assert math.isnan(value_of("1.5 % 0.0").payload)

    def test_float_remainder(self):
        assert value_of("5.5 % 2.0") == Value.floating(1.5)
        assert value_of("-5.5 % 2.0") == Value.floating(-1.5)

    def test_string_concatenation(self):
        assert value_of('"Hello" + " " + "World!"') == Value.text("Hello World!")

    def test_string_minus_is_type_mismatch(self):
        assert error_of('"a" - "b"') is ErrorKind.TYPE_MISMATCH

    def test_text_plus_integer_is_type_mismatch(self):
        assert error_of('"a" + 1') is ErrorKind.TYPE_MISMATCH

    def test_boolean_arithmetic_is_type_mismatch(self):
        assert error_of("true + 1") is ErrorKind.TYPE_MISMATCH

    def test_overflow(self):
        assert error_of("9223372036854775807 + 1") is ErrorKind.OVERFLOW
        assert error_of("-9223372036854775807 - 2") is ErrorKind.OVERFLOW

    def test_unary_operators(self):
        assert value_of("-(2 + 3)") == Value.integer(-5)
        assert value_of("+4") == Value.integer(4)
        assert value_of("-0.5") == Value.floating(-0.5)
        assert value_of("!false") == TRUE
        assert error_of("!1") is ErrorKind.TYPE_MISMATCH
        assert error_of('-"a"') is ErrorKind.TYPE_MISMATCH


class TestComparison:

    def test_numbers(self):
        assert value_of("1 == 2") == FALSE
        assert value_of("3 <= 4") == TRUE
        assert value_of("2 == 2.0") == TRUE

    def test_strings_compare_by_code_point(self):
        assert value_of('"cat" > "dog"') == FALSE
        assert value_of('"a" < "Z"') == FALSE
        assert value_of('"c" + "at" == "cat"') == TRUE

    def test_booleans_compare_for_equality_only(self):
        assert value_of("true == true") == TRUE
        assert error_of("true < false") is ErrorKind.TYPE_MISMATCH

    def test_mismatched_kinds(self):
        assert error_of('1 == "1"') is ErrorKind.TYPE_MISMATCH
        assert error_of('1 < "1"') is ErrorKind.TYPE_MISMATCH

    def test_tuple_comparisons(self):
        assert value_of("(1, 2) == (1, 2)") == TRUE
        assert value_of("(1, 2) <= (1, 2)") == TRUE
        assert value_of("(1, 2) < (1, 2)") == FALSE
        assert value_of('(1, "a") < (1, "b")') == TRUE

    def test_tuple_comparison_short_circuits(self):
        """The first unequal pair decides; later pairs are not compared."""
        assert value_of('(1, "x") < (2, 3)') == TRUE

    def test_tuple_arity_mismatch(self):
        assert error_of("(1, 2) == (1, 2, 3)") is ErrorKind.TYPE_MISMATCH
        assert error_of("(1, 2) < (1,)") is ErrorKind.TYPE_MISMATCH

    def test_nested_tuples(self):
        assert value_of("((1, 2), 3) < ((1, 3), 0)") == TRUE


class TestLogic:

    def test_and_or(self):
        assert value_of("1 > -10 && !(\"a\" < \"Z\")") == TRUE
        assert value_of("false || false") == FALSE

    def test_logical_operands_must_be_boolean(self):
        assert error_of("1 && true") is ErrorKind.TYPE_MISMATCH

    def test_both_operands_are_evaluated(self):
        assert error_of("false && nil!") is ErrorKind.UNWRAP_ON_ABSENT

    def test_conditional_evaluates_one_branch(self):
        assert value_of('1 > 2 ? nil! : "b"') == Value.text("b")

    def test_conditional_requires_boolean(self):
        assert error_of("1 ? 2 : 3") is ErrorKind.TYPE_MISMATCH


class TestRanges:

    def test_closed_and_half_open(self):
        assert value_of("10...15") == Value.of((10, 11, 12, 13, 14, 15))
        assert value_of("10..<15") == Value.of((10, 11, 12, 13, 14))

    def test_empty_half_open_range(self):
        assert value_of("5..<5") == Value.tuple_of([])

    def test_inverted_range(self):
        assert error_of("5...1") is ErrorKind.INVALID_RANGE

    def test_huge_range(self):
        assert error_of("0...100000") is ErrorKind.INVALID_RANGE

    def test_range_bounds_must_be_integers(self):
        assert error_of("1.0...3") is ErrorKind.TYPE_MISMATCH


class TestEnvironment:

    def test_bound_name(self):
        env = {"answer": Value.integer(42)}
        assert evaluate(VariableReference("answer"), env=env).value == Value.integer(42)

    def test_unbound_name(self):
        assert error_of("missing + 1") is ErrorKind.UNDEFINED_NAME

    def test_bound_nil(self):
        assert value_of("n ?? 0", env={"n": ABSENT}) == Value.integer(0)


class TestResult:

    def test_result_has_exactly_one_outcome(self):
        with pytest.raises(ValueError):
            EvalResult()

    def test_unwrap_raises_evaluation_failed(self):
        result = run("nil!")
        with pytest.raises(EvaluationFailed) as excinfo:
            result.unwrap()
        assert excinfo.value.error.kind is ErrorKind.UNWRAP_ON_ABSENT

    def test_unwrap_returns_value(self):
        assert run("1 + 1").unwrap() == Value.integer(2)

    def test_str(self):
        assert str(run("(1, nil)")) == "(1, nil)"
        assert str(run("nil!")).startswith("error: UnwrapOnAbsent")


class TestTrace:

    def test_no_trace_by_default(self):
        assert run("1 + 2").trace == ()

    def test_trace_records_sub_results_in_completion_order(self):
        result = run('int("ABC") ?? -1', trace=True)
        assert [(s.depth, s.source, s.outcome) for s in result.trace] == [
            (1, 'int("ABC")', "nil"),
            (1, "-1", "-1"),
            (0, 'int("ABC") ?? (-1)', "-1"),
        ]

    def test_trace_marks_failing_node_once(self):
        result = run("1 + nil!", trace=True)
        failed = [s for s in result.trace if s.failed]
        assert len(failed) == 1
        assert failed[0].source == "nil!"
        assert "UnwrapOnAbsent" in result.format_trace()

    def test_trace_indents_by_depth(self):
        result = run("(1 + 2) * 3", trace=True)
        lines = result.format_trace().splitlines()
        assert lines[0] == "  1 + 2 => 3"
        assert lines[-1] == "(1 + 2) * 3 => 9"

    def test_tuple_literal_node(self):
        expr = TupleExpr((Literal(Value.integer(1)), Literal(ABSENT)))
        assert evaluate(expr).value == Value.of((1, None))


class TestOptionalBinding:

    def test_binds_the_unwrapped_value(self):
        assert value_of('if let n = int("12") { (true, n) } else { (false, 0) }') == Value.of((True, 12))

    def test_else_branch_on_nil(self):
        assert value_of('if let n = int("XD") { (true, n) } else { (false, 0) }') == Value.of((False, 0))

    def test_name_is_not_visible_in_else(self):
        assert error_of("if let n = nil { 1 } else { n }") is ErrorKind.UNDEFINED_NAME

    def test_name_is_not_visible_afterwards(self):
        assert error_of("if let n = 1 { n } else { 0 } + n") is ErrorKind.UNDEFINED_NAME

    def test_shadows_an_outer_binding(self):
        env = {"n": Value.integer(40)}
        assert value_of("if let n = 2 { n } else { 0 } + n", env=env) == Value.integer(42)

    def test_evaluates_one_branch(self):
        assert value_of("if let n = 1 { n } else { nil! }") == Value.integer(1)
        assert value_of("if let n = nil { nil! } else { 0 }") == Value.integer(0)


class TestLookups:

    def test_mapping_literal(self):
        assert value_of('[1: "one", 2: "two"]') == Value.of({1: "one", 2: "two"})

    def test_present_key(self):
        assert value_of('[1: "one"][1]') == Value.text("one")

    def test_missing_key_is_nil(self):
        assert value_of('["SFO": "San Francisco"]["NRT"]') == ABSENT

    def test_empty_mapping_lookup(self):
        assert value_of("[:][1]") == ABSENT

    def test_key_kind_mismatch(self):
        assert error_of('[1: "one"]["1"]') is ErrorKind.TYPE_MISMATCH

    def test_bad_key_kind(self):
        assert error_of('[1.5: "x"]') is ErrorKind.TYPE_MISMATCH

    def test_mixed_key_kinds(self):
        assert error_of('[1: "x", "a": "y"]') is ErrorKind.TYPE_MISMATCH

    def test_duplicate_keys(self):
        assert error_of('[1: "x", 1: "y"]') is ErrorKind.DUPLICATE_KEY

    def test_tuple_index(self):
        assert value_of('(1, "B")[1]') == Value.text("B")

    def test_tuple_index_out_of_range(self):
        assert error_of("(1, 2)[2]") is ErrorKind.INVALID_RANGE

    def test_tuple_index_must_be_integer(self):
        assert error_of('(1, 2)["0"]') is ErrorKind.TYPE_MISMATCH

    def test_integers_cannot_be_subscripted(self):
        assert error_of("42[0]") is ErrorKind.TYPE_MISMATCH

    def test_mapping_equality_ignores_order(self):
        assert value_of('[1: "a", 2: "b"] == [2: "b", 1: "a"]') == TRUE
        assert value_of('[1: "a"] == [1: "b"]') == FALSE


class TestOptionalChaining:

    @pytest.fixture
    def env(self):
        return {"a": ABSENT, "b": Value.of({"value": 42})}

    def test_chain_through_nil(self, env):
        assert value_of('a?["b"]?["value"]', env=env) == ABSENT

    def test_chain_through_a_value(self, env):
        assert value_of('b?["value"]', env=env) == Value.integer(42)

    def test_rest_of_chain_is_skipped(self, env):
        assert value_of('a?["b"]["value"]', env=env) == ABSENT

    def test_plain_subscript_of_nil(self, env):
        assert error_of('a["b"]', env=env) is ErrorKind.TYPE_MISMATCH

    def test_key_is_not_evaluated_when_the_chain_stops(self, env):
        assert value_of("a?[nil!]", env=env) == ABSENT

    def test_unwrapping_the_chain(self, env):
        assert error_of('a?["b"]!', env=env) is ErrorKind.UNWRAP_ON_ABSENT
        assert value_of('b?["value"]! + 0', env=env) == Value.integer(42)


class TestNestingLimit:

    def test_deep_tree_is_refused(self):
        expr = Literal(ABSENT)
        for _ in range(600):
            expr = Coalesce(Literal(ABSENT), expr)
        result = evaluate(expr, trace=True)
        assert result.error.kind is ErrorKind.NESTING_TOO_DEEP
        assert result.trace == ()

    def test_tree_at_the_limit_is_evaluated(self):
        expr = Literal(Value.integer(1))
        for _ in range(MAX_NESTING_DEPTH - 1):
            expr = Coalesce(Literal(ABSENT), expr)
        result = evaluate(expr, trace=True)
        assert result.value == Value.integer(1)
        assert result.trace

    def test_deep_source_is_a_parse_error(self):
        with pytest.raises(ParseError, match="nested too deeply"):
            evaluate_source("-" * 400 + "1")
