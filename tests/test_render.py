"""
Tests for rendering expression trees back to source text.
"""

import math

import pytest

from optbox.evaluator import evaluate_source
from optbox.expressions import (
    MAX_NESTING_DEPTH,
    BinaryOp,
    BinaryOperator,
    Coalesce,
    Literal,
    OptionalBinding,
    Subscript,
    VariableReference,
)
from optbox.render import to_source
from optbox.values import ABSENT, Value


class TestNonFiniteFloats:
    """inf and nan have no literal spelling, so they render as the division that makes them."""

    @pytest.mark.parametrize("x", [math.inf, -math.inf])
    def test_infinities(self, x):
        text = to_source(Literal(Value.floating(x)))
        assert "inf" not in text
        assert evaluate_source(text).value == Value.floating(x)

    def test_nan(self):
        text = to_source(Literal(Value.floating(math.nan)))
        assert text == "0.0 / 0.0"
        assert math.isnan(evaluate_source(text).value.payload)

    def test_parenthesised_as_operand(self):
        expr = BinaryOp(BinaryOperator.ADD, Literal(Value.floating(1.0)), Literal(Value.floating(math.inf)))
        assert to_source(expr) == "1.0 + (1.0 / 0.0)"

    def test_inside_tuple_value(self):
        assert to_source(Literal(Value.of((1, math.inf)))) == "(1, 1.0 / 0.0)"


class TestLookupsAndBindings:

    def test_mapping_value(self):
        assert to_source(Literal(Value.of({1: "one"}))) == '[1: "one"]'
        assert to_source(Literal(Value.mapping_of([]))) == "[:]"

    def test_optional_subscript(self):
        expr = Subscript(VariableReference("a"), Literal(Value.text("b")), optional=True)
        assert to_source(expr) == 'a?["b"]'

    def test_binding(self):
        expr = OptionalBinding("n", VariableReference("x"), VariableReference("n"), Literal(Value.integer(0)))
        assert to_source(expr) == "if let n = x { n } else { 0 }"


def test_refuses_trees_deeper_than_the_limit():
    expr = Literal(ABSENT)
    for _ in range(MAX_NESTING_DEPTH + 10):
        expr = Coalesce(Literal(ABSENT), expr)
    with pytest.raises(ValueError, match="nested"):
        to_source(expr)
