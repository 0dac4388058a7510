"""
Render expression trees back to sandbox source text.

Nested operators are always parenthesised so the output reads unambiguously
and parses back to an equivalent expression. Literal values that have no
literal syntax come back as the expression that builds them: a non-finite
float as the division that produces it (``1.0 / 0.0``), a tuple or mapping
value as a tuple or mapping expression. Used by evaluation traces, error
messages and the REPL.
"""

import math

from optbox.expressions import (
    MAX_NESTING_DEPTH,
    Expression,
    BinaryOp,
    Coalesce,
    Conditional,
    Conversion,
    ForceUnwrap,
    Literal,
    MappingExpr,
    OptionalBinding,
    RangeExpr,
    Subscript,
    TupleExpr,
    UnaryOp,
    VariableReference,
    nesting_depth,
)
from optbox.values import Value, ValueKind, describe


def to_source(expr: Expression) -> str:
    """
    Convert an expression to readable source text.

    Example:
        Coalesce(Conversion(INT, Literal("ABC")), Literal(-1))
    Becomes:
        int("ABC") ?? -1

    Raises:
        ValueError: If the tree is nested deeper than MAX_NESTING_DEPTH
    """
    if nesting_depth(expr) > MAX_NESTING_DEPTH:
        raise ValueError(f"Expression is nested more than {MAX_NESTING_DEPTH} levels deep")
    return _render(expr)


def _render(expr: Expression) -> str:
    if isinstance(expr, Literal):
        return _literal_source(expr.value)

    if isinstance(expr, VariableReference):
        return expr.name

    if isinstance(expr, BinaryOp):
        return f"{_operand(expr.left)} {expr.operator.value} {_operand(expr.right)}"

    if isinstance(expr, UnaryOp):
        return f"{expr.operator.value}{_operand(expr.operand)}"

    if isinstance(expr, Coalesce):
        return f"{_operand(expr.primary)} ?? {_operand(expr.fallback)}"

    if isinstance(expr, ForceUnwrap):
        return f"{_operand(expr.operand)}!"

    if isinstance(expr, TupleExpr):
        if len(expr.items) == 1:
            return f"({_render(expr.items[0])},)"
        return "(" + ", ".join(_render(item) for item in expr.items) + ")"

    if isinstance(expr, Conditional):
        return (
            f"{_operand(expr.condition)} ? {_operand(expr.if_true)} : {_operand(expr.if_false)}"
        )

    if isinstance(expr, RangeExpr):
        op = "..." if expr.closed else "..<"
        return f"{_operand(expr.lower)}{op}{_operand(expr.upper)}"

    if isinstance(expr, Conversion):
        return f"{expr.target.value}({_render(expr.operand)})"

    if isinstance(expr, MappingExpr):
        if not expr.entries:
            return "[:]"
        return "[" + ", ".join(f"{_render(k)}: {_render(v)}" for k, v in expr.entries) + "]"

    if isinstance(expr, Subscript):
        bracket = "?[" if expr.optional else "["
        return f"{_operand(expr.target)}{bracket}{_render(expr.key)}]"

    if isinstance(expr, OptionalBinding):
        return (
            f"if let {expr.name} = {_render(expr.source)} "
            f"{{ {_render(expr.present)} }} else {{ {_render(expr.absent)} }}"
        )

    raise TypeError(f"Unsupported Expression type: {type(expr)}")


_NON_FINITE = {
    math.inf: "1.0 / 0.0",
    -math.inf: "-1.0 / 0.0",
}


def _literal_source(value: Value) -> str:
    if value.kind is ValueKind.FLOAT and not math.isfinite(value.payload):
        return _NON_FINITE.get(value.payload, "0.0 / 0.0")
    if value.kind is ValueKind.TUPLE:
        if len(value.payload) == 1:
            return f"({_literal_source(value.payload[0])},)"
        return "(" + ", ".join(_literal_source(item) for item in value.payload) + ")"
    if value.kind is ValueKind.MAPPING and value.payload:
        return "[" + ", ".join(
            f"{_literal_source(k)}: {_literal_source(v)}" for k, v in value.payload
        ) + "]"
    return describe(value)


def _is_atomic(expr: Expression) -> bool:
    if isinstance(expr, Literal):
        value = expr.value
        if value.kind is ValueKind.FLOAT and not math.isfinite(value.payload):
            return False
        # "-8" would re-parse as a prefix operator applied to 8
        if value.is_numeric and str(value.payload).startswith("-"):
            return False
        return True
    return isinstance(
        expr, (VariableReference, TupleExpr, Conversion, MappingExpr, Subscript, OptionalBinding)
    )


def _operand(expr: Expression) -> str:
    text = _render(expr)
    if _is_atomic(expr):
        return text
    return f"({text})"
