"""
Expression Evaluator (Expression AST -> Value or EvalError).

``evaluate`` is a pure function of an immutable tree and an optional
read-only environment of ``let`` bindings. Failures are returned as typed
``EvalError`` values inside an ``EvalResult``; nothing escapes as an
exception for a failing expression.

Semantics worth knowing:
    - Binary operators evaluate both operands, left first
    - Integer / and % truncate toward zero; % takes the sign of the dividend
    - Mixed integer/float arithmetic is carried out in floating point
    - ``a ?? b`` only evaluates ``b`` when ``a`` is nil
    - ``a!`` on nil is the UnwrapOnAbsent failure
    - Anything compares equal to nil only when it is nil itself
    - ``if let x = a { .. } else { .. }`` binds ``x`` only inside its first block
    - ``m[k]`` on a mapping yields nil for a missing key; ``a?[k]`` yields nil
      when ``a`` is nil, and so does the rest of that chain
    - Trees deeper than MAX_NESTING_DEPTH fail with NestingTooDeep before
      anything is evaluated
"""

import logging
import math
import operator
import re
from collections import ChainMap
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from optbox.errors import ErrorKind, EvalError, EvaluationFailed
from optbox.expressions import (
    MAX_NESTING_DEPTH,
    Expression,
    BinaryOp,
    BinaryOperator,
    Coalesce,
    Conditional,
    Conversion,
    ConversionTarget,
    ForceUnwrap,
    Literal,
    MappingExpr,
    OptionalBinding,
    RangeExpr,
    Subscript,
    TupleExpr,
    UnaryOp,
    UnaryOperator,
    VariableReference,
    nesting_depth,
)
from optbox.parser import parse_expression
from optbox.render import to_source
from optbox.values import ABSENT, KEY_KINDS, Value, ValueKind, describe, fits_int64

logger = logging.getLogger(__name__)

# Longest tuple a range expression may produce.
MAX_RANGE_LENGTH = 10_000

_INT_TEXT_RE = re.compile(r"[+-]?[0-9]+")
_FLOAT_TEXT_RE = re.compile(
    r"[+-]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][+-]?[0-9]+)?|[+-]?(?:inf|infinity|nan)",
    re.IGNORECASE,
)

_ORDER_FUNCS: Dict[BinaryOperator, Callable[[object, object], bool]] = {
    BinaryOperator.LESS_THAN: operator.lt,
    BinaryOperator.GREATER_THAN: operator.gt,
    BinaryOperator.LESS_EQUAL: operator.le,
    BinaryOperator.GREATER_EQUAL: operator.ge,
}

# Operator applied to the first unequal pair of a tuple comparison
_STRICT = {
    BinaryOperator.LESS_THAN: BinaryOperator.LESS_THAN,
    BinaryOperator.GREATER_THAN: BinaryOperator.GREATER_THAN,
    BinaryOperator.LESS_EQUAL: BinaryOperator.LESS_THAN,
    BinaryOperator.GREATER_EQUAL: BinaryOperator.GREATER_THAN,
}


@dataclass(frozen=True)
class TraceStep:
    """
    One intermediate sub-result.

    Properties:
        depth: Nesting depth of the node (0 for the root)
        source: Rendered sub-expression
        outcome: Displayed value, or the error text
        failed: True when this node produced the error
    """

    depth: int
    source: str
    outcome: str
    failed: bool = False

    def __str__(self) -> str:
        arrow = "=> error:" if self.failed else "=>"
        return f"{'  ' * self.depth}{self.source} {arrow} {self.outcome}"


@dataclass(frozen=True)
class EvalResult:
    """
    Outcome of one evaluation: exactly one of ``value`` / ``error`` is set.

    ``trace`` is populated when ``evaluate`` was called with ``trace=True``;
    steps appear in completion order (operands before the operator).
    """

    value: Optional[Value] = None
    error: Optional[EvalError] = None
    trace: Tuple[TraceStep, ...] = ()

    def __post_init__(self):
        if (self.value is None) == (self.error is None):
            raise ValueError("EvalResult needs exactly one of value or error")

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Value:
        """Return the value or raise ``EvaluationFailed``."""
        if self.error is not None:
            raise EvaluationFailed(self.error)
        return self.value

    def format_trace(self) -> str:
        return "\n".join(str(step) for step in self.trace)

    def __str__(self) -> str:
        if self.error is not None:
            return f"error: {self.error}"
        return describe(self.value)


class _Abort(Exception):
    """Internal unwinding for a failed sub-expression; never leaves this module."""

    def __init__(self, error: EvalError):
        super().__init__(error.message)
        self.error = error


def evaluate(
    expr: Expression,
    env: Optional[Mapping[str, Value]] = None,
    trace: bool = False,
) -> EvalResult:
    """
    Evaluate an expression tree.

    Args:
        expr: Expression AST
        env: Read-only name bindings for VariableReference nodes
        trace: Record intermediate sub-results

    Returns:
        EvalResult holding a Value or an EvalError
    """
    depth = nesting_depth(expr)
    if depth > MAX_NESTING_DEPTH:
        error = EvalError(
            kind=ErrorKind.NESTING_TOO_DEEP,
            message=f"expression is {depth} levels deep; the limit is {MAX_NESTING_DEPTH}",
        )
        logger.debug("Evaluation refused: %s", error)
        return EvalResult(error=error)

    machine = _Evaluator(env or {}, trace)
    try:
        value = machine.eval(expr)
    except _Abort as abort:
        logger.debug("Evaluation failed: %s", abort.error)
        return EvalResult(error=abort.error, trace=tuple(machine.steps))

    logger.debug("Evaluated %s -> %s", type(expr).__name__, describe(value))
    return EvalResult(value=value, trace=tuple(machine.steps))


def evaluate_source(
    text: str,
    env: Optional[Mapping[str, Value]] = None,
    trace: bool = False,
) -> EvalResult:
    """Parse ``text`` and evaluate it. ParseError propagates to the caller."""
    return evaluate(parse_expression(text), env=env, trace=trace)


class _Evaluator:
    def __init__(self, env: Mapping[str, Value], record: bool):
        self.env = env
        self.record = record
        self.steps: List[TraceStep] = []
        self.depth = -1

    def eval(self, expr: Expression) -> Value:
        self.depth += 1
        try:
            value = self._dispatch(expr)
        except _Abort as abort:
            if self.record and not any(step.failed for step in self.steps):
                self.steps.append(
                    TraceStep(self.depth, to_source(expr), str(abort.error), failed=True)
                )
            raise
        finally:
            self.depth -= 1

        # literals are their own result; tracing them is noise
        if self.record and not isinstance(expr, Literal):
            self.steps.append(TraceStep(self.depth + 1, to_source(expr), describe(value)))
        return value

    def _dispatch(self, expr: Expression) -> Value:
        if isinstance(expr, Literal):
            return expr.value
        if isinstance(expr, VariableReference):
            return self._variable(expr)
        if isinstance(expr, BinaryOp):
            return self._binary(expr)
        if isinstance(expr, UnaryOp):
            return self._unary(expr)
        if isinstance(expr, Coalesce):
            return self._coalesce(expr)
        if isinstance(expr, ForceUnwrap):
            return self._force_unwrap(expr)
        if isinstance(expr, TupleExpr):
            return Value.tuple_of([self.eval(item) for item in expr.items])
        if isinstance(expr, Conditional):
            return self._conditional(expr)
        if isinstance(expr, RangeExpr):
            return self._range(expr)
        if isinstance(expr, Conversion):
            return self._conversion(expr)
        if isinstance(expr, MappingExpr):
            return self._mapping(expr)
        if isinstance(expr, Subscript):
            return self._subscript(expr)
        if isinstance(expr, OptionalBinding):
            return self._binding(expr)
        raise TypeError(f"Unsupported Expression type: {type(expr)}")

    def _fail(self, kind: ErrorKind, message: str, expr: Expression):
        raise _Abort(EvalError(kind=kind, message=message, source=to_source(expr)))

    # ------------------------------------------------------------------
    # Names and optionals
    # ------------------------------------------------------------------

    def _variable(self, expr: VariableReference) -> Value:
        if expr.name not in self.env:
            self._fail(ErrorKind.UNDEFINED_NAME, f"'{expr.name}' is not defined", expr)
        return self.env[expr.name]

    def _coalesce(self, expr: Coalesce) -> Value:
        primary = self.eval(expr.primary)
        if primary.is_absent:
            return self.eval(expr.fallback)

        fallback_kind = _literal_kind(expr.fallback)
        numeric = (ValueKind.INTEGER, ValueKind.FLOAT)
        if fallback_kind in numeric and primary.kind in numeric:
            return primary
        if fallback_kind not in (None, ValueKind.ABSENT, primary.kind):
            self._fail(
                ErrorKind.TYPE_MISMATCH,
                f"fallback of kind {fallback_kind.value} does not match {primary.kind.value}",
                expr,
            )
        return primary

    def _force_unwrap(self, expr: ForceUnwrap) -> Value:
        value = self.eval(expr.operand)
        if value.is_absent:
            self._fail(
                ErrorKind.UNWRAP_ON_ABSENT,
                "unexpectedly found nil while unwrapping an optional value",
                expr,
            )
        return value

    def _binding(self, expr: OptionalBinding) -> Value:
        value = self.eval(expr.source)
        if value.is_absent:
            return self.eval(expr.absent)

        outer = self.env
        self.env = ChainMap({expr.name: value}, outer)
        try:
            return self.eval(expr.present)
        finally:
            self.env = outer

    # ------------------------------------------------------------------
    # Mappings and subscripts
    # ------------------------------------------------------------------

    def _mapping(self, expr: MappingExpr) -> Value:
        entries: List[Tuple[Value, Value]] = []
        seen = set()
        for key_expr, value_expr in expr.entries:
            key = self.eval(key_expr)
            value = self.eval(value_expr)
            if key.kind not in KEY_KINDS:
                self._fail(
                    ErrorKind.TYPE_MISMATCH,
                    f"mapping keys must be integer, text or boolean, got {key.kind.value}",
                    expr,
                )
            if entries and key.kind is not entries[0][0].kind:
                self._fail(
                    ErrorKind.TYPE_MISMATCH,
                    f"mapping keys must all be {entries[0][0].kind.value}, got {key.kind.value}",
                    expr,
                )
            if key in seen:
                self._fail(ErrorKind.DUPLICATE_KEY, f"key {describe(key)} appears more than once", expr)
            seen.add(key)
            entries.append((key, value))
        return Value.mapping_of(entries)

    def _subscript(self, expr: Subscript) -> Value:
        container = self.eval(expr.target)
        if container.is_absent:
            if _in_optional_chain(expr):
                return ABSENT
            self._fail(
                ErrorKind.TYPE_MISMATCH,
                "cannot subscript nil; use ?[ to look inside an optional",
                expr,
            )

        key = self.eval(expr.key)

        if container.kind is ValueKind.TUPLE:
            if key.kind is not ValueKind.INTEGER:
                self._fail(ErrorKind.TYPE_MISMATCH, f"tuple index must be integer, got {key.kind.value}", expr)
            if not 0 <= key.payload < len(container.payload):
                self._fail(
                    ErrorKind.INVALID_RANGE,
                    f"index {key.payload} is out of range for a tuple of {len(container.payload)} elements",
                    expr,
                )
            return container.payload[key.payload]

        if container.kind is ValueKind.MAPPING:
            entries = container.payload
            if key.kind not in KEY_KINDS or (entries and key.kind is not entries[0][0].kind):
                self._fail(
                    ErrorKind.TYPE_MISMATCH,
                    f"cannot look up a {key.kind.value} key in this mapping",
                    expr,
                )
            for entry_key, value in entries:
                if entry_key == key:
                    return value
            return ABSENT

        self._fail(ErrorKind.TYPE_MISMATCH, f"{container.kind.value} cannot be subscripted", expr)

    # ------------------------------------------------------------------
    # Operators
    # ------------------------------------------------------------------

    def _binary(self, expr: BinaryOp) -> Value:
        left = self.eval(expr.left)
        right = self.eval(expr.right)
        op = expr.operator

        if op.is_logical:
            if left.kind is not ValueKind.BOOLEAN or right.kind is not ValueKind.BOOLEAN:
                self._mismatch(op, left, right, expr)
            if op is BinaryOperator.AND:
                return Value.boolean(left.payload and right.payload)
            return Value.boolean(left.payload or right.payload)

        if op.is_equality:
            equal = self._equal(left, right, expr)
            return Value.boolean(equal if op is BinaryOperator.EQUALS else not equal)

        if op.is_ordering:
            return Value.boolean(self._order(op, left, right, expr))

        return self._arithmetic(op, left, right, expr)

    def _mismatch(self, op: BinaryOperator, left: Value, right: Value, expr: Expression):
        self._fail(
            ErrorKind.TYPE_MISMATCH,
            f"operator '{op.value}' cannot be applied to {left.kind.value} and {right.kind.value}",
            expr,
        )

    def _equal(self, left: Value, right: Value, expr: Expression) -> bool:
        if left.is_absent or right.is_absent:
            return left.is_absent and right.is_absent
        if left.is_numeric and right.is_numeric:
            return left.payload == right.payload
        if left.kind is not right.kind:
            self._mismatch(BinaryOperator.EQUALS, left, right, expr)

        if left.kind is ValueKind.TUPLE:
            if len(left.payload) != len(right.payload):
                self._fail(
                    ErrorKind.TYPE_MISMATCH,
                    f"cannot compare tuples of {len(left.payload)} and {len(right.payload)} elements",
                    expr,
                )
            for a, b in zip(left.payload, right.payload):
                if not self._equal(a, b, expr):
                    return False
            return True

        if left.kind is ValueKind.MAPPING:
            # entry order does not matter; an empty mapping matches any key kind
            if left.payload and right.payload and left.payload[0][0].kind is not right.payload[0][0].kind:
                self._mismatch(BinaryOperator.EQUALS, left, right, expr)
            if len(left.payload) != len(right.payload):
                return False
            others = dict(right.payload)
            for key, value in left.payload:
                if key not in others or not self._equal(value, others[key], expr):
                    return False
            return True

        return left.payload == right.payload

    def _order(self, op: BinaryOperator, left: Value, right: Value, expr: Expression) -> bool:
        if (left.is_numeric and right.is_numeric) or (
            left.kind is ValueKind.TEXT and right.kind is ValueKind.TEXT
        ):
            # str comparison in Python is code point by code point
            return _ORDER_FUNCS[op](left.payload, right.payload)

        if left.kind is ValueKind.TUPLE and right.kind is ValueKind.TUPLE:
            if len(left.payload) != len(right.payload):
                self._fail(
                    ErrorKind.TYPE_MISMATCH,
                    f"cannot compare tuples of {len(left.payload)} and {len(right.payload)} elements",
                    expr,
                )
            for a, b in zip(left.payload, right.payload):
                if self._equal(a, b, expr):
                    continue
                return self._order(_STRICT[op], a, b, expr)
            return op in (BinaryOperator.LESS_EQUAL, BinaryOperator.GREATER_EQUAL)

        self._mismatch(op, left, right, expr)

    def _arithmetic(self, op: BinaryOperator, left: Value, right: Value, expr: Expression) -> Value:
        if op is BinaryOperator.ADD and left.kind is ValueKind.TEXT and right.kind is ValueKind.TEXT:
            return Value.text(left.payload + right.payload)

        if not (left.is_numeric and right.is_numeric):
            self._mismatch(op, left, right, expr)

        if (
            op in (BinaryOperator.DIVIDE, BinaryOperator.REMAINDER)
            and right.kind is ValueKind.INTEGER
            and right.payload == 0
        ):
            self._fail(ErrorKind.DIVISION_BY_ZERO, "division by zero", expr)

        if left.kind is ValueKind.INTEGER and right.kind is ValueKind.INTEGER:
            result = _INT_OPS[op](left.payload, right.payload)
            if not fits_int64(result):
                self._fail(ErrorKind.OVERFLOW, f"{result} does not fit in a 64-bit integer", expr)
            return Value.integer(result)

        return Value.floating(_FLOAT_OPS[op](float(left.payload), float(right.payload)))

    def _unary(self, expr: UnaryOp) -> Value:
        operand = self.eval(expr.operand)
        op = expr.operator

        if op is UnaryOperator.NOT:
            if operand.kind is not ValueKind.BOOLEAN:
                self._fail(
                    ErrorKind.TYPE_MISMATCH,
                    f"operator '!' cannot be applied to {operand.kind.value}",
                    expr,
                )
            return Value.boolean(not operand.payload)

        if not operand.is_numeric:
            self._fail(
                ErrorKind.TYPE_MISMATCH,
                f"operator '{op.value}' cannot be applied to {operand.kind.value}",
                expr,
            )
        if op is UnaryOperator.PLUS:
            return operand
        if operand.kind is ValueKind.INTEGER:
            if not fits_int64(-operand.payload):
                self._fail(ErrorKind.OVERFLOW, f"-({operand.payload}) does not fit in a 64-bit integer", expr)
            return Value.integer(-operand.payload)
        return Value.floating(-operand.payload)

    # ------------------------------------------------------------------
    # Conditionals, ranges, conversions
    # ------------------------------------------------------------------

    def _conditional(self, expr: Conditional) -> Value:
        condition = self.eval(expr.condition)
        if condition.kind is not ValueKind.BOOLEAN:
            self._fail(
                ErrorKind.TYPE_MISMATCH,
                f"condition must be boolean, got {condition.kind.value}",
                expr,
            )
        return self.eval(expr.if_true if condition.payload else expr.if_false)

    def _range(self, expr: RangeExpr) -> Value:
        lower = self.eval(expr.lower)
        upper = self.eval(expr.upper)
        if lower.kind is not ValueKind.INTEGER or upper.kind is not ValueKind.INTEGER:
            self._fail(
                ErrorKind.TYPE_MISMATCH,
                f"range bounds must be integers, got {lower.kind.value} and {upper.kind.value}",
                expr,
            )
        if lower.payload > upper.payload:
            self._fail(
                ErrorKind.INVALID_RANGE,
                f"lower bound {lower.payload} is greater than upper bound {upper.payload}",
                expr,
            )

        stop = upper.payload + 1 if expr.closed else upper.payload
        if stop - lower.payload > MAX_RANGE_LENGTH:
            self._fail(
                ErrorKind.INVALID_RANGE,
                f"range has more than {MAX_RANGE_LENGTH} elements",
                expr,
            )
        return Value.tuple_of(Value.integer(n) for n in range(lower.payload, stop))

    def _conversion(self, expr: Conversion) -> Value:
        operand = self.eval(expr.operand)
        target = expr.target

        if target is ConversionTarget.STR:
            if operand.kind is ValueKind.TEXT:
                return operand
            return Value.text(describe(operand))

        if operand.kind is ValueKind.TEXT:
            return _parse_number_text(target, operand.payload)

        if not operand.is_numeric:
            self._fail(
                ErrorKind.TYPE_MISMATCH,
                f"cannot convert {operand.kind.value} with {target.value}()",
                expr,
            )

        if target is ConversionTarget.FLOAT:
            return Value.floating(float(operand.payload))

        if operand.kind is ValueKind.FLOAT and not math.isfinite(operand.payload):
            self._fail(ErrorKind.OVERFLOW, f"{describe(operand)} cannot be converted to an integer", expr)
        result = int(operand.payload)
        if not fits_int64(result):
            self._fail(ErrorKind.OVERFLOW, f"{describe(operand)} does not fit in a 64-bit integer", expr)
        return Value.integer(result)


def _literal_kind(expr: Expression) -> Optional[ValueKind]:
    """Kind of a literal or signed numeric literal, None when not knowable without evaluating."""
    if isinstance(expr, Literal):
        return expr.value.kind
    if (
        isinstance(expr, UnaryOp)
        and expr.operator in (UnaryOperator.NEGATE, UnaryOperator.PLUS)
        and isinstance(expr.operand, Literal)
        and expr.operand.value.is_numeric
    ):
        return expr.operand.value.kind
    return None


def _in_optional_chain(expr: Subscript) -> bool:
    """True when this subscript or one it is chained onto uses ``?[``."""
    node: Expression = expr
    while isinstance(node, Subscript):
        if node.optional:
            return True
        node = node.target
    return False


def _parse_number_text(target: ConversionTarget, text: str) -> Value:
    """Failable conversion: malformed text yields ABSENT."""
    if target is ConversionTarget.INT:
        if not _INT_TEXT_RE.fullmatch(text):
            return ABSENT
        n = int(text)
        return Value.integer(n) if fits_int64(n) else ABSENT

    if not _FLOAT_TEXT_RE.fullmatch(text):
        return ABSENT
    return Value.floating(float(text))


def _truncating_div(x: int, y: int) -> int:
    quotient = abs(x) // abs(y)
    return quotient if (x >= 0) == (y > 0) else -quotient


def _truncating_rem(x: int, y: int) -> int:
    return x - y * _truncating_div(x, y)


def _float_div(x: float, y: float) -> float:
    if y == 0.0:
        if x == 0.0 or math.isnan(x):
            return math.nan
        return math.copysign(math.inf, x) * math.copysign(1.0, y)
    return x / y


def _float_rem(x: float, y: float) -> float:
    if y == 0.0 or math.isinf(x) or math.isnan(x) or math.isnan(y):
        return math.nan
    return math.fmod(x, y)


_INT_OPS: Dict[BinaryOperator, Callable[[int, int], int]] = {
    BinaryOperator.ADD: operator.add,
    BinaryOperator.SUBTRACT: operator.sub,
    BinaryOperator.MULTIPLY: operator.mul,
    BinaryOperator.DIVIDE: _truncating_div,
    BinaryOperator.REMAINDER: _truncating_rem,
}

_FLOAT_OPS: Dict[BinaryOperator, Callable[[float, float], float]] = {
    BinaryOperator.ADD: operator.add,
    BinaryOperator.SUBTRACT: operator.sub,
    BinaryOperator.MULTIPLY: operator.mul,
    BinaryOperator.DIVIDE: _float_div,
    BinaryOperator.REMAINDER: _float_rem,
}
