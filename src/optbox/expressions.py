"""
Expression System for optbox

Every sandbox expression is an Abstract Syntax Tree, whether it was built
programmatically or produced by ``optbox.parser``.

This ensures:
    - Evaluation is a pure function of an immutable tree
    - Trees can be rendered, serialized and compared structurally
    - The parser and the evaluator never share string handling

ARCHITECTURAL RULE:
    Node classes are structure only.
    Evaluation lives in ``optbox.evaluator``, rendering in ``optbox.render``.
"""

from abc import ABC
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, List, Tuple

from optbox.values import Value

# Deepest expression tree the parser builds and the evaluator accepts.
MAX_NESTING_DEPTH = 50


class Expression(ABC):
    """
    Base class for all AST expressions.

    DO NOT:
        - Add evaluation logic here (belongs in the evaluator)
        - Add string representations (belongs in render)

    This class is structure only.
    """
    pass


class BinaryOperator(Enum):
    """
    Binary operators supported by the sandbox.

    The enum value is the operator's source spelling.
    """

    # Arithmetic operators
    ADD = "+"
    SUBTRACT = "-"
    MULTIPLY = "*"
    DIVIDE = "/"
    REMAINDER = "%"

    # Comparison operators
    EQUALS = "=="
    NOT_EQUALS = "!="
    LESS_THAN = "<"
    GREATER_THAN = ">"
    LESS_EQUAL = "<="
    GREATER_EQUAL = ">="

    # Logical operators
    AND = "&&"
    OR = "||"

    @property
    def is_arithmetic(self) -> bool:
        return self in _ARITHMETIC

    @property
    def is_ordering(self) -> bool:
        return self in _ORDERING

    @property
    def is_equality(self) -> bool:
        return self in (BinaryOperator.EQUALS, BinaryOperator.NOT_EQUALS)

    @property
    def is_logical(self) -> bool:
        return self in (BinaryOperator.AND, BinaryOperator.OR)


_ARITHMETIC = frozenset({
    BinaryOperator.ADD,
    BinaryOperator.SUBTRACT,
    BinaryOperator.MULTIPLY,
    BinaryOperator.DIVIDE,
    BinaryOperator.REMAINDER,
})

_ORDERING = frozenset({
    BinaryOperator.LESS_THAN,
    BinaryOperator.GREATER_THAN,
    BinaryOperator.LESS_EQUAL,
    BinaryOperator.GREATER_EQUAL,
})


class UnaryOperator(Enum):
    """Prefix operators."""

    NOT = "!"
    NEGATE = "-"
    PLUS = "+"


class ConversionTarget(Enum):
    """Targets of the failable conversions ``int(...)``, ``float(...)``, ``str(...)``."""

    INT = "int"
    FLOAT = "float"
    STR = "str"


@dataclass(frozen=True)
class Literal(Expression):
    """
    Represents a literal constant value.

    Examples:
        - 42
        - 0.5
        - "apple"
        - true
        - nil

    Properties:
        value: The wrapped Value (any kind, including ABSENT)
    """

    value: Value


@dataclass(frozen=True)
class VariableReference(Expression):
    """
    References a name bound with ``let`` in a session.

    Properties:
        name: Identifier

    IMPORTANT:
        This object does NOT check that the name is bound.
        Lookup happens against the environment passed to ``evaluate``.
    """

    name: str


@dataclass(frozen=True)
class BinaryOp(Expression):
    """
    Represents a binary arithmetic, comparison or logical expression.

    Example:
        "apple" < "banana"

    Becomes:
        BinaryOp(
            operator=BinaryOperator.LESS_THAN,
            left=Literal(Value.text("apple")),
            right=Literal(Value.text("banana")),
        )

    IMPORTANT:
        This object is immutable (frozen=True).
        It does NOT evaluate itself.
    """

    operator: BinaryOperator
    left: Expression
    right: Expression


@dataclass(frozen=True)
class UnaryOp(Expression):
    """
    Represents a prefix operation.

    Example:
        !(1 > 2)

    Becomes:
        UnaryOp(
            operator=UnaryOperator.NOT,
            operand=BinaryOp(...)
        )
    """

    operator: UnaryOperator
    operand: Expression


@dataclass(frozen=True)
class Coalesce(Expression):
    """
    Nil-coalescing: ``primary ?? fallback``.

    ``fallback`` is only evaluated when ``primary`` is ABSENT.
    """

    primary: Expression
    fallback: Expression


@dataclass(frozen=True)
class ForceUnwrap(Expression):
    """
    Forced unwrapping: ``operand!``.

    Evaluating this on an ABSENT operand is the sandbox's one designed
    fatal failure (UnwrapOnAbsent).
    """

    operand: Expression


@dataclass(frozen=True)
class TupleExpr(Expression):
    """A parenthesised, comma separated group: ``(1, "B")``."""

    items: Tuple[Expression, ...]


@dataclass(frozen=True)
class Conditional(Expression):
    """Ternary conditional: ``condition ? if_true : if_false``."""

    condition: Expression
    if_true: Expression
    if_false: Expression


@dataclass(frozen=True)
class RangeExpr(Expression):
    """
    Integer range: ``lower...upper`` (closed) or ``lower..<upper`` (half-open).

    Evaluates to a tuple of integers.
    """

    lower: Expression
    upper: Expression
    closed: bool = True


@dataclass(frozen=True)
class Conversion(Expression):
    """
    Failable conversion such as ``int("123")``.

    Text that cannot be converted yields ABSENT rather than an error;
    this is where optionals come from in everyday code.
    """

    target: ConversionTarget
    operand: Expression


@dataclass(frozen=True)
class MappingExpr(Expression):
    """
    Mapping literal: ``["SFO": "San Francisco", "TPE": "Taipei Taoyuan"]``.

    ``[:]`` is the empty mapping. Entries keep their source order.
    """

    entries: Tuple[Tuple[Expression, Expression], ...]


@dataclass(frozen=True)
class Subscript(Expression):
    """
    Lookup by key or position: ``target[key]``, or ``target?[key]`` when chaining.

    Example:
        airports["NRT"]

    Becomes:
        Subscript(
            target=VariableReference("airports"),
            key=Literal(Value.text("NRT")),
        )

    A missing mapping key yields ABSENT. With ``optional=True`` a nil
    target yields ABSENT instead of failing, and so does every later link
    of the same chain.
    """

    target: Expression
    key: Expression
    optional: bool = False


@dataclass(frozen=True)
class OptionalBinding(Expression):
    """
    Optional binding: ``if let name = source { present } else { absent }``.

    ``present`` is evaluated with ``name`` bound to the unwrapped value of
    ``source``; ``absent`` is evaluated, without the binding, when
    ``source`` is nil. Only one branch is evaluated.
    """

    name: str
    source: Expression
    present: Expression
    absent: Expression


def sub_expressions(expr: Expression) -> List[Expression]:
    """Direct children of a node, in field order."""
    found: List[Expression] = []
    for f in fields(expr):
        _collect(getattr(expr, f.name), found)
    return found


def _collect(value: Any, found: List[Expression]) -> None:
    if isinstance(value, Expression):
        found.append(value)
    elif isinstance(value, tuple):
        for item in value:
            _collect(item, found)


def nesting_depth(expr: Expression) -> int:
    """
    Height of an expression tree (a lone literal is 1).

    Walks the tree with an explicit stack, so it is safe on trees far
    deeper than the interpreter's recursion limit.
    """
    deepest = 0
    stack = [(expr, 1)]
    while stack:
        node, depth = stack.pop()
        deepest = max(deepest, depth)
        stack.extend((child, depth + 1) for child in sub_expressions(node))
    return deepest
