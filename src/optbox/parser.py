"""
Parser for the optbox expression language (text -> Expression AST).

Precedence, lowest to highest:
    c ? a : b          ternary (right associative)
    ||                 logical OR
    &&                 logical AND
    == != < > <= >=    comparison (non-associative)
    ??                 nil-coalescing (right associative)
    ...  ..<           range (non-associative)
    + -                additive
    * / %              multiplicative
    ! - +              prefix
    x!  x[k]  x?[k]    postfix force-unwrap, subscript, optional chaining
    primary            literals, names, int(...)/float(...)/str(...), (...), tuples,
                       [k: v] mappings, if let NAME = EXPR { A } else { B }

``?[`` only chains when it follows its operand directly; ``c ?[...]`` with a
space before the ``?`` is a ternary whose branch is a mapping literal.

``-9223372036854775808`` is read as a single integer literal, since its
magnitude alone does not fit in 64 bits.

Expressions nested more than ``MAX_NESTING_DEPTH`` levels deep are rejected
with a ParseError.

Session statements add one form on top:
    let NAME = EXPR
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

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
from optbox.values import ABSENT, FALSE, INT64_MIN, TRUE, Value, fits_int64

logger = logging.getLogger(__name__)


class ParseError(Exception):
    """Raised when source text is not a valid expression."""

    def __init__(self, message: str, column: Optional[int] = None):
        if column is not None:
            message = f"{message} at column {column}"
        super().__init__(message)
        self.column = column


@dataclass(frozen=True)
class Token:
    kind: str  # "int", "float", "string", "name", "op"
    text: str
    column: int  # 1-based


@dataclass(frozen=True)
class Statement:
    """A parsed REPL line: a bare expression, or ``let name = expression``."""

    expression: Expression
    name: Optional[str] = None


_TOKEN_RE = re.compile(
    r"""
      (?P<space>\s+)
    | (?P<float>\d+\.\d+(?:[eE][+-]?\d+)?|\d+[eE][+-]?\d+)
    | (?P<int>\d+)
    | (?P<string>"(?:[^"\\\n]|\\.)*")
    | (?P<name>[A-Za-z_][A-Za-z0-9_]*)
    | (?P<op>\.\.\.|\.\.<|\?\?|\?\[|==|!=|<=|>=|&&|\|\||[-+*/%<>!?:(),=\[\]{}])
    """,
    re.VERBOSE,
)

_ESCAPES = {'"': '"', "\\": "\\", "n": "\n", "t": "\t"}

_KEYWORDS = {"true", "false", "nil", "let", "if", "else"}
_CONVERSIONS = {target.value: target for target in ConversionTarget}
RESERVED_WORDS = frozenset(_KEYWORDS | set(_CONVERSIONS))

_COMPARISON_OPS = {
    "==": BinaryOperator.EQUALS,
    "!=": BinaryOperator.NOT_EQUALS,
    "<": BinaryOperator.LESS_THAN,
    ">": BinaryOperator.GREATER_THAN,
    "<=": BinaryOperator.LESS_EQUAL,
    ">=": BinaryOperator.GREATER_EQUAL,
}
_ADDITIVE_OPS = {"+": BinaryOperator.ADD, "-": BinaryOperator.SUBTRACT}
_MULTIPLICATIVE_OPS = {
    "*": BinaryOperator.MULTIPLY,
    "/": BinaryOperator.DIVIDE,
    "%": BinaryOperator.REMAINDER,
}
_PREFIX_OPS = {"!": UnaryOperator.NOT, "-": UnaryOperator.NEGATE, "+": UnaryOperator.PLUS}


# =========================================================================
# Public API
# =========================================================================


def parse_expression(text: str) -> Expression:
    """
    Parse a single expression.

    Args:
        text: Source text, e.g. ``int("ABC") ?? -1``

    Returns:
        Expression AST

    Raises:
        ParseError: If the text is empty, malformed or nested too deeply
    """
    tokens = tokenize(text)
    if not tokens:
        raise ParseError("Empty expression")

    expr, pos = _parse_ternary(tokens, 0, 0)
    if pos < len(tokens):
        tok = tokens[pos]
        raise ParseError(f"Unexpected token '{tok.text}'", tok.column)

    _check_tree_depth(expr)
    logger.debug("Parsed %r as %s", text, type(expr).__name__)
    return expr


def parse_statement(text: str) -> Statement:
    """
    Parse a REPL line: either an expression or ``let NAME = EXPR``.

    Raises:
        ParseError: If the line is malformed or binds a reserved word
    """
    tokens = tokenize(text)
    if tokens and _is_word(tokens, 0, "let"):
        if len(tokens) < 2 or tokens[1].kind != "name":
            column = tokens[1].column if len(tokens) > 1 else None
            raise ParseError("Expected a name after 'let'", column)
        name_tok = tokens[1]
        if name_tok.text in RESERVED_WORDS:
            raise ParseError(f"'{name_tok.text}' is a reserved word", name_tok.column)
        if len(tokens) < 3 or tokens[2].text != "=":
            column = tokens[2].column if len(tokens) > 2 else None
            raise ParseError("Expected '=' after the bound name", column)
        if len(tokens) == 3:
            raise ParseError("Expected an expression after '='")

        expr, pos = _parse_ternary(tokens, 3, 0)
        if pos < len(tokens):
            raise ParseError(f"Unexpected token '{tokens[pos].text}'", tokens[pos].column)
        _check_tree_depth(expr)
        return Statement(expression=expr, name=name_tok.text)

    return Statement(expression=parse_expression(text))


def tokenize(text: str) -> List[Token]:
    """Split source text into tokens, dropping whitespace."""
    tokens: List[Token] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            if text[pos] == '"':
                raise ParseError("Unterminated string literal", pos + 1)
            raise ParseError(f"Unexpected character '{text[pos]}'", pos + 1)
        kind = match.lastgroup
        if kind == "op" and match.group() == "?[" and (pos == 0 or text[pos - 1].isspace()):
            # detached from its operand: a ternary '?' followed by a mapping
            tokens.append(Token(kind="op", text="?", column=pos + 1))
            tokens.append(Token(kind="op", text="[", column=pos + 2))
        elif kind != "space":
            tokens.append(Token(kind=kind, text=match.group(), column=pos + 1))
        pos = match.end()
    return tokens


# =========================================================================
# Recursive descent, one function per precedence level
#
# ``depth`` counts the nested sub-expressions entered so far; every place
# that recurses into a sub-expression passes ``depth + 1``.
# =========================================================================


def _peek(tokens: List[Token], pos: int) -> Optional[str]:
    """Return the operator text at ``pos`` or None (names and literals are not operators)."""
    if pos < len(tokens) and tokens[pos].kind == "op":
        return tokens[pos].text
    return None


def _is_word(tokens: List[Token], pos: int, word: str) -> bool:
    return pos < len(tokens) and tokens[pos].kind == "name" and tokens[pos].text == word


def _expect(tokens: List[Token], pos: int, op: str) -> int:
    if _peek(tokens, pos) != op:
        if pos < len(tokens):
            raise ParseError(f"Expected '{op}' but found '{tokens[pos].text}'", tokens[pos].column)
        raise ParseError(f"Expected '{op}' but reached end of expression")
    return pos + 1


def _check_depth(tokens: List[Token], pos: int, depth: int) -> None:
    if depth > MAX_NESTING_DEPTH:
        column = tokens[pos].column if pos < len(tokens) else None
        raise ParseError("Expression nested too deeply", column)


def _check_tree_depth(expr: Expression) -> None:
    # operator chains such as 1 + 1 + ... deepen the tree without recursing
    if nesting_depth(expr) > MAX_NESTING_DEPTH:
        raise ParseError("Expression nested too deeply")


def _parse_ternary(tokens: List[Token], pos: int, depth: int) -> Tuple[Expression, int]:
    """Parse ``condition ? a : b`` (lowest precedence)."""
    _check_depth(tokens, pos, depth)
    condition, pos = _parse_or(tokens, pos, depth)

    if _peek(tokens, pos) == "?":
        if_true, pos = _parse_ternary(tokens, pos + 1, depth + 1)
        pos = _expect(tokens, pos, ":")
        if_false, pos = _parse_ternary(tokens, pos, depth + 1)
        return Conditional(condition, if_true, if_false), pos

    return condition, pos


def _parse_or(tokens: List[Token], pos: int, depth: int) -> Tuple[Expression, int]:
    left, pos = _parse_and(tokens, pos, depth)

    while _peek(tokens, pos) == "||":
        right, pos = _parse_and(tokens, pos + 1, depth)
        left = BinaryOp(BinaryOperator.OR, left, right)

    return left, pos


def _parse_and(tokens: List[Token], pos: int, depth: int) -> Tuple[Expression, int]:
    left, pos = _parse_comparison(tokens, pos, depth)

    while _peek(tokens, pos) == "&&":
        right, pos = _parse_comparison(tokens, pos + 1, depth)
        left = BinaryOp(BinaryOperator.AND, left, right)

    return left, pos


def _parse_comparison(tokens: List[Token], pos: int, depth: int) -> Tuple[Expression, int]:
    """Parse comparison expression (==, !=, <, >, <=, >=)."""
    left, pos = _parse_coalesce(tokens, pos, depth)

    op_str = _peek(tokens, pos)
    if op_str in _COMPARISON_OPS:
        right, pos = _parse_coalesce(tokens, pos + 1, depth)
        left = BinaryOp(_COMPARISON_OPS[op_str], left, right)

        if _peek(tokens, pos) in _COMPARISON_OPS:
            raise ParseError(
                "Comparison operators cannot be chained; add parentheses",
                tokens[pos].column,
            )

    return left, pos


def _parse_coalesce(tokens: List[Token], pos: int, depth: int) -> Tuple[Expression, int]:
    """Parse ``a ?? b`` (right associative)."""
    _check_depth(tokens, pos, depth)
    left, pos = _parse_range(tokens, pos, depth)

    if _peek(tokens, pos) == "??":
        right, pos = _parse_coalesce(tokens, pos + 1, depth + 1)
        return Coalesce(left, right), pos

    return left, pos


def _parse_range(tokens: List[Token], pos: int, depth: int) -> Tuple[Expression, int]:
    lower, pos = _parse_additive(tokens, pos, depth)

    op_str = _peek(tokens, pos)
    if op_str in ("...", "..<"):
        upper, pos = _parse_additive(tokens, pos + 1, depth)
        if _peek(tokens, pos) in ("...", "..<"):
            raise ParseError("Range operators cannot be chained", tokens[pos].column)
        return RangeExpr(lower, upper, closed=(op_str == "...")), pos

    return lower, pos


def _parse_additive(tokens: List[Token], pos: int, depth: int) -> Tuple[Expression, int]:
    left, pos = _parse_multiplicative(tokens, pos, depth)

    while _peek(tokens, pos) in _ADDITIVE_OPS:
        op = _ADDITIVE_OPS[tokens[pos].text]
        right, pos = _parse_multiplicative(tokens, pos + 1, depth)
        left = BinaryOp(op, left, right)

    return left, pos


def _parse_multiplicative(tokens: List[Token], pos: int, depth: int) -> Tuple[Expression, int]:
    left, pos = _parse_prefix(tokens, pos, depth)

    while _peek(tokens, pos) in _MULTIPLICATIVE_OPS:
        op = _MULTIPLICATIVE_OPS[tokens[pos].text]
        right, pos = _parse_prefix(tokens, pos + 1, depth)
        left = BinaryOp(op, left, right)

    return left, pos


def _parse_prefix(tokens: List[Token], pos: int, depth: int) -> Tuple[Expression, int]:
    """Parse prefix operators (!, -, +)."""
    _check_depth(tokens, pos, depth)
    op_str = _peek(tokens, pos)

    if op_str == "-" and _is_int64_min_magnitude(tokens, pos + 1):
        literal = Literal(Value.integer(INT64_MIN))
        return _parse_postfix_ops(literal, tokens, pos + 2, depth)

    if op_str in _PREFIX_OPS:
        operand, pos = _parse_prefix(tokens, pos + 1, depth + 1)
        return UnaryOp(_PREFIX_OPS[op_str], operand), pos

    return _parse_postfix(tokens, pos, depth)


def _is_int64_min_magnitude(tokens: List[Token], pos: int) -> bool:
    return pos < len(tokens) and tokens[pos].kind == "int" and int(tokens[pos].text) == -INT64_MIN


def _parse_postfix(tokens: List[Token], pos: int, depth: int) -> Tuple[Expression, int]:
    """Parse a primary followed by any number of force-unwraps and subscripts."""
    expr, pos = _parse_primary(tokens, pos, depth)
    return _parse_postfix_ops(expr, tokens, pos, depth)


def _parse_postfix_ops(
    expr: Expression, tokens: List[Token], pos: int, depth: int
) -> Tuple[Expression, int]:
    while True:
        op_str = _peek(tokens, pos)
        if op_str == "!":
            expr = ForceUnwrap(expr)
            pos += 1
        elif op_str in ("[", "?["):
            key, pos = _parse_ternary(tokens, pos + 1, depth + 1)
            pos = _expect(tokens, pos, "]")
            expr = Subscript(expr, key, optional=(op_str == "?["))
        else:
            return expr, pos


def _parse_primary(tokens: List[Token], pos: int, depth: int) -> Tuple[Expression, int]:
    """Parse primary expression (literal, name, conversion, group, tuple, mapping, binding)."""
    if pos >= len(tokens):
        raise ParseError("Unexpected end of expression")

    token = tokens[pos]

    if token.kind == "int":
        n = int(token.text)
        if not fits_int64(n):
            raise ParseError(f"Integer literal {token.text} does not fit in 64 bits", token.column)
        return Literal(Value.integer(n)), pos + 1

    if token.kind == "float":
        return Literal(Value.floating(float(token.text))), pos + 1

    if token.kind == "string":
        return Literal(Value.text(_unescape(token))), pos + 1

    if token.kind == "name":
        return _parse_name(tokens, pos, depth)

    if token.text == "(":
        return _parse_group(tokens, pos + 1, token, depth)

    if token.text == "[":
        return _parse_mapping(tokens, pos + 1, token, depth)

    raise ParseError(f"Unexpected token '{token.text}'", token.column)


def _parse_name(tokens: List[Token], pos: int, depth: int) -> Tuple[Expression, int]:
    token = tokens[pos]
    word = token.text

    if word == "true":
        return Literal(TRUE), pos + 1
    if word == "false":
        return Literal(FALSE), pos + 1
    if word == "nil":
        return Literal(ABSENT), pos + 1

    if word in _CONVERSIONS:
        pos = _expect(tokens, pos + 1, "(")
        operand, pos = _parse_ternary(tokens, pos, depth + 1)
        pos = _expect(tokens, pos, ")")
        return Conversion(_CONVERSIONS[word], operand), pos

    if word == "if":
        return _parse_binding(tokens, pos + 1, token, depth)

    if word == "let":
        raise ParseError("'let' is only allowed at the start of a statement", token.column)
    if word == "else":
        raise ParseError("'else' without a matching 'if let'", token.column)

    return VariableReference(word), pos + 1


def _parse_group(tokens: List[Token], pos: int, opening: Token, depth: int) -> Tuple[Expression, int]:
    """Parse what follows '(': a parenthesised expression or a tuple."""
    if _peek(tokens, pos) == ")":
        return TupleExpr(()), pos + 1

    first, pos = _parse_ternary(tokens, pos, depth + 1)
    if _peek(tokens, pos) != ",":
        if pos >= len(tokens):
            raise ParseError("Missing closing parenthesis", opening.column)
        pos = _expect(tokens, pos, ")")
        return first, pos

    items = [first]
    while _peek(tokens, pos) == ",":
        pos += 1
        # trailing comma: "(1,)" is a one-element tuple
        if _peek(tokens, pos) == ")":
            break
        item, pos = _parse_ternary(tokens, pos, depth + 1)
        items.append(item)

    if pos >= len(tokens):
        raise ParseError("Missing closing parenthesis", opening.column)
    pos = _expect(tokens, pos, ")")
    return TupleExpr(tuple(items)), pos


def _parse_mapping(tokens: List[Token], pos: int, opening: Token, depth: int) -> Tuple[Expression, int]:
    """Parse what follows '[': ``k: v, ...]`` or the empty mapping ``:]``."""
    if _peek(tokens, pos) == ":":
        return MappingExpr(()), _expect(tokens, pos + 1, "]")
    if _peek(tokens, pos) == "]":
        raise ParseError("An empty mapping is written [:]", opening.column)

    entries = []
    while True:
        key, pos = _parse_ternary(tokens, pos, depth + 1)
        pos = _expect(tokens, pos, ":")
        value, pos = _parse_ternary(tokens, pos, depth + 1)
        entries.append((key, value))
        if _peek(tokens, pos) != ",":
            break
        pos += 1
        if _peek(tokens, pos) == "]":
            break

    if pos >= len(tokens):
        raise ParseError("Missing closing bracket", opening.column)
    pos = _expect(tokens, pos, "]")
    return MappingExpr(tuple(entries)), pos


def _parse_binding(tokens: List[Token], pos: int, opening: Token, depth: int) -> Tuple[Expression, int]:
    """Parse what follows 'if': ``let NAME = EXPR { A } else { B }``."""
    if not _is_word(tokens, pos, "let"):
        raise ParseError("Expected 'let' after 'if'", opening.column)
    pos += 1

    if pos >= len(tokens) or tokens[pos].kind != "name":
        raise ParseError("Expected a name after 'if let'", opening.column)
    name_tok = tokens[pos]
    if name_tok.text in RESERVED_WORDS:
        raise ParseError(f"'{name_tok.text}' is a reserved word", name_tok.column)

    pos = _expect(tokens, pos + 1, "=")
    source, pos = _parse_ternary(tokens, pos, depth + 1)
    present, pos = _parse_block(tokens, pos, depth)

    if not _is_word(tokens, pos, "else"):
        column = tokens[pos].column if pos < len(tokens) else None
        raise ParseError("Expected 'else' after 'if let' block", column)
    absent, pos = _parse_block(tokens, pos + 1, depth)

    return OptionalBinding(name_tok.text, source, present, absent), pos


def _parse_block(tokens: List[Token], pos: int, depth: int) -> Tuple[Expression, int]:
    pos = _expect(tokens, pos, "{")
    body, pos = _parse_ternary(tokens, pos, depth + 1)
    return body, _expect(tokens, pos, "}")


def _unescape(token: Token) -> str:
    body = token.text[1:-1]
    chars = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "\\":
            escaped = body[i + 1]
            if escaped not in _ESCAPES:
                raise ParseError(f"Unknown escape sequence '\\{escaped}'", token.column + i + 1)
            chars.append(_ESCAPES[escaped])
            i += 2
            continue
        chars.append(ch)
        i += 1
    return "".join(chars)
