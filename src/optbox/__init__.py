"""
optbox: an optional-value evaluation sandbox.

Enter small expressions involving nil, nil-coalescing (``??``), forced
unwrapping (``!``) and the usual operators, and see both the result and how
it was computed.

    >>> from optbox import evaluate_source
    >>> str(evaluate_source('int("ABC") ?? -1'))
    '-1'

ARCHITECTURAL GUARANTEE:
------------------------
Evaluation is a pure function of an immutable expression tree.
Failures are typed results (EvalError), never uncontrolled exceptions.
"""

__version__ = "0.1.0"

from optbox.errors import ErrorKind, EvalError, EvaluationFailed
from optbox.evaluator import EvalResult, TraceStep, evaluate, evaluate_source
from optbox.parser import ParseError, parse_expression, parse_statement
from optbox.values import ABSENT, Value, ValueKind

__all__ = [
    "ABSENT",
    "ErrorKind",
    "EvalError",
    "EvalResult",
    "EvaluationFailed",
    "ParseError",
    "TraceStep",
    "Value",
    "ValueKind",
    "evaluate",
    "evaluate_source",
    "parse_expression",
    "parse_statement",
]
