"""
Typed evaluation failures.

Evaluation never raises for a failing expression: the evaluator returns an
``EvalResult`` whose ``error`` is an ``EvalError``. ``EvaluationFailed`` exists
for callers that would rather get an exception (see ``EvalResult.unwrap``).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Kinds of evaluation failure."""

    TYPE_MISMATCH = "TypeMismatch"
    DIVISION_BY_ZERO = "DivisionByZero"
    UNWRAP_ON_ABSENT = "UnwrapOnAbsent"
    OVERFLOW = "Overflow"
    INVALID_RANGE = "InvalidRange"
    UNDEFINED_NAME = "UndefinedName"
    DUPLICATE_KEY = "DuplicateKey"
    NESTING_TOO_DEEP = "NestingTooDeep"


@dataclass(frozen=True)
class EvalError:
    """
    A failed evaluation.

    Properties:
        kind: ErrorKind
        message: Human-readable explanation
        source: Rendered sub-expression that failed (optional)
    """

    kind: ErrorKind
    message: str
    source: Optional[str] = None

    def __str__(self) -> str:
        if self.source:
            return f"{self.kind.value}: {self.message} (in {self.source})"
        return f"{self.kind.value}: {self.message}"


class EvaluationFailed(Exception):
    """Raised by ``EvalResult.unwrap`` when the result holds an error."""

    def __init__(self, error: EvalError):
        super().__init__(str(error))
        self.error = error
