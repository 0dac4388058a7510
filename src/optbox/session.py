"""
Interactive sandbox session.

A Session holds what a learner builds up while experimenting:
    - ``let`` bindings (name -> Value)
    - a bounded history of evaluated lines

Evaluation itself stays pure: the session passes a read-only view of its
bindings to ``evaluate`` and only updates them after a successful ``let``.

Unwrap policy:
    ``evaluate`` reports UnwrapOnAbsent like any other error. The session
    decides what it means. With ``halt_on_unwrap`` the session ends and
    ``SessionTerminated`` is raised; otherwise the error is returned and the
    session carries on.
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, List, Optional

from optbox.config import SandboxConfig
from optbox.errors import ErrorKind, EvalError
from optbox.evaluator import EvalResult, evaluate
from optbox.parser import parse_statement
from optbox.values import Value

logger = logging.getLogger(__name__)


class SessionTerminated(Exception):
    """Raised when a session ends on a fatal force-unwrap, or is used after ending."""

    def __init__(self, message: str, error: Optional[EvalError] = None):
        super().__init__(message)
        self.error = error


@dataclass(frozen=True)
class HistoryEntry:
    source: str
    result: EvalResult
    name: Optional[str] = None


class Session:
    """
    One learner's sandbox.

    Example:
        session = Session()
        session.run('let n = int("42")')
        session.run("n ?? -1")   # => 42
    """

    def __init__(self, config: Optional[SandboxConfig] = None):
        self.config = config or SandboxConfig()
        self.bindings: Dict[str, Value] = dict(self.config.bindings)
        self.history: List[HistoryEntry] = []
        self.terminated = False

    def run(self, line: str, trace: Optional[bool] = None) -> EvalResult:
        """
        Parse and evaluate one line.

        Args:
            line: An expression or ``let NAME = EXPR``
            trace: Override ``config.trace`` for this line

        Returns:
            EvalResult of the expression

        Raises:
            ParseError: If the line does not parse (the session is unaffected)
            SessionTerminated: If the session has ended, or ends on this line
        """
        if self.terminated:
            raise SessionTerminated("Session has ended; start a new one")

        statement = parse_statement(line)
        if trace is None:
            trace = self.config.trace

        result = evaluate(statement.expression, env=MappingProxyType(self.bindings), trace=trace)
        self._remember(HistoryEntry(source=line, result=result, name=statement.name))

        if result.ok:
            if statement.name is not None:
                self.bindings[statement.name] = result.value
                logger.debug("Bound %s = %s", statement.name, result.value)
            return result

        if result.error.kind is ErrorKind.UNWRAP_ON_ABSENT and self.config.halt_on_unwrap:
            self.terminated = True
            logger.debug("Session terminated by %s", result.error)
            raise SessionTerminated(f"Fatal error: {result.error}", error=result.error)

        return result

    def reset(self) -> None:
        """Forget bindings and history, and revive a terminated session."""
        self.bindings = dict(self.config.bindings)
        self.history = []
        self.terminated = False

    def _remember(self, entry: HistoryEntry) -> None:
        if self.config.max_history == 0:
            return
        self.history.append(entry)
        if len(self.history) > self.config.max_history:
            del self.history[: len(self.history) - self.config.max_history]
