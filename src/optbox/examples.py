"""
Built-in lessons for the sandbox.

Each lesson is an ordered list of snippets with a short note and the
expected outcome, so a learner can step through them (``optbox --lesson``)
and the test suite can check every one of them.
"""
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

from optbox.errors import ErrorKind
from optbox.evaluator import EvalResult
from optbox.session import Session


@dataclass(frozen=True)
class Snippet:
    """
    One lesson step.

    Properties:
        source: Expression or ``let`` statement
        note: What the step demonstrates
        expected: Displayed result (None when an error is expected)
        expected_error: ErrorKind the step is meant to fail with
    """

    source: str
    note: str
    expected: Optional[str] = None
    expected_error: Optional[ErrorKind] = None


def build_operators_lesson() -> List[Snippet]:
    return [
        # Arithmetic
        Snippet("6 * 7", "Multiplication", "42"),
        Snippet("5 / 10", "Integer division truncates", "0"),
        Snippet("5.0 / 10", "A float operand makes the whole operation floating point", "0.5"),
        Snippet('"Hello" + " " + "World!"', "+ also joins strings", '"Hello World!"'),
        Snippet("3 % 2", "Remainder", "1"),
        Snippet("10 % 5", "Remainder", "0"),
        Snippet("52 % 7", "Remainder", "3"),
        Snippet("let one = 1", "Bind a name", "1"),
        Snippet("-one", "Unary minus", "-1"),
        Snippet("+one", "Unary plus", "1"),
        Snippet("10 / 0", "Integer division by zero is an error", None, ErrorKind.DIVISION_BY_ZERO),
        # Comparison
        Snippet("1 == 2", "Equal to", "false"),
        Snippet("2 == 2", "Equal to", "true"),
        Snippet("3 > 4", "Greater than", "false"),
        Snippet("3 <= 4", "Less than or equal to", "true"),
        Snippet('"apple" < "banana"', "Strings compare by code point", "true"),
        Snippet('"cat" > "dog"', "Strings compare by code point", "false"),
        Snippet('"c" + "at" == "cat"', "Concatenate, then compare", "true"),
        Snippet('(1, "B") > (2, "A")', "Tuples compare element by element", "false"),
        Snippet('(2, "B") > (2, "A")', "First elements tie, so the second decides", "true"),
        # Ternary
        Snippet(
            '1 > 2 ? "1 is greater than 2." : "1 is not greater than 2."',
            "Ternary conditional",
            '"1 is not greater than 2."',
        ),
        Snippet(
            '30 >= 10 ? "30 is a more large number." : "10 is a more large number."',
            "Ternary conditional",
            '"30 is a more large number."',
        ),
        # Logical
        Snippet("let trueCondition = 1 > -10", "Bind a boolean", "true"),
        Snippet('let falseCondition = "a" < "Z"', "Lowercase letters sort after uppercase", "false"),
        Snippet("!trueCondition", "NOT", "false"),
        Snippet("trueCondition && !falseCondition", "AND", "true"),
        Snippet("trueCondition && falseCondition", "AND", "false"),
        Snippet("trueCondition || falseCondition", "OR", "true"),
        Snippet("falseCondition || !trueCondition", "OR", "false"),
        # Ranges
        Snippet("10...15", "Closed range", "(10, 11, 12, 13, 14, 15)"),
        Snippet("10..<15", "Half-open range", "(10, 11, 12, 13, 14)"),
    ]


def build_optionals_lesson() -> List[Snippet]:
    return [
        Snippet('int("123")', "Converting text can succeed", "123"),
        Snippet('int("ABC1")', "or produce nil", "nil"),
        Snippet("let optionalNumber = 42", "Bind a value", "42"),
        Snippet("let optionalNumber = nil", "Rebind it to nil", "nil"),
        Snippet('int("ABC") == nil', "Check for nil before using a value", "true"),
        Snippet('int("42")!', "Forced unwrapping of a value that is there", "42"),
        Snippet(
            'int("Hello World!")!',
            "Forced unwrapping of nil is fatal",
            None,
            ErrorKind.UNWRAP_ON_ABSENT,
        ),
        Snippet('int("XD") ?? -1', "Nil-coalescing supplies a default", "-1"),
        Snippet('int("42") ?? -1', "The default is ignored when a value is present", "42"),
        Snippet('nil ?? "default string"', "Coalescing a nil literal", '"default string"'),
        Snippet('int("12") ?? "twelve"', "The default must match the value's kind", None, ErrorKind.TYPE_MISMATCH),
        Snippet(
            'int("12") != nil ? int("12")! * int("12")! : 0',
            "Check, then unwrap",
            "144",
        ),
        Snippet('float("16.0")', "Float conversion", "16.0"),
        Snippet('float("A")', "Float conversion can fail too", "nil"),
        Snippet('str(float("16.0")! * float("16.0")!)', "Square a float and show it as text", '"256.0"'),
        # Optional binding
        Snippet(
            'if let actualNumber = int("12") { (true, actualNumber) } else { (false, 0) }',
            "Optional binding names the unwrapped value",
            "(true, 12)",
        ),
        Snippet(
            'if let actualNumber = int("XD") { (true, actualNumber) } else { (false, 0) }',
            "and takes the else branch on nil",
            "(false, 0)",
        ),
        Snippet(
            'if let floatNumber = float("16.0") { str(floatNumber * floatNumber) } else { nil }',
            "Bind, then use the value without !",
            '"256.0"',
        ),
        Snippet(
            'if let floatNumber = float("A") { str(floatNumber * floatNumber) } else { nil }',
            "Nothing to bind, so the result is nil",
            "nil",
        ),
        # Lookups that may find nothing
        Snippet('let dict1 = [1: "one"]', "A mapping from integers to text", '[1: "one"]'),
        Snippet('dict1[1] ?? "--- one"', "A key that is there", '"one"'),
        Snippet('dict1[2] ?? "--- two"', "A missing key gives nil", '"--- two"'),
        Snippet(
            'let airports = ["SFO": "San Francisco", "TPE": "Taipei Taoyuan", "HND": "Tokyo Haneda"]',
            "Airport codes",
            '["SFO": "San Francisco", "TPE": "Taipei Taoyuan", "HND": "Tokyo Haneda"]',
        ),
        Snippet('airports["NRT"]', "Narita is not in the mapping", "nil"),
        # Optional chaining
        Snippet("let a = nil", "Nothing here", "nil"),
        Snippet('let b = ["value": 42]', "Something here", '["value": 42]'),
        Snippet('a?["b"]?["value"]', "Chaining through nil gives nil", "nil"),
        Snippet('b?["value"]', "Chaining through a value looks it up", "42"),
        Snippet('let c = ["b": b]', "Nest one mapping in another", '["b": ["value": 42]]'),
        Snippet('c?["b"]?["value"]', "Every link of the chain has a value", "42"),
    ]


LESSONS = {
    "operators": build_operators_lesson,
    "optionals": build_optionals_lesson,
}


def lesson_names() -> List[str]:
    return sorted(LESSONS)


def get_lesson(name: str) -> List[Snippet]:
    if name not in LESSONS:
        raise KeyError(f"Unknown lesson '{name}'. Available: {', '.join(lesson_names())}")
    return LESSONS[name]()


def play_lesson(name: str, session: Optional[Session] = None) -> Iterator[Tuple[Snippet, EvalResult]]:
    """
    Run every snippet of a lesson in one session.

    The session must not halt on unwrap: lessons deliberately include failing
    steps and keep going after them.
    """
    session = session or Session()
    for snippet in get_lesson(name):
        yield snippet, session.run(snippet.source)


def snippet_matches(snippet: Snippet, result: EvalResult) -> bool:
    """True when the result is what the snippet expects."""
    if snippet.expected_error is not None:
        return not result.ok and result.error.kind is snippet.expected_error
    return result.ok and str(result) == snippet.expected
