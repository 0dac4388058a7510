"""
Test the built-in lessons.

Every snippet must produce exactly the result its lesson promises, so the
lessons double as an end-to-end check of parser and evaluator.
"""

import pytest

from optbox.errors import ErrorKind
from optbox.examples import get_lesson, lesson_names, play_lesson, snippet_matches


@pytest.mark.parametrize("name", lesson_names())
def test_every_snippet_matches(name):
    mismatches = [
        (snippet.source, str(result))
        for snippet, result in play_lesson(name)
        if not snippet_matches(snippet, result)
    ]
    assert mismatches == []


def test_optionals_lesson_structure():
    lesson = get_lesson("optionals")

    # The fatal unwrap is part of the lesson
    failing = [s for s in lesson if s.expected_error is ErrorKind.UNWRAP_ON_ABSENT]
    assert len(failing) == 1

    # Coalescing appears with and without a value present
    sources = [s.source for s in lesson]
    assert 'int("XD") ?? -1' in sources
    assert 'int("42") ?? -1' in sources


def test_optionals_lesson_covers_binding_and_chaining():
    sources = [s.source for s in get_lesson("optionals")]
    assert 'if let actualNumber = int("12") { (true, actualNumber) } else { (false, 0) }' in sources
    assert 'if let actualNumber = int("XD") { (true, actualNumber) } else { (false, 0) }' in sources
    assert 'airports["NRT"]' in sources
    assert 'a?["b"]?["value"]' in sources


def test_operators_lesson_covers_tuple_comparison():
    sources = [s.source for s in get_lesson("operators")]
    assert '(1, "B") > (2, "A")' in sources
    assert '(2, "B") > (2, "A")' in sources


def test_unknown_lesson():
    with pytest.raises(KeyError):
        get_lesson("closures")
