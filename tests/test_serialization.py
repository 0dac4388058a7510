"""
Tests for serialization and deserialization of optbox objects.

These tests ensure lossless JSON/YAML round-trip using the explicit
serialization functions in `optbox.serialization`.
"""

import json
import math

import pytest
import yaml

from optbox.evaluator import evaluate_source
from optbox.expressions import Literal
from optbox.parser import parse_expression
from optbox.serialization import (
    expr_from_dict,
    expr_from_json,
    expr_from_yaml,
    expr_to_dict,
    expr_to_json,
    expr_to_yaml,
    result_from_dict,
    result_to_dict,
    result_to_json,
    result_to_yaml,
    value_from_dict,
    value_to_dict,
)
from optbox.values import ABSENT, Value


def build_sample_expression():
    # Every node type appears at least once
    return parse_expression(
        '(int("12") != nil ? int("12")! * -2 : 0, str(1.5), 1...3, x ?? "d", !true && false, '
        'if let v = m?["k"] { v } else { [1: "a"][1] })'
    )


def test_json_roundtrip():
    expr = build_sample_expression()
    before = expr_to_dict(expr)
    restored = expr_from_json(expr_to_json(expr))
    assert expr_to_dict(restored) == before
    assert restored == expr


def test_yaml_roundtrip():
    expr = build_sample_expression()
    restored = expr_from_yaml(expr_to_yaml(expr))
    assert restored == expr


def test_literal_dict_shape():
    assert expr_to_dict(Literal(Value.integer(5))) == {
        "type": "lit",
        "value": {"kind": "integer", "value": 5},
    }


def test_absent_and_tuple_values():
    value = Value.of((1, None, ("a", True)))
    assert value_from_dict(value_to_dict(value)) == value
    assert value_to_dict(ABSENT) == {"kind": "absent"}


def test_mapping_values():
    value = Value.of({"SFO": "San Francisco", "HND": None})
    assert value_from_dict(value_to_dict(value)) == value
    assert value_to_dict(Value.mapping_of([])) == {"kind": "mapping", "entries": []}


def test_non_finite_floats_survive_json():
    d = json.loads(json.dumps(value_to_dict(Value.floating(float("-inf")))))
    assert value_from_dict(d).payload == -math.inf


def test_unknown_expression_type():
    with pytest.raises(TypeError):
        expr_from_dict({"type": "lambda"})


def test_result_roundtrip_with_error_and_trace():
    result = evaluate_source("1 + nil!", trace=True)
    restored = result_from_dict(result_to_dict(result))
    assert restored == result


def test_result_json_and_yaml_are_plain_data():
    result = evaluate_source('int("ABC") ?? -1', trace=True)
    from_json = json.loads(result_to_json(result))
    from_yaml = yaml.safe_load(result_to_yaml(result))
    assert from_json == from_yaml
    assert from_json["value"] == {"kind": "integer", "value": -1}
    assert from_json["error"] is None
    assert len(from_json["trace"]) == 3
