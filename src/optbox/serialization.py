"""
Serialization helpers for optbox objects (Value, Expression, EvalResult).

Provides lossless JSON/YAML round-trip via intermediate dict representation.
This module intentionally keeps serialization structure stable and explicit.
"""
from __future__ import annotations

import json
import math
from typing import Any, Dict

import yaml

from optbox.errors import ErrorKind, EvalError
from optbox.evaluator import EvalResult, TraceStep
from optbox.expressions import (
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
)
from optbox.values import ABSENT, Value, ValueKind


def value_to_dict(v: Value) -> Dict[str, Any]:
    if v.kind is ValueKind.ABSENT:
        return {"kind": "absent"}
    if v.kind is ValueKind.TUPLE:
        return {"kind": "tuple", "items": [value_to_dict(item) for item in v.payload]}
    if v.kind is ValueKind.MAPPING:
        return {
            "kind": "mapping",
            "entries": [{"key": value_to_dict(k), "value": value_to_dict(val)} for k, val in v.payload],
        }
    if v.kind is ValueKind.FLOAT and not math.isfinite(v.payload):
        # JSON has no inf/nan; keep them as text
        return {"kind": "float", "value": repr(v.payload)}
    return {"kind": v.kind.value, "value": v.payload}


def value_from_dict(d: Dict[str, Any]) -> Value:
    kind = ValueKind(d["kind"])
    if kind is ValueKind.ABSENT:
        return ABSENT
    if kind is ValueKind.TUPLE:
        return Value.tuple_of(value_from_dict(item) for item in d.get("items", []))
    if kind is ValueKind.MAPPING:
        return Value.mapping_of(
            (value_from_dict(e["key"]), value_from_dict(e["value"])) for e in d.get("entries", [])
        )
    if kind is ValueKind.FLOAT:
        return Value.floating(float(d["value"]))
    return Value(kind, d["value"])


def expr_to_dict(expr: Expression) -> Dict[str, Any]:
    if isinstance(expr, Literal):
        return {"type": "lit", "value": value_to_dict(expr.value)}
    if isinstance(expr, VariableReference):
        return {"type": "var", "name": expr.name}
    if isinstance(expr, BinaryOp):
        return {
            "type": "binary",
            "operator": expr.operator.value,
            "left": expr_to_dict(expr.left),
            "right": expr_to_dict(expr.right),
        }
    if isinstance(expr, UnaryOp):
        return {
            "type": "unary",
            "operator": expr.operator.value,
            "operand": expr_to_dict(expr.operand),
        }
    if isinstance(expr, Coalesce):
        return {
            "type": "coalesce",
            "primary": expr_to_dict(expr.primary),
            "fallback": expr_to_dict(expr.fallback),
        }
    if isinstance(expr, ForceUnwrap):
        return {"type": "unwrap", "operand": expr_to_dict(expr.operand)}
    if isinstance(expr, TupleExpr):
        return {"type": "tuple", "items": [expr_to_dict(item) for item in expr.items]}
    if isinstance(expr, Conditional):
        return {
            "type": "conditional",
            "condition": expr_to_dict(expr.condition),
            "if_true": expr_to_dict(expr.if_true),
            "if_false": expr_to_dict(expr.if_false),
        }
    if isinstance(expr, RangeExpr):
        return {
            "type": "range",
            "lower": expr_to_dict(expr.lower),
            "upper": expr_to_dict(expr.upper),
            "closed": expr.closed,
        }
    if isinstance(expr, Conversion):
        return {"type": "convert", "target": expr.target.value, "operand": expr_to_dict(expr.operand)}
    if isinstance(expr, MappingExpr):
        return {
            "type": "mapping",
            "entries": [{"key": expr_to_dict(k), "value": expr_to_dict(v)} for k, v in expr.entries],
        }
    if isinstance(expr, Subscript):
        return {
            "type": "subscript",
            "target": expr_to_dict(expr.target),
            "key": expr_to_dict(expr.key),
            "optional": expr.optional,
        }
    if isinstance(expr, OptionalBinding):
        return {
            "type": "bind",
            "name": expr.name,
            "source": expr_to_dict(expr.source),
            "present": expr_to_dict(expr.present),
            "absent": expr_to_dict(expr.absent),
        }
    raise TypeError(f"Unsupported Expression type: {type(expr)}")


def expr_from_dict(d: Dict[str, Any]) -> Expression:
    t = d.get("type")
    if t == "lit":
        return Literal(value_from_dict(d["value"]))
    if t == "var":
        return VariableReference(d["name"])
    if t == "binary":
        op = BinaryOperator(d["operator"])
        return BinaryOp(operator=op, left=expr_from_dict(d["left"]), right=expr_from_dict(d["right"]))
    if t == "unary":
        op = UnaryOperator(d["operator"])
        return UnaryOp(operator=op, operand=expr_from_dict(d["operand"]))
    if t == "coalesce":
        return Coalesce(primary=expr_from_dict(d["primary"]), fallback=expr_from_dict(d["fallback"]))
    if t == "unwrap":
        return ForceUnwrap(operand=expr_from_dict(d["operand"]))
    if t == "tuple":
        return TupleExpr(items=tuple(expr_from_dict(item) for item in d.get("items", [])))
    if t == "conditional":
        return Conditional(
            condition=expr_from_dict(d["condition"]),
            if_true=expr_from_dict(d["if_true"]),
            if_false=expr_from_dict(d["if_false"]),
        )
    if t == "range":
        return RangeExpr(
            lower=expr_from_dict(d["lower"]),
            upper=expr_from_dict(d["upper"]),
            closed=d.get("closed", True),
        )
    if t == "convert":
        return Conversion(target=ConversionTarget(d["target"]), operand=expr_from_dict(d["operand"]))
    if t == "mapping":
        return MappingExpr(
            entries=tuple((expr_from_dict(e["key"]), expr_from_dict(e["value"])) for e in d.get("entries", []))
        )
    if t == "subscript":
        return Subscript(
            target=expr_from_dict(d["target"]),
            key=expr_from_dict(d["key"]),
            optional=d.get("optional", False),
        )
    if t == "bind":
        return OptionalBinding(
            name=d["name"],
            source=expr_from_dict(d["source"]),
            present=expr_from_dict(d["present"]),
            absent=expr_from_dict(d["absent"]),
        )
    raise TypeError(f"Unsupported expression dict type: {t}")


def error_to_dict(e: EvalError) -> Dict[str, Any]:
    return {"kind": e.kind.value, "message": e.message, "source": e.source}


def error_from_dict(d: Dict[str, Any]) -> EvalError:
    return EvalError(kind=ErrorKind(d["kind"]), message=d["message"], source=d.get("source"))


def result_to_dict(r: EvalResult) -> Dict[str, Any]:
    return {
        "value": value_to_dict(r.value) if r.value is not None else None,
        "error": error_to_dict(r.error) if r.error is not None else None,
        "trace": [
            {"depth": s.depth, "source": s.source, "outcome": s.outcome, "failed": s.failed}
            for s in r.trace
        ],
    }


def result_from_dict(d: Dict[str, Any]) -> EvalResult:
    return EvalResult(
        value=value_from_dict(d["value"]) if d.get("value") is not None else None,
        error=error_from_dict(d["error"]) if d.get("error") is not None else None,
        trace=tuple(
            TraceStep(depth=s["depth"], source=s["source"], outcome=s["outcome"], failed=s.get("failed", False))
            for s in d.get("trace", [])
        ),
    )


def expr_to_json(expr: Expression) -> str:
    return json.dumps(expr_to_dict(expr), sort_keys=True)


def expr_from_json(s: str) -> Expression:
    return expr_from_dict(json.loads(s))


def expr_to_yaml(expr: Expression) -> str:
    return yaml.safe_dump(expr_to_dict(expr))


def expr_from_yaml(s: str) -> Expression:
    return expr_from_dict(yaml.safe_load(s))


def result_to_json(r: EvalResult) -> str:
    return json.dumps(result_to_dict(r), sort_keys=True)


def result_to_yaml(r: EvalResult) -> str:
    return yaml.safe_dump(result_to_dict(r), sort_keys=True)
