"""Calculated fields driven by arithmetic formulas.

A formula such as ``{price} * {quantity}`` is filled in with the numeric value
of each referenced answer, checked against a strict arithmetic alphabet and
evaluated by walking the parsed syntax tree. Anything that fails along the way
produces ``None`` ("no result") instead of an exception.
"""

from __future__ import annotations

import ast
import logging
import math
import operator
import re
import warnings
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from collections.abc import Mapping
from typing import Any, Callable, Dict, List, MutableMapping, Optional, Union

from forma.answers import resolve_answer
from forma.field_types import EXPRESSION, ExpressionProperties
from forma.schema_defaults import (
    CURRENCY_PREFIX,
    DEFAULT_EXPRESSION_FORMAT,
    DEFAULT_EXPRESSION_PRECISION,
)
from forma.schema_model import FormField, FormSchema

logger = logging.getLogger(__name__)

Number = Union[int, float]

PLACEHOLDER_PATTERN = re.compile(r"\{([^}]+)\}")
ARITHMETIC_PATTERN = re.compile(r"[0-9+\-*/().]+")
LEADING_ZEROS_PATTERN = re.compile(r"(?<![\d.])0+(?=\d)")

_BINARY_OPERATORS: Dict[type, Callable[[float, float], float]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Pow: operator.pow,
}
_UNARY_OPERATORS: Dict[type, Callable[[float], float]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


class _Rejected(Exception):
    """Raised internally when a formula cannot produce a result."""


def coerce_number(value: Any) -> float:
    """Return the numeric value of an answer; anything unusable counts as 0."""

    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip()) if value.strip() else 0.0
        except ValueError:
            return 0.0
    else:
        return 0.0
    return number if math.isfinite(number) else 0.0


def _operand(number: float) -> str:
    """Render ``number`` in positional notation, never with an exponent."""

    if number.is_integer() and abs(number) < 1e15:
        return str(int(number))
    return format(Decimal(repr(number)), "f")


def substitute_placeholders(formula: str, answers: Mapping[str, Any]) -> str:
    """Replace every ``{name}`` with the numeric value of that answer."""

    def _replace(match: "re.Match[str]") -> str:
        value = coerce_number(resolve_answer(answers, match.group(1).strip()))
        text = _operand(value)
        return f"({text})" if value < 0 else text

    return PLACEHOLDER_PATTERN.sub(_replace, formula)


def referenced_fields(formula: str) -> List[str]:
    """Return the field names referenced by ``formula`` in order of appearance."""

    return [match.strip() for match in PLACEHOLDER_PATTERN.findall(formula or "")]


def _walk(tree: ast.AST) -> float:
    """Evaluate ``tree`` in post-order with an explicit stack.

    Long operator chains nest as deeply as they are long, so the walk does not
    recurse.
    """

    pending: List[tuple] = [(tree, False)]
    values: List[float] = []
    while pending:
        node, operands_ready = pending.pop()
        if isinstance(node, ast.Expression):
            pending.append((node.body, False))
        elif isinstance(node, ast.Constant) and type(node.value) in (int, float):
            values.append(float(node.value))
        elif isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPERATORS:
            if not operands_ready:
                pending.extend([(node, True), (node.right, False), (node.left, False)])
                continue
            right = values.pop()
            left = values.pop()
            result = _BINARY_OPERATORS[type(node.op)](left, right)
            if isinstance(result, complex):
                raise _Rejected("complex result")
            values.append(result)
        elif isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPERATORS:
            if not operands_ready:
                pending.extend([(node, True), (node.operand, False)])
                continue
            values.append(_UNARY_OPERATORS[type(node.op)](values.pop()))
        else:
            raise _Rejected(f"unsupported syntax: {type(node).__name__}")
    return values.pop()


def evaluate_arithmetic(expression: str) -> Optional[Number]:
    """Evaluate a sanitised arithmetic string; ``None`` when it cannot be computed."""

    if not expression or not ARITHMETIC_PATTERN.fullmatch(expression):
        return None
    expression = LEADING_ZEROS_PATTERN.sub("", expression)
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", SyntaxWarning)
            tree = ast.parse(expression, mode="eval")
        result = _walk(tree)
    except (
        SyntaxError,
        ValueError,
        ZeroDivisionError,
        OverflowError,
        RecursionError,
        MemoryError,
        _Rejected,
    ) as exc:
        logger.debug("Formula %r could not be evaluated: %s", expression, exc)
        return None
    if not math.isfinite(result):
        return None
    if result.is_integer() and abs(result) < 1e15:
        return int(result)
    return result


def evaluate_formula(formula: str, answers: Mapping[str, Any]) -> Optional[Number]:
    """Compute ``formula`` against the answer snapshot.

    ``^`` is accepted as exponentiation. After placeholders are filled in and
    whitespace is removed, only digits, ``+ - * / ( ) .`` may remain; any other
    character (for instance from an injection attempt) yields ``None``.
    """

    if not isinstance(formula, str) or not formula.strip():
        return None
    expression = substitute_placeholders(formula, answers)
    expression = re.sub(r"\s+", "", expression.replace("^", "**"))
    if not ARITHMETIC_PATTERN.fullmatch(expression):
        logger.debug("Formula %r contains characters outside the arithmetic grammar", formula)
        return None
    return evaluate_arithmetic(expression)


def round_half_up(value: Number, precision: int) -> Decimal:
    try:
        quantum = Decimal(1).scaleb(-precision)
        return Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return Decimal(value)


def format_result(
    value: Optional[Number],
    precision: int = DEFAULT_EXPRESSION_PRECISION,
    display_format: str = DEFAULT_EXPRESSION_FORMAT,
    unit: str = "",
) -> str:
    """Render a computed value for display; ``None`` renders as ``-``."""

    if value is None:
        return "-"
    precision = max(0, int(precision))
    rounded = round_half_up(value, precision)
    grouped = f"{rounded:,.{precision}f}"
    if display_format == "currency":
        text = f"{CURRENCY_PREFIX}{grouped}" if rounded >= 0 else f"-{CURRENCY_PREFIX}{grouped[1:]}"
    elif display_format == "percent":
        text = f"{grouped}%"
    elif display_format in {"text", "plain"}:
        normalised = rounded.normalize()
        text = format(normalised, "f") if normalised != 0 else "0"
    else:
        text = grouped
    return f"{text} {unit}".strip() if unit else text


def expression_fields(schema: FormSchema) -> List[FormField]:
    """Return calculated fields outside dynamic templates, in display order."""

    return [
        item
        for item in schema.iter_fields()
        if item.type == EXPRESSION and item.name and not schema.in_dynamic_template(item.id)
    ]


class ExpressionEvaluator:
    """Recomputes every calculated field whenever the snapshot changes.

    Dependencies are not tracked: every calculated field is re-evaluated on
    every change. A calculated field may feed another; passes repeat until the
    values settle, bounded by the number of calculated fields. Calculated
    fields must not reference each other in a cycle.
    """

    def __init__(self, schema: FormSchema) -> None:
        self.schema = schema
        self._fields = expression_fields(schema)

    @property
    def fields(self) -> List[FormField]:
        return list(self._fields)

    def evaluate(self, target: FormField, answers: Mapping[str, Any]) -> Optional[Number]:
        properties = ExpressionProperties.from_properties(target.properties)
        return evaluate_formula(properties.formula, answers)

    def display_value(self, target: FormField, answers: Mapping[str, Any]) -> str:
        properties = ExpressionProperties.from_properties(target.properties)
        return format_result(
            answers.get(target.name),
            precision=properties.precision,
            display_format=properties.display_format,
            unit=properties.unit,
        )

    def recompute(self, answers: MutableMapping[str, Any]) -> Dict[str, Optional[Number]]:
        """Update ``answers`` in place; return the names whose value changed."""

        changed: Dict[str, Optional[Number]] = {}
        for _ in range(max(1, len(self._fields))):
            dirty = False
            for target in self._fields:
                result = self.evaluate(target, answers)
                if target.name in answers and answers[target.name] == result:
                    continue
                answers[target.name] = result
                changed[target.name] = result
                dirty = True
            if not dirty:
                break
        return changed


__all__ = [
    "ExpressionEvaluator",
    "coerce_number",
    "evaluate_arithmetic",
    "evaluate_formula",
    "expression_fields",
    "format_result",
    "referenced_fields",
    "substitute_placeholders",
]
