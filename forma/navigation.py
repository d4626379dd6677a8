"""Conditional page navigation.

Each page may carry an ordered list of navigation rules. When the person
filling the form asks for the next page, the rules are tried in order and the
first one that matches decides the target. Rules that reference a removed
field or page simply never match, so a half-edited form stays fillable.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from collections.abc import Mapping
from typing import Any, Callable, Dict, List, Optional, Sequence

from forma.answers import resolve_answer
from forma.schema_model import FormSchema, NavigationRule

logger = logging.getLogger(__name__)

JUMP = "jump"
ADVANCE = "advance"
FINISH = "finish"


@dataclass(frozen=True)
class NavigationDecision:
    """Outcome of asking for the next page."""

    kind: str
    page_id: Optional[str] = None


def to_text(value: Any) -> str:
    """Render ``value`` the way rule comparisons see it."""

    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (list, tuple)):
        return ",".join(to_text(item) for item in value)
    return str(value)


def to_number(value: Any) -> Optional[float]:
    """Return ``value`` as a finite number or ``None`` if it is not numeric."""

    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _literal_set(rule_value: Any) -> List[str]:
    return [part.strip() for part in to_text(rule_value).split(",")]


def _ordering(compare: Callable[[float, float], bool]) -> Callable[[Any, Any], bool]:
    def _evaluate(value: Any, rule_value: Any) -> bool:
        left = to_number(value)
        right = to_number(rule_value)
        if left is None or right is None:
            return False
        return compare(left, right)

    return _evaluate


OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "equals": lambda value, expected: to_text(value) == to_text(expected),
    "notEquals": lambda value, expected: to_text(value) != to_text(expected),
    "contains": lambda value, expected: to_text(expected) in to_text(value),
    "notContains": lambda value, expected: to_text(expected) not in to_text(value),
    "startsWith": lambda value, expected: to_text(value).startswith(to_text(expected)),
    "endsWith": lambda value, expected: to_text(value).endswith(to_text(expected)),
    "gt": _ordering(lambda left, right: left > right),
    "gte": _ordering(lambda left, right: left >= right),
    "lt": _ordering(lambda left, right: left < right),
    "lte": _ordering(lambda left, right: left <= right),
    "isEmpty": lambda value, _expected: to_text(value) == "",
    "isNotEmpty": lambda value, _expected: to_text(value) != "",
    "in": lambda value, expected: to_text(value) in _literal_set(expected),
    "notIn": lambda value, expected: to_text(value) not in _literal_set(expected),
}

OPERATOR_LABELS: Dict[str, str] = {
    "equals": "equals",
    "notEquals": "does not equal",
    "contains": "contains",
    "notContains": "does not contain",
    "startsWith": "starts with",
    "endsWith": "ends with",
    "gt": "is greater than",
    "gte": "is at least",
    "lt": "is less than",
    "lte": "is at most",
    "isEmpty": "is empty",
    "isNotEmpty": "is not empty",
    "in": "is one of",
    "notIn": "is not one of",
}


def evaluate_condition(value: Any, operator: str, rule_value: Any) -> bool:
    """Apply ``operator`` to an answer and a rule literal."""

    evaluate = OPERATORS.get(operator)
    if evaluate is None:
        logger.debug("Unsupported navigation operator: %s", operator)
        return False
    return evaluate(value, rule_value)


def first_matching_rule(
    rules: Sequence[NavigationRule], answers: Mapping[str, Any], page_ids: Sequence[str]
) -> Optional[NavigationRule]:
    """Return the first rule that matches and still targets an existing page."""

    for rule in rules:
        if not rule.field_name:
            continue
        if not evaluate_condition(resolve_answer(answers, rule.field_name), rule.operator, rule.value):
            continue
        if rule.target_page_id not in page_ids:
            logger.debug("Navigation rule %s targets missing page %s", rule.id, rule.target_page_id)
            continue
        return rule
    return None


def resolve_next_page(
    schema: FormSchema, current_page_id: str, answers: Mapping[str, Any]
) -> NavigationDecision:
    """Decide where "next" leads from ``current_page_id``."""

    index = schema.page_index(current_page_id)
    if index is None:
        return NavigationDecision(FINISH)
    page = schema.pages[index]
    rule = first_matching_rule(page.navigation_rules, answers, [item.id for item in schema.pages])
    if rule is not None:
        return NavigationDecision(JUMP, rule.target_page_id)
    if index + 1 < len(schema.pages):
        return NavigationDecision(ADVANCE, schema.pages[index + 1].id)
    return NavigationDecision(FINISH)


def can_go_previous(schema: FormSchema, page_id: str) -> bool:
    """Return ``True`` when the page may step back to the previous page."""

    index = schema.page_index(page_id)
    if not index:
        return False
    allow = schema.pages[index].allow_previous
    if allow is None:
        allow = schema.settings.allow_previous_default
    return allow


def previous_page_id(schema: FormSchema, page_id: str) -> Optional[str]:
    """Return the page before ``page_id`` in schema order, if stepping back is allowed."""

    if not can_go_previous(schema, page_id):
        return None
    index = schema.page_index(page_id)
    return schema.pages[index - 1].id if index else None


__all__ = [
    "ADVANCE",
    "FINISH",
    "JUMP",
    "NavigationDecision",
    "OPERATORS",
    "OPERATOR_LABELS",
    "can_go_previous",
    "evaluate_condition",
    "first_matching_rule",
    "previous_page_id",
    "resolve_next_page",
    "to_number",
    "to_text",
]
