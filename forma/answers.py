"""Helpers for reading values out of an answer snapshot."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Dict, Optional


def resolve_answer(answers: Mapping[str, Any], path: str) -> Any:
    """Return the value stored under ``path`` or ``None``.

    ``path`` is either a plain field name or a dotted path such as
    ``members.0.age`` that points into a dynamic group item.
    """

    if not path:
        return None
    if path in answers:
        return answers[path]
    head, _, rest = path.partition(".")
    if not rest or head not in answers:
        return None
    current: Any = answers[head]
    for part in rest.split("."):
        if isinstance(current, list):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return None
        elif isinstance(current, Mapping):
            current = current.get(part)
        else:
            return None
    return current


def is_empty_answer(value: Any) -> bool:
    """Return ``True`` for values that count as "not answered"."""

    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def copy_answers(answers: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Return a shallow copy with list items copied so edits never leak back."""

    copied: Dict[str, Any] = {}
    for key, value in (answers or {}).items():
        if isinstance(value, list):
            copied[str(key)] = [dict(item) if isinstance(item, Mapping) else item for item in value]
        else:
            copied[str(key)] = value
    return copied
