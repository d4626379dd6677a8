"""Multi-level dependent dropdowns backed by a static option tree.

The answer of a ``cascadingselect`` field is a list holding one selected value
per level. Level ``k`` offers the children of the option picked at level
``k - 1``; changing a level clears everything below it.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, List, Optional, Sequence

from forma.errors import InvalidSelection
from forma.field_types import CascadingProperties
from forma.schema_model import FormField

logger = logging.getLogger(__name__)


def option_value(node: Mapping[str, Any]) -> str:
    value = node.get("value")
    return "" if value is None else str(value)


def option_label(node: Mapping[str, Any]) -> str:
    label = node.get("label")
    return str(label) if label not in (None, "") else option_value(node)


def _children(node: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    children = node.get("children")
    if not isinstance(children, (list, tuple)):
        return []
    return [child for child in children if isinstance(child, Mapping)]


def _find(nodes: Sequence[Mapping[str, Any]], value: Any) -> Optional[Mapping[str, Any]]:
    wanted = "" if value is None else str(value)
    for node in nodes:
        if option_value(node) == wanted:
            return node
    return None


def normalise_selections(value: Any) -> List[str]:
    """Return the stored answer as a list of per-level strings."""

    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return ["" if item is None else str(item) for item in value]
    if isinstance(value, str):
        return [value] if value else []
    return [str(value)]


def options_for_level(
    tree: Sequence[Mapping[str, Any]], selections: Sequence[Any], level: int
) -> List[Mapping[str, Any]]:
    """Return the options offered at ``level`` given the earlier selections.

    An empty list comes back when an earlier level is unselected or its value
    no longer exists in the tree.
    """

    if level < 0:
        return []
    nodes: List[Mapping[str, Any]] = [node for node in tree if isinstance(node, Mapping)]
    for depth in range(level):
        if depth >= len(selections) or selections[depth] in (None, ""):
            return []
        node = _find(nodes, selections[depth])
        if node is None:
            return []
        nodes = _children(node)
    return nodes


def _properties(target: FormField) -> CascadingProperties:
    return CascadingProperties.from_properties(target.properties)


def level_count(target: FormField) -> int:
    """Return the number of levels configured for ``target``."""

    return len(_properties(target).levels)


def is_level_enabled(target: FormField, selections: Sequence[Any], level: int) -> bool:
    """Return ``True`` if the person filling the form may pick at ``level``."""

    if target.disabled or target.read_only:
        return False
    if level < 0 or level >= level_count(target):
        return False
    if level == 0:
        return True
    return len(selections) >= level and selections[level - 1] not in (None, "")


def select(target: FormField, selections: Sequence[Any], level: int, value: Any) -> List[str]:
    """Return a new selection list with ``level`` set and deeper levels cleared.

    Selecting ``""`` or ``None`` clears ``level`` itself.
    """

    levels = level_count(target)
    if level < 0 or level >= levels:
        raise InvalidSelection(f"{target.name!r} has no level {level}.")
    if not is_level_enabled(target, selections, level):
        raise InvalidSelection(f"Level {level + 1} of {target.name!r} is not available.")
    current = normalise_selections(selections)
    updated = (current + [""] * levels)[:levels]
    if value in (None, ""):
        updated[level] = ""
    else:
        options = options_for_level(_properties(target).options, current, level)
        if _find(options, value) is None:
            raise InvalidSelection(f"{value!r} is not an option at level {level + 1} of {target.name!r}.")
        updated[level] = str(value)
    for deeper in range(level + 1, levels):
        updated[deeper] = ""
    return updated


def prune_selections(target: FormField, selections: Sequence[Any]) -> List[str]:
    """Cut ``selections`` at the first level whose value no longer resolves."""

    properties = _properties(target)
    current = normalise_selections(selections)[: len(properties.levels)]
    pruned: List[str] = []
    for level, value in enumerate(current):
        if value == "":
            break
        if _find(options_for_level(properties.options, pruned, level), value) is None:
            logger.debug("Dropping stale selection %r at level %s of %s", value, level, target.name)
            break
        pruned.append(value)
    return pruned + [""] * (len(current) - len(pruned))


def is_complete(target: FormField, selections: Sequence[Any]) -> bool:
    """Return ``True`` when every configured level holds a value."""

    levels = level_count(target)
    current = normalise_selections(selections)
    if levels == 0 or len(current) < levels:
        return False
    return all(value != "" for value in current[:levels])


def is_satisfied(target: FormField, selections: Sequence[Any], required: Optional[bool] = None) -> bool:
    """Return ``True`` if ``selections`` meet the field's required setting."""

    needed = target.required if required is None else required
    if not needed:
        return True
    return is_complete(target, selections)


def selection_labels(target: FormField, selections: Sequence[Any]) -> List[str]:
    """Return the display labels of the selected path."""

    properties = _properties(target)
    labels: List[str] = []
    current = normalise_selections(selections)
    for level, value in enumerate(current):
        node = _find(options_for_level(properties.options, current, level), value)
        if node is None:
            break
        labels.append(option_label(node))
    return labels


__all__ = [
    "is_complete",
    "is_level_enabled",
    "is_satisfied",
    "level_count",
    "normalise_selections",
    "option_label",
    "option_value",
    "options_for_level",
    "prune_selections",
    "select",
    "selection_labels",
]
