"""Field type tags and typed views over the type-specific ``properties`` bag.

Every field carries a free-form ``properties`` mapping. The interpreters only
care about a handful of variants, so each of them reads the bag through one of
the small frozen views below instead of poking at raw keys. Unknown keys stay
in the bag untouched.
"""

from __future__ import annotations

from dataclasses import dataclass
from collections.abc import Mapping
from typing import Any, Dict, List, Optional, Tuple

from forma.schema_defaults import (
    DEFAULT_ADD_ITEM_LABEL,
    DEFAULT_EXPRESSION_FORMAT,
    DEFAULT_EXPRESSION_PRECISION,
    DEFAULT_ITEM_LABEL,
    DEFAULT_MAX_ITEMS,
    DEFAULT_MIN_ITEMS,
)

TEXT = "text"
TEXTAREA = "textarea"
NUMBER = "number"
EMAIL = "email"
SELECT = "select"
RADIO = "radio"
CHECKBOX = "checkbox"
BOOLEAN = "boolean"
DATE = "date"
DATETIME = "datetime"
RATING = "rating"
CASCADING_SELECT = "cascadingselect"
MATRIX = "matrix"
MATRIX_DYNAMIC = "matrixdynamic"
MULTIPLE_TEXT = "multipletext"
PANEL = "panel"
PANEL_DYNAMIC = "paneldynamic"
EXPRESSION = "expression"
HTML = "html"
SIGNATURE = "signature"
FILE = "file"
HIDDEN = "hidden"
SECTION = "section"

FIELD_TYPES: Tuple[str, ...] = (
    TEXT,
    TEXTAREA,
    NUMBER,
    EMAIL,
    SELECT,
    RADIO,
    CHECKBOX,
    BOOLEAN,
    DATE,
    DATETIME,
    RATING,
    CASCADING_SELECT,
    MATRIX,
    MATRIX_DYNAMIC,
    MULTIPLE_TEXT,
    PANEL,
    PANEL_DYNAMIC,
    EXPRESSION,
    HTML,
    SIGNATURE,
    FILE,
    HIDDEN,
    SECTION,
)

FIELD_TYPE_LABELS: Dict[str, str] = {
    TEXT: "Short text",
    TEXTAREA: "Long text",
    NUMBER: "Number",
    EMAIL: "Email",
    SELECT: "Dropdown",
    RADIO: "Single choice",
    CHECKBOX: "Multiple choice",
    BOOLEAN: "Yes / No",
    DATE: "Date",
    DATETIME: "Date and time",
    RATING: "Rating",
    CASCADING_SELECT: "Cascading select",
    MATRIX: "Matrix",
    MATRIX_DYNAMIC: "Dynamic matrix",
    MULTIPLE_TEXT: "Multiple text",
    PANEL: "Panel",
    PANEL_DYNAMIC: "Dynamic panel",
    EXPRESSION: "Calculated value",
    HTML: "HTML block",
    SIGNATURE: "Signature",
    FILE: "File upload",
    HIDDEN: "Hidden value",
    SECTION: "Section heading",
}

# Types that own nested field definitions under ``properties.fields``.
CONTAINER_TYPES = frozenset({PANEL, PANEL_DYNAMIC})
# Types whose answer is a list of repeated items.
DYNAMIC_GROUP_TYPES = frozenset({PANEL_DYNAMIC, MATRIX_DYNAMIC})
# Types that never hold an answer of their own.
NON_INPUT_TYPES = frozenset({PANEL, PANEL_DYNAMIC, HTML, SECTION, HIDDEN})
CHILD_FIELDS_KEY = "fields"


def accepts_children(field_type: Optional[str]) -> bool:
    """Return ``True`` if fields of ``field_type`` may own child fields."""

    return field_type in CONTAINER_TYPES


def is_input_type(field_type: Optional[str]) -> bool:
    """Return ``True`` when ``field_type`` collects an answer."""

    return field_type not in NON_INPUT_TYPES


def type_label(field_type: str) -> str:
    """Return a human-friendly label for ``field_type``."""

    return FIELD_TYPE_LABELS.get(field_type, field_type.replace("_", " ").title())


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value.strip()))
        except ValueError:
            return default
    return default


def _as_mapping(value: Any) -> Dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


def _as_list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


@dataclass(frozen=True)
class ExpressionProperties:
    """Settings of an ``expression`` (calculated) field."""

    formula: str = ""
    precision: int = DEFAULT_EXPRESSION_PRECISION
    display_format: str = DEFAULT_EXPRESSION_FORMAT
    unit: str = ""

    @classmethod
    def from_properties(cls, properties: Mapping[str, Any]) -> "ExpressionProperties":
        formula = properties.get("formula")
        unit = properties.get("unit")
        display_format = properties.get("displayFormat")
        return cls(
            formula=formula if isinstance(formula, str) else "",
            precision=max(0, _as_int(properties.get("precision"), DEFAULT_EXPRESSION_PRECISION)),
            display_format=display_format if isinstance(display_format, str) else DEFAULT_EXPRESSION_FORMAT,
            unit=unit if isinstance(unit, str) else "",
        )


@dataclass(frozen=True)
class CascadingLevel:
    """Display settings for one level of a cascading select."""

    label: str
    placeholder: str = ""


@dataclass(frozen=True)
class CascadingProperties:
    """Levels and option tree of a ``cascadingselect`` field."""

    levels: Tuple[CascadingLevel, ...] = ()
    options: Tuple[Mapping[str, Any], ...] = ()

    @classmethod
    def from_properties(cls, properties: Mapping[str, Any]) -> "CascadingProperties":
        levels: List[CascadingLevel] = []
        for index, entry in enumerate(_as_list(properties.get("levels")), start=1):
            level = _as_mapping(entry)
            label = level.get("label")
            placeholder = level.get("placeholder")
            levels.append(
                CascadingLevel(
                    label=str(label) if label else f"Level {index}",
                    placeholder=str(placeholder) if placeholder else "",
                )
            )
        options = tuple(node for node in _as_list(properties.get("options")) if isinstance(node, Mapping))
        return cls(levels=tuple(levels), options=options)


@dataclass(frozen=True)
class DynamicGroupProperties:
    """Bounds and labels of a ``paneldynamic`` or ``matrixdynamic`` field."""

    min_items: int = DEFAULT_MIN_ITEMS
    max_items: int = DEFAULT_MAX_ITEMS
    item_label: str = DEFAULT_ITEM_LABEL
    add_label: str = DEFAULT_ADD_ITEM_LABEL
    columns: Tuple[Mapping[str, Any], ...] = ()

    @classmethod
    def from_properties(cls, field_type: str, properties: Mapping[str, Any]) -> "DynamicGroupProperties":
        if field_type == MATRIX_DYNAMIC:
            min_key, max_key, add_key = "minRowCount", "maxRowCount", "addRowText"
        else:
            min_key, max_key, add_key = "minItems", "maxItems", "addButtonText"
        min_items = max(0, _as_int(properties.get(min_key), DEFAULT_MIN_ITEMS))
        max_items = max(min_items, _as_int(properties.get(max_key), DEFAULT_MAX_ITEMS))
        item_label = properties.get("itemLabel")
        add_label = properties.get(add_key)
        columns = tuple(
            column
            for column in _as_list(properties.get("columns"))
            if isinstance(column, Mapping) and column.get("name")
        )
        return cls(
            min_items=min_items,
            max_items=max_items,
            item_label=item_label if isinstance(item_label, str) and item_label else DEFAULT_ITEM_LABEL,
            add_label=add_label if isinstance(add_label, str) and add_label else DEFAULT_ADD_ITEM_LABEL,
            columns=columns,
        )


__all__ = [
    "CASCADING_SELECT",
    "CHILD_FIELDS_KEY",
    "CONTAINER_TYPES",
    "CascadingLevel",
    "CascadingProperties",
    "DYNAMIC_GROUP_TYPES",
    "DynamicGroupProperties",
    "EXPRESSION",
    "ExpressionProperties",
    "FIELD_TYPES",
    "FIELD_TYPE_LABELS",
    "MATRIX_DYNAMIC",
    "NON_INPUT_TYPES",
    "PANEL",
    "PANEL_DYNAMIC",
    "accepts_children",
    "is_input_type",
    "type_label",
]
