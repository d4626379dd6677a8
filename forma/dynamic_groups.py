"""Repeatable field groups: dynamic panels and dynamic matrices.

The answer of a dynamic group is a list of item mappings. Each item carries an
opaque ``_id`` plus one key per template field (dynamic panel) or column
(dynamic matrix). Items are addressed by position, so the synthesized answer
paths ``group.<index>.<child>`` are always unique among live items.
"""

from __future__ import annotations

import logging
import uuid
from copy import deepcopy
from dataclasses import dataclass, field
from collections.abc import Mapping
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from forma.answers import is_empty_answer
from forma.errors import GroupLimitError
from forma.field_types import (
    CHILD_FIELDS_KEY,
    DYNAMIC_GROUP_TYPES,
    MATRIX_DYNAMIC,
    DynamicGroupProperties,
)
from forma.schema_model import FormField, FormSchema

logger = logging.getLogger(__name__)

ITEM_ID_KEY = "_id"


@dataclass(frozen=True)
class TemplateEntry:
    """One repeated child of a dynamic group."""

    id: str
    name: str
    document: Dict[str, Any] = field(default_factory=dict)

    @property
    def default(self) -> Any:
        value = self.document.get("defaultValue")
        return "" if value is None else deepcopy(value)


def _panel_template(group: FormField, schema: Optional[FormSchema]) -> List[Dict[str, Any]]:
    if schema is not None and group.child_ids:
        return [schema.field_document(child_id) for child_id in group.child_ids]
    children = group.properties.get(CHILD_FIELDS_KEY)
    return [dict(child) for child in children or [] if isinstance(child, Mapping)]


def template_entries(group: FormField, schema: Optional[FormSchema] = None) -> List[TemplateEntry]:
    """Return the template of ``group`` in display order.

    Dynamic panels repeat their ``properties.fields``; dynamic matrices repeat
    their ``properties.columns``. Entries without a name cannot hold an answer
    and are skipped.
    """

    if group.type == MATRIX_DYNAMIC:
        documents = DynamicGroupProperties.from_properties(group.type, group.properties).columns
    else:
        documents = _panel_template(group, schema)
    entries: List[TemplateEntry] = []
    for document in documents:
        name = document.get("name")
        if not isinstance(name, str) or not name:
            continue
        entry_id = document.get("id") or name
        entries.append(TemplateEntry(id=str(entry_id), name=name, document=deepcopy(dict(document))))
    return entries


def new_item_id() -> str:
    return uuid.uuid4().hex


class DynamicGroupController:
    """Add, remove and edit the items of one dynamic group.

    Every operation returns a new item list and leaves its argument
    untouched. Rejected operations raise :class:`GroupLimitError`.
    """

    def __init__(self, group: FormField, schema: Optional[FormSchema] = None) -> None:
        if group.type not in DYNAMIC_GROUP_TYPES:
            raise ValueError(f"{group.type!r} is not a dynamic group type.")
        self.group = group
        self.properties = DynamicGroupProperties.from_properties(group.type, group.properties)
        self.template = template_entries(group, schema)

    @property
    def min_items(self) -> int:
        return self.properties.min_items

    @property
    def max_items(self) -> int:
        return self.properties.max_items

    @property
    def child_names(self) -> List[str]:
        return [entry.name for entry in self.template]

    @property
    def editable(self) -> bool:
        return not (self.group.disabled or self.group.read_only)

    def _require_editable(self) -> None:
        if not self.editable:
            raise GroupLimitError(f"{self.group.name!r} cannot be edited.")

    def _require_index(self, items: Sequence[Any], index: int) -> None:
        if not 0 <= index < len(items):
            raise GroupLimitError(
                f"{self.group.name!r} has no item {index}; it holds {len(items)} item(s)."
            )

    def normalise(self, value: Any) -> List[Dict[str, Any]]:
        """Return ``value`` as a list of item mappings that each carry an ``_id``."""

        items: List[Dict[str, Any]] = []
        for raw in value if isinstance(value, list) else []:
            if not isinstance(raw, Mapping):
                continue
            item = dict(raw)
            if not item.get(ITEM_ID_KEY):
                item[ITEM_ID_KEY] = new_item_id()
            items.append(item)
        return items

    def blank_item(self) -> Dict[str, Any]:
        item: Dict[str, Any] = {ITEM_ID_KEY: new_item_id()}
        for entry in self.template:
            item[entry.name] = entry.default
        return item

    def can_add(self, items: Sequence[Any]) -> bool:
        return self.editable and len(items) < self.max_items

    def can_remove(self, items: Sequence[Any]) -> bool:
        return self.editable and len(items) > self.min_items

    def add_item(self, items: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        """Append a fresh item built from the template defaults."""

        self._require_editable()
        if len(items) >= self.max_items:
            raise GroupLimitError(f"{self.group.name!r} allows at most {self.max_items} item(s).")
        return self.normalise(list(items)) + [self.blank_item()]

    def remove_item(self, items: Sequence[Mapping[str, Any]], index: int) -> List[Dict[str, Any]]:
        """Drop the item at ``index``; later items shift down one position."""

        self._require_editable()
        self._require_index(items, index)
        if len(items) <= self.min_items:
            raise GroupLimitError(f"{self.group.name!r} needs at least {self.min_items} item(s).")
        remaining = self.normalise(list(items))
        del remaining[index]
        logger.debug("Removed item %s from %s", index, self.group.name)
        return remaining

    def set_value(
        self, items: Sequence[Mapping[str, Any]], index: int, child_name: str, value: Any
    ) -> List[Dict[str, Any]]:
        """Return a copy of ``items`` with one child value replaced."""

        self._require_editable()
        self._require_index(items, index)
        if child_name not in self.child_names:
            raise GroupLimitError(f"{self.group.name!r} has no child named {child_name!r}.")
        updated = self.normalise(list(items))
        updated[index][child_name] = value
        return updated

    def ensure_minimum(self, items: Any) -> List[Dict[str, Any]]:
        """Pad ``items`` with blank items until the minimum count is reached."""

        padded = self.normalise(items)
        while len(padded) < self.min_items:
            padded.append(self.blank_item())
        return padded

    def item_path(self, index: int, child_name: str) -> str:
        return f"{self.group.name}.{index}.{child_name}"

    def item_title(self, index: int) -> str:
        return f"{self.properties.item_label} {index + 1}"

    def instantiate(self, items: Sequence[Any]) -> List[List[FormField]]:
        """Return the synthesized child fields of every item, row by row."""

        rows: List[List[FormField]] = []
        for index in range(len(items)):
            row: List[FormField] = []
            for entry in self.template:
                data = deepcopy(entry.document)
                data["id"] = f"{self.group.id}-{index}-{entry.id}"
                data["name"] = self.item_path(index, entry.name)
                if self.group.disabled:
                    data["disabled"] = True
                if self.group.read_only:
                    data["readOnly"] = True
                row.append(FormField(data=data, parent_id=self.group.id, page_id=self.group.page_id))
            rows.append(row)
        return rows

    def flatten(self, items: Sequence[Any]) -> Iterator[Tuple[str, Any]]:
        """Yield ``(path, value)`` for every child value of every item."""

        for index, item in enumerate(items):
            values = item if isinstance(item, Mapping) else {}
            for entry in self.template:
                yield self.item_path(index, entry.name), values.get(entry.name)

    def missing_required(self, items: Sequence[Any], force_required: bool = False) -> List[str]:
        """Return the paths of required child values that are still empty."""

        missing: List[str] = []
        required = {
            entry.name
            for entry in self.template
            if force_required or entry.document.get("required") or entry.document.get("isRequired")
        }
        for path, value in self.flatten(items):
            if path.rsplit(".", 1)[-1] in required and is_empty_answer(value):
                missing.append(path)
        return missing


__all__ = [
    "DynamicGroupController",
    "ITEM_ID_KEY",
    "TemplateEntry",
    "new_item_id",
    "template_entries",
]
