"""Structural editing of a schema tree.

Every edit is a small operation object. ``apply`` validates the whole request
first and only then touches the tree, so a rejected operation leaves the
schema exactly as it was. ``apply`` returns the inverse operation, which is
what the undo/redo history stores.
"""

from __future__ import annotations

import logging
import re
from copy import deepcopy
from dataclasses import dataclass, field
from collections.abc import Mapping
from typing import Any, Dict, Iterable, List, Optional, Set, cast

from forma.errors import (
    CyclicContainmentError,
    DuplicateIdError,
    DuplicateNameError,
    LastPageError,
    NotAContainerError,
    StructuralViolation,
    UnknownFieldError,
)
from forma.field_types import CHILD_FIELDS_KEY, accepts_children
from forma.schema_defaults import (
    DEFAULT_PAGE_TITLE,
    UNDO_HISTORY_LIMIT,
    generate_id,
    new_page_document,
)
from forma.schema_model import FormField, FormSchema, build_field_arena, build_page

logger = logging.getLogger(__name__)


class _Absent:
    """Marker for a document key that did not exist before an update."""

    def __repr__(self) -> str:
        return "ABSENT"

    def __copy__(self) -> "_Absent":
        return self

    def __deepcopy__(self, memo: Dict[int, Any]) -> "_Absent":
        return self


ABSENT = _Absent()
PROTECTED_FIELD_KEYS = frozenset({"id", "type"})
PROTECTED_PAGE_KEYS = frozenset({"id", "fields"})


def _clamp(index: Optional[int], length: int) -> int:
    if index is None:
        return length
    if index < 0:
        index += length + 1
    return max(0, min(index, length))


def unique_name(base: str, used: Iterable[str]) -> str:
    """Return ``base`` or the first ``base_N`` variant not present in ``used``."""

    taken = set(used)
    if base not in taken:
        return base
    suffix = 2
    while True:
        candidate = f"{base}_{suffix}"
        if candidate not in taken:
            return candidate
        suffix += 1


def _check_level_names(documents: List[Mapping[str, Any]], where: str) -> None:
    """Reject duplicate names inside a document subtree, level by level."""

    seen: Set[str] = set()
    for document in documents:
        name = document.get("name")
        if isinstance(name, str) and name:
            if name in seen:
                raise DuplicateNameError(f"Duplicate field name '{name}' in {where}.")
            seen.add(name)
        if accepts_children(document.get("type")):
            properties = document.get("properties")
            children = properties.get(CHILD_FIELDS_KEY) if isinstance(properties, Mapping) else None
            if isinstance(children, list):
                _check_level_names(
                    [child for child in children if isinstance(child, Mapping)],
                    f"container '{name or document.get('id')}'",
                )


def _rename_references(schema: FormSchema, old_name: str, new_name: str) -> None:
    """Point navigation rules and formulas at ``new_name``."""

    if not old_name or old_name == new_name:
        return
    for page in schema.pages:
        rules = page.data.get("navigationRules")
        if not isinstance(rules, list):
            continue
        for rule in rules:
            if isinstance(rule, dict) and rule.get("fieldName") == old_name:
                rule["fieldName"] = new_name
    placeholder = re.compile(r"\{" + re.escape(old_name) + r"\}")
    for node in schema.fields.values():
        properties = node.properties
        formula = properties.get("formula")
        if isinstance(formula, str) and placeholder.search(formula):
            properties["formula"] = placeholder.sub("{" + new_name + "}", formula)


class Operation:
    """A reversible edit. ``apply`` mutates ``schema`` and returns the inverse."""

    def apply(self, schema: FormSchema) -> "Operation":  # pragma: no cover - interface
        raise NotImplementedError

    def describe(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class InsertField(Operation):
    document: Mapping[str, Any]
    page_id: str
    parent_id: Optional[str] = None
    index: Optional[int] = None

    def apply(self, schema: FormSchema) -> Operation:
        page = schema.require_page(self.page_id)
        if self.parent_id is not None:
            parent = schema.require_field(self.parent_id)
            if not parent.is_container:
                raise NotAContainerError(f"Field '{parent.name or parent.id}' does not accept child fields.")
            if parent.page_id != page.id:
                raise StructuralViolation("Parent container lives on a different page.")

        name = self.document.get("name")
        if isinstance(name, str) and name and name in schema.sibling_names(page.id, self.parent_id):
            raise DuplicateNameError(f"A field named '{name}' already exists at this level.")
        _check_level_names([self.document], "the inserted field")

        staged: Dict[str, FormField] = {}
        try:
            root_id = build_field_arena(
                self.document, page.id, self.parent_id, staged, reserved=set(schema.fields)
            )
        except ValueError as exc:
            raise DuplicateIdError(str(exc)) from exc

        schema.fields.update(staged)
        sequence = schema.sequence(page.id, self.parent_id)
        sequence.insert(_clamp(self.index, len(sequence)), root_id)
        return RemoveField(root_id)

    def describe(self) -> str:
        return f"insert '{self.document.get('name') or self.document.get('id')}'"


@dataclass(frozen=True)
class RemoveField(Operation):
    field_id: str

    def apply(self, schema: FormSchema) -> Operation:
        location = schema.location_of(self.field_id)
        document = schema.field_document(self.field_id)
        for doomed in [self.field_id, *schema.descendant_ids(self.field_id)]:
            del schema.fields[doomed]
        schema.sequence(location.page_id, location.parent_id).pop(location.index)
        return InsertField(document, location.page_id, location.parent_id, location.index)

    def describe(self) -> str:
        return f"remove '{self.field_id}'"


@dataclass(frozen=True)
class MoveField(Operation):
    field_id: str
    page_id: str
    parent_id: Optional[str] = None
    index: Optional[int] = None

    def apply(self, schema: FormSchema) -> Operation:
        moving = schema.require_field(self.field_id)
        page = schema.require_page(self.page_id)
        if self.parent_id is not None:
            if self.parent_id == self.field_id or self.parent_id in schema.descendant_ids(self.field_id):
                raise CyclicContainmentError(
                    f"Field '{moving.name or moving.id}' cannot be moved inside itself."
                )
            parent = schema.require_field(self.parent_id)
            if not parent.is_container:
                raise NotAContainerError(f"Field '{parent.name or parent.id}' does not accept child fields.")
            if parent.page_id != page.id:
                raise StructuralViolation("Parent container lives on a different page.")
        if moving.name and moving.name in schema.sibling_names(page.id, self.parent_id, exclude=self.field_id):
            raise DuplicateNameError(f"A field named '{moving.name}' already exists at the destination.")

        origin = schema.location_of(self.field_id)
        schema.sequence(origin.page_id, origin.parent_id).pop(origin.index)
        target = schema.sequence(page.id, self.parent_id)
        target.insert(_clamp(self.index, len(target)), self.field_id)
        moving.parent_id = self.parent_id
        for relinked in [self.field_id, *schema.descendant_ids(self.field_id)]:
            schema.fields[relinked].page_id = page.id
        return MoveField(self.field_id, origin.page_id, origin.parent_id, origin.index)

    def describe(self) -> str:
        return f"move '{self.field_id}'"


@dataclass(frozen=True)
class UpdateField(Operation):
    field_id: str
    changes: Mapping[str, Any]
    rename_references: bool = True

    def apply(self, schema: FormSchema) -> Operation:
        target = schema.require_field(self.field_id)
        blocked = PROTECTED_FIELD_KEYS.intersection(self.changes)
        if blocked:
            raise StructuralViolation(f"Cannot change {', '.join(sorted(blocked))} of an existing field.")
        properties = self.changes.get("properties", ABSENT)
        if properties is not ABSENT:
            if not isinstance(properties, Mapping):
                raise StructuralViolation("Field properties must be a mapping.")
            if target.is_container and CHILD_FIELDS_KEY in properties:
                raise StructuralViolation("Child fields are edited through insert, move and remove.")

        old_name = target.name
        new_name = self.changes.get("name", old_name)
        if "name" in self.changes:
            if not isinstance(new_name, str) or not new_name.strip():
                raise StructuralViolation("Field name must be a non-empty string.")
            siblings = schema.sibling_names(target.page_id or "", target.parent_id, exclude=self.field_id)
            if new_name in siblings:
                raise DuplicateNameError(f"A field named '{new_name}' already exists at this level.")

        previous: Dict[str, Any] = {}
        for key, value in self.changes.items():
            previous[key] = deepcopy(target.data.get(key, ABSENT))
            if value is ABSENT:
                target.data.pop(key, None)
            else:
                target.data[key] = deepcopy(dict(value)) if key == "properties" else deepcopy(value)
        if self.rename_references and "name" in self.changes:
            _rename_references(schema, old_name, target.name)
        return UpdateField(self.field_id, previous, self.rename_references)

    def describe(self) -> str:
        return f"update '{self.field_id}' ({', '.join(sorted(self.changes))})"


@dataclass(frozen=True)
class AddPage(Operation):
    document: Mapping[str, Any]
    index: Optional[int] = None

    def apply(self, schema: FormSchema) -> Operation:
        page_id = self.document.get("id")
        if page_id and schema.get_page(str(page_id)) is not None:
            raise DuplicateIdError(f"Duplicate page id: {page_id}")
        raw_fields = self.document.get("fields")
        if isinstance(raw_fields, list):
            _check_level_names([item for item in raw_fields if isinstance(item, Mapping)], "the new page")
        staged: Dict[str, FormField] = {}
        try:
            page = build_page(self.document, staged, reserved=set(schema.fields))
        except ValueError as exc:
            raise DuplicateIdError(str(exc)) from exc
        schema.fields.update(staged)
        schema.pages.insert(_clamp(self.index, len(schema.pages)), page)
        return RemovePage(page.id)

    def describe(self) -> str:
        return f"add page '{self.document.get('title') or self.document.get('id')}'"


@dataclass(frozen=True)
class RemovePage(Operation):
    page_id: str

    def apply(self, schema: FormSchema) -> Operation:
        page = schema.require_page(self.page_id)
        if len(schema.pages) <= 1:
            raise LastPageError("A form must keep at least one page.")
        index = schema.page_index(self.page_id)
        document = schema.page_document(self.page_id)
        for root_id in page.field_ids:
            for doomed in [root_id, *schema.descendant_ids(root_id)]:
                del schema.fields[doomed]
        schema.pages.remove(page)
        return AddPage(document, index)

    def describe(self) -> str:
        return f"remove page '{self.page_id}'"


@dataclass(frozen=True)
class MovePage(Operation):
    page_id: str
    index: int

    def apply(self, schema: FormSchema) -> Operation:
        page = schema.require_page(self.page_id)
        origin = schema.page_index(self.page_id)
        schema.pages.remove(page)
        schema.pages.insert(_clamp(self.index, len(schema.pages)), page)
        return MovePage(self.page_id, origin if origin is not None else 0)


@dataclass(frozen=True)
class UpdatePage(Operation):
    page_id: str
    changes: Mapping[str, Any]

    def apply(self, schema: FormSchema) -> Operation:
        page = schema.require_page(self.page_id)
        blocked = PROTECTED_PAGE_KEYS.intersection(self.changes)
        if blocked:
            raise StructuralViolation(f"Cannot change {', '.join(sorted(blocked))} of a page.")
        rules = self.changes.get("navigationRules", ABSENT)
        if rules is not ABSENT and not isinstance(rules, list):
            raise StructuralViolation("Navigation rules must be a list.")
        previous: Dict[str, Any] = {}
        for key, value in self.changes.items():
            previous[key] = deepcopy(page.data.get(key, ABSENT))
            if value is ABSENT:
                page.data.pop(key, None)
            else:
                page.data[key] = deepcopy(value)
        return UpdatePage(self.page_id, previous)


@dataclass(frozen=True)
class UpdateForm(Operation):
    """Change top-level keys such as ``metadata`` or ``settings``."""

    changes: Mapping[str, Any]

    def apply(self, schema: FormSchema) -> Operation:
        if "pages" in self.changes:
            raise StructuralViolation("Pages are edited through page operations.")
        previous: Dict[str, Any] = {}
        for key, value in self.changes.items():
            previous[key] = deepcopy(schema.data.get(key, ABSENT))
            if value is ABSENT:
                schema.data.pop(key, None)
            else:
                schema.data[key] = deepcopy(value)
        return UpdateForm(previous)


@dataclass
class History:
    """Undo and redo stacks of inverse operations."""

    limit: int = UNDO_HISTORY_LIMIT
    undo_stack: List[Operation] = field(default_factory=list)
    redo_stack: List[Operation] = field(default_factory=list)

    def record(self, inverse: Operation) -> None:
        self.undo_stack.append(inverse)
        if len(self.undo_stack) > self.limit:
            del self.undo_stack[0]
        self.redo_stack.clear()

    def clear(self) -> None:
        self.undo_stack.clear()
        self.redo_stack.clear()


class MutationEngine:
    """Editor-facing operations over one :class:`FormSchema`."""

    def __init__(self, schema: FormSchema, history: Optional[History] = None) -> None:
        self.schema = schema
        self.history = history if history is not None else History()

    def _execute(self, operation: Operation) -> Operation:
        inverse = operation.apply(self.schema)
        self.history.record(inverse)
        logger.info("Applied %s", operation.describe())
        return inverse

    def _default_page_id(self, page_id: Optional[str]) -> str:
        if page_id is not None:
            return page_id
        return self.schema.pages[0].id

    # -- fields -----------------------------------------------------------

    def insert(
        self,
        field_document: Any,
        at_index: Optional[int] = None,
        parent_container_id: Optional[str] = None,
        page_id: Optional[str] = None,
    ) -> str:
        """Insert a field (with any nested children) and return its id.

        Without ``parent_container_id`` the field goes into the root sequence
        of ``page_id`` (the first page by default); otherwise into the
        container's children. ``at_index`` defaults to the end.
        """

        document = field_document.data if isinstance(field_document, FormField) else field_document
        if not isinstance(document, Mapping):
            raise StructuralViolation("A field must be given as a mapping.")
        if parent_container_id is not None:
            parent = self.schema.require_field(parent_container_id)
            page_id = parent.page_id
        inverse = self._execute(
            InsertField(deepcopy(dict(document)), self._default_page_id(page_id), parent_container_id, at_index)
        )
        return cast(RemoveField, inverse).field_id

    def move(
        self,
        field_id: str,
        to_index: Optional[int],
        parent_container_id: Optional[str] = None,
        page_id: Optional[str] = None,
    ) -> None:
        """Move a field to ``to_index`` inside a page root or a container.

        ``None`` appends at the end of the destination sequence.
        """

        moving = self.schema.require_field(field_id)
        if parent_container_id is not None:
            page_id = self.schema.require_field(parent_container_id).page_id
        elif page_id is None:
            page_id = moving.page_id
        self._execute(MoveField(field_id, page_id or "", parent_container_id, to_index))

    def remove(self, field_id: str) -> None:
        """Remove a field and everything nested inside it."""

        self._execute(RemoveField(field_id))

    def move_to_page(self, field_id: str, target_page_id: str) -> None:
        """Append a field to the root of another page, dropping its nesting."""

        target = self.schema.require_page(target_page_id)
        self.schema.require_field(field_id)
        self._execute(MoveField(field_id, target.id, None, len(target.field_ids)))

    def update(self, field_id: str, changes: Mapping[str, Any], *, rename_references: bool = True) -> None:
        """Change document keys of a field (label, name, flags, properties...)."""

        self._execute(UpdateField(field_id, dict(changes), rename_references))

    def duplicate(self, field_id: str) -> str:
        """Insert a copy of a field right after it and return the copy's id."""

        location = self.schema.location_of(field_id)
        document = self.schema.field_document(field_id)
        _refresh_ids(document)
        used = self.schema.sibling_names(location.page_id, location.parent_id)
        base = document.get("name") or "field"
        document["name"] = unique_name(f"{base}_copy", used)
        inverse = self._execute(InsertField(document, location.page_id, location.parent_id, location.index + 1))
        return cast(RemoveField, inverse).field_id

    # -- pages ------------------------------------------------------------

    def add_page(self, title: Optional[str] = None, at_index: Optional[int] = None) -> str:
        document = new_page_document(title or f"{DEFAULT_PAGE_TITLE} {len(self.schema.pages) + 1}")
        self._execute(AddPage(document, at_index))
        return str(document["id"])

    def remove_page(self, page_id: str) -> None:
        self._execute(RemovePage(page_id))

    def move_page(self, page_id: str, to_index: int) -> None:
        self._execute(MovePage(page_id, to_index))

    def update_page(self, page_id: str, changes: Mapping[str, Any]) -> None:
        self._execute(UpdatePage(page_id, dict(changes)))

    def update_form(self, changes: Mapping[str, Any]) -> None:
        self._execute(UpdateForm(dict(changes)))

    # -- history ----------------------------------------------------------

    def can_undo(self) -> bool:
        return bool(self.history.undo_stack)

    def can_redo(self) -> bool:
        return bool(self.history.redo_stack)

    def undo(self) -> bool:
        """Revert the most recent operation; ``False`` when there is none."""

        if not self.history.undo_stack:
            return False
        inverse = self.history.undo_stack.pop()
        self.history.redo_stack.append(inverse.apply(self.schema))
        logger.info("Undid %s", inverse.describe())
        return True

    def redo(self) -> bool:
        """Re-apply the most recently undone operation."""

        if not self.history.redo_stack:
            return False
        operation = self.history.redo_stack.pop()
        self.history.undo_stack.append(operation.apply(self.schema))
        logger.info("Redid %s", operation.describe())
        return True


def _refresh_ids(document: Dict[str, Any]) -> None:
    document["id"] = generate_id("field")
    properties = document.get("properties")
    if accepts_children(document.get("type")) and isinstance(properties, dict):
        for child in properties.get(CHILD_FIELDS_KEY) or []:
            if isinstance(child, dict):
                _refresh_ids(child)


def new_field_document(
    field_type: str,
    name: str,
    label: Optional[str] = None,
    properties: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Return a fresh field document as the editor toolbox creates it."""

    bag: Dict[str, Any] = dict(properties or {})
    if accepts_children(field_type):
        bag.setdefault(CHILD_FIELDS_KEY, [])
    return {
        "id": generate_id("field"),
        "type": field_type,
        "name": name,
        "label": label if label is not None else name.replace("_", " ").title(),
        "required": False,
        "properties": bag,
    }


def check_invariants(schema: FormSchema) -> List[str]:
    """Return structural invariant violations (sibling names, containment)."""

    problems: List[str] = []

    def _level(ids: List[str], where: str) -> None:
        names = [schema.fields[item].name for item in ids if schema.fields[item].name]
        if len(names) != len(set(names)):
            problems.append(f"Duplicate sibling names in {where}.")

    for page in schema.pages:
        _level(page.field_ids, f"page '{page.id}'")
        for root_id in page.field_ids:
            if schema.fields[root_id].parent_id is not None:
                problems.append(f"Root field '{root_id}' has a parent.")
    for node in schema.fields.values():
        if node.child_ids:
            _level(node.child_ids, f"container '{node.id}'")
        try:
            chain = schema.ancestors(node.id)
        except UnknownFieldError:
            problems.append(f"Field '{node.id}' has a dangling parent.")
            continue
        if any(ancestor.id == node.id for ancestor in chain):
            problems.append(f"Field '{node.id}' is its own ancestor.")
        if node.parent_id is not None and node.id not in schema.fields[node.parent_id].child_ids:
            problems.append(f"Field '{node.id}' is missing from its parent.")
    return problems


__all__ = [
    "ABSENT",
    "AddPage",
    "History",
    "InsertField",
    "MoveField",
    "MovePage",
    "MutationEngine",
    "Operation",
    "RemoveField",
    "RemovePage",
    "UpdateField",
    "UpdateForm",
    "UpdatePage",
    "check_invariants",
    "new_field_document",
    "unique_name",
]
