"""In-memory tree model of a form schema document.

Fields live in a flat arena keyed by id. Pages and container fields only hold
ordered lists of child ids, and every field remembers its page and its parent
container, so relinking a field never copies a subtree. Each node keeps the
rest of its JSON document verbatim, which lets unknown and future keys
survive a load/save round trip.
"""

from __future__ import annotations

import json
import logging
from copy import deepcopy
from dataclasses import dataclass, field
from collections.abc import Mapping
from typing import Any, Dict, Iterator, List, NamedTuple, Optional, Set

from forma.errors import SchemaParseError, UnknownFieldError, UnknownPageError
from forma.field_types import (
    CASCADING_SELECT,
    CHILD_FIELDS_KEY,
    EXPRESSION,
    PANEL_DYNAMIC,
    accepts_children,
    is_input_type,
)
from forma.schema_defaults import DEFAULT_SETTINGS, generate_id

logger = logging.getLogger(__name__)


class Location(NamedTuple):
    """Position of a field: its page, parent container and index."""

    page_id: str
    parent_id: Optional[str]
    index: int


@dataclass(frozen=True)
class NavigationRule:
    """A conditional jump attached to a page."""

    field_name: str
    operator: str
    value: Any
    target_page_id: str
    id: str = ""

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "NavigationRule":
        return cls(
            field_name=str(document.get("fieldName") or ""),
            operator=str(document.get("operator") or "equals"),
            value=document.get("value", ""),
            target_page_id=str(document.get("targetPageId") or ""),
            id=str(document.get("id") or ""),
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id or generate_id("rule"),
            "fieldName": self.field_name,
            "operator": self.operator,
            "value": self.value,
            "targetPageId": self.target_page_id,
        }


@dataclass(frozen=True)
class FormSettings:
    """Resolved global settings of a form."""

    all_fields_required: bool = False
    show_progress_bar: bool = True
    display_mode: str = "classic"
    allow_previous_default: bool = True

    @classmethod
    def from_mapping(cls, settings: Any) -> "FormSettings":
        values = settings if isinstance(settings, Mapping) else {}
        display_mode = values.get("displayMode")
        mode = display_mode.get("default") if isinstance(display_mode, Mapping) else None

        def _flag(key: str) -> bool:
            value = values.get(key, DEFAULT_SETTINGS[key])
            return bool(value) if value is not None else bool(DEFAULT_SETTINGS[key])

        return cls(
            all_fields_required=_flag("allFieldsRequired"),
            show_progress_bar=_flag("showProgressBar"),
            display_mode=mode if isinstance(mode, str) and mode else "classic",
            allow_previous_default=_flag("allowPreviousDefault"),
        )


@dataclass
class FormField:
    """A single field definition.

    ``data`` holds the field's JSON document except, for container types, the
    nested ``properties.fields`` list, whose members live in the arena and are
    referenced from ``child_ids``.
    """

    data: Dict[str, Any]
    child_ids: List[str] = field(default_factory=list)
    parent_id: Optional[str] = None
    page_id: Optional[str] = None

    @property
    def id(self) -> str:
        return str(self.data["id"])

    @property
    def type(self) -> str:
        value = self.data.get("type")
        return value if isinstance(value, str) and value else "text"

    @property
    def name(self) -> str:
        value = self.data.get("name")
        return value if isinstance(value, str) else ""

    @property
    def label(self) -> str:
        value = self.data.get("label")
        return value if isinstance(value, str) and value else self.name

    @property
    def description(self) -> str:
        value = self.data.get("description")
        return value if isinstance(value, str) else ""

    @property
    def properties(self) -> Dict[str, Any]:
        value = self.data.get("properties")
        return value if isinstance(value, dict) else {}

    @property
    def required(self) -> bool:
        return bool(self.data.get("required"))

    @property
    def disabled(self) -> bool:
        return bool(self.data.get("disabled"))

    @property
    def read_only(self) -> bool:
        return bool(self.data.get("readOnly"))

    @property
    def default_value(self) -> Any:
        return self.data.get("defaultValue")

    @property
    def is_container(self) -> bool:
        return accepts_children(self.type)

    @property
    def is_input(self) -> bool:
        return is_input_type(self.type)


@dataclass
class Page:
    """A page of the form; ``data`` is the page document minus ``fields``."""

    data: Dict[str, Any]
    field_ids: List[str] = field(default_factory=list)

    @property
    def id(self) -> str:
        return str(self.data["id"])

    @property
    def title(self) -> str:
        value = self.data.get("title")
        return value if isinstance(value, str) else ""

    @property
    def description(self) -> str:
        value = self.data.get("description")
        return value if isinstance(value, str) else ""

    @property
    def allow_previous(self) -> Optional[bool]:
        value = self.data.get("allowPrevious")
        return None if value is None else bool(value)

    @property
    def navigation_rules(self) -> List[NavigationRule]:
        rules = self.data.get("navigationRules")
        if not isinstance(rules, list):
            return []
        return [NavigationRule.from_document(rule) for rule in rules if isinstance(rule, Mapping)]


@dataclass
class FormSchema:
    """Root of the schema tree."""

    data: Dict[str, Any]
    pages: List[Page] = field(default_factory=list)
    fields: Dict[str, FormField] = field(default_factory=dict)

    @property
    def version(self) -> str:
        return str(self.data.get("version", ""))

    @property
    def metadata(self) -> Dict[str, Any]:
        value = self.data.get("metadata")
        return value if isinstance(value, dict) else {}

    @property
    def title(self) -> str:
        title = self.metadata.get("title")
        return title if isinstance(title, str) else ""

    @property
    def settings(self) -> FormSettings:
        return FormSettings.from_mapping(self.data.get("settings"))

    # -- lookup -----------------------------------------------------------

    def get_field(self, field_id: str) -> Optional[FormField]:
        """Return the field with ``field_id`` or ``None``."""

        return self.fields.get(field_id)

    def require_field(self, field_id: str) -> FormField:
        """Return the field with ``field_id`` or raise :class:`UnknownFieldError`."""

        found = self.fields.get(field_id)
        if found is None:
            raise UnknownFieldError(f"Unknown field id: {field_id}")
        return found

    def get_page(self, page_id: str) -> Optional[Page]:
        return next((page for page in self.pages if page.id == page_id), None)

    def require_page(self, page_id: str) -> Page:
        page = self.get_page(page_id)
        if page is None:
            raise UnknownPageError(f"Unknown page id: {page_id}")
        return page

    def page_index(self, page_id: str) -> Optional[int]:
        return next((index for index, page in enumerate(self.pages) if page.id == page_id), None)

    def sequence(self, page_id: str, parent_id: Optional[str] = None) -> List[str]:
        """Return the live id list of a page root or a container."""

        if parent_id is None:
            return self.require_page(page_id).field_ids
        return self.require_field(parent_id).child_ids

    def location_of(self, field_id: str) -> Location:
        target = self.require_field(field_id)
        siblings = self.sequence(target.page_id or "", target.parent_id)
        return Location(target.page_id or "", target.parent_id, siblings.index(field_id))

    def page_of(self, field_id: str) -> Page:
        return self.require_page(self.require_field(field_id).page_id or "")

    def siblings_of(self, field_id: str) -> List[FormField]:
        """Return the other fields at the same container level, in order."""

        target = self.require_field(field_id)
        return [
            self.fields[sibling]
            for sibling in self.sequence(target.page_id or "", target.parent_id)
            if sibling != field_id
        ]

    def ancestors(self, field_id: str) -> List[FormField]:
        """Return the containers enclosing ``field_id``, nearest first."""

        chain: List[FormField] = []
        current = self.require_field(field_id).parent_id
        seen: Set[str] = set()
        while current is not None and current not in seen:
            seen.add(current)
            container = self.require_field(current)
            chain.append(container)
            current = container.parent_id
        return chain

    def descendant_ids(self, field_id: str) -> List[str]:
        """Return the ids of every field nested below ``field_id``."""

        collected: List[str] = []
        stack = list(reversed(self.require_field(field_id).child_ids))
        while stack:
            child_id = stack.pop()
            collected.append(child_id)
            stack.extend(reversed(self.fields[child_id].child_ids))
        return collected

    def sibling_names(
        self, page_id: str, parent_id: Optional[str] = None, *, exclude: Optional[str] = None
    ) -> Set[str]:
        """Return the field names used at one container level."""

        return {
            self.fields[sibling].name
            for sibling in self.sequence(page_id, parent_id)
            if sibling != exclude and self.fields[sibling].name
        }

    # -- traversal --------------------------------------------------------

    def iter_fields(self, page_id: Optional[str] = None) -> Iterator[FormField]:
        """Yield every field depth-first in display order.

        Panel children and dynamic panel templates are visited; matrix rows
        and columns are not fields and are never yielded.
        """

        pages = self.pages if page_id is None else [self.require_page(page_id)]
        for page in pages:
            for field_id in page.field_ids:
                yield from self.iter_subtree(field_id)

    def iter_subtree(self, field_id: str) -> Iterator[FormField]:
        stack = [field_id]
        while stack:
            current = self.fields[stack.pop()]
            yield current
            stack.extend(reversed(current.child_ids))

    def find_field_by_name(self, name: str, page_id: Optional[str] = None) -> Optional[FormField]:
        """Return the first field named ``name`` in display order."""

        return next((item for item in self.iter_fields(page_id) if item.name == name), None)

    def in_dynamic_template(self, field_id: str) -> bool:
        """Return ``True`` if ``field_id`` sits inside a dynamic panel template."""

        return any(ancestor.type == PANEL_DYNAMIC for ancestor in self.ancestors(field_id))

    # -- documents --------------------------------------------------------

    def field_document(self, field_id: str) -> Dict[str, Any]:
        """Return the JSON document for ``field_id`` including its children."""

        node = self.require_field(field_id)
        document = deepcopy(node.data)
        if node.is_container:
            properties = document.get("properties")
            if not isinstance(properties, dict):
                properties = {}
                document["properties"] = properties
            properties[CHILD_FIELDS_KEY] = [self.field_document(child) for child in node.child_ids]
        return document

    def page_document(self, page_id: str) -> Dict[str, Any]:
        page = self.require_page(page_id)
        document = deepcopy(page.data)
        document["fields"] = [self.field_document(field_id) for field_id in page.field_ids]
        return document

    def to_document(self) -> Dict[str, Any]:
        document = deepcopy(self.data)
        document["pages"] = [self.page_document(page.id) for page in self.pages]
        return document

    def copy(self) -> "FormSchema":
        return deepcopy(self)


def build_field_arena(
    document: Mapping[str, Any],
    page_id: str,
    parent_id: Optional[str],
    arena: Dict[str, FormField],
    *,
    reserved: Optional[Set[str]] = None,
) -> str:
    """Add ``document`` and its nested children to ``arena``.

    Returns the id of the root field. Raises :class:`ValueError` if an id is
    already present in ``arena`` or in ``reserved``.
    """

    data = deepcopy(dict(document))
    if not data.get("id"):
        data["id"] = generate_id("field")
        logger.debug("Assigned id %s to field without an id", data["id"])
    field_id = str(data["id"])
    data["id"] = field_id
    if field_id in arena or (reserved and field_id in reserved):
        raise ValueError(f"Duplicate field id: {field_id}")

    node = FormField(data=data, parent_id=parent_id, page_id=page_id)
    arena[field_id] = node
    if node.is_container:
        properties = data.get("properties")
        children = properties.pop(CHILD_FIELDS_KEY, []) if isinstance(properties, dict) else []
        for child in children if isinstance(children, list) else []:
            if isinstance(child, Mapping):
                node.child_ids.append(
                    build_field_arena(child, page_id, field_id, arena, reserved=reserved)
                )
    return field_id


def build_page(
    document: Mapping[str, Any], arena: Dict[str, FormField], *, reserved: Optional[Set[str]] = None
) -> Page:
    """Create a :class:`Page` from ``document``, adding its fields to ``arena``."""

    data = deepcopy(dict(document))
    if not data.get("id"):
        data["id"] = generate_id("page")
    data["id"] = str(data["id"])
    raw_fields = data.pop("fields", [])
    page = Page(data=data)
    for raw_field in raw_fields if isinstance(raw_fields, list) else []:
        if isinstance(raw_field, Mapping):
            page.field_ids.append(build_field_arena(raw_field, page.id, None, arena, reserved=reserved))
    return page


def parse_schema(document: Any) -> FormSchema:
    """Build a :class:`FormSchema` from a decoded JSON document."""

    if not isinstance(document, Mapping):
        raise SchemaParseError("Schema document must be a JSON object.")
    if "version" not in document:
        raise SchemaParseError("Schema document is missing 'version'.")
    pages = document.get("pages")
    if not isinstance(pages, list):
        raise SchemaParseError("Schema document is missing a 'pages' list.")
    if not pages:
        raise SchemaParseError("Schema document must contain at least one page.")

    data = {key: deepcopy(value) for key, value in document.items() if key != "pages"}
    schema = FormSchema(data=data)
    seen_pages: Set[str] = set()
    for raw_page in pages:
        if not isinstance(raw_page, Mapping):
            raise SchemaParseError("Every page must be a JSON object.")
        try:
            page = build_page(raw_page, schema.fields)
        except ValueError as exc:
            raise SchemaParseError(str(exc)) from exc
        if page.id in seen_pages:
            raise SchemaParseError(f"Duplicate page id: {page.id}")
        seen_pages.add(page.id)
        schema.pages.append(page)

    for problem in validate_schema(schema):
        logger.warning("Schema problem: %s", problem)
    return schema


def serialize_schema(schema: FormSchema) -> Dict[str, Any]:
    """Return the JSON-ready document for ``schema``."""

    return schema.to_document()


def load_schema_json(text: str) -> FormSchema:
    """Decode ``text`` and parse it as a schema document."""

    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        raise SchemaParseError(f"Schema is not valid JSON: {exc}") from exc
    return parse_schema(document)


def dump_schema_json(schema: FormSchema, *, indent: int = 2) -> str:
    return json.dumps(serialize_schema(schema), indent=indent, ensure_ascii=False)


def validate_schema(schema: FormSchema) -> List[str]:
    """Return human-readable problems found in ``schema``; never raises."""

    problems: List[str] = []
    page_ids = {page.id for page in schema.pages}

    def _check_level(label: str, ids: List[str]) -> None:
        seen: Set[str] = set()
        for field_id in ids:
            name = schema.fields[field_id].name
            if not name:
                problems.append(f"Field '{field_id}' in {label} has no name.")
                continue
            if name in seen:
                problems.append(f"Duplicate field name '{name}' in {label}.")
            seen.add(name)

    for page in schema.pages:
        _check_level(f"page '{page.title or page.id}'", page.field_ids)
        for item in schema.iter_fields(page.id):
            if item.is_container:
                _check_level(f"container '{item.name or item.id}'", item.child_ids)

    # Answers are keyed by name, so one name on two levels shares a single answer.
    levels_by_name: Dict[str, Set[tuple]] = {}
    for item in schema.iter_fields():
        if item.name and not schema.in_dynamic_template(item.id):
            levels_by_name.setdefault(item.name, set()).add((item.page_id, item.parent_id))
    for name, levels in levels_by_name.items():
        if len(levels) > 1:
            problems.append(f"Field name '{name}' is used on more than one level and would share one answer.")

    known_names = {item.name for item in schema.iter_fields() if item.name}
    for page in schema.pages:
        for rule in page.navigation_rules:
            if rule.field_name not in known_names:
                problems.append(
                    f"Page '{page.title or page.id}' has a navigation rule on unknown field '{rule.field_name}'."
                )
            if rule.target_page_id not in page_ids:
                problems.append(
                    f"Page '{page.title or page.id}' has a navigation rule targeting unknown page "
                    f"'{rule.target_page_id}'."
                )

    for item in schema.iter_fields():
        if item.type == CASCADING_SELECT and not item.properties.get("options"):
            problems.append(f"Cascading field '{item.name or item.id}' has no options.")
        if item.type == EXPRESSION and not item.properties.get("formula"):
            problems.append(f"Calculated field '{item.name or item.id}' has no formula.")

    return problems


__all__ = [
    "FormField",
    "FormSchema",
    "FormSettings",
    "Location",
    "NavigationRule",
    "Page",
    "build_field_arena",
    "build_page",
    "dump_schema_json",
    "load_schema_json",
    "parse_schema",
    "serialize_schema",
    "validate_schema",
]
