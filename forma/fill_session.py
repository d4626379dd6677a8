"""Live state of one person filling in a form."""

from __future__ import annotations

import logging
from copy import deepcopy
from collections.abc import Mapping
from typing import Any, Dict, List, Optional, Tuple

from forma import cascading
from forma.answers import copy_answers, is_empty_answer, resolve_answer
from forma.dynamic_groups import DynamicGroupController
from forma.errors import ReadOnlyFieldError, UnknownFieldError
from forma.expressions import ExpressionEvaluator
from forma.field_types import (
    CASCADING_SELECT,
    DYNAMIC_GROUP_TYPES,
    EXPRESSION,
    CascadingProperties,
)
from forma.navigation import FINISH, NavigationDecision, can_go_previous, resolve_next_page
from forma.schema_model import FormField, FormSchema, Page

logger = logging.getLogger(__name__)


class FillSession:
    """Answer snapshot plus page cursor for one fill of ``schema``.

    The schema is treated as read-only. Every answer change re-runs cascading
    pruning and expression recomputation before returning.
    """

    def __init__(self, schema: FormSchema, answers: Optional[Mapping[str, Any]] = None) -> None:
        self.schema = schema
        self.answers: Dict[str, Any] = copy_answers(answers)
        self.evaluator = ExpressionEvaluator(schema)
        self.current_page_id = schema.pages[0].id
        self.visited: List[str] = []
        self.finished = False

        self._by_name: Dict[str, FormField] = {}
        self._groups: Dict[str, DynamicGroupController] = {}
        for item in schema.iter_fields():
            if not item.name or item.name in self._by_name or schema.in_dynamic_template(item.id):
                continue
            self._by_name[item.name] = item
            if item.type in DYNAMIC_GROUP_TYPES:
                self._groups[item.name] = DynamicGroupController(item, schema)

        self._apply_defaults()
        self._refresh()

    # -- setup ------------------------------------------------------------

    def _apply_defaults(self) -> None:
        for name, item in self._by_name.items():
            if item.type in DYNAMIC_GROUP_TYPES:
                self.answers[name] = self._groups[name].ensure_minimum(self.answers.get(name))
                continue
            if not item.is_input or item.type == EXPRESSION:
                continue
            if name not in self.answers and item.default_value is not None:
                self.answers[name] = deepcopy(item.default_value)

    def _refresh(self) -> Dict[str, Any]:
        for name, item in self._by_name.items():
            if item.type == CASCADING_SELECT and name in self.answers:
                self.answers[name] = cascading.prune_selections(item, self.answers[name])
        changed = self.evaluator.recompute(self.answers)
        if changed:
            logger.debug("Recomputed %s", ", ".join(sorted(changed)))
        return changed

    # -- lookup -----------------------------------------------------------

    @property
    def current_page(self) -> Page:
        return self.schema.require_page(self.current_page_id)

    @property
    def page_number(self) -> int:
        index = self.schema.page_index(self.current_page_id)
        return (index or 0) + 1

    @property
    def page_count(self) -> int:
        return len(self.schema.pages)

    def field_named(self, name: str) -> FormField:
        """Return the answerable field stored under ``name``."""

        found = self._by_name.get(name)
        if found is None:
            raise UnknownFieldError(f"No field named {name!r} in this form.")
        return found

    def group(self, name: str) -> DynamicGroupController:
        controller = self._groups.get(name)
        if controller is None:
            raise UnknownFieldError(f"{name!r} is not a dynamic group.")
        return controller

    def value(self, path: str) -> Any:
        return resolve_answer(self.answers, path)

    def display_value(self, name: str) -> str:
        """Return the formatted result of a calculated field."""

        return self.evaluator.display_value(self.field_named(name), self.answers)

    def page_fields(self, page_id: Optional[str] = None) -> List[FormField]:
        page = self.schema.require_page(page_id or self.current_page_id)
        return [self.schema.fields[field_id] for field_id in page.field_ids]

    # -- answers ----------------------------------------------------------

    def _require_writable(self, item: FormField) -> None:
        if item.type == EXPRESSION:
            raise ReadOnlyFieldError(f"{item.name!r} is calculated and cannot be set.")
        if item.read_only or item.disabled:
            raise ReadOnlyFieldError(f"{item.name!r} is read-only.")

    def set_answer(self, name: str, value: Any) -> Dict[str, Any]:
        """Store ``value`` for ``name``; return the calculated values that changed."""

        item = self.field_named(name)
        self._require_writable(item)
        if item.type == CASCADING_SELECT:
            value = cascading.normalise_selections(value)
        elif item.type in DYNAMIC_GROUP_TYPES:
            value = self._groups[name].normalise(value)
        self.answers[name] = value
        return self._refresh()

    def clear_answer(self, name: str) -> Dict[str, Any]:
        item = self.field_named(name)
        self._require_writable(item)
        self.answers.pop(name, None)
        return self._refresh()

    def select_cascade(self, name: str, level: int, value: Any) -> Dict[str, Any]:
        """Pick ``value`` at ``level`` of a cascading select and clear deeper levels."""

        item = self.field_named(name)
        self.answers[name] = cascading.select(item, self.answers.get(name) or [], level, value)
        return self._refresh()

    def cascade_options(self, name: str, level: int) -> List[Mapping[str, Any]]:
        item = self.field_named(name)
        properties = CascadingProperties.from_properties(item.properties)
        selections = cascading.normalise_selections(self.answers.get(name))
        return cascading.options_for_level(properties.options, selections, level)

    def add_group_item(self, name: str) -> Dict[str, Any]:
        controller = self.group(name)
        self.answers[name] = controller.add_item(self.answers.get(name) or [])
        return self._refresh()

    def remove_group_item(self, name: str, index: int) -> Dict[str, Any]:
        controller = self.group(name)
        self.answers[name] = controller.remove_item(self.answers.get(name) or [], index)
        return self._refresh()

    def set_group_value(self, name: str, index: int, child_name: str, value: Any) -> Dict[str, Any]:
        controller = self.group(name)
        self.answers[name] = controller.set_value(self.answers.get(name) or [], index, child_name, value)
        return self._refresh()

    # -- navigation -------------------------------------------------------

    def peek_next(self) -> NavigationDecision:
        return resolve_next_page(self.schema, self.current_page_id, self.answers)

    def next_page(self) -> NavigationDecision:
        """Move to the page the navigation rules select, or finish the form."""

        decision = self.peek_next()
        if decision.kind == FINISH or decision.page_id is None:
            self.finished = True
            return decision
        self.visited.append(self.current_page_id)
        logger.debug("Page %s -> %s (%s)", self.current_page_id, decision.page_id, decision.kind)
        self.current_page_id = decision.page_id
        return decision

    def can_go_back(self) -> bool:
        return bool(self.visited) and can_go_previous(self.schema, self.current_page_id)

    def previous_page(self) -> bool:
        """Return to the page shown before this one; ``False`` if not allowed.

        A finished session still shows its last page, so the first step back
        only reopens that page.
        """

        if self.finished:
            self.finished = False
            return True
        if not self.can_go_back():
            return False
        while self.visited:
            candidate = self.visited.pop()
            if self.schema.get_page(candidate) is not None:
                self.current_page_id = candidate
                self.finished = False
                return True
        return False

    # -- validation -------------------------------------------------------

    def _is_required(self, item: FormField) -> bool:
        if item.type == EXPRESSION or item.disabled or item.read_only:
            return False
        return item.required or self.schema.settings.all_fields_required

    def _answerable(self, page_id: Optional[str]) -> List[FormField]:
        pages = [page_id] if page_id else [page.id for page in self.schema.pages]
        found: List[FormField] = []
        for current in pages:
            for item in self.schema.iter_fields(current):
                if self._by_name.get(item.name) is not item:
                    continue
                if item.is_input or item.type in DYNAMIC_GROUP_TYPES:
                    found.append(item)
        return found

    def missing_required(self, page_id: Optional[str] = None) -> List[str]:
        """Return names (or item paths) of required answers that are still empty."""

        force = self.schema.settings.all_fields_required
        missing: List[str] = []
        for item in self._answerable(page_id):
            value = self.answers.get(item.name)
            if item.type in DYNAMIC_GROUP_TYPES:
                items = value or []
                if self._is_required(item) and not items:
                    missing.append(item.name)
                missing.extend(self._groups[item.name].missing_required(items, force_required=force))
            elif item.type == CASCADING_SELECT:
                if not cascading.is_satisfied(item, value or [], required=self._is_required(item)):
                    missing.append(item.name)
            elif self._is_required(item) and is_empty_answer(value):
                missing.append(item.name)
        return missing

    def progress(self) -> Tuple[int, int]:
        """Return ``(answered, total)`` over every answerable field."""

        counted = [item for item in self._answerable(None) if item.is_input]
        answered = 0
        for item in counted:
            value = self.answers.get(item.name)
            if item.type == CASCADING_SELECT:
                answered += int(any(part != "" for part in cascading.normalise_selections(value)))
            else:
                answered += int(not is_empty_answer(value))
        return answered, len(counted)

    def submission_snapshot(self) -> Dict[str, Any]:
        """Return a detached copy of the final answers."""

        return deepcopy(self.answers)


__all__ = ["FillSession"]
