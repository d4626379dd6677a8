"""Streamlit page for building and restructuring form schemas."""

from __future__ import annotations

import hashlib
import hmac
import json
import re
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
import requests
import streamlit as st

from Home import SELECTED_FORM_STATE_KEY, load_forms
from forma.config import editor_password_hash, github_settings
from forma.errors import FormaError
from forma.field_types import FIELD_TYPES, TEXT, type_label
from forma.form_store import save_local_form
from forma.github_backend import save_remote_form
from forma.mutation import ABSENT, MutationEngine, check_invariants, new_field_document, unique_name
from forma.navigation import OPERATOR_LABELS
from forma.schema_defaults import generate_id, new_form_document
from forma.schema_model import FormField, FormSchema, Page, parse_schema, validate_schema
from forma.ui_theme import apply_app_theme, page_header

ENGINES_STATE_KEY = "editor_engines"
ACTIVE_PAGE_STATE_KEY = "editor_active_page"
ACTIVE_FIELD_STATE_KEY = "editor_active_field"
AUTH_STATE_KEY = "editor_auth"
RULE_COLUMNS = ["fieldName", "operator", "value", "targetPageId"]
FORM_KEY_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]*$")


def verify_password(password: str, stored_hash: Optional[str]) -> bool:
    """Validate a plaintext password against the configured SHA-256 digest."""

    if not stored_hash:
        return False
    digest = hashlib.sha256(password.encode("utf-8")).hexdigest()
    return hmac.compare_digest(digest, stored_hash)


def require_authentication() -> None:
    """Enforce a minimal password gate for the editor."""

    if st.session_state.get(AUTH_STATE_KEY):
        return

    stored_hash = editor_password_hash()
    if not stored_hash:
        st.error("Editor password is not configured.")
        st.stop()

    password = st.text_input("Password", type="password")
    if not password:
        st.stop()

    if verify_password(password, stored_hash):
        st.session_state[AUTH_STATE_KEY] = True
        return

    st.error("Incorrect password.")
    st.stop()


def field_outline(schema: FormSchema, page_id: str) -> List[Tuple[int, FormField]]:
    """Return ``(depth, field)`` for every field of a page in display order."""

    outline: List[Tuple[int, FormField]] = []

    def _walk(ids: List[str], depth: int) -> None:
        for field_id in ids:
            node = schema.fields[field_id]
            outline.append((depth, node))
            _walk(node.child_ids, depth + 1)

    _walk(schema.require_page(page_id).field_ids, 0)
    return outline


def rules_frame(page: Page) -> pd.DataFrame:
    """Return the navigation rules of ``page`` as an editable table."""

    rows = [
        {
            "fieldName": rule.field_name,
            "operator": rule.operator,
            "value": "" if rule.value is None else str(rule.value),
            "targetPageId": rule.target_page_id,
        }
        for rule in page.navigation_rules
    ]
    return pd.DataFrame(rows, columns=RULE_COLUMNS)


def rules_from_frame(frame: pd.DataFrame, previous: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Turn the edited table back into rule documents, keeping existing ids."""

    rules: List[Dict[str, Any]] = []
    for position, record in enumerate(frame.to_dict("records")):
        field_name = record.get("fieldName")
        if field_name is None or pd.isna(field_name) or not str(field_name).strip():
            continue
        value = record.get("value")
        rule: Dict[str, Any] = {}
        if position < len(previous) and isinstance(previous[position], dict) and previous[position].get("id"):
            rule["id"] = previous[position]["id"]
        rule.update(
            {
                "fieldName": str(field_name).strip(),
                "operator": str(record.get("operator") or "equals"),
                "value": "" if value is None or (isinstance(value, float) and pd.isna(value)) else value,
                "targetPageId": str(record.get("targetPageId") or ""),
            }
        )
        if "id" not in rule:
            rule["id"] = generate_id("rule")
        rules.append(rule)
    return rules


def _engine_for(form_key: str, forms: Dict[str, FormSchema]) -> MutationEngine:
    engines: Dict[str, MutationEngine] = st.session_state.setdefault(ENGINES_STATE_KEY, {})
    engine = engines.get(form_key)
    if engine is None:
        schema = forms[form_key].copy() if form_key in forms else parse_schema(new_form_document(form_key))
        engine = MutationEngine(schema)
        engines[form_key] = engine
    return engine


def _run(action: Any, *args: Any, state_key: Optional[str] = None) -> None:
    """Call a mutation, report rejections, and rerun the page on success.

    When ``state_key`` is given the mutation result (a new id) is stored there
    so the new page or field becomes the active one.
    """

    try:
        result = action(*args)
    except FormaError as exc:
        st.error(str(exc))
        return
    if state_key and result:
        st.session_state[state_key] = result
    st.rerun()


def render_history(engine: MutationEngine) -> None:
    undo_col, redo_col = st.sidebar.columns(2)
    with undo_col:
        if st.button("Undo", disabled=not engine.can_undo(), use_container_width=True):
            engine.undo()
            st.rerun()
    with redo_col:
        if st.button("Redo", disabled=not engine.can_redo(), use_container_width=True):
            engine.redo()
            st.rerun()
    st.sidebar.caption(f"{len(engine.history.undo_stack)} change(s) can be undone.")


def render_form_settings(engine: MutationEngine) -> None:
    schema = engine.schema
    settings = schema.settings
    with st.expander("Form settings", expanded=False):
        with st.form("form_settings"):
            title = st.text_input("Title", value=schema.title)
            description = st.text_area("Description", value=str(schema.metadata.get("description") or ""))
            all_required = st.checkbox("All fields required", value=settings.all_fields_required)
            show_progress = st.checkbox("Show progress bar", value=settings.show_progress_bar)
            allow_previous = st.checkbox("Allow going back by default", value=settings.allow_previous_default)
            display_mode = st.radio(
                "Display mode",
                ["classic", "card"],
                index=1 if settings.display_mode == "card" else 0,
                horizontal=True,
            )
            if st.form_submit_button("Apply settings"):
                metadata = dict(schema.metadata)
                metadata.update({"title": title, "description": description})
                raw_settings = dict(schema.data.get("settings") or {})
                raw_settings.update(
                    {
                        "allFieldsRequired": all_required,
                        "showProgressBar": show_progress,
                        "allowPreviousDefault": allow_previous,
                        "displayMode": {**dict(raw_settings.get("displayMode") or {}), "default": display_mode},
                    }
                )
                _run(engine.update_form, {"metadata": metadata, "settings": raw_settings})


def render_page_controls(engine: MutationEngine, page: Page) -> None:
    schema = engine.schema
    index = schema.page_index(page.id) or 0
    with st.form(f"page_{page.id}"):
        title = st.text_input("Page title", value=page.title)
        description = st.text_area("Page description", value=page.description)
        allow_choice = st.selectbox(
            "Allow going back",
            ["Form default", "Yes", "No"],
            index=0 if page.allow_previous is None else (1 if page.allow_previous else 2),
        )
        if st.form_submit_button("Apply page changes"):
            changes: Dict[str, Any] = {"title": title, "description": description}
            if allow_choice != "Form default":
                changes["allowPrevious"] = allow_choice == "Yes"
            elif page.allow_previous is not None:
                changes["allowPrevious"] = ABSENT
            _run(engine.update_page, page.id, changes)

    left, right, add_col, remove_col = st.columns(4)
    with left:
        if st.button("Move page up", disabled=index == 0, use_container_width=True):
            _run(engine.move_page, page.id, index - 1)
    with right:
        if st.button("Move page down", disabled=index >= len(schema.pages) - 1, use_container_width=True):
            _run(engine.move_page, page.id, index + 1)
    with add_col:
        if st.button("Add page after", use_container_width=True):
            _run(engine.add_page, None, index + 1, state_key=ACTIVE_PAGE_STATE_KEY)
    with remove_col:
        if st.button("Remove page", disabled=len(schema.pages) == 1, use_container_width=True):
            _run(engine.remove_page, page.id)


def render_navigation_rules(engine: MutationEngine, page: Page) -> None:
    schema = engine.schema
    page_titles = {item.id: item.title or item.id for item in schema.pages}
    field_names = sorted({item.name for item in schema.iter_fields() if item.name and item.is_input})
    st.markdown("##### Navigation rules")
    st.caption("Rules are checked from top to bottom; the first match decides the next page.")
    edited = st.data_editor(
        rules_frame(page),
        num_rows="dynamic",
        hide_index=True,
        key=f"rules_{page.id}_{len(page.navigation_rules)}",
        column_config={
            "fieldName": st.column_config.SelectboxColumn("Field", options=field_names),
            "operator": st.column_config.SelectboxColumn(
                "Operator", options=list(OPERATOR_LABELS), default="equals"
            ),
            "value": st.column_config.TextColumn("Value"),
            "targetPageId": st.column_config.SelectboxColumn(
                "Go to page", options=list(page_titles)
            ),
        },
    )
    if st.button("Save rules", key=f"save_rules_{page.id}"):
        previous = page.data.get("navigationRules") or []
        _run(engine.update_page, page.id, {"navigationRules": rules_from_frame(edited, previous)})


def render_field_outline(engine: MutationEngine, page: Page) -> Optional[str]:
    outline = field_outline(engine.schema, page.id)
    if not outline:
        st.info("This page has no fields yet. Add one below.")
        return None
    ids = [node.id for _, node in outline]
    active = st.session_state.get(ACTIVE_FIELD_STATE_KEY)
    if active not in ids:
        active = ids[0]
    labels = {node.id: f"{'— ' * depth}{node.label or node.name} ({type_label(node.type)})" for depth, node in outline}
    active = st.radio("Fields", ids, index=ids.index(active), format_func=labels.get)
    st.session_state[ACTIVE_FIELD_STATE_KEY] = active
    return active


def render_field_actions(engine: MutationEngine, field_id: str) -> None:
    schema = engine.schema
    location = schema.location_of(field_id)
    siblings = schema.sequence(location.page_id, location.parent_id)

    up_col, down_col, copy_col, remove_col = st.columns(4)
    with up_col:
        if st.button("Move up", disabled=location.index == 0, use_container_width=True):
            _run(engine.move, field_id, location.index - 1, location.parent_id, location.page_id)
    with down_col:
        if st.button("Move down", disabled=location.index >= len(siblings) - 1, use_container_width=True):
            _run(engine.move, field_id, location.index + 1, location.parent_id, location.page_id)
    with copy_col:
        if st.button("Duplicate", use_container_width=True):
            _run(engine.duplicate, field_id, state_key=ACTIVE_FIELD_STATE_KEY)
    with remove_col:
        if st.button("Remove", use_container_width=True):
            _run(engine.remove, field_id)

    excluded = {field_id, *schema.descendant_ids(field_id)}
    containers = [
        node
        for node in schema.iter_fields(location.page_id)
        if node.is_container and node.id not in excluded
    ]
    destinations: List[Optional[str]] = [None, *[node.id for node in containers]]
    names = {node.id: node.label or node.name for node in containers}
    target_col, page_col = st.columns(2)
    with target_col:
        destination = st.selectbox(
            "Move into",
            destinations,
            index=destinations.index(location.parent_id) if location.parent_id in destinations else 0,
            format_func=lambda value: "Page root" if value is None else names.get(value, value),
            key=f"move_target_{field_id}",
        )
        if destination != location.parent_id and st.button("Move", key=f"move_{field_id}"):
            _run(engine.move, field_id, None, destination, location.page_id)
    with page_col:
        other_pages = [page for page in schema.pages if page.id != location.page_id]
        if other_pages:
            target_page = st.selectbox(
                "Move to page",
                [page.id for page in other_pages],
                format_func=lambda value: schema.require_page(value).title or value,
                key=f"move_page_{field_id}",
            )
            if st.button("Move to page", key=f"move_to_page_{field_id}"):
                _run(engine.move_to_page, field_id, target_page)


def render_field_editor(engine: MutationEngine, field_id: str) -> None:
    node = engine.schema.require_field(field_id)
    with st.form(f"field_{field_id}"):
        st.caption(f"{type_label(node.type)} · id `{node.id}`")
        label = st.text_input("Label", value=node.label)
        name = st.text_input("Answer name", value=node.name)
        description = st.text_area("Help text", value=node.description)
        flags = st.columns(3)
        required = flags[0].checkbox("Required", value=node.required)
        disabled = flags[1].checkbox("Disabled", value=node.disabled)
        read_only = flags[2].checkbox("Read-only", value=node.read_only)
        properties = {key: value for key, value in node.properties.items() if key != "fields"}
        raw_properties = st.text_area(
            "Properties (JSON)",
            value=json.dumps(properties, indent=2, ensure_ascii=False),
            height=200,
        )
        if st.form_submit_button("Apply field changes"):
            try:
                parsed = json.loads(raw_properties or "{}")
            except json.JSONDecodeError as exc:
                st.error(f"Properties are not valid JSON: {exc}")
                return
            if not isinstance(parsed, dict):
                st.error("Properties must be a JSON object.")
                return
            _run(
                engine.update,
                field_id,
                {
                    "label": label,
                    "name": name.strip(),
                    "description": description,
                    "required": required,
                    "disabled": disabled,
                    "readOnly": read_only,
                    "properties": parsed,
                },
            )


def render_add_field(engine: MutationEngine, page: Page, active_id: Optional[str]) -> None:
    schema = engine.schema
    with st.form(f"add_field_{page.id}"):
        st.markdown("##### Add a field")
        field_type = st.selectbox("Type", list(FIELD_TYPES), index=FIELD_TYPES.index(TEXT), format_func=type_label)
        label = st.text_input("Label")
        inside_active = False
        active = schema.get_field(active_id) if active_id else None
        if active is not None and active.is_container:
            inside_active = st.checkbox(f"Add inside '{active.label or active.name}'")
        if st.form_submit_button("Add field"):
            parent_id = active.id if inside_active and active is not None else None
            base = re.sub(r"[^a-z0-9]+", "_", (label or field_type).lower()).strip("_") or field_type
            name = unique_name(base, schema.sibling_names(page.id, parent_id))
            document = new_field_document(field_type, name, label or None)
            _run(engine.insert, document, None, parent_id, page.id, state_key=ACTIVE_FIELD_STATE_KEY)


def render_save(form_key: str, engine: MutationEngine) -> None:
    problems = validate_schema(engine.schema) + check_invariants(engine.schema)
    for problem in problems:
        st.warning(problem)

    local_col, publish_col = st.columns(2)
    with local_col:
        if st.button("Save locally", use_container_width=True):
            try:
                path = save_local_form(form_key, engine.schema)
            except OSError as exc:
                st.error(f"Could not write the schema file: {exc}")
            else:
                load_forms.clear()
                st.success(f"Saved to {path}.")
    with publish_col:
        settings = github_settings()
        if st.button("Publish to GitHub", type="primary", disabled=not settings, use_container_width=True):
            try:
                save_remote_form(settings, form_key, engine.schema)
            except requests.RequestException as exc:
                st.error(f"Could not publish the schema: {exc}")
            else:
                load_forms.clear()
                st.success("Schema published.")


def main() -> None:
    """Render the form editor page."""

    apply_app_theme(page_title="Form editor", page_icon="🛠️")
    require_authentication()
    page_header("Form editor", "Arrange pages and fields, then save or publish the schema.", icon="🛠️")

    forms = load_forms()
    form_keys = sorted(forms)
    engines: Dict[str, MutationEngine] = st.session_state.setdefault(ENGINES_STATE_KEY, {})
    form_keys.extend(key for key in sorted(engines) if key not in forms)

    with st.sidebar:
        new_key = st.text_input("New form key", placeholder="customer_survey")
        if st.button("Create form") and new_key:
            if not FORM_KEY_PATTERN.match(new_key):
                st.error("Use lowercase letters, digits, '-' and '_' for the form key.")
            elif new_key in form_keys:
                st.error(f"A form named '{new_key}' already exists.")
            else:
                _engine_for(new_key, forms)
                st.session_state[SELECTED_FORM_STATE_KEY] = new_key
                st.rerun()

    if not form_keys:
        st.info("No forms yet. Create one from the sidebar.")
        return

    selected = st.session_state.get(SELECTED_FORM_STATE_KEY)
    if selected not in form_keys:
        selected = form_keys[0]
    selected = st.selectbox("Form", form_keys, index=form_keys.index(selected))
    st.session_state[SELECTED_FORM_STATE_KEY] = selected

    engine = _engine_for(selected, forms)
    schema = engine.schema
    render_history(engine)
    render_form_settings(engine)

    page_ids = [page.id for page in schema.pages]
    active_page = st.session_state.get(ACTIVE_PAGE_STATE_KEY)
    if active_page not in page_ids:
        active_page = page_ids[0]
    active_page = st.radio(
        "Page",
        page_ids,
        index=page_ids.index(active_page),
        horizontal=True,
        format_func=lambda value: f"{page_ids.index(value) + 1}. {schema.require_page(value).title or value}",
    )
    st.session_state[ACTIVE_PAGE_STATE_KEY] = active_page
    page = schema.require_page(active_page)

    outline_col, editor_col = st.columns([2, 3])
    with outline_col:
        active_field = render_field_outline(engine, page)
        render_add_field(engine, page, active_field)
    with editor_col:
        if active_field:
            render_field_actions(engine, active_field)
            render_field_editor(engine, active_field)
        with st.expander("Page settings", expanded=False):
            render_page_controls(engine, page)
        render_navigation_rules(engine, page)

    with st.expander("View raw schema"):
        st.json(schema.to_document())

    st.divider()
    render_save(selected, engine)


if __name__ == "__main__":
    main()
