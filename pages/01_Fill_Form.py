"""Streamlit page that lets people fill in a form."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import pandas as pd
import requests
import streamlit as st

from Home import SELECTED_FORM_STATE_KEY, load_forms
from forma.answers import is_empty_answer
from forma.cascading import (
    is_level_enabled,
    normalise_selections,
    option_label,
    option_value,
    selection_labels,
)
from forma.config import DEFAULT_API_URL, github_settings, local_submissions_dir
from forma.dynamic_groups import ITEM_ID_KEY, DynamicGroupController
from forma.errors import FormaError
from forma.field_types import (
    BOOLEAN,
    CASCADING_SELECT,
    CHECKBOX,
    DATE,
    DATETIME,
    EMAIL,
    EXPRESSION,
    FILE,
    HIDDEN,
    HTML,
    MATRIX,
    MATRIX_DYNAMIC,
    MULTIPLE_TEXT,
    NUMBER,
    PANEL,
    PANEL_DYNAMIC,
    RADIO,
    RATING,
    SECTION,
    SELECT,
    SIGNATURE,
    TEXTAREA,
    CascadingProperties,
)
from forma.fill_session import FillSession
from forma.github_backend import GitHubBackend
from forma.navigation import FINISH
from forma.schema_defaults import (
    DEFAULT_SUBMIT_LABEL,
    DEFAULT_SUBMIT_SUCCESS_MESSAGE,
    UNSELECTED_LABEL,
)
from forma.schema_model import FormField, FormSchema
from forma.submission_storage import (
    build_submission_payload,
    submission_storage_path,
    write_local_submission,
)
from forma.ui_theme import apply_app_theme, page_header, render_computed, step_badge

logger = logging.getLogger(__name__)

SESSIONS_STATE_KEY = "forma_fill_sessions"
LAST_SUBMISSION_STATE_KEY = "forma_last_submission"
FORM_QUERY_PARAM = "form"


def field_options(item: FormField) -> List[Dict[str, str]]:
    """Return the ``{value, label}`` choices of a select-like field."""

    raw = item.properties.get("options") or item.properties.get("choices") or []
    options: List[Dict[str, str]] = []
    for entry in raw if isinstance(raw, list) else []:
        if isinstance(entry, Mapping):
            if entry.get("disabled"):
                continue
            value = str(entry.get("value", ""))
            options.append({"value": value, "label": str(entry.get("label") or value)})
        elif entry is not None:
            options.append({"value": str(entry), "label": str(entry)})
    return options


def _parse_date(value: Any) -> Optional[date]:
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value).date()
        except ValueError:
            return None
    return None


def render_input(item: FormField, value: Any, key: str, *, label: Optional[str] = None) -> Any:
    """Render the widget for a plain input field and return its current value."""

    label = label or item.label or item.name
    disabled = item.disabled or item.read_only
    help_text = item.description or None
    if item.type == TEXTAREA:
        return st.text_area(label, value="" if value is None else str(value), key=key, disabled=disabled, help=help_text)
    if item.type == NUMBER:
        number = value if isinstance(value, (int, float)) and not isinstance(value, bool) else None
        return st.number_input(label, value=number, key=key, disabled=disabled, help=help_text)
    if item.type in {SELECT, RADIO}:
        options = field_options(item)
        values = [option["value"] for option in options]
        labels = {option["value"]: option["label"] for option in options}
        choices = [UNSELECTED_LABEL, *values]
        index = choices.index(str(value)) if value is not None and str(value) in values else 0
        widget = st.radio if item.type == RADIO else st.selectbox
        selection = widget(
            label,
            choices,
            index=index,
            key=key,
            disabled=disabled,
            help=help_text,
            format_func=lambda choice: labels.get(choice, choice),
        )
        return None if selection == UNSELECTED_LABEL else selection
    if item.type == CHECKBOX:
        options = field_options(item)
        values = [option["value"] for option in options]
        labels = {option["value"]: option["label"] for option in options}
        current = [str(entry) for entry in value] if isinstance(value, list) else []
        return st.multiselect(
            label,
            values,
            default=[entry for entry in current if entry in values],
            key=key,
            disabled=disabled,
            help=help_text,
            format_func=lambda choice: labels.get(choice, choice),
        )
    if item.type == BOOLEAN:
        return st.checkbox(label, value=bool(value), key=key, disabled=disabled, help=help_text)
    if item.type in {DATE, DATETIME}:
        picked = st.date_input(label, value=_parse_date(value), key=key, disabled=disabled, help=help_text)
        return picked.isoformat() if isinstance(picked, date) else None
    if item.type == RATING:
        max_rating = item.properties.get("maxRating") or 5
        scale = list(range(1, int(max_rating) + 1))
        choices = [UNSELECTED_LABEL, *scale]
        index = choices.index(value) if value in scale else 0
        selection = st.radio(label, choices, index=index, key=key, disabled=disabled, horizontal=True)
        return None if selection == UNSELECTED_LABEL else selection
    if item.type in {FILE, SIGNATURE}:
        uploaded = st.file_uploader(label, key=key, disabled=disabled, help=help_text)
        return uploaded.name if uploaded is not None else value
    text = st.text_input(label, value="" if value is None else str(value), key=key, disabled=disabled, help=help_text)
    if item.type == EMAIL and text and "@" not in text:
        st.caption("Enter a valid email address.")
    return text


def _apply(session: FillSession, name: str, value: Any) -> None:
    if session.answers.get(name) == value or (is_empty_answer(value) and is_empty_answer(session.answers.get(name))):
        return
    try:
        session.set_answer(name, value)
    except FormaError as exc:
        st.error(str(exc))


def render_cascade(session: FillSession, item: FormField, key: str) -> None:
    properties = CascadingProperties.from_properties(item.properties)
    selections = normalise_selections(session.answers.get(item.name))
    st.markdown(f"**{item.label}**")
    columns = st.columns(max(1, len(properties.levels)))
    for level, level_settings in enumerate(properties.levels):
        options = session.cascade_options(item.name, level)
        values = [option_value(node) for node in options]
        labels = {option_value(node): option_label(node) for node in options}
        current = selections[level] if level < len(selections) else ""
        choices = [UNSELECTED_LABEL, *values]
        parent = "/".join(selections[:level])
        with columns[level]:
            selection = st.selectbox(
                level_settings.label,
                choices,
                index=choices.index(current) if current in values else 0,
                key=f"{key}_{level}_{parent}",
                disabled=not is_level_enabled(item, selections, level),
                placeholder=level_settings.placeholder or None,
                format_func=lambda choice: labels.get(choice, choice),
            )
        chosen = "" if selection == UNSELECTED_LABEL else selection
        if chosen != current:
            try:
                session.select_cascade(item.name, level, chosen)
            except FormaError as exc:
                st.error(str(exc))
            st.rerun()
    if any(selections):
        st.caption(" › ".join(selection_labels(item, selections)))


def render_matrix(session: FillSession, item: FormField, key: str) -> None:
    rows = [row for row in item.properties.get("rows") or [] if isinstance(row, Mapping)]
    columns = [column for column in item.properties.get("columns") or [] if isinstance(column, Mapping)]
    current = session.answers.get(item.name)
    answers: Dict[str, Any] = dict(current) if isinstance(current, Mapping) else {}
    column_ids = [str(column.get("id") or column.get("value")) for column in columns]
    labels = {str(column.get("id") or column.get("value")): str(column.get("label") or "") for column in columns}
    st.markdown(f"**{item.label}**")
    for row in rows:
        row_id = str(row.get("id"))
        choices = [UNSELECTED_LABEL, *column_ids]
        existing = answers.get(row_id)
        selection = st.radio(
            str(row.get("label") or row_id),
            choices,
            index=choices.index(existing) if existing in column_ids else 0,
            key=f"{key}_{row_id}",
            horizontal=True,
            disabled=item.disabled or item.read_only,
            format_func=lambda choice: labels.get(choice, choice),
        )
        if selection == UNSELECTED_LABEL:
            answers.pop(row_id, None)
        else:
            answers[row_id] = selection
    _apply(session, item.name, answers)


def render_multiple_text(session: FillSession, item: FormField, key: str) -> None:
    entries = [entry for entry in item.properties.get("items") or [] if isinstance(entry, Mapping)]
    current = session.answers.get(item.name)
    values: Dict[str, Any] = dict(current) if isinstance(current, Mapping) else {}
    st.markdown(f"**{item.label}**")
    for entry in entries:
        name = str(entry.get("name") or "")
        if not name:
            continue
        values[name] = st.text_input(
            str(entry.get("label") or name),
            value=str(values.get(name) or ""),
            key=f"{key}_{name}",
            disabled=item.disabled or item.read_only,
        )
    _apply(session, item.name, values)


def matrix_frame(controller: DynamicGroupController, items: List[Dict[str, Any]]) -> pd.DataFrame:
    """Return the dynamic matrix items as a table with one column per template entry."""

    return pd.DataFrame(
        [{name: item.get(name) for name in controller.child_names} for item in items],
        columns=controller.child_names,
    )


def changed_cells(before: pd.DataFrame, after: pd.DataFrame) -> List[tuple]:
    """Return ``(row, column, value)`` for every cell that differs."""

    changes: List[tuple] = []
    for row in range(min(len(before), len(after))):
        for column in before.columns:
            old, new = before.iloc[row][column], after.iloc[row][column]
            if pd.isna(old) and pd.isna(new):
                continue
            if old != new:
                changes.append((row, column, None if pd.isna(new) else new))
    return changes


def render_dynamic_group(session: FillSession, item: FormField, key: str) -> None:
    controller = session.group(item.name)
    items = list(session.answers.get(item.name) or [])
    st.markdown(f"**{item.label}**")
    if item.description:
        st.caption(item.description)

    if item.type == MATRIX_DYNAMIC:
        before = matrix_frame(controller, items)
        after = st.data_editor(
            before,
            num_rows="fixed",
            hide_index=True,
            disabled=not controller.editable,
            key=f"{key}_{len(items)}",
        )
        for row, column, value in changed_cells(before, after):
            session.set_group_value(item.name, row, column, value)
        remove_choices = list(range(len(items)))
        if remove_choices and controller.can_remove(items):
            remove_col, button_col = st.columns([3, 1])
            with remove_col:
                target = st.selectbox(
                    "Row to remove",
                    remove_choices,
                    format_func=controller.item_title,
                    key=f"{key}_remove_target",
                )
            with button_col:
                if st.button("Remove row", key=f"{key}_remove"):
                    session.remove_group_item(item.name, int(target))
                    st.rerun()
    else:
        for index, row in enumerate(controller.instantiate(items)):
            item_id = str(items[index].get(ITEM_ID_KEY) or index)
            with st.expander(controller.item_title(index), expanded=True):
                for entry, synthesized in zip(controller.template, row):
                    if synthesized.type in {HTML, SECTION, HIDDEN, PANEL, PANEL_DYNAMIC}:
                        continue
                    value = render_input(
                        synthesized,
                        items[index].get(entry.name),
                        key=f"{key}_{item_id}_{entry.id}",
                        label=entry.document.get("label") or entry.name,
                    )
                    if value != items[index].get(entry.name):
                        try:
                            session.set_group_value(item.name, index, entry.name, value)
                        except FormaError as exc:
                            st.error(str(exc))
                if controller.can_remove(items) and st.button("Remove", key=f"{key}_{item_id}_remove"):
                    session.remove_group_item(item.name, index)
                    st.rerun()

    if controller.can_add(items) and st.button(controller.properties.add_label, key=f"{key}_add"):
        session.add_group_item(item.name)
        st.rerun()


def render_field(session: FillSession, item: FormField, form_key: str) -> None:
    """Render ``item`` (and, for panels, its children) for the current session."""

    key = f"{form_key}_{item.id}"
    if item.type == HIDDEN:
        return
    if item.type == HTML:
        st.markdown(str(item.properties.get("content") or ""), unsafe_allow_html=True)
        return
    if item.type == SECTION:
        st.subheader(item.label)
        if item.description:
            st.caption(item.description)
        return
    if item.type == PANEL:
        with st.container(border=True):
            if item.label:
                st.markdown(f"#### {item.label}")
            for child_id in item.child_ids:
                render_field(session, session.schema.fields[child_id], form_key)
        return
    if item.type in {PANEL_DYNAMIC, MATRIX_DYNAMIC}:
        render_dynamic_group(session, item, key)
        return
    if item.type == EXPRESSION:
        render_computed(item.label, session.display_value(item.name))
        return
    if item.type == CASCADING_SELECT:
        render_cascade(session, item, key)
        return
    if item.type == MATRIX:
        render_matrix(session, item, key)
        return
    if item.type == MULTIPLE_TEXT:
        render_multiple_text(session, item, key)
        return
    value = render_input(item, session.answers.get(item.name), key)
    if not (item.disabled or item.read_only):
        _apply(session, item.name, value)


def store_submission(form_key: str, schema: FormSchema, answers: Dict[str, Any]) -> Optional[str]:
    """Persist a submission locally and, when configured, to GitHub."""

    try:
        payload = build_submission_payload(form_key, schema, answers)
    except TypeError as exc:
        st.error(f"Answers are not serialisable: {exc}.")
        return None
    submission_id = payload["id"]

    try:
        write_local_submission(payload, local_submissions_dir())
    except OSError as exc:
        st.warning(f"Could not write the local copy of the submission: {exc}")

    settings = github_settings()
    if not settings or not settings.get("token"):
        return submission_id

    try:
        storage_path = submission_storage_path(
            settings["submissions_path"], form_key=form_key, submission_id=submission_id
        )
    except KeyError as exc:
        st.error(f"Invalid submissions path template; unknown placeholder: {exc}.")
        return None

    backend = GitHubBackend(
        token=settings["token"],
        repo=settings["repo"],
        path=storage_path,
        branch=settings.get("branch", "main"),
        api_url=settings.get("api_url") or DEFAULT_API_URL,
    )
    try:
        backend.write_json(payload, message=f"Add submission {submission_id} for {form_key}")
    except requests.RequestException as exc:
        st.error(f"Failed to store submission: {exc}")
        return None
    return submission_id


def _session_for(form_key: str, schema: FormSchema) -> FillSession:
    sessions: Dict[str, FillSession] = st.session_state.setdefault(SESSIONS_STATE_KEY, {})
    session = sessions.get(form_key)
    if session is None or session.schema.to_document() != schema.to_document():
        session = FillSession(schema)
        sessions[form_key] = session
    return session


def render_navigation(session: FillSession, form_key: str) -> None:
    submit_settings = session.schema.data.get("submit")
    submit_settings = submit_settings if isinstance(submit_settings, Mapping) else {}
    submit_label = str(submit_settings.get("label") or DEFAULT_SUBMIT_LABEL)
    is_last = session.peek_next().kind == FINISH

    back_col, next_col = st.columns(2)
    with back_col:
        if st.button("Previous", disabled=not session.can_go_back(), use_container_width=True):
            session.previous_page()
            st.rerun()
    with next_col:
        label = submit_label if is_last else "Next"
        if st.button(label, type="primary", use_container_width=True):
            missing = session.missing_required(session.current_page_id)
            if missing:
                st.error("Please answer all required questions before continuing.")
                st.markdown("\n".join(f"- {name}" for name in missing))
                return
            session.next_page()
            if session.finished:
                submission_id = store_submission(form_key, session.schema, session.submission_snapshot())
                if submission_id:
                    st.session_state[LAST_SUBMISSION_STATE_KEY] = submission_id
                    st.session_state[SESSIONS_STATE_KEY].pop(form_key, None)
                    st.success(str(submit_settings.get("successMessage") or DEFAULT_SUBMIT_SUCCESS_MESSAGE))
                    st.info(f"Submission saved with ID `{submission_id}`.")
                else:
                    session.finished = False
                return
            st.rerun()


def main() -> None:
    """Render the fill page."""

    apply_app_theme(page_title="Fill in a form", page_icon="ð")
    header_placeholder = st.empty()

    forms = load_forms()
    if not forms:
        page_header("Fill in a form", "No forms are available yet.", icon="ð", container=header_placeholder)
        st.error("No forms found. Add a form_schemas/<form_key>/form_schema.json file or use the editor.")
        return

    form_keys = sorted(forms)
    selected = st.query_params.get(FORM_QUERY_PARAM) or st.session_state.get(SELECTED_FORM_STATE_KEY)
    if selected not in forms:
        selected = form_keys[0]
    if len(form_keys) > 1:
        selected = st.selectbox(
            "Form",
            form_keys,
            index=form_keys.index(selected),
            format_func=lambda key: forms[key].title or key,
        )
    st.session_state[SELECTED_FORM_STATE_KEY] = selected
    st.query_params[FORM_QUERY_PARAM] = selected

    schema = forms[selected]
    try:
        session = _session_for(selected, schema)
    except FormaError as exc:
        st.error(f"This form cannot be filled in: {exc}")
        return

    page = session.current_page
    page_header(
        schema.title or selected,
        page.title or None,
        icon="ð",
        container=header_placeholder,
    )
    step_badge(session.page_number, session.page_count)
    if page.description:
        st.caption(page.description)

    if schema.settings.show_progress_bar:
        answered, total = session.progress()
        if total:
            st.progress(answered / total, text=f"{answered} of {total} answered")

    for item in session.page_fields():
        render_field(session, item, selected)

    render_navigation(session, selected)

    with st.expander("Current answers", expanded=False):
        st.code(json.dumps(session.answers, indent=2, ensure_ascii=False, default=str), language="json")


if __name__ == "__main__":
    main()
