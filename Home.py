"""Streamlit home screen listing the available forms."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import pandas as pd
import requests
import streamlit as st

from forma.config import github_settings, local_submissions_dir
from forma.errors import FormaError
from forma.form_store import available_form_keys, load_local_forms
from forma.github_backend import load_remote_form
from forma.schema_model import FormSchema
from forma.submission_storage import load_local_submissions
from forma.ui_theme import apply_app_theme, page_header

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

SELECTED_FORM_STATE_KEY = "forma_selected_form"
HOME_TABLE_KEY = "home_forms_table"
TABLE_COLUMNS = ("Form", "Title", "Version", "Pages", "Fields", "Submissions")


def _load_remote_forms(settings: Dict[str, Any]) -> Dict[str, FormSchema]:
    forms: Dict[str, FormSchema] = {}
    for form_key in settings.get("forms") or available_form_keys():
        try:
            forms[form_key] = load_remote_form(settings, form_key)
        except (requests.RequestException, ValueError, FormaError) as exc:
            logger.warning("Could not load form %s from GitHub: %s", form_key, exc)
    return forms


# ``pages/01_Fill_Form.py`` and ``pages/02_Editor.py`` import ``load_forms``
# from this module.
@st.cache_data(ttl=60, show_spinner=False)
def load_forms() -> Dict[str, FormSchema]:
    """Return every available form keyed by form key.

    Forms come from GitHub when a repository is configured, and from the
    local ``form_schemas`` directory otherwise or when GitHub yields nothing.
    """

    settings = github_settings()
    if settings:
        remote = _load_remote_forms(settings)
        if remote:
            return remote
    return load_local_forms()


def _switch_to(page: str, form_key: str) -> None:
    """Open ``page`` with ``form_key`` preselected."""

    st.session_state[SELECTED_FORM_STATE_KEY] = form_key
    if hasattr(st, "switch_page"):
        st.switch_page(page)
    else:
        st.info("Use the navigation menu to open the page.")


def build_forms_table(forms: Dict[str, FormSchema], submissions: List[Dict[str, Any]]) -> pd.DataFrame:
    """Return one row per form with structural counts and submission totals."""

    counts: Dict[str, int] = {}
    for submission in submissions:
        key = str(submission.get("form_key") or "")
        counts[key] = counts.get(key, 0) + 1
    rows = [
        {
            "Form": form_key,
            "Title": schema.title or form_key,
            "Version": schema.version,
            "Pages": len(schema.pages),
            "Fields": len(schema.fields),
            "Submissions": counts.get(form_key, 0),
        }
        for form_key, schema in sorted(forms.items())
    ]
    return pd.DataFrame(rows, columns=list(TABLE_COLUMNS))


def main() -> None:
    """Render the home screen."""

    apply_app_theme(page_title="Forma", page_icon="🗂️")
    page_header("Forms", "Fill in a form or open it in the editor.", icon="🗂️")

    forms = load_forms()
    submissions = load_local_submissions(local_submissions_dir())

    metric_col1, metric_col2, metric_col3 = st.columns(3)
    metric_col1.metric("Forms", len(forms) or "0")
    metric_col2.metric("Pages", sum(len(schema.pages) for schema in forms.values()) or "0")
    metric_col3.metric("Stored submissions", len(submissions) or "0")

    if not forms:
        st.info("No forms found. Create one in the editor.")
        st.page_link("pages/02_Editor.py", label="Open editor", icon="✏️")
        return

    table_df = build_forms_table(forms, submissions)
    table_df.insert(0, "Select", False)
    selected_key = st.session_state.get(SELECTED_FORM_STATE_KEY)
    if selected_key:
        table_df.loc[table_df["Form"] == selected_key, "Select"] = True

    edited_df = st.data_editor(
        table_df,
        hide_index=True,
        width="stretch",
        num_rows="fixed",
        key=HOME_TABLE_KEY,
        column_config={
            "Select": st.column_config.CheckboxColumn("Select", help="Choose a form to open."),
            **{column: st.column_config.Column(column, disabled=True) for column in TABLE_COLUMNS},
        },
    )

    selected_rows = edited_df.loc[edited_df["Select"].astype(bool)]
    candidate: Optional[str] = None
    if len(selected_rows) > 1:
        st.warning("Select only one form at a time.")
    elif len(selected_rows) == 1:
        candidate = str(selected_rows.iloc[0]["Form"])
        st.session_state[SELECTED_FORM_STATE_KEY] = candidate

    fill_col, edit_col = st.columns(2)
    with fill_col:
        if st.button("Fill in form", type="primary", disabled=candidate is None, use_container_width=True):
            _switch_to("pages/01_Fill_Form.py", candidate or "")
    with edit_col:
        if st.button("Edit form", disabled=candidate is None, use_container_width=True):
            _switch_to("pages/02_Editor.py", candidate or "")

    if submissions:
        st.markdown("#### Recent submissions")
        recent = pd.DataFrame(
            [
                {
                    "Submission ID": item.get("id", ""),
                    "Form": item.get("form_key", ""),
                    "Submitted at": item.get("submitted_at", ""),
                }
                for item in submissions[:20]
            ]
        )
        st.dataframe(recent, hide_index=True, width="stretch")


if __name__ == "__main__":
    main()
