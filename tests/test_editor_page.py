"""Tests for the editor page helpers."""

from __future__ import annotations

import hashlib
import importlib

import pandas as pd
import streamlit as st

from forma.schema_model import parse_schema


def _editor():
    return importlib.import_module("pages.02_Editor")


def _clear_session_state() -> None:
    """Remove all keys from Streamlit's session state."""

    for key in list(st.session_state.keys()):
        del st.session_state[key]


def _schema():
    return parse_schema(
        {
            "version": "1.0",
            "pages": [
                {
                    "id": "p1",
                    "title": "One",
                    "fields": [
                        {
                            "id": "f_panel",
                            "type": "panel",
                            "name": "panel",
                            "properties": {"fields": [{"id": "f_inner", "type": "text", "name": "inner"}]},
                        },
                        {"id": "f_age", "type": "number", "name": "age"},
                    ],
                    "navigationRules": [
                        {"id": "keep_me", "fieldName": "age", "operator": "lt", "value": "18", "targetPageId": "p2"}
                    ],
                },
                {"id": "p2", "title": "Two", "fields": []},
            ],
        }
    )


def test_verify_password_compares_sha256_digest():
    editor = _editor()
    digest = hashlib.sha256(b"letmein").hexdigest()

    assert editor.verify_password("letmein", digest)
    assert not editor.verify_password("wrong", digest)
    assert not editor.verify_password("letmein", None)


def test_field_outline_reports_depth():
    editor = _editor()

    outline = editor.field_outline(_schema(), "p1")

    assert [(depth, node.id) for depth, node in outline] == [(0, "f_panel"), (1, "f_inner"), (0, "f_age")]


def test_rules_round_trip_through_table_keeps_ids():
    editor = _editor()
    page = _schema().pages[0]
    frame = editor.rules_frame(page)
    assert list(frame.columns) == editor.RULE_COLUMNS

    edited = pd.concat(
        [
            frame,
            pd.DataFrame(
                [
                    {"fieldName": "inner", "operator": "isEmpty", "value": None, "targetPageId": "p2"},
                    {"fieldName": None, "operator": "equals", "value": "x", "targetPageId": "p1"},
                ]
            ),
        ],
        ignore_index=True,
    )

    rules = editor.rules_from_frame(edited, page.data["navigationRules"])

    assert len(rules) == 2
    assert rules[0] == {
        "id": "keep_me",
        "fieldName": "age",
        "operator": "lt",
        "value": "18",
        "targetPageId": "p2",
    }
    assert rules[1]["id"].startswith("rule_")
    assert rules[1]["value"] == ""


def test_engine_for_creates_new_forms_once():
    editor = _editor()
    _clear_session_state()

    first = editor._engine_for("fresh", {})
    second = editor._engine_for("fresh", {})

    assert first is second
    assert first.schema.title == "fresh"
    assert len(first.schema.pages) == 1
    _clear_session_state()


def test_engine_for_edits_a_copy_of_the_loaded_form():
    editor = _editor()
    _clear_session_state()
    loaded = _schema()

    engine = editor._engine_for("demo", {"demo": loaded})
    engine.remove("f_age")

    assert "f_age" in loaded.fields
    _clear_session_state()
